"""
Pytest configuration for Qt-based tests.

Provides fixtures for proper Qt object cleanup between tests to prevent segfaults,
plus a scripted stand-in for the Whisper runtime.
"""
from typing import List, Optional, Sequence

import pytest
from PySide6.QtWidgets import QApplication

from murmur.core.asr.runtime import (
    DecodingOptions,
    TranscriptionProgress,
    TranscriptionResult,
    TranscriptionTimings,
)
from murmur.core.transcript.segments import TranscriptSegment


@pytest.fixture(autouse=True)
def cleanup_qt_objects(qtbot, request):
    """
    Auto-cleanup fixture that runs after each test to ensure Qt objects are
    properly destroyed before the next test starts.
    """
    yield

    app = QApplication.instance()
    if app:
        app.processEvents()


@pytest.fixture(autouse=True)
def isolated_config_dir(tmp_path, monkeypatch):
    """Keep settings written during tests out of the user's config dir."""
    monkeypatch.setattr(
        "murmur.core.settings.settings.get_config_dir",
        lambda: _ensure(tmp_path / "config"),
    )


def _ensure(path):
    path.mkdir(parents=True, exist_ok=True)
    return path


class ScriptedRuntime:
    """
    Replays a fixed list of progress events and returns fixed segments.

    Records the decoding options of every call so tests can inspect them.
    """

    def __init__(
        self,
        events: Sequence[TranscriptionProgress] = (),
        segments: Sequence[TranscriptSegment] = (),
        duration: float = 10.0,
    ):
        self.events = list(events)
        self.segments = list(segments)
        self.duration = duration
        self.is_loaded = True
        self.calls: List[DecodingOptions] = []
        self.signals: List[Optional[bool]] = []

    def transcribe(self, audio, options, on_progress=None) -> TranscriptionResult:
        self.calls.append(options)
        for event in self.events:
            if on_progress is not None:
                self.signals.append(on_progress(event))
        return TranscriptionResult(
            text=" ".join(s.text for s in self.segments),
            segments=list(self.segments),
            language=options.language,
            timings=TranscriptionTimings(
                audio_duration=self.duration,
                processing_time=2.0,
                total_tokens=40,
                windows=1,
            ),
        )


@pytest.fixture
def scripted_runtime():
    return ScriptedRuntime
