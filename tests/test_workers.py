"""
Tests for the background threads.

``run()`` is called directly so signals are delivered synchronously on the
test thread.
"""

from unittest.mock import MagicMock

import numpy as np
import pytest

from murmur.core.asr.errors import InitError, LoadCancelled, LoadError
from murmur.core.asr.model_loader import ModelLoaderThread
from murmur.core.asr.model_manager import ModelState
from murmur.core.asr.runtime import TranscriptionProgress
from murmur.core.asr.transcriber import TranscriptionEngine
from murmur.core.asr.transcription_worker import (
    FileTranscriptionWorker,
    LiveTranscriptionWorker,
)
from murmur.core.settings.settings import Settings
from murmur.core.transcript.segments import TranscriptSegment


def seg(start, end, text):
    return TranscriptSegment(start=start, end=end, text=text)


class SignalLog:
    """Connects to every worker signal and records emissions by name."""

    def __init__(self, worker, names=("preview", "segments", "finished", "error", "cancelled")):
        self.emitted = {name: [] for name in names}
        for name in names:
            getattr(worker, name).connect(
                lambda *args, name=name: self.emitted[name].append(args)
            )

    def __getitem__(self, name):
        return self.emitted[name]


class GrowingRecorder:
    """Recorder stand-in whose buffer grows by one second per snapshot."""

    def __init__(self, worker_ref, energy=0.9, seconds_per_snapshot=1.0, snapshots=3):
        self._worker_ref = worker_ref
        self._energy = energy
        self._step = int(16000 * seconds_per_snapshot)
        self._snapshots = snapshots
        self.calls = 0

    @property
    def relative_energy(self):
        return [self._energy] * (10 * (self.calls + 1))

    def snapshot(self):
        self.calls += 1
        if self.calls >= self._snapshots:
            self._worker_ref["worker"].stop()
        return np.zeros(self._step * self.calls, dtype=np.float32)


def make_engine(runtime, **settings):
    settings.setdefault("realtime_delay_interval", 0.0)
    return TranscriptionEngine(lambda: runtime, Settings(**settings))


class TestFileTranscriptionWorker:
    def test_success_emits_segments_then_finished(self, qtbot, scripted_runtime):
        runtime = scripted_runtime(
            events=[TranscriptionProgress(window_id=0, text="Hello", fallbacks=0)],
            segments=[seg(0, 1, "Hello")],
        )
        worker = FileTranscriptionWorker(make_engine(runtime), "/tmp/a.wav")
        log = SignalLog(worker)

        worker.run()

        assert log["preview"] == [("Hello",)]
        assert log["segments"][0][0].confirmed == (seg(0, 1, "Hello"),)
        assert log["finished"][0][0].text == "Hello"
        assert log["error"] == []

    def test_model_not_loaded_emits_error(self, qtbot):
        engine = TranscriptionEngine(lambda: None, Settings())
        worker = FileTranscriptionWorker(engine, "/tmp/a.wav")
        log = SignalLog(worker)

        worker.run()

        assert log["error"] == [("Model not loaded",)]
        assert log["finished"] == []

    def test_cancel_emits_cancelled(self, qtbot, scripted_runtime):
        runtime = scripted_runtime(
            events=[TranscriptionProgress(window_id=0, text="Hello", fallbacks=0)]
        )
        worker = FileTranscriptionWorker(make_engine(runtime), "/tmp/a.wav")
        log = SignalLog(worker)

        worker.cancel()
        worker.run()

        assert log["cancelled"] == [()]
        assert len(log["segments"]) == 1
        assert log["finished"] == []

    def test_unexpected_error_is_reported(self, qtbot):
        runtime = MagicMock()
        runtime.is_loaded = True
        runtime.transcribe.side_effect = RuntimeError("boom")
        worker = FileTranscriptionWorker(make_engine(runtime), "/tmp/a.wav")
        log = SignalLog(worker)

        worker.run()

        assert log["error"] == [("boom",)]


class TestLiveTranscriptionWorker:
    def test_passes_then_finalizes_on_stop(self, qtbot, scripted_runtime):
        runtime = scripted_runtime(segments=[seg(0, 1, "a"), seg(1, 2, "b"), seg(2, 3, "c")])
        engine = make_engine(runtime, token_confirmations_needed=2)
        ref = {}
        recorder = GrowingRecorder(ref, snapshots=1)
        worker = LiveTranscriptionWorker(engine, recorder)
        ref["worker"] = worker
        log = SignalLog(worker)

        worker.run()

        assert len(runtime.calls) == 1
        assert [s.text for s in log["segments"][0][0].confirmed] == ["a"]
        final = log["segments"][-1][0]
        assert [s.text for s in final.confirmed] == ["a", "b", "c"]
        assert final.unconfirmed == ()
        assert len(log["finished"]) == 1
        assert log["finished"][0][0] is not None

    def test_silence_is_skipped(self, qtbot, scripted_runtime):
        runtime = scripted_runtime(segments=[seg(0, 1, "noise")])
        engine = make_engine(runtime, silence_threshold=0.3)
        ref = {}
        recorder = GrowingRecorder(ref, energy=0.1, snapshots=2)
        worker = LiveTranscriptionWorker(engine, recorder)
        ref["worker"] = worker
        log = SignalLog(worker)

        worker.run()

        assert runtime.calls == []
        assert log["finished"] == [(None,)]

    def test_vad_disabled_transcribes_silence(self, qtbot, scripted_runtime):
        runtime = scripted_runtime(segments=[seg(0, 1, "noise")])
        engine = make_engine(runtime, use_vad=False)
        ref = {}
        recorder = GrowingRecorder(ref, energy=0.0, snapshots=2)
        worker = LiveTranscriptionWorker(engine, recorder)
        ref["worker"] = worker

        worker.run()

        assert len(runtime.calls) == 2

    def test_short_buffer_waits_for_more_audio(self, qtbot, scripted_runtime):
        runtime = scripted_runtime()
        engine = make_engine(runtime)
        ref = {}
        recorder = GrowingRecorder(ref, seconds_per_snapshot=0.25, snapshots=3)
        worker = LiveTranscriptionWorker(engine, recorder)
        ref["worker"] = worker

        worker.run()

        assert runtime.calls == []

    def test_cancel_skips_finalize(self, qtbot, scripted_runtime):
        runtime = scripted_runtime(segments=[seg(0, 1, "a")])
        engine = make_engine(runtime)
        worker = LiveTranscriptionWorker(engine, MagicMock())
        log = SignalLog(worker)

        worker.cancel()
        worker.run()

        assert log["cancelled"] == [()]
        assert log["finished"] == []
        assert runtime.calls == []


class TestModelLoaderThread:
    def _manager(self, **kwargs):
        manager = MagicMock()
        manager.load_model.configure_mock(**kwargs)
        return manager

    def test_success(self, qtbot):
        runtime = MagicMock()
        runtime.device = "cpu"
        manager = self._manager(return_value=runtime)
        loader = ModelLoaderThread(manager, "tiny")
        log = SignalLog(loader, names=("finished", "init_failed"))

        loader.run()

        manager.load_model.assert_called_once_with("tiny", False)
        assert log["finished"] == [(True, "Model loaded on CPU")]
        assert not loader.was_cancelled

    def test_manager_callbacks_become_signals(self, qtbot):
        manager = MagicMock()

        def load(name, redownload):
            manager.on_state_change(ModelState.DOWNLOADING, "Downloading tiny...")
            manager.on_progress(0.35)
            raise LoadError("disk full")

        manager.load_model.side_effect = load
        loader = ModelLoaderThread(manager, "tiny")
        log = SignalLog(loader, names=("finished", "progress", "state_changed"))

        loader.run()

        assert log["state_changed"] == [(ModelState.DOWNLOADING, "Downloading tiny...")]
        assert log["progress"] == [(pytest.approx(0.35),)]
        assert log["finished"] == [(False, "Error loading model: disk full")]

    def test_cancelled(self, qtbot):
        manager = self._manager(side_effect=LoadCancelled("superseded"))
        loader = ModelLoaderThread(manager, "tiny")
        log = SignalLog(loader, names=("finished",))

        loader.run()

        assert loader.was_cancelled
        assert log["finished"] == [(False, "Model load cancelled")]

    def test_init_failure(self, qtbot):
        manager = self._manager(side_effect=InitError("no runtime"))
        loader = ModelLoaderThread(manager, "tiny")
        log = SignalLog(loader, names=("finished", "init_failed"))

        loader.run()

        assert log["init_failed"] == [("no runtime",)]
        assert log["finished"][0][0] is False
