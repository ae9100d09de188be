"""
Tests for TranscriptionEngine.

Uses a scripted runtime to avoid large model downloads.
"""

import threading

import numpy as np
import pytest

from murmur.core.asr.errors import TranscribeError, TranscriptionCancelled
from murmur.core.asr.runtime import TranscriptionProgress
from murmur.core.asr.transcriber import TranscriptionEngine
from murmur.core.settings.settings import Settings
from murmur.core.transcript.segments import TranscriptSegment


def progress(window_id=0, text="", fallbacks=0, avg_logprob=None):
    return TranscriptionProgress(
        window_id=window_id, text=text, fallbacks=fallbacks, avg_logprob=avg_logprob
    )


def seg(start, end, text):
    return TranscriptSegment(start=start, end=end, text=text)


def make_engine(runtime, **settings):
    return TranscriptionEngine(lambda: runtime, Settings(**settings))


class TestFileTranscription:
    """Tests for whole-file passes."""

    def test_segments_are_confirmed(self, scripted_runtime):
        runtime = scripted_runtime(
            events=[progress(text="Hello"), progress(text="Hello world")],
            segments=[seg(0, 1, "Hello world")],
        )
        engine = make_engine(runtime)

        result = engine.transcribe_file("/tmp/audio.wav")

        assert result.text == "Hello world"
        snapshot = engine.snapshot
        assert snapshot.confirmed == (seg(0, 1, "Hello world"),)
        assert snapshot.unconfirmed == ()
        assert snapshot.decoding_loops == 2

    def test_uses_settings_for_decoding(self, scripted_runtime):
        runtime = scripted_runtime()
        engine = make_engine(runtime, selected_language="german", selected_task="translate")

        engine.transcribe_file("/tmp/audio.wav")

        options = runtime.calls[0]
        assert options.language == "de"
        assert options.task == "translate"
        assert options.clip_timestamps == ()

    def test_preview_forwarded(self, scripted_runtime):
        runtime = scripted_runtime(
            events=[progress(window_id=0, text="one"), progress(window_id=1, text="two")]
        )
        engine = make_engine(runtime)
        previews = []

        engine.transcribe_file("/tmp/audio.wav", on_preview=previews.append)

        assert previews == ["one", "one\ntwo"]

    def test_preview_disabled(self, scripted_runtime):
        runtime = scripted_runtime(events=[progress(text="one")])
        engine = make_engine(runtime, enable_decoder_preview=False)
        previews = []

        engine.transcribe_file("/tmp/audio.wav", on_preview=previews.append)

        assert previews == []

    def test_new_file_replaces_transcript(self, scripted_runtime):
        runtime = scripted_runtime(segments=[seg(0, 1, "first")])
        engine = make_engine(runtime)
        engine.transcribe_file("/tmp/a.wav")

        runtime.segments = [seg(0, 2, "second")]
        engine.transcribe_file("/tmp/b.wav")

        assert engine.snapshot.confirmed == (seg(0, 2, "second"),)

    def test_transcribe_samples(self, scripted_runtime):
        runtime = scripted_runtime(segments=[seg(0, 1, "buffer")])
        engine = make_engine(runtime)

        engine.transcribe_samples(np.zeros(16000, dtype=np.float32))

        assert engine.snapshot.confirmed == (seg(0, 1, "buffer"),)

    def test_low_confidence_requests_stop(self, scripted_runtime):
        runtime = scripted_runtime(
            events=[progress(text="fine", avg_logprob=-0.2), progress(text="??", avg_logprob=-3.0)]
        )
        engine = make_engine(runtime)

        engine.transcribe_file("/tmp/audio.wav")

        assert runtime.signals == [None, False]


class TestStreamTranscription:
    """Tests for passes over a growing microphone buffer."""

    def test_trailing_segments_stay_unconfirmed(self, scripted_runtime):
        runtime = scripted_runtime(
            segments=[seg(0, 1, "a"), seg(1, 2, "b"), seg(2, 3, "c")]
        )
        engine = make_engine(runtime, token_confirmations_needed=2)

        engine.transcribe_stream_pass(np.zeros(48000, dtype=np.float32))

        snapshot = engine.snapshot
        assert snapshot.confirmed == (seg(0, 1, "a"),)
        assert snapshot.unconfirmed == (seg(1, 2, "b"), seg(2, 3, "c"))

    def test_next_pass_clips_from_last_confirmed_end(self, scripted_runtime):
        runtime = scripted_runtime(
            segments=[seg(0, 1.5, "a"), seg(1.5, 2, "b"), seg(2, 3, "c")]
        )
        engine = make_engine(runtime, token_confirmations_needed=2)
        audio = np.zeros(48000, dtype=np.float32)

        engine.transcribe_stream_pass(audio)
        runtime.segments = [seg(1.5, 2, "b"), seg(2, 3, "c"), seg(3, 4, "d")]
        engine.transcribe_stream_pass(audio)

        assert runtime.calls[0].clip_timestamps == (0.0,)
        assert runtime.calls[1].clip_timestamps == (1.5,)
        assert [s.text for s in engine.snapshot.confirmed] == ["a", "b"]

    def test_stream_mode_uses_single_chunk(self, scripted_runtime):
        runtime = scripted_runtime(
            events=[progress(window_id=0, text="Hello world"), progress(window_id=2, text="Next")]
        )
        engine = make_engine(runtime)

        engine.transcribe_stream_pass(np.zeros(16000, dtype=np.float32))

        assert engine.snapshot.preview == "Hello world\nNext"

    def test_finish_stream_confirms_the_rest(self, scripted_runtime):
        runtime = scripted_runtime(segments=[seg(0, 1, "a"), seg(1, 2, "b")])
        engine = make_engine(runtime, token_confirmations_needed=2)
        engine.transcribe_stream_pass(np.zeros(32000, dtype=np.float32))

        snapshot = engine.finish_stream()

        assert snapshot.confirmed == (seg(0, 1, "a"), seg(1, 2, "b"))
        assert snapshot.unconfirmed == ()

    def test_reset_starts_a_new_session(self, scripted_runtime):
        runtime = scripted_runtime(segments=[seg(0, 1, "a")])
        engine = make_engine(runtime, token_confirmations_needed=0)
        engine.transcribe_stream_pass(np.zeros(16000, dtype=np.float32))

        engine.reset()

        assert engine.snapshot.confirmed == ()
        assert engine.reconciler.last_confirmed_end == 0.0


class TestEngineErrors:
    def test_no_runtime_raises(self):
        engine = TranscriptionEngine(lambda: None, Settings())

        with pytest.raises(TranscribeError, match="Model not loaded"):
            engine.transcribe_file("/tmp/audio.wav")

    def test_unloaded_runtime_raises(self, scripted_runtime):
        runtime = scripted_runtime()
        runtime.is_loaded = False

        with pytest.raises(TranscribeError):
            make_engine(runtime).transcribe_file("/tmp/audio.wav")

    def test_cancel_event_stops_run(self, scripted_runtime):
        runtime = scripted_runtime(events=[progress(text="one"), progress(text="two")])
        engine = make_engine(runtime)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(TranscriptionCancelled):
            engine.transcribe_file("/tmp/audio.wav", cancel_event=cancel)

        assert engine.snapshot.confirmed == ()

    def test_preview_sink_cleared_after_failure(self, scripted_runtime):
        runtime = scripted_runtime(events=[progress(text="one")])
        engine = make_engine(runtime)
        cancel = threading.Event()
        cancel.set()
        previews = []

        with pytest.raises(TranscriptionCancelled):
            engine.transcribe_file("/tmp/a.wav", cancel_event=cancel, on_preview=previews.append)
        engine.transcribe_file("/tmp/b.wav")

        assert previews == []
