"""
Transcription engine on top of the loaded Whisper runtime.

Builds decoding options from the user's settings, feeds every partial
decoding event through the transcript reconciler, and logs run timings.
Runs file passes (a dropped file or a finished buffer) and streaming passes
(repeated decodes of a growing microphone buffer).
"""

import threading
from typing import TYPE_CHECKING, Callable, Optional, Union

import numpy as np

from ...utils.logger import get_logger
from ..transcript.reconciler import TranscriptReconciler, TranscriptSnapshot
from .errors import TranscribeError, TranscriptionCancelled
from .runtime import (
    DecodingOptions,
    TranscriptionProgress,
    TranscriptionResult,
    WhisperRuntime,
)

if TYPE_CHECKING:
    from ..settings.settings import Settings

logger = get_logger(__name__)

RuntimeProvider = Callable[[], Optional[WhisperRuntime]]
PreviewCallback = Callable[[str], None]


class TranscriptionEngine:
    """
    Runs transcription passes and owns the transcript for the current session.

    Example:
        engine = TranscriptionEngine(lambda: manager.runtime, settings)
        result = engine.transcribe_file("/path/to/audio.wav")
    """

    def __init__(self, runtime_provider: RuntimeProvider, settings: "Settings"):
        """
        Args:
            runtime_provider: Returns the loaded runtime, or None if no model is loaded
            settings: User preferences for decoding and early stopping
        """
        self._runtime_provider = runtime_provider
        self.settings = settings
        self._preview_sink: Optional[PreviewCallback] = None
        self.reconciler = TranscriptReconciler(
            policy=settings.early_stop_policy(), on_preview=self._forward_preview
        )

    @property
    def snapshot(self) -> TranscriptSnapshot:
        return self.reconciler.snapshot()

    def decoding_options(self, clip_start: Optional[float] = None) -> DecodingOptions:
        return self.settings.decoding_options(clip_start)

    def reset(self) -> None:
        self.reconciler.policy = self.settings.early_stop_policy()
        self.reconciler.reset()

    def _forward_preview(self, text: str) -> None:
        if self._preview_sink is not None and self.settings.enable_decoder_preview:
            self._preview_sink(text)

    def _runtime(self) -> WhisperRuntime:
        runtime = self._runtime_provider()
        if runtime is None or not runtime.is_loaded:
            raise TranscribeError("Model not loaded")
        return runtime

    def _run(
        self,
        audio: Union[np.ndarray, str],
        options: DecodingOptions,
        cancel_event: Optional[threading.Event],
        on_preview: Optional[PreviewCallback],
    ) -> TranscriptionResult:
        runtime = self._runtime()

        def on_progress(progress: TranscriptionProgress) -> Optional[bool]:
            if cancel_event is not None and cancel_event.is_set():
                raise TranscriptionCancelled("Transcription cancelled")
            return self.reconciler.handle_progress(progress)

        self.reconciler.start_run()
        self._preview_sink = on_preview
        try:
            result = runtime.transcribe(audio, options, on_progress)
        finally:
            self._preview_sink = None

        self._log_timings(result)
        return result

    def _log_timings(self, result: TranscriptionResult) -> None:
        timings = result.timings
        if timings.processing_time > 0:
            logger.debug(
                f"Transcription finished: audio_len={timings.audio_duration:.2f}s, "
                f"time={timings.processing_time:.2f}s, "
                f"speed={timings.real_time_factor:.2f}x"
            )
            logger.debug(
                f"Transcription speed: {timings.tokens_per_second:.2f} tok/s, "
                f"fallbacks={timings.total_fallbacks}, windows={timings.windows}"
            )

    def transcribe_file(
        self,
        path: str,
        cancel_event: Optional[threading.Event] = None,
        on_preview: Optional[PreviewCallback] = None,
    ) -> TranscriptionResult:
        """Transcribe an audio file from disk into a fresh transcript."""
        logger.info(f"Transcribing file: {path}")
        return self._transcribe_whole(path, cancel_event, on_preview)

    def transcribe_samples(
        self,
        samples: np.ndarray,
        cancel_event: Optional[threading.Event] = None,
        on_preview: Optional[PreviewCallback] = None,
    ) -> TranscriptionResult:
        """Transcribe a complete 16 kHz mono buffer into a fresh transcript."""
        logger.info(f"Transcribing buffer: {len(samples)} samples")
        return self._transcribe_whole(samples, cancel_event, on_preview)

    def _transcribe_whole(self, audio, cancel_event, on_preview) -> TranscriptionResult:
        self.reset()
        self.reconciler.stream_mode = False

        result = self._run(audio, self.decoding_options(), cancel_event, on_preview)

        self.reconciler.replace_unconfirmed(result.segments)
        self.reconciler.finalize()
        return result

    def transcribe_stream_pass(
        self,
        samples: np.ndarray,
        cancel_event: Optional[threading.Event] = None,
        on_preview: Optional[PreviewCallback] = None,
    ) -> TranscriptionResult:
        """
        Decode the live buffer from the end of the last confirmed segment.

        All but the newest ``token_confirmations_needed`` segments of the pass
        are confirmed; the rest stay unconfirmed until the next pass or
        :meth:`finish_stream`.
        """
        self.reconciler.stream_mode = True
        clip_start = self.reconciler.last_confirmed_end

        result = self._run(
            samples, self.decoding_options(clip_start), cancel_event, on_preview
        )

        moved = self.reconciler.confirm_leading(
            list(result.segments), self.settings.token_confirmations_needed
        )
        if moved:
            logger.debug(
                f"Confirmed {moved} segments up to {self.reconciler.last_confirmed_end:.2f}s"
            )
        return result

    def finish_stream(self) -> TranscriptSnapshot:
        self.reconciler.finalize()
        return self.reconciler.snapshot()
