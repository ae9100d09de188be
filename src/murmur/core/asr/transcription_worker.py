import threading
import time
from typing import Optional

from PySide6.QtCore import QThread, Signal

from ...utils.logger import get_logger
from ..audio.recorder import WHISPER_SAMPLE_RATE, AudioRecorder, is_voice_detected
from .errors import TranscribeError, TranscriptionCancelled
from .runtime import TranscriptionResult
from .transcriber import TranscriptionEngine

logger = get_logger(__name__)

MIN_NEW_AUDIO_SECONDS = 1.0


class FileTranscriptionWorker(QThread):
    """
    Background thread for transcribing a dropped file.

    Signals:
        preview: Live decoder preview text
        segments: TranscriptSnapshot once the run has been reconciled
        finished: TranscriptionResult of the completed run
        error: Emitted when transcription fails (error_message)
        cancelled: Emitted when the run was cancelled by the user
    """

    preview = Signal(str)
    segments = Signal(object)
    finished = Signal(object)
    error = Signal(str)
    cancelled = Signal()

    def __init__(self, engine: TranscriptionEngine, path: str, parent=None):
        super().__init__(parent)
        self._engine = engine
        self._path = path
        self._cancel_event = threading.Event()

    @property
    def path(self) -> str:
        return self._path

    def cancel(self) -> None:
        self._cancel_event.set()

    def run(self):
        start_time = time.time()

        try:
            result = self._engine.transcribe_file(
                self._path, self._cancel_event, self.preview.emit
            )
        except TranscriptionCancelled:
            logger.info(f"Transcription of {self._path} cancelled")
            self.segments.emit(self._engine.snapshot)
            self.cancelled.emit()
            return
        except TranscribeError as e:
            logger.error(f"Transcription failed: {e}")
            self.error.emit(str(e))
            return
        except Exception as e:
            logger.exception(f"Background transcription error: {e}")
            self.error.emit(str(e))
            return

        duration = time.time() - start_time
        logger.info(
            f"Transcription completed in {duration:.2f}s: "
            f"'{result.text[:50]}{'...' if len(result.text) > 50 else ''}'"
        )
        self.segments.emit(self._engine.snapshot)
        self.finished.emit(result)


class LiveTranscriptionWorker(QThread):
    """
    Background thread that repeatedly decodes the growing microphone buffer.

    Every ``realtime_delay_interval`` seconds the newest audio is checked for
    voice and, if present, a streaming pass confirms the settled segments.
    :meth:`stop` finalizes the remaining unconfirmed segments; :meth:`cancel`
    leaves them as they are.
    """

    preview = Signal(str)
    segments = Signal(object)
    finished = Signal(object)
    error = Signal(str)
    cancelled = Signal()

    def __init__(
        self, engine: TranscriptionEngine, recorder: AudioRecorder, parent=None
    ):
        super().__init__(parent)
        self._engine = engine
        self._recorder = recorder
        self._stop_event = threading.Event()
        self._cancel_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def cancel(self) -> None:
        self._cancel_event.set()
        self._stop_event.set()

    def run(self):
        settings = self._engine.settings
        delay = max(0.05, settings.realtime_delay_interval)
        last_buffer_size = 0
        result: Optional[TranscriptionResult] = None

        self._engine.reset()
        logger.info("Live transcription started")

        try:
            while not self._stop_event.wait(delay):
                samples = self._recorder.snapshot()
                next_buffer_seconds = (
                    len(samples) - last_buffer_size
                ) / WHISPER_SAMPLE_RATE

                if next_buffer_seconds < MIN_NEW_AUDIO_SECONDS:
                    continue

                if settings.use_vad and not is_voice_detected(
                    self._recorder.relative_energy,
                    next_buffer_seconds,
                    settings.silence_threshold,
                ):
                    logger.debug("Voice not detected, skipping")
                    continue

                last_buffer_size = len(samples)
                result = self._engine.transcribe_stream_pass(
                    samples, self._cancel_event, self.preview.emit
                )
                self.segments.emit(self._engine.snapshot)

        except TranscriptionCancelled:
            logger.info("Live transcription cancelled")
            self.segments.emit(self._engine.snapshot)
            self.cancelled.emit()
            return
        except TranscribeError as e:
            logger.error(f"Live transcription failed: {e}")
            self.error.emit(str(e))
            return
        except Exception as e:
            logger.exception(f"Background transcription error: {e}")
            self.error.emit(str(e))
            return

        if self._cancel_event.is_set():
            logger.info("Live transcription cancelled")
            self.segments.emit(self._engine.snapshot)
            self.cancelled.emit()
            return

        self.segments.emit(self._engine.finish_stream())
        logger.info("Live transcription finished")
        self.finished.emit(result)
