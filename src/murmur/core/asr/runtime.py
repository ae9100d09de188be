"""
Speech runtime boundary.

Wraps faster-whisper (CTranslate2) behind the small surface the application
needs: construct, prewarm, load, transcribe with a per-segment progress
callback. Everything the runtime raises crosses this boundary as one of the
errors in :mod:`.errors`.
"""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from ...utils.logger import get_logger
from ..transcript.segments import TranscriptSegment
from .errors import (
    InitError,
    LoadError,
    PrewarmError,
    TranscribeError,
    TranscriptionCancelled,
)

logger = get_logger(__name__)

SAMPLE_RATE = 16000
TEMPERATURE_INCREMENT = 0.2
WARMUP_SECONDS = 1.0

_SPECIAL_TOKEN_RE = re.compile(r"<\|[^|>]*\|>")


class ComputeUnits(str, Enum):
    CPU = "cpu"
    AUTO = "auto"
    CUDA = "cuda"


@dataclass(frozen=True)
class ComputeOptions:
    """
    Where the model runs and at what precision.

    CTranslate2 places the whole model on one device, so ``encoder`` picks the
    device and ``decoder`` only picks the compute type: ``int8`` for cpu,
    ``float16`` for cuda, ``default`` for auto. A cuda decoder on a cpu
    device has no half precision to use and falls back to ``int8``.
    """

    encoder: ComputeUnits = ComputeUnits.AUTO
    decoder: ComputeUnits = ComputeUnits.AUTO
    worker_count: int = 1

    @property
    def device(self) -> str:
        return self.encoder.value

    @property
    def compute_type(self) -> str:
        if self.encoder == ComputeUnits.CPU and self.decoder == ComputeUnits.CUDA:
            return "int8"
        return {
            ComputeUnits.CPU: "int8",
            ComputeUnits.CUDA: "float16",
            ComputeUnits.AUTO: "default",
        }[self.decoder]


@dataclass(frozen=True)
class DecodingOptions:
    task: str = "transcribe"
    language: Optional[str] = "en"
    temperature: float = 0.0
    temperature_fallback_count: int = 5
    sample_length: int = 224
    use_prefill_prompt: bool = True
    use_prefill_cache: bool = True
    skip_special_tokens: bool = True
    without_timestamps: bool = False
    word_timestamps: bool = True
    clip_timestamps: Tuple[float, ...] = ()
    compression_ratio_threshold: float = 2.4
    logprob_threshold: float = -1.0
    use_vad: bool = True

    def temperatures(self) -> Tuple[float, ...]:
        steps = max(0, self.temperature_fallback_count)
        temps = [
            round(min(1.0, self.temperature + TEMPERATURE_INCREMENT * i), 2)
            for i in range(steps + 1)
        ]
        # Dedupe once the schedule saturates at 1.0
        return tuple(dict.fromkeys(temps))


@dataclass(frozen=True)
class TranscriptionProgress:
    window_id: int
    text: str
    fallbacks: int
    tokens: Tuple[int, ...] = ()
    avg_logprob: Optional[float] = None


@dataclass
class TranscriptionTimings:
    audio_duration: float = 0.0
    processing_time: float = 0.0
    total_tokens: int = 0
    total_fallbacks: int = 0
    windows: int = 0

    @property
    def real_time_factor(self) -> float:
        if self.processing_time <= 0:
            return 0.0
        return self.audio_duration / self.processing_time

    @property
    def tokens_per_second(self) -> float:
        if self.processing_time <= 0:
            return 0.0
        return self.total_tokens / self.processing_time


@dataclass
class TranscriptionResult:
    text: str
    segments: List[TranscriptSegment] = field(default_factory=list)
    language: Optional[str] = None
    timings: TranscriptionTimings = field(default_factory=TranscriptionTimings)


ProgressCallback = Callable[[TranscriptionProgress], Optional[bool]]
AudioInput = Union[np.ndarray, str]


def _clean_text(text: str, skip_special_tokens: bool) -> str:
    if skip_special_tokens:
        text = _SPECIAL_TOKEN_RE.sub("", text)
    return text


class WhisperRuntime:
    """
    A faster-whisper model handle.

    Created empty by :func:`load_runtime`; ``model_folder`` is set once the
    model files are available locally, then :meth:`prewarm` and
    :meth:`load_weights` make it ready to transcribe.
    """

    def __init__(self, compute: ComputeOptions, model_class):
        self.compute = compute
        self.model_folder: Optional[str] = None
        self._model_class = model_class
        self._prewarmed = None
        self._model = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def device(self) -> str:
        return self.compute.device

    def prewarm(self) -> None:
        if not self.model_folder:
            raise PrewarmError("No model folder set")

        logger.info(
            f"Prewarming {self.model_folder} on {self.compute.device} "
            f"({self.compute.compute_type})"
        )
        try:
            model = self._model_class(
                self.model_folder,
                device=self.compute.device,
                compute_type=self.compute.compute_type,
                num_workers=max(1, self.compute.worker_count),
            )
            silence = np.zeros(int(SAMPLE_RATE * WARMUP_SECONDS), dtype=np.float32)
            segments, _info = model.transcribe(silence, beam_size=1)
            for _ in segments:
                pass
        except Exception as e:
            raise PrewarmError(f"Failed to prewarm '{self.model_folder}': {e}") from e

        self._prewarmed = model

    def load_weights(self) -> None:
        if self._prewarmed is None:
            raise LoadError("Model must be prewarmed before loading")
        self._model = self._prewarmed
        self._prewarmed = None

    def unload(self) -> None:
        self._prewarmed = None
        self._model = None

    def transcribe(
        self,
        audio: AudioInput,
        options: DecodingOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranscriptionResult:
        if self._model is None:
            raise TranscribeError("Model not loaded")

        temperatures = options.temperatures()
        kwargs = dict(
            task=options.task,
            language=options.language,
            temperature=list(temperatures),
            max_new_tokens=options.sample_length,
            condition_on_previous_text=options.use_prefill_prompt,
            without_timestamps=options.without_timestamps,
            word_timestamps=options.word_timestamps,
            compression_ratio_threshold=options.compression_ratio_threshold,
            log_prob_threshold=options.logprob_threshold,
            vad_filter=options.use_vad,
        )
        if options.clip_timestamps:
            kwargs["clip_timestamps"] = list(options.clip_timestamps)

        start_time = time.time()
        timings = TranscriptionTimings()
        segments: List[TranscriptSegment] = []

        window_seek = None
        window_text = ""
        window_tokens: List[int] = []
        muted_seek = None

        try:
            raw_segments, info = self._model.transcribe(audio, **kwargs)
            timings.audio_duration = float(getattr(info, "duration", 0.0) or 0.0)

            for seg in raw_segments:
                if seg.seek != window_seek:
                    window_seek = seg.seek
                    window_text = ""
                    window_tokens = []
                    timings.windows += 1
                    temperature = getattr(seg, "temperature", None)
                    if temperature in temperatures:
                        timings.total_fallbacks += temperatures.index(temperature)

                text = _clean_text(seg.text, options.skip_special_tokens)
                window_text += text
                window_tokens.extend(seg.tokens)
                timings.total_tokens += len(seg.tokens)
                segments.append(
                    TranscriptSegment(start=seg.start, end=seg.end, text=text.strip())
                )

                # A window is fully decoded before it is yielded, so an early
                # stop only mutes further progress for it; its text is kept.
                if on_progress is None or seg.seek == muted_seek:
                    continue

                signal = on_progress(
                    TranscriptionProgress(
                        window_id=timings.windows - 1,
                        text=window_text.strip(),
                        fallbacks=timings.total_fallbacks,
                        tokens=tuple(window_tokens),
                        avg_logprob=seg.avg_logprob,
                    )
                )
                if signal is False:
                    logger.debug(f"Early stop requested for window at seek {seg.seek}")
                    muted_seek = seg.seek
        except TranscriptionCancelled:
            raise
        except Exception as e:
            raise TranscribeError(str(e)) from e

        timings.processing_time = time.time() - start_time
        text = " ".join(s.text for s in segments if s.text)
        return TranscriptionResult(
            text=text,
            segments=segments,
            language=getattr(info, "language", options.language),
            timings=timings,
        )


def load_runtime(compute: ComputeOptions) -> WhisperRuntime:
    """Construct an empty runtime for the given compute placement."""
    try:
        import ctranslate2
        from faster_whisper import WhisperModel
    except ImportError as e:
        raise InitError(f"Speech runtime is not installed: {e}") from e

    if compute.encoder == ComputeUnits.CUDA:
        if ctranslate2.get_cuda_device_count() == 0:
            raise InitError("CUDA compute requested but no CUDA device is available")

    return WhisperRuntime(compute, model_class=WhisperModel)
