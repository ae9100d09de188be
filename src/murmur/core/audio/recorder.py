import math
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np
import sounddevice as sd

from ...utils.logger import get_logger

logger = get_logger(__name__)

WHISPER_SAMPLE_RATE = 16000
BUFFER_SECONDS = 0.1
SILENCE_FLOOR_DB = -80.0
NOISE_FLOOR_FRAMES = 20


@dataclass
class AudioDevice:
    name: str
    index: int
    channels: int
    default_sample_rate: float


def energy_db(frame: np.ndarray) -> float:
    if frame.size == 0:
        return SILENCE_FLOOR_DB
    rms = float(np.sqrt(np.mean(np.square(frame, dtype=np.float64))))
    if rms <= 0.0:
        return SILENCE_FLOOR_DB
    return max(SILENCE_FLOOR_DB, 20.0 * math.log10(rms))


def relative_energy(history: Sequence[float], value: float) -> float:
    """Scale a frame energy (dB) between the recent noise floor and full scale."""
    quietest = sorted(history)[:NOISE_FLOOR_FRAMES] or [SILENCE_FLOOR_DB]
    floor = sum(quietest) / len(quietest)
    if floor >= 0.0:
        return 0.0
    return min(1.0, max(0.0, (value - floor) / -floor))


def is_voice_detected(
    energies: Sequence[float], next_buffer_seconds: float, silence_threshold: float
) -> bool:
    """True if any buffer in the newest ``next_buffer_seconds`` is above the threshold."""
    if next_buffer_seconds <= 0 or not energies:
        return False
    count = max(1, math.ceil(next_buffer_seconds / BUFFER_SECONDS))
    return any(e > silence_threshold for e in energies[-count:])


def resample(audio: np.ndarray, source_rate: float, target_rate: int) -> np.ndarray:
    if audio.size == 0 or int(source_rate) == target_rate:
        return audio.astype(np.float32, copy=False)
    duration = audio.shape[0] / source_rate
    target_len = int(round(duration * target_rate))
    source_times = np.arange(audio.shape[0]) / source_rate
    target_times = np.arange(target_len) / target_rate
    return np.interp(target_times, source_times, audio).astype(np.float32)


class AudioRecorder:
    """
    Microphone capture for live transcription.

    Audio is buffered in the sounddevice callback thread; :meth:`snapshot`
    returns everything captured so far as 16 kHz mono float32 without
    stopping the stream.
    """

    def __init__(
        self,
        sample_rate: int = WHISPER_SAMPLE_RATE,
        channels: int = 1,
        device: Optional[str] = None,
        on_audio_level: Optional[Callable[[float], None]] = None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.device = device
        self.on_audio_level = on_audio_level

        self._lock = threading.Lock()
        self._stream: Optional[sd.InputStream] = None
        self._frames: List[np.ndarray] = []
        self._levels_db: List[float] = []
        self._levels_relative: List[float] = []
        self._active = False
        self._error: Optional[str] = None

    @property
    def is_recording(self) -> bool:
        return self._active

    @property
    def last_error(self) -> Optional[str]:
        return self._error

    @property
    def relative_energy(self) -> List[float]:
        """Per-buffer energy scaled to [0, 1], oldest first."""
        with self._lock:
            return list(self._levels_relative)

    def start(self) -> bool:
        if self._active:
            return True

        self._reset_buffers()
        self._error = None

        try:
            stream = sd.InputStream(
                samplerate=float(self.sample_rate),
                channels=self.channels,
                device=self._resolve_device(),
                blocksize=int(self.sample_rate * BUFFER_SECONDS),
                dtype="float32",
                callback=self._audio_callback,
            )
            stream.start()
        except sd.PortAudioError as e:
            self._error = f"Audio device error: {e}"
            logger.error(self._error)
            return False

        self._stream = stream
        self._active = True
        logger.info(f"Recording started at {self.sample_rate} Hz")
        return True

    def stop(self) -> Optional[np.ndarray]:
        if not self._active:
            return None
        self._active = False

        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()

        audio = self.snapshot()
        logger.info(f"Recording stopped: {audio.shape[0] / WHISPER_SAMPLE_RATE:.1f}s")
        return audio if audio.size else None

    def snapshot(self) -> np.ndarray:
        with self._lock:
            frames = list(self._frames)
        if not frames:
            return np.zeros(0, dtype=np.float32)

        audio = np.concatenate(frames, axis=0)
        if audio.ndim > 1:
            audio = audio.mean(axis=1)
        return resample(audio, self.sample_rate, WHISPER_SAMPLE_RATE)

    def _reset_buffers(self) -> None:
        with self._lock:
            self._frames = []
            self._levels_db = []
            self._levels_relative = []

    def _audio_callback(self, indata: np.ndarray, frames: int, time, status) -> None:
        if status:
            logger.debug(f"Audio callback status: {status}")
        if not self._active:
            return

        chunk = indata.copy()
        level = energy_db(chunk)
        with self._lock:
            self._frames.append(chunk)
            self._levels_db.append(level)
            self._levels_relative.append(relative_energy(self._levels_db, level))

        if self.on_audio_level is not None:
            self.on_audio_level(min(1.0, float(np.abs(indata).mean()) * 10))

    def _resolve_device(self) -> Optional[int]:
        if self.device is None:
            return None

        index = next((d.index for d in self.list_devices() if d.name == self.device), None)
        if index is None:
            logger.warning(f"Input device {self.device!r} not found, using default")
        return index

    @staticmethod
    def list_devices() -> List[AudioDevice]:
        """Input-capable devices as reported by PortAudio."""
        return [
            AudioDevice(
                name=info["name"],
                index=index,
                channels=info["max_input_channels"],
                default_sample_rate=info["default_samplerate"],
            )
            for index, info in enumerate(sd.query_devices())
            if info["max_input_channels"] > 0
        ]
