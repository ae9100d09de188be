from .errors import (
    DownloadError,
    FileAccessError,
    InitError,
    LoadCancelled,
    LoadError,
    MurMurError,
    PrewarmError,
    TranscribeError,
    TranscriptionCancelled,
)
from .model_loader import ModelLoaderThread
from .model_manager import ModelManager, ModelState
from .progress import DecayingProgress, ProgressSimulator
from .runtime import (
    ComputeOptions,
    ComputeUnits,
    DecodingOptions,
    TranscriptionProgress,
    TranscriptionResult,
    WhisperRuntime,
    load_runtime,
)
from .transcriber import TranscriptionEngine
from .transcription_worker import FileTranscriptionWorker, LiveTranscriptionWorker

__all__ = [
    "ComputeOptions",
    "ComputeUnits",
    "DecayingProgress",
    "DecodingOptions",
    "DownloadError",
    "FileAccessError",
    "FileTranscriptionWorker",
    "InitError",
    "LiveTranscriptionWorker",
    "LoadCancelled",
    "LoadError",
    "ModelLoaderThread",
    "ModelManager",
    "ModelState",
    "MurMurError",
    "PrewarmError",
    "ProgressSimulator",
    "TranscribeError",
    "TranscriptionCancelled",
    "TranscriptionEngine",
    "TranscriptionProgress",
    "TranscriptionResult",
    "WhisperRuntime",
    "load_runtime",
]
