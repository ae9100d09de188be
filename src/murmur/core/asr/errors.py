"""
Error taxonomy for model acquisition and transcription.

Every failure raised across the runtime boundary is one of these, so callers
can decide retry and reporting behaviour by type alone.
"""


class MurMurError(Exception):
    """Base class for all application errors."""


class InitError(MurMurError):
    """The speech runtime could not be constructed."""


class DownloadError(MurMurError):
    """A model repository could not be fetched."""


class PrewarmError(MurMurError):
    """Device specialization of a downloaded model failed."""


class LoadError(MurMurError):
    """Prewarmed weights could not be attached to the runtime."""


class TranscribeError(MurMurError):
    """Decoding an audio buffer or file failed."""


class FileAccessError(MurMurError):
    """The local model cache could not be read or modified."""


class LoadCancelled(MurMurError):
    """A model load was superseded by a newer one."""


class TranscriptionCancelled(MurMurError):
    """The user cancelled a running transcription."""
