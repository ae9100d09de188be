"""MurMur - menu-bar transcription with an on-device Whisper runtime."""

__app_name__ = "MurMur"
__version__ = "0.3.0"
