from .recorder import AudioDevice, AudioRecorder, is_voice_detected

__all__ = ["AudioDevice", "AudioRecorder", "is_voice_detected"]
