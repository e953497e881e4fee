"""
Exception types raised by the capture, model and transcription subsystems.

Every expected failure mode surfaces as one of these so callers can react
without the process going down.
"""

from typing import Optional


class EverVoiceError(Exception):
    """Base class for all errors raised by the core."""


class InsufficientSpace(EverVoiceError):
    def __init__(self, required_bytes: int = 0, available_bytes: int = 0):
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        super().__init__(
            f"Insufficient disk space: {available_bytes // (1024 * 1024)} MB available, "
            f"{required_bytes // (1024 * 1024)} MB required"
        )


class UnsafePathError(EverVoiceError):
    """A path resolved outside the managed recordings directory."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"Security error: {path} is outside the recordings directory"
        )


# =============================================================================
# Capture
# =============================================================================


class AudioError(EverVoiceError):
    pass


class NoDevicesFound(AudioError):
    def __init__(self):
        super().__init__("No audio input devices found")


class DeviceNotFound(AudioError):
    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(f"Device not found: {device_id}")


class NoDefaultDevice(AudioError):
    def __init__(self):
        super().__init__("Failed to get default input device")


class ConfigError(AudioError):
    def __init__(self, detail: str):
        super().__init__(f"Failed to get device config: {detail}")


class StreamError(AudioError):
    def __init__(self, detail: str):
        super().__init__(f"Failed to build audio stream: {detail}")


class DeviceDisconnected(AudioError):
    def __init__(self, detail: Optional[str] = None):
        message = "Microphone disconnected during recording"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PermissionDenied(AudioError):
    def __init__(self, detail: Optional[str] = None):
        message = "Microphone permission denied"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DeviceBusy(AudioError):
    def __init__(self, detail: Optional[str] = None):
        message = "Microphone in use by another application"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NotRecording(AudioError):
    def __init__(self):
        super().__init__("Recording not started")


class WavWriteError(AudioError):
    def __init__(self, detail: str):
        super().__init__(f"Failed to write WAV file: {detail}")


# =============================================================================
# Models
# =============================================================================


class ModelError(EverVoiceError):
    pass


class ModelNotDownloaded(ModelError):
    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"Model not downloaded: {model_name}")


class ModelLoadError(ModelError):
    def __init__(self, detail: str):
        super().__init__(f"Failed to load model: {detail}")


class DownloadError(ModelError):
    def __init__(self, detail: str):
        super().__init__(f"Download failed: {detail}")


class DownloadCancelled(ModelError):
    def __init__(self):
        super().__init__("Download cancelled")


class HashVerificationFailed(ModelError):
    def __init__(self, expected_prefix: str, actual: str):
        self.expected_prefix = expected_prefix
        self.actual = actual
        super().__init__(
            f"Hash verification failed: expected {expected_prefix}..., got {actual[:16]}..."
        )


# =============================================================================
# Transcription
# =============================================================================


class TranscriptionError(EverVoiceError):
    def __init__(self, detail: str):
        super().__init__(f"Transcription failed: {detail}")


class InvalidAudioFile(TranscriptionError):
    def __init__(self, detail: str):
        EverVoiceError.__init__(self, f"Invalid audio file: {detail}")
