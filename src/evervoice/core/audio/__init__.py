from .audio_processor import AudioChunkInfo, AudioProcessor, combine_transcriptions
from .devices import AudioDevice, DeviceCatalog, InputConfig
from .recorder import RecordingResult, RecordingSession, SessionState
from .resampler import FftFixedInResampler, ResampleError, resample
from .wav_export import WavExporter

__all__ = [
    "AudioChunkInfo",
    "AudioProcessor",
    "combine_transcriptions",
    "AudioDevice",
    "DeviceCatalog",
    "InputConfig",
    "RecordingResult",
    "RecordingSession",
    "SessionState",
    "FftFixedInResampler",
    "ResampleError",
    "resample",
    "WavExporter",
]
