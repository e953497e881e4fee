from .settings import AudioSettings, Language, Settings, TranscriptionSettings

__all__ = [
    "AudioSettings",
    "Language",
    "Settings",
    "TranscriptionSettings",
]
