"""
Settings management with JSON persistence.

Holds the capture and transcription preferences the core consumes.
Uses platformdirs for cross-platform directory resolution.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ...utils.logger import get_logger
from ...utils.paths import get_config_dir

logger = get_logger(__name__)

SETTINGS_FILE = "settings.json"


class Language(str, Enum):
    AUTO = "auto"
    GERMAN = "de"
    ENGLISH = "en"

    @property
    def code(self) -> Optional[str]:
        """Language code passed to the model, or None to auto-detect."""
        if self is Language.AUTO:
            return None
        return self.value


class AudioSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=False)

    device_id: Optional[str] = None
    max_duration_minutes: int = Field(default=6, ge=1, le=10)
    privacy_mode: bool = True


class TranscriptionSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=False)

    model: str = "small"
    language: Language = Language.AUTO
    use_gpu: bool = False

    @field_validator("model")
    @classmethod
    def model_is_known(cls, v):
        from ..asr.model_registry import get_model_by_name

        if get_model_by_name(v) is None:
            raise ValueError(f"unknown model '{v}'")
        return v


class Settings(BaseModel):
    model_config = ConfigDict(validate_assignment=False)

    audio: AudioSettings = Field(default_factory=AudioSettings)
    transcription: TranscriptionSettings = Field(
        default_factory=TranscriptionSettings
    )

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Settings":
        config_file = path or get_config_dir() / SETTINGS_FILE

        if not config_file.exists():
            return cls()

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not load settings: {e}. Using defaults.")
            return cls()

        if not isinstance(data, dict):
            logger.warning("Settings file is not a JSON object. Using defaults.")
            return cls()

        return cls(
            audio=_load_section(AudioSettings, data.get("audio")),
            transcription=_load_section(
                TranscriptionSettings, data.get("transcription")
            ),
        )

    def save(self, path: Optional[Path] = None) -> None:
        config_file = path or get_config_dir() / SETTINGS_FILE

        with open(config_file, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)


def _load_section(model_cls, data):
    """Validate a settings section field by field, keeping defaults for bad values."""
    defaults = model_cls()
    if not isinstance(data, dict):
        return defaults

    result = {}
    for field_name in model_cls.model_fields:
        if field_name not in data:
            continue
        try:
            model_cls.model_validate(
                {**defaults.model_dump(), field_name: data[field_name]}
            )
            result[field_name] = data[field_name]
        except ValidationError:
            logger.warning(
                f"Invalid {field_name} {data[field_name]!r}, "
                f"resetting to {getattr(defaults, field_name)!r}"
            )

    return model_cls.model_validate({**defaults.model_dump(), **result})
