from pathlib import Path

from platformdirs import user_cache_path, user_config_path, user_data_path

APP_NAME = "EverVoice"


def get_config_dir() -> Path:
    return user_config_path(APP_NAME, appauthor=False, ensure_exists=True)


def get_models_dir() -> Path:
    models_dir = user_data_path(APP_NAME, appauthor=False) / "models"
    models_dir.mkdir(parents=True, exist_ok=True)
    return models_dir


def get_recordings_dir() -> Path:
    recordings_dir = user_cache_path(APP_NAME, appauthor=False) / "recordings"
    recordings_dir.mkdir(parents=True, exist_ok=True)
    return recordings_dir
