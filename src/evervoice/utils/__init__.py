from .logger import get_log_dir, get_logger, shutdown_logging
from .paths import get_config_dir, get_models_dir, get_recordings_dir

__all__ = [
    "get_logger",
    "get_log_dir",
    "shutdown_logging",
    "get_config_dir",
    "get_models_dir",
    "get_recordings_dir",
]
