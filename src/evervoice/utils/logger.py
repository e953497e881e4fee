"""
Application logging.

Every module logs through ``get_logger(__name__)``; records propagate up to
the ``evervoice`` logger, which owns a rotating file in the config
directory and, optionally, a stderr stream.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

ROOT_LOGGER_NAME = "evervoice"
LOG_FILE_NAME = "app.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_logger_instance: Optional[logging.Logger] = None


def get_log_dir() -> Path:
    from .paths import get_config_dir

    log_dir = get_config_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _build_handlers(level: int, to_console: bool) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [
        RotatingFileHandler(
            get_log_dir() / LOG_FILE_NAME,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
    ]
    if to_console:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def _configure_root() -> logging.Logger:
    from ..core.settings.config import LOG_TO_CONSOLE, get_log_level

    root = logging.getLogger(ROOT_LOGGER_NAME)
    # Already set up, e.g. by an embedding application.
    if root.handlers:
        return root

    level = get_log_level()
    root.setLevel(level)
    for handler in _build_handlers(level, LOG_TO_CONSOLE):
        root.addHandler(handler)
    root.propagate = False
    return root


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Logger for ``name``, configuring the application root on first use."""
    global _logger_instance

    if _logger_instance is None:
        _logger_instance = _configure_root()

    if name == ROOT_LOGGER_NAME:
        return _logger_instance
    return logging.getLogger(name)


def shutdown_logging() -> None:
    """Close the application's handlers so the log file is released."""
    global _logger_instance

    root = logging.getLogger(ROOT_LOGGER_NAME)
    while root.handlers:
        handler = root.handlers[0]
        root.removeHandler(handler)
        handler.close()
    _logger_instance = None
