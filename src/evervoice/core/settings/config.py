"""
Centralized application configuration.

Edit the variables below to configure development settings.
"""

import logging
import os

# =============================================================================
# DEVELOPMENT SETTINGS - Edit these for local development
# =============================================================================
LOG_LEVEL = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
LOG_TO_CONSOLE = True  # Set to True to output logs to terminal
# =============================================================================

# =============================================================================
# AUDIO SETTINGS
# =============================================================================
TARGET_SAMPLE_RATE = 16000  # Sample rate required by the speech models
MIN_RECORDING_DISK_SPACE_BYTES = 100 * 1024 * 1024  # 100 MB
RECORDING_MAX_AGE_SECONDS = 3600  # Stale recordings are purged after 1 hour
# =============================================================================

# =============================================================================
# DOWNLOAD SETTINGS
# =============================================================================
DOWNLOAD_TIMEOUT_SECONDS = 30
DOWNLOAD_CHUNK_SIZE = 64 * 1024
PROGRESS_INTERVAL_SECONDS = 0.1
# =============================================================================


def get_log_level() -> int:
    """Get the logging level as an integer."""
    level = os.environ.get("EVERVOICE_LOG_LEVEL", LOG_LEVEL)
    return getattr(logging, level.upper(), logging.INFO)
