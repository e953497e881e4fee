"""
WAV export and recordings directory management.

Recordings are written as mono 16-bit PCM at the model sample rate into a
managed cache directory. Deleting (or transcribing) a recording is only
allowed for paths that resolve inside that directory.
"""

import time
import uuid
from pathlib import Path
from typing import Optional, Union

import numpy as np
import scipy.io.wavfile as wav

from ...utils.logger import get_logger
from ...utils.paths import get_recordings_dir
from ..errors import UnsafePathError, WavWriteError
from ..settings.config import RECORDING_MAX_AGE_SECONDS, TARGET_SAMPLE_RATE

logger = get_logger(__name__)


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    clamped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clamped * np.iinfo(np.int16).max).astype(np.int16)


class WavExporter:
    """
    Writes recordings into the managed recordings directory.

    Usage:
        exporter = WavExporter()
        path = exporter.export(samples)
        ...
        exporter.delete_recording(path)
    """

    def __init__(
        self,
        recordings_dir: Optional[Union[str, Path]] = None,
        sample_rate: int = TARGET_SAMPLE_RATE,
    ):
        self._recordings_dir = Path(recordings_dir) if recordings_dir else None
        self.sample_rate = sample_rate

    @property
    def recordings_dir(self) -> Path:
        if self._recordings_dir is None:
            return get_recordings_dir()
        self._recordings_dir.mkdir(parents=True, exist_ok=True)
        return self._recordings_dir

    def export(self, samples: np.ndarray) -> Path:
        """
        Encode float samples as a 16-bit PCM mono WAV file.

        Returns:
            Path of the written file.

        Raises:
            WavWriteError: If the file cannot be written.
        """
        try:
            file_path = self.recordings_dir / f"{uuid.uuid4()}.wav"
            wav.write(str(file_path), self.sample_rate, float_to_pcm16(samples))
        except (OSError, ValueError) as e:
            raise WavWriteError(str(e)) from e

        logger.info(f"Recording exported to: {file_path}")
        return file_path

    def resolve_recording(self, file_path: Union[str, Path]) -> Path:
        """
        Canonicalize a recording path and confirm it lies in the recordings directory.

        Raises:
            UnsafePathError: If the path resolves outside the recordings directory.
            WavWriteError: If the path does not exist.
        """
        try:
            recordings_dir = self.recordings_dir.resolve(strict=True)
        except OSError as e:
            raise WavWriteError(f"Failed to get recordings dir: {e}") from e

        # Non-strict resolution follows ".." and symlinks without opening the target.
        canonical = Path(file_path).resolve()

        if canonical == recordings_dir or not canonical.is_relative_to(recordings_dir):
            logger.warning(
                f"Security: Blocked access to file outside recordings dir: {file_path}"
            )
            raise UnsafePathError(str(file_path))

        if not canonical.is_file():
            raise WavWriteError(f"Invalid path: {file_path} does not exist")

        return canonical

    def delete_recording(self, file_path: Union[str, Path]) -> None:
        """Delete a recording (privacy mode). Only files in the recordings dir."""
        canonical = self.resolve_recording(file_path)
        try:
            canonical.unlink()
        except OSError as e:
            raise WavWriteError(f"Failed to delete file: {e}") from e
        logger.info(f"Recording deleted: {file_path}")

    def cleanup_old_recordings(
        self, max_age_seconds: float = RECORDING_MAX_AGE_SECONDS
    ) -> int:
        """
        Delete recordings older than max_age_seconds. Best-effort.

        Returns:
            Number of files removed.
        """
        removed = 0
        now = time.time()
        try:
            entries = list(self.recordings_dir.iterdir())
        except OSError as e:
            logger.warning(f"Could not scan recordings dir: {e}")
            return 0

        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                if now - entry.stat().st_mtime > max_age_seconds:
                    entry.unlink()
                    removed += 1
                    logger.info(f"Cleaned up old recording: {entry}")
            except OSError as e:
                logger.debug(f"Could not clean up {entry}: {e}")

        return removed
