"""
Model storage: status, streaming download, and deletion.

Archives are streamed to a ``.downloading`` temp file next to the models,
hashed while they arrive, and unpacked into a ``.extracting`` staging
directory. The model directory only appears at its final path through a
single rename once everything has succeeded.
"""

import hashlib
import os
import shutil
import tarfile
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Union

import psutil
import requests

from ...utils.logger import get_logger
from ...utils.paths import get_models_dir
from ..errors import (
    DownloadCancelled,
    DownloadError,
    HashVerificationFailed,
    InsufficientSpace,
    ModelError,
)
from ..settings.config import (
    DOWNLOAD_CHUNK_SIZE,
    DOWNLOAD_TIMEOUT_SECONDS,
    PROGRESS_INTERVAL_SECONDS,
)
from .file_utils import directory_size, is_valid_whisper_model
from .model_registry import AVAILABLE_MODELS, ModelDescriptor

logger = get_logger(__name__)

GB = 1024 * 1024 * 1024


@dataclass
class DownloadProgress:
    model: str
    downloaded_bytes: int = 0
    total_bytes: int = 0
    speed_bytes_per_sec: float = 0.0
    complete: bool = False
    error: Optional[str] = None


@dataclass
class ModelStatus:
    model: str
    downloaded: bool
    file_size: Optional[int]
    loaded: bool
    downloading: bool


class ModelStore:
    """
    Owns the models directory and the one download that may run at a time.

    Usage:
        store = ModelStore()
        future = store.start_download(SMALL)
        while not future.done():
            progress = store.get_download_progress()
        ...
        store.cancel_download()
    """

    def __init__(self, models_dir: Optional[Union[str, Path]] = None):
        self._models_dir = Path(models_dir) if models_dir else None
        self._lock = threading.Lock()
        self._progress: Optional[DownloadProgress] = None
        self._cancelled = threading.Event()
        self._active = False

    @property
    def models_dir(self) -> Path:
        if self._models_dir is None:
            return get_models_dir()
        self._models_dir.mkdir(parents=True, exist_ok=True)
        return self._models_dir

    def get_model_path(self, descriptor: ModelDescriptor) -> Path:
        return self.models_dir / descriptor.model_dir_name

    def is_model_downloaded(self, descriptor: ModelDescriptor) -> bool:
        return is_valid_whisper_model(self.get_model_path(descriptor))

    def meets_memory_requirement(self, descriptor: ModelDescriptor) -> bool:
        total = psutil.virtual_memory().total
        return total >= descriptor.min_ram_gb * GB

    def get_download_progress(self) -> Optional[DownloadProgress]:
        with self._lock:
            return replace(self._progress) if self._progress else None

    def is_downloading(self) -> bool:
        with self._lock:
            return self._active

    def get_all_model_status(
        self, loaded_model: Optional[str] = None
    ) -> List[ModelStatus]:
        progress = self.get_download_progress()

        statuses = []
        for descriptor in AVAILABLE_MODELS:
            downloaded = self.is_model_downloaded(descriptor)
            statuses.append(
                ModelStatus(
                    model=descriptor.name,
                    downloaded=downloaded,
                    file_size=(
                        directory_size(self.get_model_path(descriptor))
                        if downloaded
                        else None
                    ),
                    loaded=loaded_model == descriptor.name,
                    downloading=(
                        progress is not None
                        and progress.model == descriptor.name
                        and not progress.complete
                        and progress.error is None
                    ),
                )
            )
        return statuses

    def cancel_download(self) -> None:
        self._cancelled.set()
        logger.info("Download cancellation requested")

    def start_download(self, descriptor: ModelDescriptor) -> "Future[Path]":
        """Run download_model on a background thread."""
        future: "Future[Path]" = Future()
        self._reset_cancel()

        def run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self._download(descriptor))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(
            target=run, name=f"download-{descriptor.name}", daemon=True
        ).start()
        return future

    def download_model(self, descriptor: ModelDescriptor) -> Path:
        """
        Download, verify and install a model. Blocks until done.

        Returns:
            Path of the installed model directory.

        Raises:
            InsufficientSpace: Less than twice the model size is free.
            DownloadCancelled: cancel_download() was called mid-stream.
            HashVerificationFailed: The archive digest does not match.
            DownloadError: Any other failure.
        """
        self._reset_cancel()
        return self._download(descriptor)

    def _download(self, descriptor: ModelDescriptor) -> Path:
        models_dir = self.models_dir
        self._check_disk_space(models_dir, descriptor)

        with self._lock:
            if self._active:
                raise DownloadError("Another download is already in progress")
            self._active = True
            self._progress = DownloadProgress(
                model=descriptor.name, total_bytes=descriptor.expected_size
            )

        temp_path = models_dir / f"{descriptor.file_name}.downloading"
        staging_dir = models_dir / f"{descriptor.model_dir_name}.extracting"

        try:
            self._fetch(descriptor, temp_path)
            final_path = self._install(descriptor, temp_path, staging_dir)
        except DownloadCancelled:
            self._remove_partial(temp_path, staging_dir)
            with self._lock:
                self._progress = None
            raise
        except (HashVerificationFailed, DownloadError) as e:
            self._remove_partial(temp_path, staging_dir)
            self._record_error(str(e))
            raise
        except (requests.RequestException, OSError, tarfile.TarError) as e:
            self._remove_partial(temp_path, staging_dir)
            self._record_error(str(e))
            logger.error(f"Download of {descriptor.name} failed: {e}")
            raise DownloadError(str(e)) from e
        except Exception as e:
            self._remove_partial(temp_path, staging_dir)
            self._record_error(str(e))
            logger.exception(f"Unexpected failure downloading {descriptor.name}")
            raise DownloadError(str(e)) from e
        finally:
            with self._lock:
                self._active = False

        with self._lock:
            if self._progress is not None:
                self._progress.complete = True

        logger.info(f"Model {descriptor.name} installed at {final_path}")
        return final_path

    def delete_model(self, descriptor: ModelDescriptor) -> None:
        model_path = self.get_model_path(descriptor)
        if not model_path.exists():
            return
        try:
            shutil.rmtree(model_path)
        except OSError as e:
            raise ModelError(f"Failed to delete model: {e}") from e
        logger.info(f"Deleted model {descriptor.name}")

    def _check_disk_space(self, models_dir: Path, descriptor: ModelDescriptor) -> None:
        try:
            free = shutil.disk_usage(models_dir).free
        except OSError as e:
            raise DownloadError(f"Could not check disk space: {e}") from e

        required = descriptor.expected_size * 2
        if free < required:
            raise InsufficientSpace(required, free)

    def _fetch(self, descriptor: ModelDescriptor, temp_path: Path) -> None:
        logger.info(f"Downloading model from {descriptor.url}")

        response = requests.get(
            descriptor.url, stream=True, timeout=DOWNLOAD_TIMEOUT_SECONDS
        )
        try:
            response.raise_for_status()

            try:
                total = int(response.headers.get("content-length", 0))
            except ValueError:
                logger.warning(
                    f"Ignoring bad content-length: {response.headers.get('content-length')}"
                )
                total = 0
            if total > 0:
                with self._lock:
                    self._progress.total_bytes = total

            hasher = hashlib.sha256()
            downloaded = 0
            start = time.monotonic()
            last_publish = start

            with open(temp_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if self._cancelled.is_set():
                        logger.info("Download cancelled")
                        raise DownloadCancelled()
                    if not chunk:
                        continue

                    f.write(chunk)
                    hasher.update(chunk)
                    downloaded += len(chunk)

                    now = time.monotonic()
                    if now - last_publish >= PROGRESS_INTERVAL_SECONDS:
                        last_publish = now
                        self._publish(downloaded, now - start)

            self._publish(downloaded, time.monotonic() - start)
        finally:
            response.close()

        digest = hasher.hexdigest()
        expected = descriptor.expected_hash_prefix
        logger.info(f"SHA256: {digest} (expected prefix: {expected})")
        if expected and not digest.startswith(expected.lower()):
            raise HashVerificationFailed(expected, digest)

    def _install(
        self, descriptor: ModelDescriptor, temp_path: Path, staging_dir: Path
    ) -> Path:
        if staging_dir.exists():
            shutil.rmtree(staging_dir)
        staging_dir.mkdir(parents=True)

        logger.info(f"Extracting {temp_path.name}")
        with tarfile.open(temp_path, "r:bz2") as tar:
            tar.extractall(path=staging_dir, filter="data")

        extracted = staging_dir / descriptor.model_dir_name
        if not extracted.is_dir():
            extracted = staging_dir
        if not is_valid_whisper_model(extracted):
            raise DownloadError(
                f"Archive {descriptor.file_name} does not contain a Whisper model"
            )

        final_path = self.get_model_path(descriptor)
        if final_path.exists():
            shutil.rmtree(final_path)
        os.replace(extracted, final_path)

        if staging_dir.exists():
            shutil.rmtree(staging_dir)
        temp_path.unlink()
        return final_path

    def _reset_cancel(self) -> None:
        # A running download keeps its pending cancel request.
        with self._lock:
            if not self._active:
                self._cancelled.clear()

    def _publish(self, downloaded: int, elapsed: float) -> None:
        with self._lock:
            if self._progress is None:
                return
            self._progress.downloaded_bytes = downloaded
            if elapsed > 0:
                self._progress.speed_bytes_per_sec = downloaded / elapsed

    def _record_error(self, message: str) -> None:
        with self._lock:
            if self._progress is not None:
                self._progress.error = message

    @staticmethod
    def _remove_partial(temp_path: Path, staging_dir: Path) -> None:
        try:
            if temp_path.exists():
                temp_path.unlink()
            if staging_dir.exists():
                shutil.rmtree(staging_dir)
        except OSError as e:
            logger.warning(f"Could not remove partial download: {e}")
