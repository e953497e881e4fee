"""
Audio recording functionality.

Handles microphone input using the sounddevice library. One capture thread
owns the input stream: control calls are queued to it and the PortAudio
callback only hands copied blocks over, so buffering and level metering
never run on the audio thread.
"""

import queue
import shutil
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum, auto
from functools import partial
from typing import Any, Callable, List, Optional, Tuple

import numpy as np
import sounddevice as sd

from ...utils.logger import get_logger
from ..errors import (
    DeviceBusy,
    DeviceDisconnected,
    InsufficientSpace,
    NotRecording,
    PermissionDenied,
    StreamError,
    WavWriteError,
)
from ..settings import AudioSettings
from ..settings.config import MIN_RECORDING_DISK_SPACE_BYTES, TARGET_SAMPLE_RATE
from .devices import DeviceCatalog
from .resampler import resample
from .wav_export import WavExporter

logger = get_logger(__name__)

# PortAudio's paDeviceUnavailable
PA_DEVICE_UNAVAILABLE = -9985


class SessionState(Enum):
    IDLE = auto()
    RECORDING = auto()
    ERROR = auto()


@dataclass(frozen=True)
class RecordingResult:
    file_path: str
    duration_ms: int
    # Whether the caller should delete the file once it has been processed
    privacy_mode: bool


@dataclass
class _Command:
    fn: Callable[..., Any]
    args: Tuple[Any, ...]
    future: Future


@dataclass
class _StreamFinished:
    generation: int


_SHUTDOWN = object()


class RecordingSession:
    """
    Records audio from the microphone.

    Usage:
        session = RecordingSession(DeviceCatalog(), WavExporter())
        session.start_recording()
        # ... user speaks, UI polls session.get_level() ...
        result = session.stop_recording()
    """

    def __init__(
        self,
        catalog: Optional[DeviceCatalog] = None,
        exporter: Optional[WavExporter] = None,
        settings: Optional[AudioSettings] = None,
        target_sample_rate: int = TARGET_SAMPLE_RATE,
        queue_size: int = 256,
    ):
        """
        Initialize the recording session.

        Args:
            catalog: Device catalog used to resolve the input device
            exporter: Writes the finished recording to disk
            settings: Device selection, duration limit and privacy mode
            target_sample_rate: Rate recordings are converted to (model input rate)
            queue_size: Audio blocks buffered between the callback and the capture thread
        """
        self.catalog = catalog or DeviceCatalog()
        self.exporter = exporter or WavExporter(sample_rate=target_sample_rate)
        self.settings = settings or AudioSettings()
        self.target_sample_rate = target_sample_rate
        self.dropped_blocks = 0

        # State and latched error change together under one lock.
        self._status_lock = threading.Lock()
        self._state = SessionState.IDLE
        self._stream_error: Optional[str] = None
        self._level = 0

        # Only touched by the capture thread.
        self._stream: Optional[sd.InputStream] = None
        self._generation = 0
        self._samples: List[np.ndarray] = []
        self._source_sample_rate = target_sample_rate
        self._recording_start: Optional[float] = None

        self._inbox: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size)
        self._thread: Optional[threading.Thread] = None
        self._thread_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Control calls (any thread)
    # ------------------------------------------------------------------

    def start_recording(self) -> None:
        """
        Start recording. A no-op if a recording is already running.

        Raises:
            InsufficientSpace: Less than 100 MB free for recordings.
            NoDevicesFound, DeviceNotFound, NoDefaultDevice, ConfigError:
                The input device could not be resolved or configured.
            StreamError, DeviceBusy, PermissionDenied: The stream failed to open.
        """
        self._submit(self._start)

    def stop_recording(self) -> RecordingResult:
        """
        Stop recording and export the audio as a 16 kHz WAV file.

        Raises:
            NotRecording: If no recording is running.
            WavWriteError: If nothing was captured or the file cannot be written.
        """
        samples, source_rate, duration_ms = self._submit(self._stop)

        if len(samples) == 0:
            raise WavWriteError("No audio data recorded")

        logger.info(
            f"Recording stopped. {len(samples)} samples at {source_rate} Hz, "
            f"duration: {duration_ms}ms"
        )

        if source_rate != self.target_sample_rate:
            samples = resample(samples, source_rate, self.target_sample_rate)

        file_path = self.exporter.export(samples)

        return RecordingResult(
            file_path=str(file_path),
            duration_ms=duration_ms,
            privacy_mode=self.settings.privacy_mode,
        )

    def drain(self) -> None:
        """Block until every audio block queued so far has been processed."""
        self._submit(lambda: None)

    def close(self) -> None:
        """Release the input stream and stop the capture thread."""
        with self._thread_lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        self._inbox.put(_SHUTDOWN)
        thread.join(timeout=2.0)
        if thread.is_alive():
            logger.warning("Capture thread did not stop cleanly")

    # ------------------------------------------------------------------
    # Non-blocking status
    # ------------------------------------------------------------------

    def get_level(self) -> int:
        """Current input level, 0-100."""
        return self._level

    def is_recording(self) -> bool:
        return self._state is SessionState.RECORDING

    def get_state(self) -> SessionState:
        return self._state

    def get_stream_error(self) -> Optional[str]:
        with self._status_lock:
            return self._stream_error

    def has_stream_error(self) -> bool:
        return self.get_stream_error() is not None

    def clear_stream_error(self) -> None:
        with self._status_lock:
            self._stream_error = None
            if self._state is SessionState.ERROR:
                self._state = SessionState.IDLE

    def elapsed_ms(self) -> int:
        start = self._recording_start
        if not self.is_recording() or start is None:
            return 0
        return int((time.monotonic() - start) * 1000)

    def max_duration_reached(self) -> bool:
        limit_ms = self.settings.max_duration_minutes * 60 * 1000
        return self.elapsed_ms() >= limit_ms

    # ------------------------------------------------------------------
    # Capture thread
    # ------------------------------------------------------------------

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Any:
        if threading.current_thread() is self._thread:
            return fn(*args)

        self._ensure_thread()
        future: Future = Future()
        self._inbox.put(_Command(fn, args, future))
        return future.result()

    def _ensure_thread(self) -> None:
        with self._thread_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(
                target=self._run, name="CaptureThread", daemon=True
            )
            self._thread.start()

    def _run(self) -> None:
        while True:
            item = self._inbox.get()

            if item is _SHUTDOWN:
                if self.is_recording():
                    self._set_state(SessionState.IDLE)
                self._close_stream()
                return

            if isinstance(item, np.ndarray):
                self._consume_block(item)
            elif isinstance(item, _StreamFinished):
                if item.generation == self._generation and not self.is_recording():
                    self._close_stream()
            elif isinstance(item, _Command):
                if not item.future.set_running_or_notify_cancel():
                    continue
                try:
                    result = item.fn(*item.args)
                except Exception as e:
                    item.future.set_exception(e)
                else:
                    item.future.set_result(result)

    def _start(self) -> None:
        if self.is_recording():
            return

        self.clear_stream_error()
        self._check_disk_space()

        # A stream left behind by a failed recording must go before a new one opens.
        self._close_stream()

        device = self.catalog.resolve_device(self.settings.device_id)
        config = self.catalog.default_input_config(device)

        self._source_sample_rate = config.sample_rate
        logger.info(
            f"Starting recording on '{device.name}' with sample rate: "
            f"{config.sample_rate} Hz, {config.channels} channel(s)"
        )

        self._samples = []
        self._level = 0
        self.dropped_blocks = 0
        self._generation += 1

        self._set_state(SessionState.RECORDING)
        try:
            self._stream = sd.InputStream(
                samplerate=config.sample_rate,
                channels=config.channels,
                device=device.index,
                dtype="float32",
                callback=self._audio_callback,
                finished_callback=partial(self._on_stream_finished, self._generation),
            )
            self._stream.start()
        except sd.PortAudioError as e:
            self._set_state(SessionState.IDLE)
            self._close_stream()
            raise _classify_stream_error(e) from e
        except (ValueError, TypeError) as e:
            self._set_state(SessionState.IDLE)
            self._close_stream()
            raise StreamError(str(e)) from e

        self._recording_start = time.monotonic()
        logger.info("Recording started")

    def _stop(self) -> Tuple[np.ndarray, int, int]:
        if not self.is_recording():
            raise NotRecording()

        self._set_state(SessionState.IDLE)
        self._close_stream()

        duration_ms = 0
        if self._recording_start is not None:
            duration_ms = int((time.monotonic() - self._recording_start) * 1000)
        self._recording_start = None

        if self._samples:
            samples = np.concatenate(self._samples)
        else:
            samples = np.zeros(0, dtype=np.float32)

        if self.dropped_blocks:
            logger.warning(f"Dropped {self.dropped_blocks} audio blocks while recording")

        return samples, self._source_sample_rate, duration_ms

    def _consume_block(self, block: np.ndarray) -> None:
        if not self.is_recording():
            return

        mono = block.mean(axis=1) if block.ndim > 1 else block.reshape(-1)
        mono = mono.astype(np.float32, copy=False)
        if mono.size == 0:
            return

        self._samples.append(mono)

        rms = float(np.sqrt(np.mean(np.square(mono, dtype=np.float64))))
        if not np.isfinite(rms):
            rms = 0.0
        # x3 for better sensitivity
        self._level = int(min(rms * 100.0 * 3.0, 100.0))

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        except sd.PortAudioError as e:
            logger.warning(f"Failed to stop audio stream: {e}")
        try:
            stream.close()
        except sd.PortAudioError as e:
            logger.warning(f"Failed to close audio stream: {e}")

    def _check_disk_space(self) -> None:
        try:
            free = shutil.disk_usage(self.exporter.recordings_dir).free
        except OSError as e:
            logger.warning(f"Could not check disk space: {e}. Continuing anyway.")
            return

        if free < MIN_RECORDING_DISK_SPACE_BYTES:
            logger.warning(
                f"Insufficient disk space: {free // (1024 * 1024)} MB available, "
                f"{MIN_RECORDING_DISK_SPACE_BYTES // (1024 * 1024)} MB required"
            )
            raise InsufficientSpace(MIN_RECORDING_DISK_SPACE_BYTES, free)

        logger.debug(f"Disk space check passed: {free // (1024 * 1024)} MB available")

    def _set_state(self, state: SessionState, error: Optional[str] = None) -> None:
        with self._status_lock:
            self._state = state
            if error is not None:
                self._stream_error = error
        if state is not SessionState.RECORDING:
            self._level = 0

    # ------------------------------------------------------------------
    # PortAudio thread
    # ------------------------------------------------------------------

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            logger.debug(f"Audio stream status: {status}")
        if self._state is not SessionState.RECORDING:
            return
        try:
            self._inbox.put_nowait(indata.copy())
        except queue.Full:
            self.dropped_blocks += 1

    def _on_stream_finished(self, generation: int) -> None:
        with self._status_lock:
            if generation != self._generation or self._state is not SessionState.RECORDING:
                return
            message = str(DeviceDisconnected("audio stream stopped unexpectedly"))
            self._state = SessionState.ERROR
            self._stream_error = message
        self._level = 0
        logger.error(f"Audio stream error: {message}")

        try:
            self._inbox.put_nowait(_StreamFinished(generation))
        except queue.Full:
            # Disposed on the next start or close instead.
            pass


def _classify_stream_error(error: sd.PortAudioError) -> Exception:
    message = str(error.args[0]) if error.args else str(error)
    code = error.args[1] if len(error.args) > 1 else None

    if code == PA_DEVICE_UNAVAILABLE:
        return DeviceBusy(message)
    lowered = message.lower()
    if "permission" in lowered or "not authorized" in lowered:
        return PermissionDenied(message)
    return StreamError(message)
