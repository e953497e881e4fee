"""
Transcription engine for recorded WAV files.

Owns the single inference context. Loads the configured model on demand,
reads and normalizes the WAV file, splits long audio at silences, and
decodes each segment with a fresh stream.
Reports progress through an optional state-change callback.
"""

import gc
import time
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import numpy as np
import scipy.io.wavfile as wavfile

from ...utils.logger import get_logger
from ..audio.audio_processor import AudioProcessor, combine_transcriptions
from ..audio.wav_export import WavExporter
from ..errors import (
    InvalidAudioFile,
    ModelLoadError,
    ModelNotDownloaded,
    TranscriptionError,
    WavWriteError,
)
from ..settings import Settings
from ..settings.config import TARGET_SAMPLE_RATE
from .backends import SherpaOnnxBackend
from .model_registry import DEFAULT_MODEL, ModelDescriptor, get_model_by_name
from .model_store import ModelStore

logger = get_logger(__name__)


class EngineState(Enum):
    NOT_LOADED = auto()
    LOADING = auto()
    READY = auto()
    PROCESSING = auto()
    ERROR = auto()


@dataclass(frozen=True)
class TranscriptionSegment:
    text: str
    start_ms: int
    end_ms: int


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    language: str
    segments: List[TranscriptionSegment]
    processing_time_ms: int


def read_wav(file_path: Union[str, Path]) -> Tuple[np.ndarray, int]:
    """
    Read a WAV file as mono float32 samples in [-1, 1].

    Raises:
        InvalidAudioFile: If the file is missing, malformed, or has no samples.
    """
    try:
        sample_rate, data = wavfile.read(str(file_path))
    except (OSError, ValueError, EOFError) as e:
        raise InvalidAudioFile(str(e)) from e

    if data.dtype == np.uint8:
        audio = (data.astype(np.float32) - 128.0) / 128.0
    elif data.dtype == np.int16:
        audio = data.astype(np.float32) / 32768.0
    elif data.dtype == np.int32:
        audio = data.astype(np.float32) / 2147483648.0
    elif np.issubdtype(data.dtype, np.floating):
        audio = data.astype(np.float32)
    else:
        raise InvalidAudioFile(f"unsupported sample format {data.dtype}")

    if audio.ndim > 1:
        audio = audio.mean(axis=1)

    if audio.size == 0:
        raise InvalidAudioFile("file contains no audio samples")

    if sample_rate != TARGET_SAMPLE_RATE:
        logger.warning(
            f"Audio is {sample_rate} Hz, expected {TARGET_SAMPLE_RATE} Hz"
        )

    return audio, int(sample_rate)


class TranscriptionEngine:
    """
    Loads one speech model at a time and transcribes WAV files with it.

    Calls are not thread-safe; the caller serializes them.

    Example:
        engine = TranscriptionEngine(ModelStore(), settings=Settings.load())
        result = engine.transcribe(recording.file_path)
    """

    def __init__(
        self,
        model_store: ModelStore,
        settings: Optional[Settings] = None,
        recordings_guard: Optional[WavExporter] = None,
        backend_factory: Callable[[], SherpaOnnxBackend] = SherpaOnnxBackend,
        on_state_change: Optional[Callable[[EngineState, str], None]] = None,
    ):
        """
        Args:
            model_store: Where downloaded models live
            settings: Model, language and GPU preferences
            recordings_guard: Only files inside its recordings directory may
                be transcribed; defaults to the managed recordings directory
            backend_factory: Builds an inference backend per loaded model
            on_state_change: Callback for state changes (state, message)
        """
        self.model_store = model_store
        self.settings = settings or Settings()
        self.recordings_guard = recordings_guard or WavExporter()
        self.on_state_change = on_state_change

        self._backend_factory = backend_factory
        self._backend: Optional[SherpaOnnxBackend] = None
        self._loaded_model: Optional[ModelDescriptor] = None
        self._state = EngineState.NOT_LOADED
        self._audio_processor = AudioProcessor()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def loaded_model(self) -> Optional[ModelDescriptor]:
        if self.is_model_loaded():
            return self._loaded_model
        return None

    def is_model_loaded(self) -> bool:
        return self._backend is not None and self._backend.is_loaded

    def _set_state(self, state: EngineState, message: str = "") -> None:
        self._state = state
        if self.on_state_change:
            self.on_state_change(state, message)

    def _configured_model(self) -> ModelDescriptor:
        return get_model_by_name(self.settings.transcription.model) or DEFAULT_MODEL

    def load_model(self, descriptor: Optional[ModelDescriptor] = None) -> None:
        """
        Load a model, replacing any loaded one.

        Args:
            descriptor: Model to load, or None for the configured model.

        Raises:
            ModelNotDownloaded: If the model is not in the store.
            ModelLoadError: If the recognizer cannot be built.
        """
        descriptor = descriptor or self._configured_model()

        if self.is_model_loaded() and self._loaded_model == descriptor:
            return

        if not self.model_store.is_model_downloaded(descriptor):
            raise ModelNotDownloaded(descriptor.name)

        if not self.model_store.meets_memory_requirement(descriptor):
            logger.warning(
                f"Model {descriptor.name} recommends {descriptor.min_ram_gb} GB RAM; "
                "loading anyway"
            )

        self._discard_context()

        self._set_state(EngineState.LOADING, f"Loading model: {descriptor.name}...")
        start_time = time.monotonic()

        transcription = self.settings.transcription
        backend = self._backend_factory()
        try:
            backend.load(
                self.model_store.get_model_path(descriptor),
                language=transcription.language.code,
                use_gpu=transcription.use_gpu,
            )
        except Exception as e:
            self._set_state(EngineState.ERROR, f"Failed to load model: {e}")
            raise ModelLoadError(str(e)) from e

        self._backend = backend
        self._loaded_model = descriptor

        logger.info(
            f"Model {descriptor.name} loaded in {time.monotonic() - start_time:.2f}s"
        )
        self._set_state(EngineState.READY, f"Model loaded: {descriptor.name}")

    def unload_model(self) -> None:
        self._discard_context()
        self._set_state(EngineState.NOT_LOADED, "Model unloaded")

    def _discard_context(self) -> None:
        if self._backend is not None:
            self._backend.unload()
            self._backend = None
            gc.collect()
        self._loaded_model = None

    def update_settings(self, settings: Settings) -> None:
        """Apply new preferences; a different model, language or GPU flag unloads."""
        old = self.settings.transcription
        new = settings.transcription
        self.settings = settings

        changed = (
            old.model != new.model
            or old.language != new.language
            or old.use_gpu != new.use_gpu
        )
        if changed and self._backend is not None:
            logger.info("Transcription settings changed, unloading model")
            self.unload_model()

    def transcribe(self, wav_path: Union[str, Path]) -> TranscriptionResult:
        """
        Transcribe a WAV file.

        Loads the configured model first if none is loaded.

        Raises:
            UnsafePathError: If the path escapes the recordings directory.
            ModelNotDownloaded: If the model must be loaded but is missing.
            ModelLoadError: If the model must be loaded but fails to.
            InvalidAudioFile: If the WAV is missing, malformed, or empty.
            TranscriptionError: If inference fails.
        """
        start_time = time.monotonic()

        try:
            wav_path = self.recordings_guard.resolve_recording(wav_path)
        except WavWriteError as e:
            raise InvalidAudioFile(str(e)) from e

        if not self.is_model_loaded():
            self.load_model()

        audio, sample_rate = read_wav(wav_path)
        chunks = self._audio_processor.segment(audio, sample_rate)

        self._set_state(EngineState.PROCESSING, "Transcribing...")

        segments = []
        detected_language = None
        try:
            for i, chunk in enumerate(chunks):
                logger.debug(f"Transcribing segment {i + 1}/{len(chunks)}")
                result = self._backend.decode(
                    self._audio_processor.slice(audio, chunk), sample_rate
                )
                if detected_language is None:
                    detected_language = result.lang
                text = result.text.strip()
                if text:
                    segments.append(
                        TranscriptionSegment(
                            text=text, start_ms=chunk.start_ms, end_ms=chunk.end_ms
                        )
                    )
        except Exception as e:
            self._set_state(EngineState.ERROR, f"Transcription failed: {e}")
            raise TranscriptionError(str(e)) from e

        processing_time = time.monotonic() - start_time
        audio_duration = len(audio) / sample_rate
        if processing_time > 0:
            logger.debug(
                f"Transcription finished: audio_len={audio_duration:.2f}s, "
                f"time={processing_time:.2f}s, speed={audio_duration / processing_time:.2f}x"
            )

        language = (
            self.settings.transcription.language.code or detected_language or "auto"
        )

        self._set_state(EngineState.READY, "Ready")
        return TranscriptionResult(
            text=combine_transcriptions([s.text for s in segments]),
            language=language,
            segments=segments,
            processing_time_ms=int(processing_time * 1000),
        )
