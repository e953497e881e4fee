from .backends import DecodeResult, SherpaOnnxBackend
from .model_registry import (
    AVAILABLE_MODELS,
    DEFAULT_MODEL,
    MEDIUM,
    SMALL,
    TINY,
    ModelDescriptor,
    get_model_by_name,
)
from .model_store import DownloadProgress, ModelStatus, ModelStore
from .transcriber import (
    EngineState,
    TranscriptionEngine,
    TranscriptionResult,
    TranscriptionSegment,
)

__all__ = [
    "DecodeResult",
    "SherpaOnnxBackend",
    "AVAILABLE_MODELS",
    "DEFAULT_MODEL",
    "MEDIUM",
    "SMALL",
    "TINY",
    "ModelDescriptor",
    "get_model_by_name",
    "DownloadProgress",
    "ModelStatus",
    "ModelStore",
    "EngineState",
    "TranscriptionEngine",
    "TranscriptionResult",
    "TranscriptionSegment",
]
