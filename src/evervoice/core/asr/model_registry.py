from dataclasses import dataclass
from typing import List, Optional

GITHUB_RELEASE_BASE = (
    "https://github.com/k2-fsa/sherpa-onnx/releases/download/asr-models"
)

MB = 1024 * 1024


@dataclass(frozen=True)
class ModelDescriptor:
    name: str
    display_name: str
    expected_size: int
    min_ram_gb: int
    # Leading hex digits of the archive's SHA-256. None skips verification.
    expected_hash_prefix: Optional[str] = None

    @property
    def model_dir_name(self) -> str:
        return f"sherpa-onnx-whisper-{self.name}"

    @property
    def file_name(self) -> str:
        return f"{self.model_dir_name}.tar.bz2"

    @property
    def url(self) -> str:
        return f"{GITHUB_RELEASE_BASE}/{self.file_name}"


TINY = ModelDescriptor(
    name="tiny",
    display_name="Tiny (~110 MB, fast)",
    expected_size=111 * MB,
    min_ram_gb=1,
)
SMALL = ModelDescriptor(
    name="small",
    display_name="Small (~600 MB, recommended)",
    expected_size=610 * MB,
    min_ram_gb=2,
)
MEDIUM = ModelDescriptor(
    name="medium",
    display_name="Medium (~1.8 GB, accurate)",
    expected_size=1840 * MB,
    min_ram_gb=4,
)

AVAILABLE_MODELS: List[ModelDescriptor] = [TINY, SMALL, MEDIUM]

DEFAULT_MODEL = SMALL


def get_model_by_name(name: str) -> Optional[ModelDescriptor]:
    for model in AVAILABLE_MODELS:
        if model.name == name:
            return model
    return None
