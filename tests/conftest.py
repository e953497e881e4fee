"""
Pytest configuration.

Points the platform config and cache directories at a throwaway location
before the package is imported, so logs, settings and recordings written
during the test run never touch the real user directories. The data
directory is left alone so slow tests can find downloaded models.
"""

import os
import tempfile
from pathlib import Path

_TEST_HOME = Path(tempfile.mkdtemp(prefix="evervoice-tests-"))
os.environ["XDG_CONFIG_HOME"] = str(_TEST_HOME / "config")
os.environ["XDG_CACHE_HOME"] = str(_TEST_HOME / "cache")

import numpy as np  # noqa: E402
import pytest  # noqa: E402


@pytest.fixture
def recordings_dir(tmp_path):
    path = tmp_path / "recordings"
    path.mkdir()
    return path


@pytest.fixture
def models_dir(tmp_path):
    path = tmp_path / "models"
    path.mkdir()
    return path


@pytest.fixture
def make_whisper_model():
    """Create the files sherpa-onnx expects in a Whisper model directory."""

    def _make(models_dir: Path, name: str = "small") -> Path:
        model_dir = models_dir / f"sherpa-onnx-whisper-{name}"
        model_dir.mkdir(parents=True)
        for suffix in ("-encoder.int8.onnx", "-decoder.int8.onnx", "-tokens.txt"):
            (model_dir / f"{name}{suffix}").write_bytes(b"\0" * 16)
        return model_dir

    return _make


@pytest.fixture
def sine_wave():
    def _make(
        seconds: float, sample_rate: int, frequency: float = 440.0, amplitude: float = 0.5
    ) -> np.ndarray:
        t = np.arange(int(seconds * sample_rate)) / sample_rate
        return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)

    return _make
