"""
End-to-end flow: record, export, transcribe, delete.

Hardware and the speech model are mocked except in tests marked slow,
which need a downloaded tiny model.
"""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import scipy.io.wavfile as wav

from evervoice.core.asr.backends import DecodeResult
from evervoice.core.asr.model_registry import TINY
from evervoice.core.asr.model_store import ModelStore
from evervoice.core.asr.transcriber import TranscriptionEngine
from evervoice.core.audio.devices import AudioDevice, InputConfig
from evervoice.core.audio.recorder import RecordingSession
from evervoice.core.audio.wav_export import WavExporter
from evervoice.core.settings import AudioSettings, Settings, TranscriptionSettings


@pytest.fixture
def hardware():
    catalog = MagicMock()
    catalog.resolve_device.return_value = AudioDevice(
        "Built-in Mic", "Built-in Mic", True, 0, 1, 44100.0
    )
    catalog.default_input_config.return_value = InputConfig(sample_rate=44100, channels=1)
    with patch("evervoice.core.audio.recorder.sd.InputStream"), patch(
        "evervoice.core.audio.recorder.shutil.disk_usage",
        return_value=MagicMock(free=10 * 1024**3),
    ):
        yield catalog


def test_record_transcribe_delete(
    hardware, recordings_dir, models_dir, make_whisper_model, sine_wave
):
    make_whisper_model(models_dir, "small")
    exporter = WavExporter(recordings_dir)
    session = RecordingSession(
        catalog=hardware, exporter=exporter, settings=AudioSettings(privacy_mode=True)
    )

    backend = MagicMock()
    backend.is_loaded = True
    backend.decode.return_value = DecodeResult(text="Guten Morgen", lang="de")
    engine = TranscriptionEngine(
        ModelStore(models_dir),
        recordings_guard=exporter,
        backend_factory=lambda: backend,
    )

    try:
        session.start_recording()
        samples = sine_wave(5.0, 44100)
        for start in range(0, len(samples), 1024):
            block = samples[start : start + 1024]
            session._audio_callback(block[:, None], len(block), None, None)
            if start % (1024 * 32) == 0:
                session.drain()
        result = session.stop_recording()
    finally:
        session.close()

    sample_rate, data = wav.read(result.file_path)
    assert sample_rate == 16000
    assert data.dtype == np.int16
    assert data.ndim == 1
    assert abs(len(data) - 80000) <= 320

    with patch.object(ModelStore, "meets_memory_requirement", return_value=True):
        transcription = engine.transcribe(result.file_path)

    assert transcription.text == "Guten Morgen"
    assert transcription.language == "de"
    assert transcription.segments[0].end_ms == pytest.approx(5000, abs=20)

    assert result.privacy_mode is True
    exporter.delete_recording(result.file_path)
    assert list(recordings_dir.iterdir()) == []


@pytest.mark.slow
def test_real_model_transcribes_silence(recordings_dir):
    store = ModelStore()
    if not store.is_model_downloaded(TINY):
        pytest.skip("tiny model not downloaded")

    exporter = WavExporter(recordings_dir)
    path = exporter.export(np.zeros(16000, dtype=np.float32))
    engine = TranscriptionEngine(
        store,
        settings=Settings(transcription=TranscriptionSettings(model="tiny")),
        recordings_guard=exporter,
    )

    result = engine.transcribe(path)

    assert isinstance(result.text, str)
    assert result.processing_time_ms > 0
    engine.unload_model()
