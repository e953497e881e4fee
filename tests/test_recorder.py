"""
Tests for RecordingSession.

Uses mocking to avoid requiring actual audio hardware. Audio is fed by
calling the stream callback directly, the way PortAudio would.
"""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import scipy.io.wavfile as wav
import sounddevice as sd

from evervoice.core.audio.devices import AudioDevice, InputConfig
from evervoice.core.audio.recorder import RecordingSession, SessionState
from evervoice.core.audio.wav_export import WavExporter
from evervoice.core.errors import (
    DeviceBusy,
    InsufficientSpace,
    NotRecording,
    PermissionDenied,
    StreamError,
    WavWriteError,
)
from evervoice.core.settings import AudioSettings

BLOCK = 1024


def make_catalog(sample_rate=16000, channels=1):
    catalog = MagicMock()
    catalog.resolve_device.return_value = AudioDevice(
        id="Test Mic",
        name="Test Mic",
        is_default=True,
        index=3,
        channels=channels,
        default_sample_rate=float(sample_rate),
    )
    catalog.default_input_config.return_value = InputConfig(
        sample_rate=sample_rate, channels=channels
    )
    return catalog


def feed(session, samples, channels=1):
    """Push samples through the stream callback in fixed blocks."""
    for i, start in enumerate(range(0, len(samples), BLOCK)):
        block = samples[start : start + BLOCK]
        indata = np.repeat(block[:, None], channels, axis=1)
        session._audio_callback(indata, len(block), None, None)
        if i % 32 == 31:
            session.drain()
    session.drain()


@pytest.fixture
def disk_space():
    with patch("evervoice.core.audio.recorder.shutil.disk_usage") as mock_usage:
        mock_usage.return_value = MagicMock(free=10 * 1024**3)
        yield mock_usage


@pytest.fixture
def input_stream():
    with patch("evervoice.core.audio.recorder.sd.InputStream") as mock_stream_class:
        mock_stream_class.return_value = MagicMock()
        yield mock_stream_class


@pytest.fixture
def make_session(recordings_dir, disk_space, input_stream):
    sessions = []

    def _make(sample_rate=16000, channels=1, **kwargs):
        session = RecordingSession(
            catalog=make_catalog(sample_rate, channels),
            exporter=WavExporter(recordings_dir),
            **kwargs,
        )
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        session.close()


class TestRecordingState:
    def test_initial_state_idle(self, make_session):
        session = make_session()

        assert session.get_state() is SessionState.IDLE
        assert session.is_recording() is False
        assert session.get_level() == 0
        assert session.elapsed_ms() == 0

    def test_start_opens_stream(self, make_session, input_stream):
        session = make_session(sample_rate=48000, channels=2)

        session.start_recording()

        assert session.is_recording() is True
        kwargs = input_stream.call_args.kwargs
        assert kwargs["samplerate"] == 48000
        assert kwargs["channels"] == 2
        assert kwargs["device"] == 3
        assert kwargs["dtype"] == "float32"
        input_stream.return_value.start.assert_called_once()

    def test_start_twice_is_noop(self, make_session, input_stream):
        session = make_session()

        session.start_recording()
        session.start_recording()

        assert input_stream.call_count == 1

    def test_start_twice_keeps_buffer(self, make_session, sine_wave):
        session = make_session()
        session.start_recording()
        feed(session, sine_wave(0.5, 16000))

        session.start_recording()
        feed(session, sine_wave(0.25, 16000))
        result = session.stop_recording()

        _, data = wav.read(result.file_path)
        assert len(data) == 8000 + 4000

    def test_stop_without_start_raises(self, make_session):
        session = make_session()

        with pytest.raises(NotRecording):
            session.stop_recording()

    def test_stop_closes_stream(self, make_session, input_stream, sine_wave):
        session = make_session()
        session.start_recording()
        feed(session, sine_wave(0.5, 16000))

        session.stop_recording()

        assert session.get_state() is SessionState.IDLE
        input_stream.return_value.stop.assert_called_once()
        input_stream.return_value.close.assert_called_once()

    def test_stop_with_no_audio_raises(self, make_session):
        session = make_session()
        session.start_recording()

        with pytest.raises(WavWriteError, match="No audio data recorded"):
            session.stop_recording()

        assert session.get_state() is SessionState.IDLE

    def test_blocks_ignored_when_not_recording(self, make_session, sine_wave):
        session = make_session()
        feed(session, sine_wave(0.2, 16000))

        session.start_recording()
        with pytest.raises(WavWriteError):
            session.stop_recording()


class TestLevelMetering:
    def test_level_rises_with_signal(self, make_session, sine_wave):
        session = make_session()
        session.start_recording()

        feed(session, sine_wave(0.2, 16000, amplitude=0.5))

        assert 0 < session.get_level() <= 100

    def test_level_silent_input(self, make_session):
        session = make_session()
        session.start_recording()

        feed(session, np.zeros(4096, dtype=np.float32))

        assert session.get_level() == 0

    def test_level_saturates_on_clipping(self, make_session):
        session = make_session()
        session.start_recording()

        feed(session, np.full(BLOCK, 5.0, dtype=np.float32))

        assert session.get_level() == 100

    def test_level_reset_after_stop(self, make_session, sine_wave):
        session = make_session()
        session.start_recording()
        feed(session, sine_wave(0.2, 16000))

        session.stop_recording()

        assert session.get_level() == 0


class TestRecordingOutput:
    def test_writes_16k_mono_wav(self, make_session, recordings_dir, sine_wave):
        session = make_session(settings=AudioSettings(privacy_mode=False))
        session.start_recording()
        feed(session, sine_wave(1.0, 16000))

        result = session.stop_recording()

        sample_rate, data = wav.read(result.file_path)
        assert sample_rate == 16000
        assert data.dtype == np.int16
        assert data.ndim == 1
        assert len(data) == 16000
        assert result.privacy_mode is False
        assert result.duration_ms >= 0
        assert result.file_path.endswith(".wav")
        assert str(recordings_dir) in result.file_path

    def test_stereo_is_downmixed(self, make_session, sine_wave):
        session = make_session(channels=2)
        session.start_recording()
        feed(session, sine_wave(0.5, 16000), channels=2)

        result = session.stop_recording()

        _, data = wav.read(result.file_path)
        assert data.ndim == 1
        assert len(data) == 8000

    def test_44100_recording_resampled_to_16k(self, make_session, sine_wave):
        session = make_session(sample_rate=44100)
        session.start_recording()
        feed(session, sine_wave(5.0, 44100))

        result = session.stop_recording()

        sample_rate, data = wav.read(result.file_path)
        assert sample_rate == 16000
        assert data.ndim == 1
        assert data.dtype == np.int16
        assert len(data) == 80000

    def test_privacy_mode_flag_passed_through(self, make_session, sine_wave):
        session = make_session(settings=AudioSettings(privacy_mode=True))
        session.start_recording()
        feed(session, sine_wave(0.2, 16000))

        assert session.stop_recording().privacy_mode is True


class TestStreamFailures:
    def test_device_busy(self, make_session, input_stream):
        input_stream.side_effect = sd.PortAudioError("Device unavailable", -9985)
        session = make_session()

        with pytest.raises(DeviceBusy):
            session.start_recording()

        assert session.get_state() is SessionState.IDLE

    def test_permission_denied(self, make_session, input_stream):
        input_stream.side_effect = sd.PortAudioError(
            "Microphone permission not granted", -9999
        )
        session = make_session()

        with pytest.raises(PermissionDenied):
            session.start_recording()

    def test_other_stream_error(self, make_session, input_stream):
        input_stream.return_value.start.side_effect = sd.PortAudioError(
            "Invalid sample rate", -9997
        )
        session = make_session()

        with pytest.raises(StreamError):
            session.start_recording()

        assert session.is_recording() is False
        input_stream.return_value.close.assert_called_once()

    def test_stream_finished_latches_error(self, make_session, input_stream):
        session = make_session()
        session.start_recording()

        finished_callback = input_stream.call_args.kwargs["finished_callback"]
        finished_callback()
        session.drain()

        assert session.get_state() is SessionState.ERROR
        assert session.is_recording() is False
        assert session.has_stream_error()
        assert "disconnected" in session.get_stream_error()
        assert session.get_level() == 0
        input_stream.return_value.close.assert_called_once()

    def test_stop_after_disconnect_raises(self, make_session, input_stream):
        session = make_session()
        session.start_recording()
        input_stream.call_args.kwargs["finished_callback"]()

        with pytest.raises(NotRecording):
            session.stop_recording()

    def test_clear_error_allows_restart(self, make_session, input_stream):
        session = make_session()
        session.start_recording()
        input_stream.call_args.kwargs["finished_callback"]()

        session.clear_stream_error()
        assert session.get_state() is SessionState.IDLE
        assert session.get_stream_error() is None

        session.start_recording()
        assert session.is_recording() is True
        assert input_stream.call_count == 2

    def test_finished_after_stop_is_not_an_error(self, make_session, input_stream, sine_wave):
        session = make_session()
        session.start_recording()
        feed(session, sine_wave(0.2, 16000))
        session.stop_recording()

        input_stream.call_args.kwargs["finished_callback"]()

        assert session.get_state() is SessionState.IDLE
        assert session.has_stream_error() is False

    def test_stale_finished_callback_ignored(self, make_session, input_stream, sine_wave):
        session = make_session()
        session.start_recording()
        first_finished = input_stream.call_args.kwargs["finished_callback"]
        feed(session, sine_wave(0.2, 16000))
        session.stop_recording()

        session.start_recording()
        first_finished()

        assert session.is_recording() is True
        assert session.has_stream_error() is False


class TestPreflight:
    def test_low_disk_space_raises(self, make_session, disk_space, input_stream):
        disk_space.return_value = MagicMock(free=10 * 1024 * 1024)
        session = make_session()

        with pytest.raises(InsufficientSpace):
            session.start_recording()

        input_stream.assert_not_called()
        assert session.get_state() is SessionState.IDLE

    def test_disk_check_failure_proceeds(self, make_session, disk_space):
        disk_space.side_effect = OSError("statvfs failed")
        session = make_session()

        session.start_recording()

        assert session.is_recording() is True


class TestCallbackBackpressure:
    def test_full_queue_drops_blocks(self, recordings_dir):
        session = RecordingSession(
            catalog=make_catalog(), exporter=WavExporter(recordings_dir), queue_size=1
        )
        session._state = SessionState.RECORDING
        block = np.zeros((BLOCK, 1), dtype=np.float32)

        session._audio_callback(block, BLOCK, None, None)
        session._audio_callback(block, BLOCK, None, None)

        assert session.dropped_blocks == 1


class TestMaxDuration:
    def test_not_reached_when_idle(self, make_session):
        session = make_session(settings=AudioSettings(max_duration_minutes=1))

        assert session.max_duration_reached() is False

    def test_reached_after_limit(self, make_session):
        session = make_session(settings=AudioSettings(max_duration_minutes=1))
        session.start_recording()

        with patch(
            "evervoice.core.audio.recorder.time.monotonic",
            return_value=session._recording_start + 61,
        ):
            assert session.elapsed_ms() >= 60_000
            assert session.max_duration_reached() is True
