"""Tests for the FFT resampler."""

import numpy as np
import pytest

from evervoice.core.audio.resampler import (
    FftFixedInResampler,
    ResampleError,
    SincInterpolationParameters,
    make_sinc_filter,
    resample,
)


def dominant_frequency(samples, sample_rate):
    spectrum = np.abs(np.fft.rfft(samples * np.hanning(len(samples))))
    return np.argmax(spectrum) * sample_rate / len(samples)


class TestResampleLength:
    @pytest.mark.parametrize("source_rate", [8000, 22050, 32000, 44100, 48000, 96000])
    def test_output_length_tracks_rate_ratio(self, source_rate, sine_wave):
        samples = sine_wave(2.0, source_rate)

        output = resample(samples, source_rate, 16000)

        expected = len(samples) * 16000 / source_rate
        assert abs(len(output) - expected) <= 1

    def test_44100_five_seconds(self, sine_wave):
        output = resample(sine_wave(5.0, 44100), 44100, 16000)

        assert len(output) == 80000

    def test_same_rate_is_passthrough(self, sine_wave):
        samples = sine_wave(0.5, 16000)

        output = resample(samples, 16000, 16000)

        np.testing.assert_array_equal(output, samples)

    def test_empty_input(self):
        output = resample(np.zeros(0, dtype=np.float32), 48000, 16000)

        assert len(output) == 0

    def test_input_shorter_than_chunk(self):
        output = resample(np.ones(100, dtype=np.float32), 48000, 16000)

        assert output.dtype == np.float32
        assert len(output) == 33

    @pytest.mark.parametrize(
        "count, source_rate, expected",
        [(500, 48000, 167), (500, 96000, 83), (1500, 44100, 544), (1, 44101, 0)],
    )
    def test_tail_samples_not_dropped(self, count, source_rate, expected):
        samples = np.random.default_rng(0).uniform(-1, 1, count).astype(np.float32)

        output = resample(samples, source_rate, 16000)

        assert len(output) == expected

    def test_last_samples_reach_output(self):
        samples = np.zeros(4800, dtype=np.float32)
        samples[-1200:] = 0.5

        output = resample(samples, 48000, 16000)

        assert len(output) == 1600
        assert np.mean(output[1300:1500]) == pytest.approx(0.5, abs=0.02)
        assert output[-1] > 0.1


class TestResampleQuality:
    def test_preserves_tone_frequency(self, sine_wave):
        output = resample(sine_wave(1.0, 48000, frequency=1000.0), 48000, 16000)

        assert abs(dominant_frequency(output, 16000) - 1000.0) < 20.0

    def test_preserves_amplitude(self, sine_wave):
        output = resample(sine_wave(1.0, 48000, amplitude=0.5), 48000, 16000)

        steady = output[2000:-2000]
        assert np.max(np.abs(steady)) == pytest.approx(0.5, abs=0.05)

    def test_attenuates_content_above_target_nyquist(self, sine_wave):
        output = resample(sine_wave(1.0, 48000, frequency=12000.0), 48000, 16000)

        steady = output[2000:-2000]
        assert np.sqrt(np.mean(steady**2)) < 0.05

    def test_output_is_finite(self, sine_wave):
        output = resample(sine_wave(1.0, 44100), 44100, 16000)

        assert np.all(np.isfinite(output))


class TestFftFixedInResampler:
    def test_chunk_size_at_least_one_fft_block(self):
        resampler = FftFixedInResampler(44100, 16000, chunk_size=1024)

        assert resampler.input_frames_next() == 1024
        assert resampler.input_frames_max() == 1024
        assert resampler.output_block_size == 320

    def test_small_chunk_grows_to_fft_block(self):
        resampler = FftFixedInResampler(44100, 16000, chunk_size=100)

        assert resampler.input_frames_next() == 441

    def test_wrong_chunk_length_raises(self):
        resampler = FftFixedInResampler(48000, 16000, chunk_size=1024)

        with pytest.raises(ResampleError):
            resampler.process(np.zeros(10, dtype=np.float32))

    def test_invalid_rates_raise(self):
        with pytest.raises(ResampleError):
            FftFixedInResampler(0, 16000)

    def test_flush_processes_buffered_input(self):
        resampler = FftFixedInResampler(48000, 16000, chunk_size=1024)
        resampler.process(np.ones(1024, dtype=np.float32))

        tail = resampler.flush()

        assert len(tail) == resampler.output_block_size
        assert np.max(np.abs(tail)) > 0.1

    def test_reset_clears_state(self, sine_wave):
        resampler = FftFixedInResampler(48000, 16000, chunk_size=1024)
        chunk = sine_wave(1024 / 48000, 48000)

        first = resampler.process(chunk)
        resampler.reset()
        again = resampler.process(chunk)

        np.testing.assert_allclose(first, again)


class TestSincFilter:
    def test_unity_gain(self):
        taps = make_sinc_filter(256, 0.3, SincInterpolationParameters())

        assert taps.sum() == pytest.approx(1.0)

    def test_symmetric(self):
        taps = make_sinc_filter(128, 0.5, SincInterpolationParameters())

        np.testing.assert_allclose(taps, taps[::-1], atol=1e-9)
