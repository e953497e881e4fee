"""
Sample rate conversion for captured audio.

Converts microphone audio from the device's native rate to the fixed rate
the speech models expect, using an overlap-add FFT resampler with a
windowed-sinc anti-aliasing filter. The resampler consumes fixed-size input
chunks; the final chunk of a recording is zero-padded to fit. Buffered input
is flushed at the end and the output is cut to the rate ratio after the
filter delay.
"""

from dataclasses import dataclass
from math import ceil, gcd

import numpy as np
from scipy.signal import get_window

from ...utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 1024


class ResampleError(Exception):
    pass


@dataclass(frozen=True)
class SincInterpolationParameters:
    sinc_len: int = 256
    f_cutoff: float = 0.95
    oversampling_factor: int = 256
    window: str = "blackmanharris2"


def _make_window(name: str, length: int) -> np.ndarray:
    # A trailing "2" squares the base window for steeper sidelobe decay.
    if name.endswith("2"):
        base = get_window(name[:-1], length, fftbins=False)
        return base * base
    return get_window(name, length, fftbins=False)


def make_sinc_filter(
    n_taps: int, cutoff: float, params: SincInterpolationParameters
) -> np.ndarray:
    """
    Build a unity-gain windowed-sinc low-pass filter.

    The kernel is tabulated at ``oversampling_factor`` points per tap and
    linearly interpolated onto the tap grid.

    Args:
        n_taps: Filter length in samples
        cutoff: Cutoff as a fraction of the input Nyquist frequency
        params: Sinc interpolation parameters
    """
    oversampling = max(1, params.oversampling_factor)
    table_len = n_taps * oversampling
    table_x = (np.arange(table_len) - (table_len - 1) / 2.0) / oversampling
    table = cutoff * np.sinc(cutoff * table_x) * _make_window(params.window, table_len)

    tap_x = np.arange(n_taps) - (n_taps - 1) / 2.0
    taps = np.interp(tap_x, table_x, table)

    total = taps.sum()
    if total != 0:
        taps = taps / total
    return taps


class FftFixedInResampler:
    """
    Stateful FFT resampler with a fixed input chunk size.

    Usage:
        resampler = FftFixedInResampler(44100, 16000, chunk_size=1024)
        out = resampler.process(chunk)  # len(chunk) == resampler.input_frames_next()
    """

    def __init__(
        self,
        source_rate: int,
        target_rate: int,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        sub_chunks: int = 2,
        params: SincInterpolationParameters = SincInterpolationParameters(),
    ):
        if source_rate <= 0 or target_rate <= 0:
            raise ResampleError(
                f"Invalid sample rates: {source_rate} Hz -> {target_rate} Hz"
            )
        if chunk_size <= 0 or sub_chunks <= 0:
            raise ResampleError("Chunk size and sub-chunk count must be positive")

        self.source_rate = int(source_rate)
        self.target_rate = int(target_rate)
        self.params = params

        divisor = gcd(self.source_rate, self.target_rate)
        rate_in = self.source_rate // divisor
        rate_out = self.target_rate // divisor

        fft_chunks = max(1, ceil(chunk_size / sub_chunks / rate_in))
        self._fft_size_in = fft_chunks * rate_in
        self._fft_size_out = fft_chunks * rate_out
        self._chunk_size = max(chunk_size, self._fft_size_in)

        n_taps = min(params.sinc_len, self._fft_size_in)
        self._delay_in = (n_taps - 1) // 2
        cutoff = params.f_cutoff * min(1.0, self.target_rate / self.source_rate)
        taps = make_sinc_filter(n_taps, cutoff, params)
        self._filter_spectrum = np.fft.rfft(taps, n=2 * self._fft_size_in)

        self._pending = np.zeros(0, dtype=np.float32)
        self._overlap = np.zeros(self._fft_size_out, dtype=np.float64)

    def input_frames_max(self) -> int:
        return self._chunk_size

    def input_frames_next(self) -> int:
        return self._chunk_size

    @property
    def output_block_size(self) -> int:
        return self._fft_size_out

    def output_delay(self) -> int:
        """Filter delay in output samples."""
        return int(round(self._delay_in * self._fft_size_out / self._fft_size_in))

    def reset(self) -> None:
        self._pending = np.zeros(0, dtype=np.float32)
        self._overlap = np.zeros(self._fft_size_out, dtype=np.float64)

    def process(self, chunk: np.ndarray) -> np.ndarray:
        chunk = np.asarray(chunk, dtype=np.float32).reshape(-1)
        if len(chunk) != self._chunk_size:
            raise ResampleError(
                f"Expected {self._chunk_size} input frames, got {len(chunk)}"
            )

        self._pending = np.concatenate([self._pending, chunk])

        outputs = []
        while len(self._pending) >= self._fft_size_in:
            block = self._pending[: self._fft_size_in]
            self._pending = self._pending[self._fft_size_in :]
            outputs.append(self._process_block(block))

        if not outputs:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(outputs).astype(np.float32)

    def flush(self) -> np.ndarray:
        """
        Zero-pad buffered input to one FFT block and process it.

        With nothing buffered a silent block is processed, which drains the
        filter tail held in the overlap.
        """
        block = np.zeros(self._fft_size_in, dtype=np.float32)
        block[: len(self._pending)] = self._pending
        self._pending = np.zeros(0, dtype=np.float32)
        return self._process_block(block).astype(np.float32)

    def _process_block(self, block: np.ndarray) -> np.ndarray:
        n_in = self._fft_size_in
        n_out = self._fft_size_out

        spectrum = np.fft.rfft(block, n=2 * n_in) * self._filter_spectrum

        resized = np.zeros(n_out + 1, dtype=np.complex128)
        keep = min(n_in, n_out) + 1
        resized[:keep] = spectrum[:keep]

        expanded = np.fft.irfft(resized, n=2 * n_out) * (n_out / n_in)
        expanded[:n_out] += self._overlap
        self._overlap = expanded[n_out:].copy()
        return expanded[:n_out]


def resample(
    samples: np.ndarray,
    source_rate: int,
    target_rate: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> np.ndarray:
    """
    Resample a mono recording in fixed-size chunks.

    Chunks that fail to convert are logged and left out of the output.

    Args:
        samples: Mono float samples at source_rate
        source_rate: Rate of the captured audio in Hz
        target_rate: Rate to convert to in Hz
        chunk_size: Upper bound on the resampler's input chunk size

    Returns:
        Float32 samples at target_rate.
    """
    samples = np.asarray(samples, dtype=np.float32).reshape(-1)
    if source_rate == target_rate or len(samples) == 0:
        return samples

    logger.info(f"Resampling from {source_rate} Hz to {target_rate} Hz")

    resampler = FftFixedInResampler(
        source_rate, target_rate, chunk_size=min(len(samples), chunk_size)
    )
    step = resampler.input_frames_max()

    output = []
    for start in range(0, len(samples), step):
        chunk = samples[start : start + step]

        needed = resampler.input_frames_next()
        if len(chunk) < needed:
            chunk = np.pad(chunk, (0, needed - len(chunk)))

        try:
            result = resampler.process(chunk)
        except (ResampleError, ValueError, FloatingPointError) as e:
            logger.warning(f"Resampling chunk at sample {start} failed: {e}")
            continue

        if len(result):
            output.append(result)

    # Buffered input and the filter tail still owe output.
    expected = int(round(len(samples) * target_rate / source_rate))
    delay = resampler.output_delay()
    produced = sum(len(part) for part in output)
    flushes = 3 + delay // resampler.output_block_size
    while produced < expected + delay and flushes > 0:
        tail = resampler.flush()
        output.append(tail)
        produced += len(tail)
        flushes -= 1

    resampled = (
        np.concatenate(output) if output else np.zeros(0, dtype=np.float32)
    )
    resampled = resampled[delay : delay + expected]
    logger.info(f"Resampling complete: {len(samples)} -> {len(resampled)} samples")
    return resampled
