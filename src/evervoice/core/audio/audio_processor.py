"""
Audio segmentation for transcription.

Whisper models decode at most 30 seconds at a time, so longer recordings
are split at silences (falling back to a forced split at the limit) into segments
that each carry their position in the recording.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ...utils.logger import get_logger

logger = get_logger(__name__)


MAX_DURATION_SECONDS = 30.0
MIN_CHUNK_DURATION_SECONDS = 5.0
SILENCE_THRESHOLD = 0.02
SILENCE_DURATION_SECONDS = 0.3
OVERLAP_DURATION_SECONDS = 0.1
SEARCH_HOP_SECONDS = 0.05


@dataclass(frozen=True)
class AudioChunkInfo:
    start_sample: int
    end_sample: int
    sample_rate: int

    @property
    def sample_count(self) -> int:
        return self.end_sample - self.start_sample

    @property
    def start_ms(self) -> int:
        return self.start_sample * 1000 // self.sample_rate

    @property
    def end_ms(self) -> int:
        return self.end_sample * 1000 // self.sample_rate


def needs_chunking(audio_data: np.ndarray, sample_rate: int) -> bool:
    duration = len(audio_data) / sample_rate
    return duration > MAX_DURATION_SECONDS


class AudioProcessor:
    """Splits audio into decodable segments using silence detection."""

    def __init__(
        self,
        max_duration: float = MAX_DURATION_SECONDS,
        min_chunk_duration: float = MIN_CHUNK_DURATION_SECONDS,
        silence_threshold: float = SILENCE_THRESHOLD,
        silence_duration: float = SILENCE_DURATION_SECONDS,
        overlap_duration: float = OVERLAP_DURATION_SECONDS,
    ):
        self.max_duration = max_duration
        self.min_chunk_duration = min_chunk_duration
        self.silence_threshold = silence_threshold
        self.silence_duration = silence_duration
        self.overlap_duration = overlap_duration

    def segment(self, audio_data: np.ndarray, sample_rate: int) -> List[AudioChunkInfo]:
        """
        Find segment boundaries for a recording.

        Each boundary is placed at the quietest stretch between
        ``min_chunk_duration`` and ``max_duration`` after the previous one.
        Where that stretch has no silence the boundary is forced at
        ``max_duration``.

        Returns:
            Consecutive, non-overlapping segments covering the whole recording.
        """
        total = len(audio_data)
        duration = total / sample_rate

        if duration <= self.max_duration:
            return [AudioChunkInfo(0, total, sample_rate)]

        logger.info(f"Splitting {duration:.1f}s audio into segments...")

        max_samples = int(self.max_duration * sample_rate)
        min_samples = int(self.min_chunk_duration * sample_rate)
        hop = max(1, int(SEARCH_HOP_SECONDS * sample_rate))
        window_frames = max(1, int(np.ceil(self.silence_duration * sample_rate / hop)))
        scores = self._silence_scores(
            self._envelope(audio_data, sample_rate), hop, window_frames
        )
        half_window = window_frames * hop // 2

        boundaries = []
        start = 0
        while total - start > max_samples:
            split = self._quietest_point(
                scores, hop, half_window, start + min_samples, start + max_samples
            )
            if split is None:
                split = min(start + max_samples, total - min_samples)
                logger.debug(f"No silence after {start / sample_rate:.1f}s, forcing split")
            boundaries.append(split)
            start = split

        segments = []
        start = 0
        for end in boundaries + [total]:
            segments.append(AudioChunkInfo(start, end, sample_rate))
            start = end

        logger.info(f"Split audio into {len(segments)} segments")
        return segments

    def slice(self, audio_data: np.ndarray, info: AudioChunkInfo) -> np.ndarray:
        """Samples for a segment, padded with a little context on each side."""
        overlap = int(self.overlap_duration * info.sample_rate)
        start = max(0, info.start_sample - (overlap if info.start_sample > 0 else 0))
        end = min(len(audio_data), info.end_sample + overlap)
        return audio_data[start:end]

    @staticmethod
    def _envelope(audio_data: np.ndarray, sample_rate: int) -> np.ndarray:
        # Peak-normalized magnitude, smoothed over 100 ms.
        magnitude = np.abs(audio_data.astype(np.float32))
        peak = magnitude.max()
        if peak > 0:
            magnitude /= peak

        width = int(0.1 * sample_rate)
        if width <= 1 or len(magnitude) <= width:
            return magnitude
        return np.convolve(magnitude, np.full(width, 1.0 / width), mode="same")

    def _silence_scores(
        self, envelope: np.ndarray, hop: int, window_frames: int
    ) -> np.ndarray:
        """
        Score every silence-length window on a ``hop`` grid.

        Window ``j`` starts at sample ``j * hop``. Lower is quieter; windows
        whose peak reaches the threshold score infinity.
        """
        n_frames = len(envelope) // hop
        if n_frames < window_frames:
            return np.full(0, np.inf)

        frames = envelope[: n_frames * hop].reshape(n_frames, hop)
        peaks = sliding_window_view(frames.max(axis=1), window_frames).max(axis=1)
        means = sliding_window_view(frames.mean(axis=1), window_frames).mean(axis=1)

        scores = means + 0.1 * peaks
        scores[peaks >= self.silence_threshold] = np.inf
        return scores

    @staticmethod
    def _quietest_point(
        scores: np.ndarray, hop: int, half_window: int, low: int, high: int
    ) -> Optional[int]:
        """Center of the quietest window centered in (low, high], latest on ties."""
        first = max(0, (low - half_window) // hop + 1)
        last = min(len(scores) - 1, (high - half_window) // hop)
        if last < first:
            return None

        candidates = scores[first : last + 1]
        if not np.isfinite(candidates).any():
            return None

        best = last - int(np.argmin(candidates[::-1]))
        return best * hop + half_window



def combine_transcriptions(transcriptions: List[str]) -> str:
    valid_transcriptions = [t.strip() for t in transcriptions if t and t.strip()]

    combined = " ".join(valid_transcriptions)
    while "  " in combined:
        combined = combined.replace("  ", " ")

    return combined.strip()
