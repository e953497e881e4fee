import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np

from ...utils.logger import get_logger
from .file_utils import (
    DECODER_SUFFIXES,
    ENCODER_SUFFIXES,
    TOKENS_SUFFIXES,
    find_file_by_suffix,
)

logger = get_logger(__name__)

NUM_THREADS = min(4, os.cpu_count() or 1)


@dataclass
class DecodeResult:
    text: str
    lang: Optional[str] = None


def normalize_language_tag(tag: Optional[str]) -> Optional[str]:
    """Strip Whisper's ``<|xx|>`` markers from a detected language."""
    if not tag:
        return None
    cleaned = tag.strip().removeprefix("<|").removesuffix("|>").strip()
    return cleaned or None


class SherpaOnnxBackend:
    """Offline Whisper recognizer built with sherpa-onnx."""

    def __init__(self):
        self._recognizer = None
        self._provider = "cpu"

    def load(
        self,
        model_path: Union[str, Path],
        language: Optional[str] = None,
        use_gpu: bool = False,
    ) -> None:
        import sherpa_onnx

        model_path = str(model_path)
        if not os.path.isdir(model_path):
            raise RuntimeError(f"Model directory not found: {model_path}")

        encoder = find_file_by_suffix(model_path, *ENCODER_SUFFIXES)
        decoder = find_file_by_suffix(model_path, *DECODER_SUFFIXES)
        tokens = find_file_by_suffix(model_path, *TOKENS_SUFFIXES)

        if not encoder or not decoder or not tokens:
            missing = []
            if not encoder:
                missing.append("encoder (*-encoder.onnx)")
            if not decoder:
                missing.append("decoder (*-decoder.onnx)")
            if not tokens:
                missing.append("tokens (*-tokens.txt)")
            raise RuntimeError(
                f"Missing Whisper model files in {model_path}: {', '.join(missing)}"
            )

        self._provider = "cuda" if use_gpu else "cpu"
        logger.info(
            f"Loading Whisper model: encoder={encoder}, decoder={decoder}, "
            f"tokens={tokens}, provider={self._provider}"
        )

        # An empty language lets Whisper detect it.
        self._recognizer = sherpa_onnx.OfflineRecognizer.from_whisper(
            encoder=encoder,
            decoder=decoder,
            tokens=tokens,
            language=language or "",
            task="transcribe",
            num_threads=NUM_THREADS,
            provider=self._provider,
            debug=False,
            decoding_method="greedy_search",
        )

    def decode(self, audio_data: np.ndarray, sample_rate: int = 16000) -> DecodeResult:
        if self._recognizer is None:
            raise RuntimeError("Model not loaded. Call load() first.")

        stream = self._recognizer.create_stream()
        stream.accept_waveform(sample_rate, audio_data.astype(np.float32))
        self._recognizer.decode_stream(stream)

        result = stream.result
        return DecodeResult(
            text=result.text,
            lang=normalize_language_tag(getattr(result, "lang", None)),
        )

    def unload(self) -> None:
        if self._recognizer is not None:
            del self._recognizer
            self._recognizer = None

    @property
    def is_loaded(self) -> bool:
        return self._recognizer is not None

    @property
    def provider(self) -> str:
        return self._provider
