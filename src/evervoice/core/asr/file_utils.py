import os
from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]

# Preferred first: int8 weights load faster and need less RAM.
ENCODER_SUFFIXES = ("-encoder.int8.onnx", "-encoder.onnx")
DECODER_SUFFIXES = ("-decoder.int8.onnx", "-decoder.onnx")
TOKENS_SUFFIXES = ("-tokens.txt", "tokens.txt")


def find_file_by_suffix(directory: PathLike, *suffixes: str) -> Optional[str]:
    try:
        filenames = sorted(os.listdir(directory))
    except OSError:
        return None

    for suffix in suffixes:
        for filename in filenames:
            if filename.endswith(suffix):
                return os.path.join(directory, filename)
    return None


def has_file_with_suffix(directory: PathLike, *suffixes: str) -> bool:
    return find_file_by_suffix(directory, *suffixes) is not None


def is_valid_whisper_model(model_path: PathLike) -> bool:
    if not os.path.isdir(model_path):
        return False
    return (
        has_file_with_suffix(model_path, *ENCODER_SUFFIXES)
        and has_file_with_suffix(model_path, *DECODER_SUFFIXES)
        and has_file_with_suffix(model_path, *TOKENS_SUFFIXES)
    )


def directory_size(path: PathLike) -> int:
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                pass
    return total
