import logging

import numpy as np

logger = logging.getLogger(__name__)


def byte_counts(data: bytes) -> np.ndarray:
    """Occurrences of every byte value 0-255 as an int64 array."""
    if not data:
        return np.zeros(256, dtype=np.int64)
    arr = np.frombuffer(data, dtype=np.uint8)
    return np.bincount(arr, minlength=256)


def shannon_entropy(data: bytes) -> float:
    """
    Shannon entropy of a bytes object in bits per byte.

    - Input:  data -> raw bytes (b"...")
    - Output: entropy value between 0.0 and 8.0 (0.0 for empty input)
    """
    if not data:
        return 0.0

    counts = byte_counts(data).astype(np.float64)
    p = counts[counts > 0] / len(data)
    return float(-(p * np.log2(p)).sum())


def file_entropy(file_path: str) -> float:
    """Entropy of a whole file on disk; 0.0 when it cannot be read."""
    try:
        with open(file_path, "rb") as f:
            data = f.read()
    except OSError as e:
        logger.warning("[Entropy] Failed to read %s: %s", file_path, e)
        return 0.0

    return shannon_entropy(data)
