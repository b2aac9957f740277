import os

import numpy as np

MAX_SAMPLES = 50_000


def max_samples_from_env(default: int = MAX_SAMPLES) -> int:
    """Sample cap, overridable through LOSSYPNG_MAX_SAMPLES (ignored unless a positive int)."""
    raw = os.environ.get("LOSSYPNG_MAX_SAMPLES", "").strip()
    if raw.isdigit() and int(raw) > 0:
        return int(raw)
    return default


def sample_indices(total: int, max_samples: int = MAX_SAMPLES) -> np.ndarray:
    """
    Evenly strided pixel positions used to score every candidate palette.

    The same inputs always give the same positions, so every bisection step
    looks at an identical sample. The stride is floor(total / max_samples),
    so a total between one and two multiples of the cap is sampled at
    stride 1 and can exceed `max_samples`.

    Args:
        total (int): Number of pixels in the image.
        max_samples (int): Target sample count; the stride is total // max_samples.

    Returns:
        np.ndarray: Strictly increasing int64 positions starting at 0;
                    empty when `total` is 0.
    """
    if total <= 0:
        return np.zeros(0, dtype=np.int64)
    if max_samples < 1:
        raise ValueError(f"max_samples must be >= 1, got {max_samples}")
    stride = max(1, total // max_samples)
    return np.arange(0, total, stride, dtype=np.int64)
