"""
Perceptual error metrics (CIE76 Delta-E in Lab).

Policies:
  p95  : per original colour keep the worst sampled Delta-E, then take the
         95th percentile over colours. A large uniform background gets one
         vote; a handful of outlier colours cannot force the palette to grow.
  max  : plain worst Delta-E over all sampled pixels.
  worst_case_retained_delta_e : exact bound for a pruned palette, the largest
         distance any discarded entry has to travel to its nearest survivor.
"""
import math
from typing import Callable, Optional, Sequence

import numpy as np

from lossy.color_space import rgba_to_lab
from lossy.errors import UnknownOptionError
from lossy.sampling import MAX_SAMPLES, sample_indices

PERCENTILE = 0.95


def delta_e(lab1: Sequence[float], lab2: Sequence[float]) -> float:
    dl = lab1[0] - lab2[0]
    da = lab1[1] - lab2[1]
    db = lab1[2] - lab2[2]
    return math.sqrt(dl * dl + da * da + db * db)


def delta_e_rows(lab1: np.ndarray, lab2: np.ndarray) -> np.ndarray:
    """Row-wise Delta-E for two (N, 3) arrays."""
    return np.sqrt(np.sum((lab1 - lab2) ** 2, axis=-1))


def color_key(pixel: Sequence[int]) -> int:
    """Pack an RGBA pixel into one 32-bit key."""
    r, g, b, a = (int(c) for c in pixel[:4])
    return (r << 24) | (g << 16) | (b << 8) | a


def color_keys(pixels: np.ndarray) -> np.ndarray:
    """Vectorised `color_key` for an (N, 4) uint8 array; returns uint32."""
    p = np.asarray(pixels, dtype=np.uint32)
    return (p[:, 0] << 24) | (p[:, 1] << 16) | (p[:, 2] << 8) | p[:, 3]


def percentile_value(values: np.ndarray, q: float = PERCENTILE) -> float:
    """
    Value at rank ceil(q * count) - 1 of the ascending sort, clamped to the
    last index. An empty population scores 0.
    """
    count = len(values)
    if count == 0:
        return 0.0
    ordered = np.sort(np.asarray(values, dtype=np.float64))
    rank = max(0, math.ceil(count * q) - 1)
    return float(ordered[min(rank, count - 1)])


class ColorGroups:
    """
    Scratch aggregation of the worst Delta-E per original colour.

    Keys and the sample -> group slot mapping are fixed at construction; the
    maxima buffer is pre-sized once and zeroed by `reset()` at the start of
    every evaluation, so no state leaks from one candidate to the next.
    """

    def __init__(self, sample_keys: np.ndarray):
        self.keys, self.slots = np.unique(
            np.asarray(sample_keys, dtype=np.uint32), return_inverse=True
        )
        self.slots = self.slots.reshape(-1)
        self.max_de = np.zeros(len(self.keys), dtype=np.float64)

    def __len__(self) -> int:
        return len(self.keys)

    def reset(self) -> None:
        self.max_de.fill(0.0)

    def record(self, de: np.ndarray) -> None:
        np.maximum.at(self.max_de, self.slots, de)


def group_p95_delta_e(
    src_lab: np.ndarray,
    groups: ColorGroups,
    quantized: np.ndarray,
    sample_idx: np.ndarray,
) -> float:
    """
    95th percentile over original colours of the per-colour worst Delta-E.

    Args:
        src_lab (np.ndarray): (S, 3) Lab of the original pixels at `sample_idx`.
        groups (ColorGroups): Scratch built from the original sampled keys; reset here.
        quantized (np.ndarray): (N, 4) candidate pixel buffer, parallel to the source.
        sample_idx (np.ndarray): Sampled positions, same order as `src_lab`.

    Returns:
        float: The metric; 0 when nothing was sampled.
    """
    groups.reset()
    if len(sample_idx) == 0:
        return 0.0
    cand_lab = rgba_to_lab(quantized[sample_idx])
    groups.record(delta_e_rows(src_lab, cand_lab))
    return percentile_value(groups.max_de)


def max_delta_e(src_lab: np.ndarray, quantized: np.ndarray, sample_idx: np.ndarray) -> float:
    if len(sample_idx) == 0:
        return 0.0
    cand_lab = rgba_to_lab(quantized[sample_idx])
    return float(np.max(delta_e_rows(src_lab, cand_lab)))


def worst_case_retained_delta_e(palette_lab: np.ndarray, retained: np.ndarray) -> float:
    """
    Largest distance from a non-retained palette entry to its nearest retained one.

    Args:
        palette_lab (np.ndarray): (K, 3) Lab rows of the full palette.
        retained (np.ndarray): Indices into the palette that are kept (non-empty).

    Returns:
        float: The bound; 0 when every entry is retained.
    """
    palette_lab = np.asarray(palette_lab, dtype=np.float64)
    keep = np.zeros(len(palette_lab), dtype=bool)
    keep[np.asarray(retained, dtype=np.int64)] = True
    dropped = palette_lab[~keep]
    if len(dropped) == 0:
        return 0.0
    kept = palette_lab[keep]
    dists = np.sqrt(((dropped[:, None, :] - kept[None, :, :]) ** 2).sum(axis=2))
    return float(dists.min(axis=1).max())


class SampleReference:
    """
    Everything about the original image that every candidate is scored
    against: sampled positions, their Lab values and the per-colour scratch.
    Built once per image and reused across all search steps. Not shared
    between images.
    """

    def __init__(self, pixels: np.ndarray, max_samples: int = MAX_SAMPLES):
        pixels = np.asarray(pixels)
        self.sample_idx = sample_indices(len(pixels), max_samples)
        sampled = pixels[self.sample_idx]
        self.src_lab = rgba_to_lab(sampled)
        self.groups = ColorGroups(color_keys(sampled))

    def p95(self, quantized: np.ndarray) -> float:
        return group_p95_delta_e(self.src_lab, self.groups, quantized, self.sample_idx)

    def max(self, quantized: np.ndarray) -> float:
        return max_delta_e(self.src_lab, quantized, self.sample_idx)

    def scorer(self, metric: str) -> Callable[[np.ndarray], float]:
        return getattr(self, select_metric(metric))


METRICS = ("p95", "max")


def select_metric(name: Optional[str]) -> str:
    key = (name or "p95").strip().lower()
    if key not in METRICS:
        raise UnknownOptionError("metric", str(name), METRICS)
    return key


__all__ = [
    "PERCENTILE",
    "delta_e",
    "delta_e_rows",
    "color_key",
    "color_keys",
    "percentile_value",
    "ColorGroups",
    "group_p95_delta_e",
    "max_delta_e",
    "worst_case_retained_delta_e",
    "SampleReference",
    "METRICS",
    "select_metric",
]
