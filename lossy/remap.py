"""
Palette truncation on top of a single fixed-size quantization.

Both strategies cluster once at 256 colours and then decide how many of the
most used entries to keep; every other entry is folded into a kept one.
This trades the exactness of re-clustering for one clustering call.

  coverage : keep the most used entries until they cover (1 - fraction) of
             the pixels; fold the rest by RGBA distance.
  prune    : bisect the number of kept entries against the worst-case Lab
             distance any folded entry has to move.
"""
import math
from dataclasses import dataclass
from typing import Union

import numpy as np

from lossy.color_space import palette_to_lab
from lossy.metrics import SampleReference, worst_case_retained_delta_e
from lossy.palette_tools import (
    compact_palette,
    expand_indexed,
    frequency_order,
    nearest_lab_indices,
    nearest_palette_indices,
    palette_frequencies,
)
from lossy.quantize import MAX_PALETTE, Ditherer, Optimizer, quantize, select_optimizer
from lossy.sampling import MAX_SAMPLES
from lossy.search import bisect_palette_size, validate_budget, validate_fraction


@dataclass
class RemapResult:
    palette: np.ndarray
    indices: np.ndarray
    retained: int
    metric: float


def coverage_target(total: int, lossy_fraction: float) -> int:
    """Pixels the kept entries must cover: ceil((1 - fraction) * total)."""
    # round first so 0.9 * 10 counts as 9, not 9.000000000000002
    return int(math.ceil(round((1.0 - lossy_fraction) * total, 9)))


def coverage_selection(sorted_counts: np.ndarray, lossy_fraction: float) -> int:
    """
    Length of the shortest prefix of `sorted_counts` (descending) whose sum
    reaches the coverage target. Always at least 1.
    """
    sorted_counts = np.asarray(sorted_counts, dtype=np.int64)
    if len(sorted_counts) == 0:
        return 0
    target = coverage_target(int(sorted_counts.sum()), lossy_fraction)
    cumulative = np.cumsum(sorted_counts)
    n = int(np.searchsorted(cumulative, target, side="left")) + 1
    return min(max(n, 1), len(sorted_counts))


def _fold(indices: np.ndarray, n_entries: int, dropped: np.ndarray, targets: np.ndarray) -> np.ndarray:
    mapping = np.arange(n_entries)
    mapping[dropped] = targets
    return mapping[indices]


def _base_quantization(pixels, width, optimizer, base_size):
    palette, indices = quantize(pixels, width, base_size, optimizer, Ditherer.NONE)
    # entries no pixel uses must not count as discarded colours
    return compact_palette(palette, indices)


def coverage_remap(
    pixels: np.ndarray,
    width: int,
    lossy_fraction: float,
    optimizer: Union[str, Optimizer] = Optimizer.KMEANS,
    base_size: int = MAX_PALETTE,
    max_samples: int = MAX_SAMPLES,
) -> RemapResult:
    """
    Keep the most frequent entries of a `base_size` palette until they cover
    at least (1 - lossy_fraction) of the pixels.

    Args:
        pixels (np.ndarray): (N, 4) uint8 RGBA.
        width (int): Image width.
        lossy_fraction (float): Share of pixels allowed to be recoloured, in [0, 1].
        optimizer: Clustering strategy for the single base quantization.
        base_size (int): Size of the base palette.
        max_samples (int): Sample cap for the reported p95 metric.

    Returns:
        RemapResult: compacted palette, indices, entries kept, p95 Delta-E of the result.
    """
    lossy_fraction = validate_fraction(lossy_fraction)
    optimizer = select_optimizer(optimizer)
    palette, indices = _base_quantization(pixels, width, optimizer, base_size)
    if len(indices) == 0:
        return RemapResult(palette, indices, len(palette), 0.0)

    frequencies = palette_frequencies(indices, len(palette))
    order = frequency_order(frequencies)
    n = coverage_selection(frequencies[order], lossy_fraction)
    selected, dropped = order[:n], order[n:]

    nearest = nearest_palette_indices(palette[dropped], palette[selected]) if len(dropped) else np.zeros(0, np.int64)
    folded = _fold(indices, len(palette), dropped, selected[nearest])
    palette, folded = compact_palette(palette, folded)

    metric = SampleReference(pixels, max_samples).p95(expand_indexed(palette, folded))
    return RemapResult(palette, folded, n, metric)


def prune_remap(
    pixels: np.ndarray,
    width: int,
    max_delta_e: float,
    optimizer: Union[str, Optimizer] = Optimizer.KMEANS,
    base_size: int = MAX_PALETTE,
    verbose: bool = False,
) -> RemapResult:
    """
    Fewest most-frequent entries of a `base_size` palette such that every
    other entry lies within `max_delta_e` (CIE76) of a kept one.

    The bound is exact for the base palette, but the result can never be
    better than what the base clustering captured.
    """
    max_delta_e = validate_budget(max_delta_e)
    optimizer = select_optimizer(optimizer)
    palette, indices = _base_quantization(pixels, width, optimizer, base_size)
    if len(indices) == 0:
        return RemapResult(palette, indices, len(palette), 0.0)

    order = frequency_order(palette_frequencies(indices, len(palette)))
    palette_lab = palette_to_lab(palette)

    def worst_case(n: int) -> float:
        return worst_case_retained_delta_e(palette_lab, order[:n])

    n = bisect_palette_size(worst_case, 1, len(palette), max_delta_e, verbose=verbose)
    retained, dropped = order[:n], order[n:]
    metric = worst_case(n)

    if len(dropped):
        nearest = nearest_lab_indices(palette_lab[dropped], palette_lab[retained])
        indices = _fold(indices, len(palette), dropped, retained[nearest])
    palette, indices = compact_palette(palette, indices)
    return RemapResult(palette, indices, n, metric)
