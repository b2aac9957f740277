"""
Bisection over palette sizes.

`bisect_palette_size` is the single driver; what a candidate size costs is
decided by the policy passed in (anything callable as size -> metric).
`ClusteringPolicy` re-runs the clustering engine at every probe; the remap
policies in `lossy.remap` reuse one fixed palette.

The search assumes the metric does not increase with palette size. The
clustering is a heuristic and does not guarantee this, so the size found is
the smallest passing size along the bisection path, not a proven minimum.
"""
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Union

import numpy as np
import typer

from lossy.errors import ValidationError
from lossy.metrics import SampleReference, select_metric
from lossy.palette_tools import count_unique_colors
from lossy.quantize import MAX_PALETTE, Ditherer, Optimizer, quantize_pixels, select_optimizer
from lossy.sampling import MAX_SAMPLES


def validate_budget(budget) -> float:
    """A Delta-E budget must be a finite number >= 0."""
    try:
        value = float(budget)
    except (TypeError, ValueError):
        raise ValidationError(f"Delta-E budget must be a number, got {budget!r}") from None
    if not math.isfinite(value) or value < 0:
        raise ValidationError(f"Delta-E budget must be finite and >= 0, got {budget!r}")
    return value


def validate_fraction(fraction) -> float:
    """A lossy fraction must be a finite number in [0, 1]."""
    try:
        value = float(fraction)
    except (TypeError, ValueError):
        raise ValidationError(f"Lossy fraction must be a number, got {fraction!r}") from None
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValidationError(f"Lossy fraction must be within [0, 1], got {fraction!r}")
    return value


@dataclass
class SearchResult:
    size: int
    metric: float
    upper_bound: int
    probes: List[Tuple[int, float]] = field(default_factory=list)


def bisect_palette_size(
    evaluate: Callable[[int], float],
    lo: int,
    hi: int,
    budget: float,
    probes: Optional[List[Tuple[int, float]]] = None,
    verbose: bool = False,
) -> int:
    """
    Smallest size in [lo, hi] whose metric is within `budget`, by bisection.

    `hi` is returned when nothing below it passes; `hi` itself is never
    evaluated here, the caller decides what the upper bound means.

    Args:
        evaluate: size -> metric for one candidate.
        lo, hi (int): Inclusive bounds, lo <= hi.
        budget (float): Largest acceptable metric.
        probes (list, optional): Receives (size, metric) for every evaluation.
        verbose (bool): Echo each probe.
    """
    if lo > hi:
        raise ValidationError(f"empty search range [{lo}, {hi}]")
    while lo < hi:
        mid = (lo + hi) // 2
        metric = evaluate(mid)
        if probes is not None:
            probes.append((mid, metric))
        if verbose:
            verdict = "ok" if metric <= budget else "over"
            typer.echo(f"  {mid:>3} colours: dE {metric:.3f} ({verdict})")
        if metric <= budget:
            hi = mid
        else:
            lo = mid + 1
    return lo


class ClusteringPolicy:
    """
    Scores a candidate size by quantizing the whole image without dithering
    and measuring it against the sampled original. Dithering stays off here:
    its pixel-level noise would split one original colour across several
    output colours and the per-colour grouping relies on that not happening.
    """

    def __init__(
        self,
        pixels: np.ndarray,
        width: int,
        optimizer: Union[str, Optimizer] = Optimizer.KMEANS,
        metric: str = "p95",
        reference: Optional[SampleReference] = None,
        max_samples: int = MAX_SAMPLES,
    ):
        self.pixels = pixels
        self.width = width
        self.optimizer = select_optimizer(optimizer)
        self.reference = reference if reference is not None else SampleReference(pixels, max_samples)
        self.score = self.reference.scorer(metric)

    def quantized(self, size: int) -> np.ndarray:
        return quantize_pixels(self.pixels, self.width, size, self.optimizer, Ditherer.NONE)

    def __call__(self, size: int) -> float:
        return self.score(self.quantized(size))


def find_palette_size(
    pixels: np.ndarray,
    width: int,
    budget: float,
    optimizer: Union[str, Optimizer] = Optimizer.KMEANS,
    metric: str = "p95",
    max_samples: int = MAX_SAMPLES,
    verbose: bool = False,
) -> SearchResult:
    """
    Smallest palette size whose no-dither quantization keeps the metric within `budget`.

    A 256-colour pass comes first. If even that misses the budget, 256 is
    the answer. Otherwise the number of distinct colours it actually used
    is the upper bound, since searching above it cannot help.
    """
    budget = validate_budget(budget)
    select_metric(metric)
    policy = ClusteringPolicy(pixels, width, optimizer, metric, max_samples=max_samples)

    q256 = policy.quantized(MAX_PALETTE)
    metric256 = policy.score(q256)
    probes = [(MAX_PALETTE, metric256)]
    if verbose:
        typer.echo(f"  {MAX_PALETTE:>3} colours: dE {metric256:.3f} (upper bound pass)")
    if metric256 > budget:
        return SearchResult(MAX_PALETTE, metric256, MAX_PALETTE, probes)

    upper = max(1, min(count_unique_colors(q256), MAX_PALETTE))
    size = bisect_palette_size(policy, 1, upper, budget, probes, verbose)

    scored = dict(probes)
    if size not in scored:
        scored[size] = policy(size)
        probes.append((size, scored[size]))
    return SearchResult(size, scored[size], upper, probes)
