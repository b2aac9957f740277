from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import typer

from lossy.errors import UnknownOptionError
from lossy.metrics import select_metric
from lossy.quantize import Ditherer, Optimizer, quantize, select_ditherer, select_optimizer
from lossy.remap import coverage_remap, prune_remap
from lossy.sampling import MAX_SAMPLES
from lossy.search import SearchResult, find_palette_size, validate_budget, validate_fraction

# bisect   : re-cluster at every probe, p95 (or max) Delta-E against the budget
# coverage : budget is the share of pixels that may be recoloured
# prune    : budget is the worst-case Delta-E for folded palette entries
METHODS = ("bisect", "coverage", "prune")


@dataclass
class ReductionResult:
    method: str
    palette: np.ndarray
    indices: np.ndarray
    size: int
    metric: float
    search: Optional[SearchResult] = None

    @property
    def pixels(self) -> np.ndarray:
        return self.palette[self.indices]


def select_method(name: str) -> str:
    key = str(name).strip().lower()
    if key not in METHODS:
        raise UnknownOptionError("method", str(name), METHODS)
    return key


def reduce_palette(
    pixels: np.ndarray,
    width: int,
    budget: float,
    method: str = "bisect",
    optimizer: Union[str, Optimizer] = Optimizer.KMEANS,
    ditherer: Union[str, Ditherer] = Ditherer.ORDERED,
    metric: str = "p95",
    max_samples: int = MAX_SAMPLES,
    verbose: bool = False,
) -> ReductionResult:
    """
    Reduce an RGBA buffer to the smallest palette that respects `budget`.

    Every option is validated before any pixel is touched. With the bisect
    method the chosen size is quantized a final time with `ditherer`; that
    last pass is not measured again.
    """
    method = select_method(method)
    optimizer = select_optimizer(optimizer)
    ditherer = select_ditherer(ditherer)
    metric = select_metric(metric)
    if method == "coverage":
        budget = validate_fraction(budget)
    else:
        budget = validate_budget(budget)

    if method == "coverage":
        result = coverage_remap(pixels, width, budget, optimizer, max_samples=max_samples)
        return ReductionResult(method, result.palette, result.indices, len(result.palette), result.metric)
    if method == "prune":
        result = prune_remap(pixels, width, budget, optimizer, verbose=verbose)
        return ReductionResult(method, result.palette, result.indices, len(result.palette), result.metric)

    search = find_palette_size(pixels, width, budget, optimizer, metric, max_samples, verbose)
    if verbose:
        typer.echo(f"  chosen: {search.size} colours (dE {search.metric:.3f}, bound {search.upper_bound})")
    palette, indices = quantize(pixels, width, search.size, optimizer, ditherer)
    return ReductionResult(method, palette, indices, search.size, search.metric, search)
