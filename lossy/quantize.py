import numpy as np
from enum import Enum
from numba import jit
from sklearn.cluster import KMeans
from typing import List, Tuple, Union

from lossy.errors import ClusteringError, UnknownOptionError, ValidationError
from lossy.palette_tools import nearest_palette_indices

MAX_PALETTE = 256

# Unique colours fed to KMeans are strided down to this many rows (weights are kept).
KMEANS_MAX_FIT = 50_000
KMEANS_MAX_ITER = 50


class Optimizer(Enum):
    NONE = "none"
    KMEANS = "k-means"
    WEIGHTED_KMEANS = "weighted-k-means"


class Ditherer(Enum):
    NONE = "none"
    ORDERED = "ordered"
    FLOYD_STEINBERG = "floyd-steinberg"
    FLOYD_STEINBERG_VANILLA = "floyd-steinberg-vanilla"
    FLOYD_STEINBERG_CHECKERED = "floyd-steinberg-checkered"


_OPTIMIZER_ALIASES = {
    "kmeans": Optimizer.KMEANS,
    "weighted-kmeans": Optimizer.WEIGHTED_KMEANS,
    "weighted_kmeans": Optimizer.WEIGHTED_KMEANS,
}
_DITHERER_ALIASES = {
    "fs": Ditherer.FLOYD_STEINBERG,
    "floyd-steinberg-default": Ditherer.FLOYD_STEINBERG,
    "fs-vanilla": Ditherer.FLOYD_STEINBERG_VANILLA,
    "fs-checkered": Ditherer.FLOYD_STEINBERG_CHECKERED,
}

# Floyd-Steinberg variant -> (error strength, serpentine scan, checkered kernel flip)
_FS_VARIANTS = {
    Ditherer.FLOYD_STEINBERG: (0.75, True, False),
    Ditherer.FLOYD_STEINBERG_VANILLA: (1.0, False, False),
    Ditherer.FLOYD_STEINBERG_CHECKERED: (0.75, False, True),
}

_BAYER_4X4 = np.array([
    [0, 8, 2, 10],
    [12, 4, 14, 6],
    [3, 11, 1, 9],
    [15, 7, 13, 5],
], dtype=np.float64)


def _select(enum_cls, aliases, kind: str, name):
    if isinstance(name, enum_cls):
        return name
    key = str(name).strip().lower().replace(" ", "-")
    for member in enum_cls:
        if member.value == key:
            return member
    if key in aliases:
        return aliases[key]
    raise UnknownOptionError(kind, str(name), [m.value for m in enum_cls])


def select_optimizer(name: Union[str, Optimizer]) -> Optimizer:
    return _select(Optimizer, _OPTIMIZER_ALIASES, "optimizer", name)


def select_ditherer(name: Union[str, Ditherer]) -> Ditherer:
    return _select(Ditherer, _DITHERER_ALIASES, "ditherer", name)


def _check_pixels(pixels: np.ndarray, width: int) -> np.ndarray:
    pixels = np.asarray(pixels)
    if pixels.ndim != 2 or pixels.shape[1] != 4 or pixels.dtype != np.uint8:
        raise ValidationError(f"expected a uint8 (N, 4) RGBA buffer, got {pixels.dtype} {pixels.shape}")
    if len(pixels) and (width <= 0 or len(pixels) % width != 0):
        raise ValidationError(f"width {width} does not divide pixel count {len(pixels)}")
    return pixels


def _median_cut(colors: np.ndarray, weights: np.ndarray, n: int) -> np.ndarray:
    """Weighted median cut over unique colours; returns up to n float64 centroids."""

    def describe(idx: np.ndarray):
        c = colors[idx]
        spread = c.max(axis=0) - c.min(axis=0)
        channel = int(np.argmax(spread))
        return idx, float(spread[channel]) * float(weights[idx].sum()), channel

    boxes: List[tuple] = [describe(np.arange(len(colors)))]
    while len(boxes) < n:
        splittable = [i for i, box in enumerate(boxes) if len(box[0]) > 1]
        if not splittable:
            break
        idx, _score, channel = boxes.pop(max(splittable, key=lambda i: boxes[i][1]))
        order = idx[np.argsort(colors[idx, channel], kind="stable")]
        cum = np.cumsum(weights[order])
        cut = int(np.searchsorted(cum, cum[-1] / 2.0)) + 1
        cut = min(max(cut, 1), len(order) - 1)
        boxes.append(describe(order[:cut]))
        boxes.append(describe(order[cut:]))

    return np.array(
        [np.average(colors[idx], axis=0, weights=weights[idx]) for idx, _s, _c in boxes],
        dtype=np.float64,
    )


def _kmeans_refine(colors: np.ndarray, weights: np.ndarray, init: np.ndarray, weighted: bool) -> np.ndarray:
    stride = max(1, -(-len(colors) // KMEANS_MAX_FIT))
    fit_colors = colors[::stride]
    fit_weights = weights[::stride] if weighted else None
    n_clusters = min(len(init), len(fit_colors))
    kmeans = KMeans(
        n_clusters=n_clusters,
        init=init[:n_clusters],
        n_init=1,
        max_iter=KMEANS_MAX_ITER,
        random_state=42,
    )
    kmeans.fit(fit_colors, sample_weight=fit_weights)
    return kmeans.cluster_centers_


def _to_palette(centroids: np.ndarray) -> np.ndarray:
    palette = np.clip(np.rint(centroids), 0, 255).astype(np.uint8)
    # rounding can merge two centroids; keep the first occurrence
    _, first = np.unique(palette, axis=0, return_index=True)
    return palette[np.sort(first)]


def build_palette(
    colors: np.ndarray, counts: np.ndarray, target_size: int, optimizer: Optimizer
) -> np.ndarray:
    """
    Choose at most `target_size` representative colours for a set of unique
    colours weighted by pixel count.
    """
    colors_f = colors.astype(np.float64)
    weights = counts.astype(np.float64)
    centroids = _median_cut(colors_f, weights, target_size)
    if optimizer is not Optimizer.NONE:
        try:
            centroids = _kmeans_refine(
                colors_f, weights, centroids, weighted=optimizer is Optimizer.WEIGHTED_KMEANS
            )
        except (ValueError, RuntimeError, MemoryError) as e:
            raise ClusteringError(f"{optimizer.value} refinement failed for {target_size} colours: {e}") from e
    return _to_palette(centroids)


def _ordered_amplitude(palette: np.ndarray) -> float:
    """Mean distance between each palette entry and its nearest neighbour (RGB)."""
    if len(palette) < 2:
        return 0.0
    rgb = palette[:, :3].astype(np.float64)
    d = np.sqrt(((rgb[:, None, :] - rgb[None, :, :]) ** 2).sum(axis=2))
    np.fill_diagonal(d, np.inf)
    return float(d.min(axis=1).mean())


def _ordered_indices(pixels: np.ndarray, width: int, palette: np.ndarray) -> np.ndarray:
    height = len(pixels) // width
    threshold = (_BAYER_4X4 + 0.5) / 16.0 - 0.5
    tile = np.tile(threshold, (height // 4 + 1, width // 4 + 1))[:height, :width].reshape(-1)
    shifted = pixels.astype(np.int64)
    shifted[:, :3] += np.rint(tile * _ordered_amplitude(palette)).astype(np.int64)[:, None]
    np.clip(shifted, 0, 255, out=shifted)
    unique, inverse = np.unique(shifted, axis=0, return_inverse=True)
    return nearest_palette_indices(unique, palette)[inverse.reshape(-1)]


@jit(nopython=True, cache=True)
def _diffuse_kernel(work, palette, strength, serpentine, checkered, out):
    height, width, channels = work.shape
    n_colors = palette.shape[0]
    for y in range(height):
        reverse = serpentine and (y % 2 == 1)
        for step in range(width):
            x = width - 1 - step if reverse else step
            best = 0
            best_d = 1e300
            for k in range(n_colors):
                d = 0.0
                for c in range(channels):
                    v = min(max(work[y, x, c], 0.0), 255.0) - palette[k, c]
                    d += v * v
                if d < best_d:
                    best_d = d
                    best = k
            out[y, x] = best

            direction = -1 if reverse else 1
            if checkered and (x + y) % 2 == 1:
                direction = -direction
            for c in range(channels):
                err = (min(max(work[y, x, c], 0.0), 255.0) - palette[best, c]) * strength
                xn = x + direction
                xp = x - direction
                if 0 <= xn < width:
                    work[y, xn, c] += err * 7.0 / 16.0
                if y + 1 < height:
                    if 0 <= xp < width:
                        work[y + 1, xp, c] += err * 3.0 / 16.0
                    work[y + 1, x, c] += err * 5.0 / 16.0
                    if 0 <= xn < width:
                        work[y + 1, xn, c] += err * 1.0 / 16.0


def _diffused_indices(pixels: np.ndarray, width: int, palette: np.ndarray, ditherer: Ditherer) -> np.ndarray:
    strength, serpentine, checkered = _FS_VARIANTS[ditherer]
    height = len(pixels) // width
    work = pixels.reshape(height, width, 4).astype(np.float64)
    out = np.zeros((height, width), dtype=np.int64)
    _diffuse_kernel(work, palette.astype(np.float64), strength, serpentine, checkered, out)
    return out.reshape(-1)


def remap_pixels(pixels: np.ndarray, width: int, palette: np.ndarray, ditherer: Ditherer) -> np.ndarray:
    """Per-pixel palette indices for `pixels` using the given ditherer."""
    if ditherer is Ditherer.NONE:
        unique, inverse = np.unique(pixels, axis=0, return_inverse=True)
        return nearest_palette_indices(unique, palette)[inverse.reshape(-1)]
    if ditherer is Ditherer.ORDERED:
        return _ordered_indices(pixels, width, palette)
    return _diffused_indices(pixels, width, palette, ditherer)


def quantize(
    pixels: np.ndarray,
    width: int,
    target_size: int,
    optimizer: Union[str, Optimizer] = Optimizer.KMEANS,
    ditherer: Union[str, Ditherer] = Ditherer.NONE,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Reduce an RGBA image to an indexed one with at most `target_size` colours.

    When the image already has no more distinct colours than requested, the
    palette is exactly those colours (most frequent first) and the image is
    reproduced without loss, whatever the ditherer.

    Args:
        pixels (np.ndarray): (N, 4) uint8 RGBA, row-major.
        width (int): Image width in pixels.
        target_size (int): Requested palette size, clamped to 1..256.
        optimizer: 'none', 'k-means' or 'weighted-k-means'.
        ditherer: 'none', 'ordered', 'floyd-steinberg',
                  'floyd-steinberg-vanilla' or 'floyd-steinberg-checkered'.

    Returns:
        Tuple[np.ndarray, np.ndarray]:
            - (K, 4) uint8 palette, 1 <= K <= target_size.
            - (N,) uint8 index per pixel, every value < K.

    Raises:
        UnknownOptionError: unrecognised optimizer/ditherer (checked first).
        ValidationError: malformed pixel buffer or width.
        ClusteringError: the clustering step failed.
    """
    optimizer = select_optimizer(optimizer)
    ditherer = select_ditherer(ditherer)
    pixels = _check_pixels(pixels, width)
    target_size = int(min(max(int(target_size), 1), MAX_PALETTE))

    if len(pixels) == 0:
        return np.zeros((1, 4), dtype=np.uint8), np.zeros(0, dtype=np.uint8)

    unique, inverse, counts = np.unique(pixels, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    if len(unique) <= target_size:
        order = np.argsort(-counts, kind="stable")
        rank = np.empty(len(order), dtype=np.int64)
        rank[order] = np.arange(len(order))
        return unique[order], rank[inverse].astype(np.uint8)

    palette = build_palette(unique, counts, target_size, optimizer)
    if ditherer is Ditherer.NONE:
        indices = nearest_palette_indices(unique, palette)[inverse]
    else:
        indices = remap_pixels(pixels, width, palette, ditherer)
    return palette, indices.astype(np.uint8)


def quantize_pixels(
    pixels: np.ndarray,
    width: int,
    target_size: int,
    optimizer: Union[str, Optimizer] = Optimizer.KMEANS,
    ditherer: Union[str, Ditherer] = Ditherer.NONE,
) -> np.ndarray:
    """`quantize`, expanded back to an (N, 4) RGBA buffer."""
    palette, indices = quantize(pixels, width, target_size, optimizer, ditherer)
    return palette[indices]
