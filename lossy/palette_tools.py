import numpy as np
from typing import Tuple

from lossy.metrics import color_keys

# Rows per block when computing pixel x palette distance tables.
NEAREST_CHUNK = 16384


def nearest_palette_indices(colors: np.ndarray, palette: np.ndarray) -> np.ndarray:
    """
    Map every colour to the palette entry with the smallest squared Euclidean
    distance over all four channels (R, G, B, A).

    Args:
        colors (np.ndarray): (N, 4) colours, any numeric dtype.
        palette (np.ndarray): (K, 4) palette, K >= 1.

    Returns:
        np.ndarray: (N,) int64 palette indices. Ties go to the lowest index.
    """
    colors = np.asarray(colors, dtype=np.int64)
    pal = np.asarray(palette, dtype=np.int64)
    pal_sq = (pal * pal).sum(axis=1)
    out = np.empty(len(colors), dtype=np.int64)
    for start in range(0, len(colors), NEAREST_CHUNK):
        block = colors[start:start + NEAREST_CHUNK]
        # |c|^2 is constant per row, so |p|^2 - 2 c.p orders entries the same way
        dists = pal_sq[None, :] - 2 * (block @ pal.T)
        out[start:start + NEAREST_CHUNK] = np.argmin(dists, axis=1)
    return out


def nearest_lab_indices(lab: np.ndarray, palette_lab: np.ndarray) -> np.ndarray:
    """Same as `nearest_palette_indices`, but in Lab space (CIE76)."""
    lab = np.asarray(lab, dtype=np.float64)
    pal = np.asarray(palette_lab, dtype=np.float64)
    dists = ((lab[:, None, :] - pal[None, :, :]) ** 2).sum(axis=2)
    return np.argmin(dists, axis=1)


def palette_frequencies(indices: np.ndarray, palette_len: int) -> np.ndarray:
    """Pixel count per palette entry."""
    return np.bincount(np.asarray(indices, dtype=np.int64), minlength=palette_len)


def frequency_order(counts: np.ndarray) -> np.ndarray:
    """Entry indices sorted by count, most used first; equal counts keep palette order."""
    return np.argsort(-np.asarray(counts, dtype=np.int64), kind="stable")


def compact_palette(palette: np.ndarray, indices: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Drop palette entries no pixel refers to and renumber the indices.
    Surviving entries keep their relative order; an image with no pixels
    keeps the first entry so the palette is never empty.
    """
    palette = np.asarray(palette, dtype=np.uint8)
    used = np.zeros(len(palette), dtype=bool)
    used[indices] = True
    if not used.any():
        used[:1] = True
    remap = np.cumsum(used) - 1
    return palette[used], remap[indices].astype(np.uint8)


def count_unique_colors(pixels: np.ndarray) -> int:
    pixels = np.asarray(pixels)
    if len(pixels) == 0:
        return 0
    return int(len(np.unique(color_keys(pixels))))


def expand_indexed(palette: np.ndarray, indices: np.ndarray) -> np.ndarray:
    """(K, 4) palette + (N,) indices -> (N, 4) pixel buffer."""
    return np.asarray(palette, dtype=np.uint8)[np.asarray(indices, dtype=np.int64)]
