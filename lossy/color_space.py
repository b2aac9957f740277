"""
sRGB -> CIE Lab (D65) conversion used for every perceptual comparison.

Two forms are provided: `to_lab` for a single pixel and `rgba_to_lab` for a
whole (N, 4) or (..., 3+) array. Both use the same constants and agree to
floating-point precision. Alpha never takes part in the Lab coordinate.
"""
from typing import Sequence, Tuple

import numpy as np

# sRGB -> XYZ under D65, then divided by the D65 reference white.
SRGB_TO_XYZ = np.array([
    [0.4124564, 0.3575761, 0.1804375],
    [0.2126729, 0.7151522, 0.0721750],
    [0.0193339, 0.1191920, 0.9503041],
], dtype=np.float64)
WHITE_D65 = np.array([0.95047, 1.00000, 1.08883], dtype=np.float64)

LAB_EPSILON = 0.008856
LAB_KAPPA = 903.3


def _srgb_to_linear(u: float) -> float:
    if u > 0.04045:
        return ((u + 0.055) / 1.055) ** 2.4
    return u / 12.92


def _lab_f(t: float) -> float:
    if t > LAB_EPSILON:
        return t ** (1.0 / 3.0)
    return (LAB_KAPPA * t + 16.0) / 116.0


def to_lab(pixel: Sequence[int]) -> Tuple[float, float, float]:
    """
    Convert one 8-bit colour (RGB or RGBA) to Lab.

    Args:
        pixel: sequence whose first three items are red, green, blue in 0..255.

    Returns:
        (L, a, b) as Python floats.
    """
    r = _srgb_to_linear(int(pixel[0]) / 255.0)
    g = _srgb_to_linear(int(pixel[1]) / 255.0)
    b = _srgb_to_linear(int(pixel[2]) / 255.0)

    x = (0.4124564 * r + 0.3575761 * g + 0.1804375 * b) / 0.95047
    y = (0.2126729 * r + 0.7151522 * g + 0.0721750 * b) / 1.00000
    z = (0.0193339 * r + 0.1191920 * g + 0.9503041 * b) / 1.08883

    fx, fy, fz = _lab_f(x), _lab_f(y), _lab_f(z)
    return (116.0 * fy - 16.0, 500.0 * (fx - fy), 200.0 * (fy - fz))


def rgba_to_lab(pixels: np.ndarray) -> np.ndarray:
    """
    Vectorised sRGB -> Lab.

    Accepts a uint8 array shaped (..., 3) or (..., 4); any channel past the
    third is ignored. Returns float64 with shape (..., 3).
    """
    arr = np.asarray(pixels)
    if arr.shape[-1] < 3:
        raise ValueError(f"expected at least 3 channels, got shape {arr.shape}")
    rgb = arr[..., :3].astype(np.float64) / 255.0

    linear = np.where(rgb > 0.04045, ((rgb + 0.055) / 1.055) ** 2.4, rgb / 12.92)
    xyz = (linear @ SRGB_TO_XYZ.T) / WHITE_D65

    f = np.where(xyz > LAB_EPSILON, np.cbrt(xyz), (LAB_KAPPA * xyz + 16.0) / 116.0)
    fx, fy, fz = f[..., 0], f[..., 1], f[..., 2]

    lab = np.empty(rgb.shape, dtype=np.float64)
    lab[..., 0] = 116.0 * fy - 16.0
    lab[..., 1] = 500.0 * (fx - fy)
    lab[..., 2] = 200.0 * (fy - fz)
    return lab


def palette_to_lab(palette: np.ndarray) -> np.ndarray:
    """Lab rows for a (K, 4) palette; an empty palette gives a (0, 3) array."""
    palette = np.asarray(palette)
    if palette.shape[0] == 0:
        return np.zeros((0, 3), dtype=np.float64)
    return rgba_to_lab(palette)

