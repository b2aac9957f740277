import numpy as np
import pytest

from lossy.color_space import palette_to_lab, rgba_to_lab, to_lab


def test_white_and_black_are_the_lightness_extremes():
    L, a, b = to_lab((255, 255, 255, 255))
    assert L == pytest.approx(100.0, abs=1e-3)
    assert a == pytest.approx(0.0, abs=1e-2)
    assert b == pytest.approx(0.0, abs=1e-2)

    L, a, b = to_lab((0, 0, 0, 255))
    assert (L, a, b) == pytest.approx((0.0, 0.0, 0.0), abs=1e-9)


def test_pure_red_matches_reference_lab():
    L, a, b = to_lab((255, 0, 0, 255))
    assert L == pytest.approx(53.24, abs=0.05)
    assert a == pytest.approx(80.09, abs=0.1)
    assert b == pytest.approx(67.20, abs=0.1)


def test_alpha_does_not_change_lab():
    assert to_lab((10, 200, 30, 0)) == to_lab((10, 200, 30, 255))
    opaque = rgba_to_lab(np.array([[10, 200, 30, 255]], dtype=np.uint8))
    clear = rgba_to_lab(np.array([[10, 200, 30, 0]], dtype=np.uint8))
    np.testing.assert_array_equal(opaque, clear)


def test_vectorised_conversion_agrees_with_scalar():
    rng = np.random.default_rng(7)
    # include the dark range where the linear branches of both curves apply
    pixels = np.vstack([
        rng.integers(0, 256, size=(200, 4)),
        rng.integers(0, 12, size=(50, 4)),
    ]).astype(np.uint8)
    lab = rgba_to_lab(pixels)
    assert lab.shape == (250, 3)
    assert lab.dtype == np.float64
    for row, expected in zip(pixels, lab):
        np.testing.assert_allclose(to_lab(row), expected, atol=1e-9)


def test_rgb_input_and_extra_dimensions_are_accepted():
    img = np.zeros((2, 3, 3), dtype=np.uint8)
    img[1, 2] = (255, 255, 255)
    lab = rgba_to_lab(img)
    assert lab.shape == (2, 3, 3)
    assert lab[1, 2, 0] == pytest.approx(100.0, abs=1e-3)


def test_empty_palette_gives_empty_lab():
    assert palette_to_lab(np.zeros((0, 4), dtype=np.uint8)).shape == (0, 3)
