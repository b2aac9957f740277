import numpy as np
import pytest

from lossy.errors import UnknownOptionError, ValidationError
from lossy.quantize import (
    Ditherer,
    Optimizer,
    quantize,
    quantize_pixels,
    select_ditherer,
    select_optimizer,
)

ALL_DITHERERS = [d.value for d in Ditherer]
ALL_OPTIMIZERS = [o.value for o in Optimizer]


def make_gradient(width=32, height=24):
    y, x = np.mgrid[0:height, 0:width]
    img = np.empty((height, width, 4), dtype=np.uint8)
    img[..., 0] = x * 255 // (width - 1)
    img[..., 1] = y * 255 // (height - 1)
    img[..., 2] = 128
    img[..., 3] = 255
    return img.reshape(-1, 4), width


def make_blocks():
    """Three flat colours in a 6x4 image, white most frequent."""
    img = np.full((4, 6, 4), 255, dtype=np.uint8)
    img[0, :3] = (200, 30, 30, 255)
    img[3, :] = (0, 0, 0, 128)
    return img.reshape(-1, 4), 6


def test_option_names_and_aliases():
    assert select_optimizer("kmeans") is Optimizer.KMEANS
    assert select_optimizer("Weighted-K-Means") is Optimizer.WEIGHTED_KMEANS
    assert select_ditherer("fs") is Ditherer.FLOYD_STEINBERG
    assert select_ditherer(Ditherer.ORDERED) is Ditherer.ORDERED


def test_unknown_options_are_rejected_before_pixels_are_checked():
    with pytest.raises(UnknownOptionError) as exc:
        quantize(None, 0, 8, optimizer="median")
    assert "optimizer" in str(exc.value)
    with pytest.raises(UnknownOptionError):
        quantize(None, 0, 8, ditherer="blue-noise")


def test_malformed_buffers_are_rejected():
    with pytest.raises(ValidationError):
        quantize(np.zeros((10, 3), dtype=np.uint8), 5, 4)
    with pytest.raises(ValidationError):
        quantize(np.zeros((10, 4), dtype=np.float32), 5, 4)
    with pytest.raises(ValidationError):
        quantize(np.zeros((10, 4), dtype=np.uint8), 3, 4)


@pytest.mark.parametrize("ditherer", ALL_DITHERERS)
@pytest.mark.parametrize("optimizer", ALL_OPTIMIZERS)
def test_few_colours_are_reproduced_exactly(optimizer, ditherer):
    pixels, width = make_blocks()
    palette, indices = quantize(pixels, width, 8, optimizer, ditherer)
    assert len(palette) == 3
    np.testing.assert_array_equal(palette[indices], pixels)
    # most frequent colour first
    assert tuple(palette[0]) == (255, 255, 255, 255)


@pytest.mark.parametrize("ditherer", ALL_DITHERERS)
def test_palette_never_exceeds_the_target(ditherer):
    pixels, width = make_gradient()
    palette, indices = quantize(pixels, width, 8, "k-means", ditherer)
    assert palette.dtype == np.uint8
    assert 1 <= len(palette) <= 8
    assert indices.dtype == np.uint8
    assert len(indices) == len(pixels)
    assert indices.max() < len(palette)


def test_weighted_and_unrefined_optimizers_respect_the_target():
    pixels, width = make_gradient()
    for optimizer in ("none", "weighted-k-means"):
        palette, indices = quantize(pixels, width, 5, optimizer)
        assert 1 <= len(palette) <= 5
        assert indices.max() < len(palette)


def test_palette_has_no_duplicate_entries():
    pixels, width = make_gradient()
    palette, _ = quantize(pixels, width, 16)
    assert len(np.unique(palette, axis=0)) == len(palette)


def test_target_is_clamped():
    pixels, width = make_gradient()
    palette, indices = quantize(pixels, width, 0)
    assert len(palette) == 1
    assert np.all(indices == 0)

    palette, _ = quantize(pixels, width, 1000)
    assert len(palette) <= 256


def test_quantization_is_deterministic():
    pixels, width = make_gradient()
    first = quantize_pixels(pixels, width, 6, ditherer="ordered")
    second = quantize_pixels(pixels, width, 6, ditherer="ordered")
    np.testing.assert_array_equal(first, second)


def test_empty_image():
    palette, indices = quantize(np.zeros((0, 4), dtype=np.uint8), 0, 16)
    assert palette.shape == (1, 4)
    assert len(indices) == 0


def test_quantize_pixels_returns_rgba_buffer():
    pixels, width = make_gradient()
    out = quantize_pixels(pixels, width, 4)
    assert out.shape == pixels.shape
    assert out.dtype == np.uint8
    assert len(np.unique(out, axis=0)) <= 4
