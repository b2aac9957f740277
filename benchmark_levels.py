import time
import tempfile
from pathlib import Path

import numpy as np

try:
    from lossy.compress import CompressOptions, optimize_file
    from lossy.file_utils import encode_png
    from lossy.reduce import reduce_palette
except ImportError as e:
    print(f"Error importing from lossy: {e}")
    exit()

# ---- Configuration ----
HEIGHT = 400
WIDTH = 400
LEVELS = range(0, 7)
BUDGETS = [0.5, 2.0, 5.0, 10.0]


def make_simple_image() -> np.ndarray:
    """Flat background with a few solid blocks (few colours, like a chart)."""
    img = np.full((HEIGHT, WIDTH, 4), 255, dtype=np.uint8)
    img[50:150, 50:350, :3] = (200, 40, 40)
    img[200:300, 100:300, :3] = (40, 40, 200)
    img[320:340, :, :3] = (0, 0, 0)
    return img.reshape(-1, 4)


def make_complex_image() -> np.ndarray:
    """Smooth gradients plus noise (many colours, like a photo)."""
    rng = np.random.default_rng(1337)
    y, x = np.mgrid[0:HEIGHT, 0:WIDTH]
    img = np.empty((HEIGHT, WIDTH, 4), dtype=np.uint8)
    img[..., 0] = (x * 255 // WIDTH)
    img[..., 1] = (y * 255 // HEIGHT)
    img[..., 2] = np.clip(128 + rng.normal(0, 20, (HEIGHT, WIDTH)), 0, 255)
    img[..., 3] = 255
    return img.reshape(-1, 4)


def format_time(seconds: float) -> str:
    return f"{seconds * 1000:.1f}ms" if seconds < 1 else f"{seconds:.2f}s"


def run_benchmark():
    images = {"simple": make_simple_image(), "complex": make_complex_image()}

    print("--- Palette search ---")
    for name, pixels in images.items():
        for budget in BUDGETS:
            start = time.perf_counter()
            result = reduce_palette(pixels, WIDTH, budget)
            elapsed = time.perf_counter() - start
            probes = len(result.search.probes) if result.search else 0
            print(f"  {name:<8} dE<={budget:<5} -> {result.size:>3} colours, "
                  f"dE {result.metric:.2f}, {probes} probes, {format_time(elapsed)}")

    print("\n--- oxipng levels ---")
    with tempfile.TemporaryDirectory() as tmp:
        for name, pixels in images.items():
            source = Path(tmp) / f"{name}.png"
            source.write_bytes(encode_png(pixels, WIDTH, HEIGHT))
            for level in LEVELS:
                out = Path(tmp) / f"{name}-o{level}.png"
                start = time.perf_counter()
                result = optimize_file(source, out, CompressOptions(level=level))
                elapsed = time.perf_counter() - start
                saved = 100.0 * (result.input_size - result.output_size) / result.input_size
                print(f"  {name:<8} level {level}: {result.output_size:>8} bytes "
                      f"({saved:5.1f}% smaller), {format_time(elapsed)}")


if __name__ == "__main__":
    run_benchmark()
