import typer
from pathlib import Path
from typing import List, Optional

import rich.traceback

from lossy import compress
from lossy.errors import LossyError
from lossy.sampling import max_samples_from_env

# Named speed/size trade-offs; explicit options always win over a preset.
PRESETS = {
    "fast": {"level": 1, "fast_evaluation": True},
    "balanced": {"level": 2, "fast_evaluation": False},
    "max": {"level": 6, "fast_evaluation": False},
}


def lossypng_cli(
    inputs: List[Path] = typer.Argument(
        ...,
        help="PNG file(s), or a single directory of PNG files.",
        metavar="INPUT...",
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o",
        help="Output file (single input) or directory (directory input). Default: optimize in place.",
    ),
    preset: Optional[str] = typer.Option(
        None, "--preset", help="Preset: fast, balanced, max."
    ),
    level: Optional[int] = typer.Option(
        None, "--level", "-l", help="oxipng optimization level (0-6). Default: 2."
    ),
    lossy: float = typer.Option(
        0.0, "--lossy",
        help="Max perceptual error (CIE76 Delta E) for palette reduction; 0 means lossless only. "
             "With --method coverage this is the fraction of pixels allowed to change (0-1).",
    ),
    method: str = typer.Option(
        "bisect", "--method", help="Palette reduction: bisect, coverage, prune."
    ),
    optimizer: str = typer.Option(
        "k-means", "--optimizer", help="Clustering strategy: none, k-means, weighted-k-means."
    ),
    ditherer: str = typer.Option(
        "ordered", "--ditherer",
        help="Ditherer for the final quantization: none, ordered, floyd-steinberg, "
             "floyd-steinberg-vanilla, floyd-steinberg-checkered.",
    ),
    metric: str = typer.Option(
        "p95", "--metric", help="Error aggregation during the search: p95 (per colour) or max."
    ),
    alpha: bool = typer.Option(
        False, "--alpha", help="Optimize fully transparent pixels (visually lossless)."
    ),
    strip: str = typer.Option(
        "all", "--strip", help="Metadata to strip: none, safe, all."
    ),
    interlace: str = typer.Option(
        "keep", "--interlace", help="Interlacing: keep, off, on."
    ),
    fast: Optional[bool] = typer.Option(
        None, "--fast/--no-fast", help="Use fast filter evaluation."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Stop trying new compression settings after this many seconds."
    ),
    preserve: bool = typer.Option(
        True, "--preserve/--no-preserve",
        help="Keep file permissions and timestamps (ignored with --lossy).",
    ),
    recursive: bool = typer.Option(
        True, "--recursive/--no-recursive", help="Recurse into subdirectories of a directory input."
    ),
    jobs: int = typer.Option(
        1, "--jobs", "-j", min=1, help="Files to process in parallel."
    ),
    verbose: bool = typer.Option(
        True, "--verbose/--quiet", help="Print the size change for every file."
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Print every palette size probed during the search."
    ),
):
    """
    Optimize PNG images: optional perceptually bounded palette reduction,
    then lossless recompression with oxipng.
    """
    options = compress.CompressOptions(max_samples=max_samples_from_env())
    if preset:
        if preset not in PRESETS:
            typer.secho(f"Error: Unknown preset '{preset}'. Expected one of: {', '.join(PRESETS)}.", fg=typer.colors.RED)
            raise typer.Exit(code=1)
        typer.echo(f"Applying preset: '{preset}'")
        options = compress.with_overrides(options, **PRESETS[preset])

    options = compress.with_overrides(
        options,
        level=level,
        lossy=lossy,
        method=method,
        optimizer=optimizer,
        ditherer=ditherer,
        metric=metric,
        optimize_alpha=alpha,
        strip=strip,
        interlace=interlace,
        fast_evaluation=fast,
        timeout=timeout,
        preserve=preserve,
    )

    if len(inputs) == 1 and inputs[0].is_dir():
        target = inputs[0]
    else:
        target = inputs
        if output is not None and len(inputs) > 1:
            typer.secho("Error: --output takes one file; use a directory input to write a tree.", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    try:
        options.validate()
        results = compress.optimize_files(target, output, options, recursive, verbose, jobs, debug=debug)
    except LossyError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if not results:
        typer.secho("No PNG files found.", fg=typer.colors.YELLOW)
    elif verbose:
        typer.secho(f"Completed: {len(results)} file(s).", fg=typer.colors.GREEN)


def main():
    rich.traceback.install(show_locals=False, suppress=[typer])  # type: ignore
    typer.run(lossypng_cli)


if __name__ == "__main__":
    main()
