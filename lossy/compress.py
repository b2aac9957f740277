"""
Lossless PNG optimization (oxipng), optionally preceded by the lossy palette
reduction. One file at a time, or a batch with an optional process pool.
"""
import math
import os
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Sequence, Union

import oxipng
import typer

from lossy.errors import CompressionError, UnknownOptionError, ValidationError
from lossy.file_utils import (
    OutputSpec,
    check_inputs_exist,
    decode_png,
    encode_png,
    ensure_output_dirs,
    resolve_paths,
)
from lossy.metrics import select_metric
from lossy.quantize import select_ditherer, select_optimizer
from lossy.reduce import reduce_palette, select_method
from lossy.report import find_truncate_index, summary_line
from lossy.sampling import MAX_SAMPLES
from lossy.search import validate_budget, validate_fraction

STRIP_MODES = ("none", "safe", "all")
INTERLACE_MODES = ("keep", "off", "on")


@dataclass(frozen=True)
class CompressOptions:
    level: int = 2
    strip: str = "all"
    optimize_alpha: bool = False
    fast_evaluation: bool = False
    timeout: Optional[float] = None
    interlace: str = "keep"
    preserve: bool = True
    lossy: float = 0.0
    method: str = "bisect"
    optimizer: str = "k-means"
    ditherer: str = "ordered"
    metric: str = "p95"
    max_samples: int = MAX_SAMPLES

    def validate(self) -> "CompressOptions":
        if isinstance(self.level, bool) or not isinstance(self.level, int) or not 0 <= self.level <= 6:
            raise ValidationError(f"Optimization level must be an integer in 0-6, got {self.level!r}")
        if self.strip not in STRIP_MODES:
            raise UnknownOptionError("strip mode", self.strip, STRIP_MODES)
        if self.interlace not in INTERLACE_MODES:
            raise UnknownOptionError("interlace mode", self.interlace, INTERLACE_MODES)
        if self.timeout is not None and (not math.isfinite(self.timeout) or self.timeout <= 0):
            raise ValidationError(f"Timeout must be a positive number of seconds, got {self.timeout!r}")
        if self.max_samples < 1:
            raise ValidationError(f"max_samples must be >= 1, got {self.max_samples}")
        select_method(self.method)
        select_optimizer(self.optimizer)
        select_ditherer(self.ditherer)
        select_metric(self.metric)
        if self.method == "coverage":
            validate_fraction(self.lossy)
        else:
            validate_budget(self.lossy)
        return self

    @property
    def is_lossy(self) -> bool:
        return self.lossy > 0


@dataclass
class FileResult:
    input: Path
    output: Path
    input_size: int
    output_size: int
    palette_size: Optional[int] = None


def oxipng_kwargs(options: CompressOptions) -> dict:
    strip = {
        "none": oxipng.StripChunks.none,
        "safe": oxipng.StripChunks.safe,
        "all": oxipng.StripChunks.all,
    }[options.strip]()
    kwargs = {
        "level": options.level,
        "strip": strip,
        "optimize_alpha": options.optimize_alpha,
        "fast_evaluation": options.fast_evaluation,
    }
    if options.timeout is not None:
        kwargs["timeout"] = float(options.timeout)
    if options.interlace == "off":
        kwargs["interlace"] = oxipng.Interlacing.Off
    elif options.interlace == "on":
        kwargs["interlace"] = oxipng.Interlacing.Adam7
    return kwargs


def optimize_bytes(data: bytes, options: CompressOptions, source: str = "<memory>") -> bytes:
    try:
        return oxipng.optimize_from_memory(data, **oxipng_kwargs(options))
    except oxipng.PngError as e:
        raise CompressionError(f"Failed to optimize {source}: {e}") from e


def lossy_png_bytes(path: Path, options: CompressOptions, verbose: bool = False):
    """
    Decode, reduce the palette, re-encode. Returns (png bytes, palette size).

    With `strip="none"` the reduction settings and outcome are written as
    `lossypng:` tEXt chunks; every other strip mode would drop them.
    """
    pixels, width, height = decode_png(path)
    if verbose:
        typer.echo(f"Reducing palette of {path} ({width}x{height}, {options.method})")
    result = reduce_palette(
        pixels,
        width,
        options.lossy,
        method=options.method,
        optimizer=options.optimizer,
        ditherer=options.ditherer,
        metric=options.metric,
        max_samples=options.max_samples,
        verbose=verbose,
    )
    metadata = None
    if options.strip == "none":
        metadata = {
            "method": result.method,
            "budget": options.lossy,
            "palette size": len(result.palette),
            "delta e": f"{result.metric:.4f}",
        }
    return encode_png(result.pixels, width, height, metadata), len(result.palette)


def _restore_attrs(output: Path, stat_result: os.stat_result) -> None:
    os.chmod(output, stat_result.st_mode & 0o7777)
    os.utime(output, (stat_result.st_atime, stat_result.st_mtime))


def optimize_file(
    input_path: Union[str, Path],
    output_path: Union[str, Path, None] = None,
    options: Optional[CompressOptions] = None,
    verbose: bool = False,
) -> FileResult:
    """
    Optimize one PNG. With `options.lossy > 0` the palette is reduced first
    and file attributes are not preserved (the file is rewritten from memory).
    """
    options = (options or CompressOptions()).validate()
    input_path = Path(input_path)
    output_path = Path(output_path) if output_path is not None else input_path
    try:
        source_stat = input_path.stat()
    except OSError as e:
        raise ValidationError(f"Input file does not exist: {input_path}") from e

    palette_size = None
    if options.is_lossy:
        lossy_data, palette_size = lossy_png_bytes(input_path, options, verbose)
        optimized = optimize_bytes(lossy_data, options, str(input_path))
        try:
            output_path.write_bytes(optimized)
        except OSError as e:
            raise CompressionError(f"Failed to write {output_path}: {e}") from e
    else:
        try:
            oxipng.optimize(str(input_path), str(output_path), **oxipng_kwargs(options))
        except oxipng.PngError as e:
            raise CompressionError(f"Failed to optimize {input_path}: {e}") from e
        if options.preserve:
            _restore_attrs(output_path, source_stat)

    return FileResult(input_path, output_path, source_stat.st_size, output_path.stat().st_size, palette_size)


def _optimize_job(args) -> FileResult:
    input_path, output_path, options, debug = args
    return optimize_file(input_path, output_path, options, verbose=debug)


def optimize_files(
    inputs: Union[str, Path, Sequence[Union[str, Path]]],
    output: OutputSpec = None,
    options: Optional[CompressOptions] = None,
    recursive: bool = True,
    verbose: bool = True,
    jobs: int = 1,
    debug: bool = False,
) -> List[FileResult]:
    """
    Optimize a file, a list of files, or every PNG in a directory.

    Options and input existence are checked for the whole batch before any
    file is touched. The first failure stops the batch. `debug` echoes the
    search probes of every file.
    """
    options = (options or CompressOptions()).validate()
    input_paths, output_paths = resolve_paths(inputs, output, recursive)
    check_inputs_exist(input_paths)
    ensure_output_dirs(output_paths)
    if not input_paths:
        return []

    in_idx = find_truncate_index([str(p) for p in input_paths]) if verbose else 0
    out_idx = find_truncate_index([str(p) for p in output_paths]) if verbose else 0

    def report(result: FileResult) -> None:
        if verbose and result.input_size > 0:
            typer.echo(summary_line(
                str(result.input), str(result.output),
                result.input_size, result.output_size, in_idx, out_idx,
            ))

    results: List[FileResult] = []
    if jobs > 1 and len(input_paths) > 1:
        with ProcessPoolExecutor(max_workers=jobs) as pool:
            work = [(i, o, options, debug) for i, o in zip(input_paths, output_paths)]
            for result in pool.map(_optimize_job, work):
                report(result)
                results.append(result)
    else:
        for i, o in zip(input_paths, output_paths):
            result = optimize_file(i, o, options, verbose=debug)
            report(result)
            results.append(result)
    return results


def with_overrides(options: CompressOptions, **changes) -> CompressOptions:
    """Copy of `options` with the non-None `changes` applied."""
    return replace(options, **{k: v for k, v in changes.items() if v is not None})
