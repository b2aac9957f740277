import io
import re
from pathlib import Path
from PIL import Image, PngImagePlugin, UnidentifiedImageError
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from lossy.errors import CodecError, ValidationError

PNG_METADATA_PREFIX = "lossypng:"
PNG_SUFFIX_RE = re.compile(r"\.a?png$", re.IGNORECASE)

OutputSpec = Union[None, str, Path, Sequence[Union[str, Path]], Callable[[Path], Path]]


def decode_png(path: Union[str, Path]) -> Tuple[np.ndarray, int, int]:
    """
    Decode an image file into a row-major RGBA buffer.

    Returns:
        Tuple[np.ndarray, int, int]: (N, 4) uint8 pixels, width, height.

    Raises:
        CodecError: the file is missing or not a readable image.
    """
    try:
        with Image.open(path) as im:
            rgba = im.convert("RGBA")
    except FileNotFoundError as e:
        raise CodecError("read PNG", "file not found", str(path)) from e
    except (UnidentifiedImageError, OSError) as e:
        raise CodecError("read PNG", str(e), str(path)) from e
    width, height = rgba.size
    return np.asarray(rgba, dtype=np.uint8).reshape(-1, 4), width, height


_KEYWORD_MAX = 79 - len(PNG_METADATA_PREFIX)
_KEYWORD_DROP_RE = re.compile(r"[^A-Za-z0-9_.-]")


def _metadata_keyword(key: str) -> str:
    """tEXt keyword for `key`: words joined by '_', ASCII only, letter or '_' first."""
    keyword = _KEYWORD_DROP_RE.sub("", "_".join(str(key).split()))
    if not keyword or not (keyword[0].isalpha() or keyword[0] == "_"):
        keyword = "_" + keyword
    return keyword[:_KEYWORD_MAX]


def encode_png(
    pixels: np.ndarray,
    width: int,
    height: int,
    additional_metadata: Optional[Dict[str, object]] = None,
) -> bytes:
    """
    Encode an (N, 4) RGBA buffer as PNG bytes. Metadata goes into tEXt
    chunks under the `lossypng:` prefix (stripped later unless the
    optimizer is told to keep them).
    """
    pixels = np.asarray(pixels, dtype=np.uint8)
    if pixels.shape != (width * height, 4):
        raise CodecError("encode PNG", f"buffer shape {pixels.shape} does not match {width}x{height} RGBA")

    png_info = PngImagePlugin.PngInfo()
    if additional_metadata:
        for key, value in additional_metadata.items():
            png_info.add_text(f"{PNG_METADATA_PREFIX}{_metadata_keyword(key)}", str(value))

    buf = io.BytesIO()
    try:
        Image.fromarray(pixels.reshape(height, width, 4), "RGBA").save(buf, "PNG", pnginfo=png_info)
    except (OSError, ValueError) as e:
        raise CodecError("encode PNG", str(e)) from e
    return buf.getvalue()


def list_png_files(directory: Path, recursive: bool = True) -> List[Path]:
    """PNG/APNG files under `directory`, relative to it, sorted for a stable order."""
    pattern = "**/*" if recursive else "*"
    return sorted(
        p.relative_to(directory)
        for p in directory.glob(pattern)
        if p.is_file() and PNG_SUFFIX_RE.search(p.name)
    )


def resolve_paths(
    inputs: Union[str, Path, Sequence[Union[str, Path]]],
    output: OutputSpec = None,
    recursive: bool = True,
) -> Tuple[List[Path], List[Path]]:
    """
    Pair every input file with its output path.

    A single directory input is expanded to the PNG files inside it; `output`
    is then a directory (mirrored layout) or a callable. Without `output`
    every file is optimized in place.
    """
    if isinstance(inputs, (str, Path)):
        inputs = [inputs]
    input_paths = [Path(p) for p in inputs]

    if len(input_paths) == 1 and input_paths[0].is_dir():
        root = input_paths[0]
        files = list_png_files(root, recursive)
        input_paths = [root / f for f in files]
        if output is None:
            output_paths = list(input_paths)
        elif callable(output):
            output_paths = [Path(output(p)) for p in input_paths]
        else:
            output_paths = [Path(output) / f for f in files]
        return input_paths, output_paths

    if output is None:
        output_paths = list(input_paths)
    elif callable(output):
        output_paths = [Path(output(p)) for p in input_paths]
    elif isinstance(output, (str, Path)):
        output_paths = [Path(output)]
    else:
        output_paths = [Path(p) for p in output]

    if len(input_paths) != len(output_paths):
        raise ValidationError(
            f"Input and output must have the same length ({len(input_paths)} != {len(output_paths)})"
        )
    return input_paths, output_paths


def check_inputs_exist(inputs: Sequence[Path]) -> None:
    """Fail before any work if one of the inputs is missing."""
    for path in inputs:
        if not Path(path).exists():
            raise ValidationError(f"Input file does not exist: {path}")


def ensure_output_dirs(outputs: Sequence[Path]) -> None:
    for path in outputs:
        parent = Path(path).parent
        if not parent.exists():
            try:
                parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ValidationError(f"Failed to create directory {parent}: {e}") from e
