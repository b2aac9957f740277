from typing import Sequence

SIZE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def format_bytes(num_bytes: int) -> str:
    """Human-readable size with one decimal, e.g. '1.5 KB'."""
    if num_bytes <= 0:
        return "0 B"
    size = float(num_bytes)
    for unit in SIZE_UNITS[:-1]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} {SIZE_UNITS[-1]}"


def find_truncate_index(paths: Sequence[str]) -> int:
    """
    Position just past the last path separator shared by every path, so the
    common directory prefix can be cut from display. 0 means nothing to cut.
    For a single path this is its own directory part.
    """
    if not paths:
        return 0
    first = paths[0]
    last_sep = max(first.rfind("/"), first.rfind("\\"))
    if last_sep < 0:
        return 0
    if len(paths) == 1:
        return last_sep + 1

    truncate_idx = 0
    for pos in range(last_sep + 1):
        ch = first[pos]
        if any(len(p) <= pos or p[pos] != ch for p in paths[1:]):
            return truncate_idx
        if ch in "/\\":
            truncate_idx = pos + 1
    return truncate_idx


def truncate_path(path: str, index: int) -> str:
    if index == 0 or index >= len(path):
        return path
    return path[index:]


def summary_line(
    input_path: str,
    output_path: str,
    input_size: int,
    output_size: int,
    input_index: int = 0,
    output_index: int = 0,
) -> str:
    """
    'a.png | 10.0 KB -> 7.5 KB (-25.0%)', or 'in.png -> out.png | ...' when the
    file was not optimized in place.
    """
    display_output = truncate_path(output_path, output_index)
    if input_path == output_path:
        where = display_output
    else:
        where = f"{truncate_path(input_path, input_index)} -> {display_output}"
    if input_size > 0:
        reduction = (input_size - output_size) / input_size * 100.0
    else:
        reduction = 0.0
    sign = "-" if output_size < input_size else "+"
    return f"{where} | {format_bytes(input_size)} -> {format_bytes(output_size)} ({sign}{abs(reduction):.1f}%)"
