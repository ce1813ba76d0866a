"""Utility functions for minidispatch compressor runs.

This module contains the file helpers used around a compressor run and the
size reporting functions: raw and gzip sizes, formatted as human-readable
strings.
"""

from __future__ import annotations

import math
import os
import pathlib
import zlib
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence, Union

import aiofiles

from minidispatch.utils.exceptions import InvalidByteCountError

PathLike = Union[str, pathlib.Path]

UNITS = ["B", "kB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB"]


@dataclass(frozen=True)
class SizeReport:
    """Raw and gzip sizes of a file, already formatted."""

    raw: str
    gzip: str


def read_file(file: PathLike) -> str:
    """Read a file as UTF-8 text.

    Args:
        file: Path of the file to read

    Returns:
        The file content
    """
    with open(file, "r", encoding="utf-8") as f:
        return f.read()


def write_file(
        file: Union[PathLike, Sequence[PathLike]], content: str, index: Optional[int] = None
) -> str:
    """Write text content into a file.

    Args:
        file: Path of the file, or a list of paths when index is given
        content: Text to write
        index: Position in ``file`` of the path to write to

    Returns:
        The content that was written
    """
    target = pathlib.Path(file[index] if index is not None else file)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        f.write(content)
    return content


def set_file_name_min(file: PathLike, output: str) -> str:
    """Substitute ``$1`` in an output pattern with the input's base name.

    ``src/app.js`` with ``dist/$1.min.js`` gives ``dist/app.min.js``.

    Args:
        file: Input file path
        output: Output path pattern

    Returns:
        The output path with ``$1`` replaced
    """
    name = pathlib.PurePath(file).name
    stem = name.rsplit(".", 1)[0] if "." in name else name
    return output.replace("$1", stem)


def _format_number(value: float) -> str:
    """Render a number the way a JavaScript number prints."""
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _to_precision(value: float, digits: int = 3) -> float:
    """Round to significant digits, ties away from zero."""
    exact = Decimal(value)
    if exact == 0:
        return 0.0
    exponent = exact.adjusted() - digits + 1
    return float(exact.quantize(Decimal(1).scaleb(exponent), rounding=ROUND_HALF_UP))


def _is_finite(num: Union[int, float]) -> bool:
    # Integers beyond the float range cannot be scaled
    try:
        return math.isfinite(num)
    except OverflowError:
        return False


def pretty_bytes(num: Union[int, float]) -> str:
    """Convert a byte count to a human-readable string.

    Uses decimal (1000-based) units. Magnitudes below one byte are printed
    as given, so ``0.5`` becomes ``"0.5 B"``.

    Args:
        num: Byte count

    Returns:
        Formatted size such as ``"1.23 kB"``

    Raises:
        InvalidByteCountError: If num is not a finite number
    """
    if isinstance(num, bool) or not isinstance(num, (int, float)) or not _is_finite(num):
        raise InvalidByteCountError(
            f"Expected a finite number, got {type(num).__name__}: {num}",
            config_key="num",
        )

    neg = num < 0
    if neg:
        num = -num

    prefix = "-" if neg else ""

    if num < 1:
        return f"{prefix}{_format_number(float(num))} B"

    exponent = min(math.floor(math.log(num) / math.log(1000)), len(UNITS) - 1)
    scaled = _to_precision(num / math.pow(1000, exponent))

    return f"{prefix}{_format_number(scaled)} {UNITS[exponent]}"


def get_filesize(file: PathLike) -> str:
    """Get the size of a file, formatted.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    return pretty_bytes(os.stat(file).st_size)


async def gzip_byte_count(file: PathLike, level: int = -1, chunk_size: int = 64 * 1024) -> int:
    """Stream a file through gzip and count the compressed bytes.

    Args:
        file: Path of the file to measure
        level: zlib compression level, -1 for the default
        chunk_size: Number of bytes read per step

    Returns:
        Size of the gzip stream in bytes
    """
    compressor = zlib.compressobj(level, zlib.DEFLATED, 16 + zlib.MAX_WBITS)
    total = 0

    async with aiofiles.open(file, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                break
            total += len(compressor.compress(chunk))

    total += len(compressor.flush())
    return total


async def get_filesize_gzipped(file: PathLike, level: int = -1, chunk_size: int = 64 * 1024) -> str:
    """Get the gzip-compressed size of a file, formatted."""
    return pretty_bytes(await gzip_byte_count(file, level=level, chunk_size=chunk_size))


async def measure_sizes(file: PathLike, level: int = -1, chunk_size: int = 64 * 1024) -> SizeReport:
    """Measure raw and gzip sizes of a file.

    Args:
        file: Path of the file to measure
        level: zlib compression level for the gzip size
        chunk_size: Number of bytes read per step

    Returns:
        SizeReport for the file
    """
    raw = get_filesize(file)
    gzipped = await get_filesize_gzipped(file, level=level, chunk_size=chunk_size)
    return SizeReport(raw=raw, gzip=gzipped)
