"""Compressor dispatch for minidispatch.

This package runs source files through external or in-process minifiers and
reports the sizes of the results.

Modules:
    config: Compressor options, argument building and settings
    compressors: Registry of supported compressors
    invoker: Runs compressors and collects results
    utils: File helpers and size reporting
"""

from __future__ import annotations

from minidispatch.compress.compressors import COMPRESSORS, CompressorSpec, get_compressor
from minidispatch.compress.config import (
    CompressorOptions,
    CompressorSettings,
    OptionKind,
    build_args,
)
from minidispatch.compress.invoker import BatchResult, CompressionResult, Invoker
from minidispatch.compress.utils import (
    SizeReport,
    get_filesize,
    get_filesize_gzipped,
    pretty_bytes,
)

__all__ = [
    "COMPRESSORS",
    "BatchResult",
    "CompressionResult",
    "CompressorOptions",
    "CompressorSettings",
    "CompressorSpec",
    "Invoker",
    "OptionKind",
    "SizeReport",
    "build_args",
    "get_compressor",
    "get_filesize",
    "get_filesize_gzipped",
    "pretty_bytes",
]
