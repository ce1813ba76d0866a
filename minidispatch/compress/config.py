"""Compressor options and settings.

This module turns user-supplied compressor options into command-line
arguments, and holds the settings that tell the invoker where to find the
external compressor programs.
"""

from __future__ import annotations

import enum
import pathlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

import pydantic

from minidispatch.utils.exceptions import ConfigurationError

OptionValue = Union[str, int, float, bool, None]

_OPTION_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def build_args(options: Mapping[str, Any]) -> List[str]:
    """Build a flat argument list from an option mapping.

    ``True`` emits only ``--key``, any other truthy value emits ``--key value``
    and falsy values are left out. Keys are passed through untouched.

    Args:
        options: Mapping of option name to value, in the order to emit them.

    Returns:
        List of command-line tokens.
    """
    args: List[str] = []

    for key, value in options.items():
        if not value:
            continue
        args.append(f"--{key}")
        if value is not True:
            args.append(str(value))

    return args


class OptionKind(str, enum.Enum):
    """How an option is rendered on the command line."""

    ABSENT = "absent"  # Not emitted at all
    FLAG = "flag"  # --name
    VALUED = "valued"  # --name value


@dataclass(frozen=True)
class CompressorOption:
    """A single compressor option."""

    name: str
    kind: OptionKind
    value: Optional[str] = None

    def __post_init__(self) -> None:
        if not _OPTION_NAME.match(self.name):
            raise ConfigurationError(
                f"Invalid compressor option name: {self.name!r}",
                config_key=self.name,
            )
        if self.kind == OptionKind.VALUED and self.value is None:
            raise ConfigurationError(
                f"Option {self.name!r} needs a value",
                config_key=self.name,
            )

    @classmethod
    def from_value(cls, name: str, value: OptionValue) -> CompressorOption:
        """Classify a raw value with the same truthiness rules as build_args."""
        if not value:
            return cls(name, OptionKind.ABSENT)
        if value is True:
            return cls(name, OptionKind.FLAG)
        return cls(name, OptionKind.VALUED, str(value))

    def to_args(self) -> List[str]:
        if self.kind == OptionKind.ABSENT:
            return []
        if self.kind == OptionKind.FLAG:
            return [f"--{self.name}"]
        return [f"--{self.name}", self.value]


@dataclass
class CompressorOptions:
    """Ordered, validated set of options for one compressor run.

    Attributes:
        options: The options in the order they are emitted
    """

    options: List[CompressorOption] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, OptionValue]]) -> CompressorOptions:
        """Create options from a name -> value mapping.

        Args:
            mapping: Option mapping, typically decoded from JSON.

        Returns:
            CompressorOptions instance.

        Raises:
            ConfigurationError: If an option name is not a valid flag name.
        """
        if mapping is None:
            return cls()
        if not isinstance(mapping, Mapping):
            raise ConfigurationError(
                f"Compressor options must be a mapping, got {type(mapping).__name__}",
                config_key="option",
            )
        return cls([CompressorOption.from_value(str(name), value) for name, value in mapping.items()])

    def flag(self, name: str) -> CompressorOptions:
        """Append a boolean flag."""
        self.options.append(CompressorOption(name, OptionKind.FLAG))
        return self

    def valued(self, name: str, value: Any) -> CompressorOptions:
        """Append a flag followed by a value."""
        self.options.append(CompressorOption(name, OptionKind.VALUED, str(value)))
        return self

    def to_args(self) -> List[str]:
        """Convert the options to command-line arguments.

        Returns:
            List of command-line tokens.
        """
        args: List[str] = []
        for option in self.options:
            args.extend(option.to_args())
        return args

    def to_mapping(self) -> Dict[str, OptionValue]:
        """Convert the options back to a name -> value mapping."""
        mapping: Dict[str, OptionValue] = {}
        for option in self.options:
            if option.kind == OptionKind.ABSENT:
                mapping[option.name] = False
            elif option.kind == OptionKind.FLAG:
                mapping[option.name] = True
            else:
                mapping[option.name] = option.value
        return mapping

    def __iter__(self) -> Iterator[CompressorOption]:
        return iter(self.options)

    def __len__(self) -> int:
        return len(self.options)


class CompressorSettings(pydantic.BaseModel):
    """Where to find compressor programs and how to measure their output.

    Attributes:
        java: Java executable used for jar based compressors
        node_bin_dir: Directory searched for Node based compressor binaries
            before falling back to PATH
        jars: Jar file per Java compressor
        binaries: Explicit program path per compressor, overriding the lookup
        gzip_level: Compression level used when measuring gzip sizes
        chunk_size: Read size used when streaming files through gzip
        concurrent: Whether batch runs start all compressors at once
    """

    java: str = "java"
    node_bin_dir: pathlib.Path = pathlib.Path("node_modules/.bin")
    jars: Dict[str, pathlib.Path] = pydantic.Field(
        default_factory=lambda: {
            "gcc-java": pathlib.Path("vendor/closure-compiler.jar"),
            "yui": pathlib.Path("vendor/yuicompressor.jar"),
        }
    )
    binaries: Dict[str, str] = pydantic.Field(default_factory=dict)
    gzip_level: int = -1
    chunk_size: int = 64 * 1024
    concurrent: bool = False

    @pydantic.field_validator("gzip_level")
    @classmethod
    def validate_gzip_level(cls, v: int) -> int:
        """Validate the gzip compression level."""
        if not -1 <= v <= 9:
            raise ValueError(f"gzip_level must be between -1 and 9, got {v}")
        return v

    @pydantic.field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Validate the streaming chunk size."""
        if v <= 0:
            raise ValueError(f"chunk_size must be positive, got {v}")
        return v

    def resolve_program(self, compressor: str, program: str) -> str:
        """Resolve the executable to spawn for a compressor.

        Args:
            compressor: Compressor name, used to look up explicit overrides
            program: Default program name of the compressor

        Returns:
            Path or name of the executable.
        """
        if compressor in self.binaries:
            return self.binaries[compressor]

        local = self.node_bin_dir / program
        if local.exists():
            return str(local)

        return program

    def resolve_jar(self, compressor: str) -> pathlib.Path:
        """Get the jar file for a Java compressor.

        Raises:
            ConfigurationError: If no jar is configured for the compressor.
        """
        try:
            return self.jars[compressor]
        except KeyError:
            raise ConfigurationError(
                f"No jar configured for compressor {compressor}",
                config_key=f"compressors.jars.{compressor}",
            ) from None

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> CompressorSettings:
        """Create settings from a dictionary.

        Raises:
            ConfigurationError: If the dictionary does not validate.
        """
        try:
            return cls(**config_dict)
        except pydantic.ValidationError as e:
            raise ConfigurationError(
                f"Invalid compressor settings: {e}",
                config_key="compressors",
                validation_errors=e.errors(),
            ) from e
