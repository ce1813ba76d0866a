"""Registry of supported compressors.

Each compressor is described by a CompressorSpec: the languages it accepts,
the runtime it needs, how its command line is laid out and where its output
ends up. The invoker only ever works from these descriptions.
"""

from __future__ import annotations

import enum
import pathlib
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple, Union

import rcssmin
import rjsmin

from minidispatch.compress.config import CompressorOptions, CompressorSettings
from minidispatch.utils.exceptions import CompressorError, CompressorErrorKind

ALL = "all"

OPTIONS = "{options}"

LANGUAGE_SUFFIXES: Dict[str, str] = {
    ".js": "js",
    ".mjs": "js",
    ".cjs": "js",
    ".css": "css",
    ".html": "html",
    ".htm": "html",
}

JAVA_INCOMPATIBLE_PATTERNS: Tuple[str, ...] = (
    "UnsupportedClassVersionError",
    "has been compiled by a more recent version of the Java Runtime",
)

NODE_INCOMPATIBLE_PATTERNS: Tuple[str, ...] = (
    "ERR_REQUIRE_ESM",
    "Unsupported engine",
)


class Runtime(str, enum.Enum):
    """What a compressor needs in order to run."""

    NATIVE = "native"
    JAVA = "java"
    NODE = "node"
    PYTHON = "python"


class OutputMode(str, enum.Enum):
    """Where a compressor's result ends up."""

    FILE = "file"  # The program writes the output path itself
    STDOUT = "stdout"  # The result is read from stdout
    LIBRARY = "library"  # In-process call returning the result


@dataclass(frozen=True)
class CompressorSpec:
    """Description of a single compressor.

    Attributes:
        name: Name used on the command line
        languages: Source languages accepted (js, css, html)
        runtime: Runtime the compressor needs
        output_mode: Where the minified result is produced
        program: Executable name, for native and node compressors
        template: Argument layout; ``{input}``, ``{output}`` and ``{language}``
            are substituted, ``{options}`` expands to the option arguments
        minify: In-process minifier, for library compressors
        incompatible_patterns: Diagnostic substrings meaning the runtime is
            too old for this compressor
    """

    name: str
    languages: FrozenSet[str]
    runtime: Runtime
    output_mode: OutputMode
    program: Optional[str] = None
    template: Tuple[str, ...] = ()
    minify: Optional[Callable[[str], str]] = field(default=None, compare=False)
    incompatible_patterns: Tuple[str, ...] = ()

    def accepts(self, language: Optional[str]) -> bool:
        return language in self.languages

    def build_command(
            self,
            input_path: Union[str, pathlib.Path],
            output_path: Union[str, pathlib.Path],
            options: CompressorOptions,
            settings: CompressorSettings,
            language: Optional[str] = None,
    ) -> List[str]:
        """Build the full command line for this compressor.

        Args:
            input_path: Source file
            output_path: Destination file
            options: User options for the compressor
            settings: Program lookup settings
            language: Source language, substituted for ``{language}``

        Returns:
            Command as a list of tokens, program first

        Raises:
            CompressorError: If the compressor runs in-process
        """
        if self.output_mode == OutputMode.LIBRARY:
            raise CompressorError(
                f"{self.name} runs in-process and has no command line",
                compressor=self.name,
                kind=CompressorErrorKind.SPAWN_FAILED,
            )

        if self.runtime == Runtime.JAVA:
            command = [settings.java, "-jar", str(settings.resolve_jar(self.name))]
        else:
            command = [settings.resolve_program(self.name, self.program or self.name)]

        values = {
            "input": str(input_path),
            "output": str(output_path),
            "language": language or "",
        }
        for token in self.template:
            if token == OPTIONS:
                command.extend(options.to_args())
            else:
                command.append(token.format(**values))

        return command

    def incompatible(self, diagnostic: str) -> bool:
        """Whether a diagnostic text reports an incompatible runtime."""
        return any(pattern in diagnostic for pattern in self.incompatible_patterns)


def _no_compress(content: str) -> str:
    return content


_JS = frozenset({"js"})
_CSS = frozenset({"css"})
_HTML = frozenset({"html"})

COMPRESSORS: Dict[str, CompressorSpec] = {
    spec.name: spec
    for spec in (
        CompressorSpec(
            name="gcc",
            languages=_JS,
            runtime=Runtime.NODE,
            output_mode=OutputMode.FILE,
            program="google-closure-compiler",
            template=("--js", "{input}", "--js_output_file", "{output}", OPTIONS),
            incompatible_patterns=JAVA_INCOMPATIBLE_PATTERNS + NODE_INCOMPATIBLE_PATTERNS,
        ),
        CompressorSpec(
            name="gcc-java",
            languages=_JS,
            runtime=Runtime.JAVA,
            output_mode=OutputMode.FILE,
            template=("--js", "{input}", "--js_output_file", "{output}", OPTIONS),
            incompatible_patterns=JAVA_INCOMPATIBLE_PATTERNS,
        ),
        CompressorSpec(
            name="yui",
            languages=_JS | _CSS,
            runtime=Runtime.JAVA,
            output_mode=OutputMode.STDOUT,
            template=("--type", "{language}", "--charset", "utf8", OPTIONS, "{input}"),
            incompatible_patterns=JAVA_INCOMPATIBLE_PATTERNS,
        ),
        CompressorSpec(
            name="uglifyjs",
            languages=_JS,
            runtime=Runtime.NODE,
            output_mode=OutputMode.FILE,
            program="uglifyjs",
            template=("{input}", OPTIONS, "--output", "{output}"),
            incompatible_patterns=NODE_INCOMPATIBLE_PATTERNS,
        ),
        CompressorSpec(
            name="terser",
            languages=_JS,
            runtime=Runtime.NODE,
            output_mode=OutputMode.FILE,
            program="terser",
            template=("{input}", OPTIONS, "--output", "{output}"),
            incompatible_patterns=NODE_INCOMPATIBLE_PATTERNS,
        ),
        CompressorSpec(
            name="babel-minify",
            languages=_JS,
            runtime=Runtime.NODE,
            output_mode=OutputMode.FILE,
            program="minify",
            template=("{input}", OPTIONS, "--out-file", "{output}"),
            incompatible_patterns=NODE_INCOMPATIBLE_PATTERNS,
        ),
        CompressorSpec(
            name="esbuild",
            languages=_JS | _CSS,
            runtime=Runtime.NATIVE,
            output_mode=OutputMode.FILE,
            program="esbuild",
            template=("{input}", "--minify", OPTIONS, "--outfile={output}"),
        ),
        CompressorSpec(
            name="csso",
            languages=_CSS,
            runtime=Runtime.NODE,
            output_mode=OutputMode.FILE,
            program="csso",
            template=("--input", "{input}", "--output", "{output}", OPTIONS),
            incompatible_patterns=NODE_INCOMPATIBLE_PATTERNS,
        ),
        CompressorSpec(
            name="clean-css",
            languages=_CSS,
            runtime=Runtime.NODE,
            output_mode=OutputMode.FILE,
            program="cleancss",
            template=(OPTIONS, "-o", "{output}", "{input}"),
            incompatible_patterns=NODE_INCOMPATIBLE_PATTERNS,
        ),
        CompressorSpec(
            name="crass",
            languages=_CSS,
            runtime=Runtime.NODE,
            output_mode=OutputMode.STDOUT,
            program="crass",
            template=("{input}", "--optimize", OPTIONS),
            incompatible_patterns=NODE_INCOMPATIBLE_PATTERNS,
        ),
        CompressorSpec(
            name="html-minifier",
            languages=_HTML,
            runtime=Runtime.NODE,
            output_mode=OutputMode.FILE,
            program="html-minifier",
            template=("{input}", OPTIONS, "-o", "{output}"),
            incompatible_patterns=NODE_INCOMPATIBLE_PATTERNS,
        ),
        CompressorSpec(
            name="rjsmin",
            languages=_JS,
            runtime=Runtime.PYTHON,
            output_mode=OutputMode.LIBRARY,
            minify=rjsmin.jsmin,
        ),
        CompressorSpec(
            name="rcssmin",
            languages=_CSS,
            runtime=Runtime.PYTHON,
            output_mode=OutputMode.LIBRARY,
            minify=rcssmin.cssmin,
        ),
        CompressorSpec(
            name="no-compress",
            languages=_JS | _CSS | _HTML,
            runtime=Runtime.PYTHON,
            output_mode=OutputMode.LIBRARY,
            minify=_no_compress,
        ),
    )
}


def detect_language(path: Union[str, pathlib.Path]) -> Optional[str]:
    """Guess the source language of a file from its suffix."""
    return LANGUAGE_SUFFIXES.get(pathlib.PurePath(path).suffix.lower())


def get_compressor(name: str) -> CompressorSpec:
    """Look up a compressor by name.

    Raises:
        CompressorError: If no compressor has that name
    """
    try:
        return COMPRESSORS[name]
    except KeyError:
        raise CompressorError(
            f"Unknown compressor: {name}. Available: {', '.join(COMPRESSORS)}",
            compressor=name,
            kind=CompressorErrorKind.UNKNOWN_COMPRESSOR,
        ) from None


def compressors_for(language: Optional[str]) -> List[CompressorSpec]:
    """Get every compressor that accepts a language, in registry order."""
    return [spec for spec in COMPRESSORS.values() if spec.accepts(language)]
