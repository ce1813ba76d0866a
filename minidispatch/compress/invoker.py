"""Invoker for running compressors.

This module contains the Invoker class that runs a compressor on a source
file: it builds the command line, spawns the external program (or calls the
in-process library), checks the result and measures sizes before and after.

Subprocesses run without a timeout. A compressor that never exits keeps the
invocation waiting.
"""

from __future__ import annotations

import asyncio
import logging
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from minidispatch.compress.compressors import (
    JAVA_INCOMPATIBLE_PATTERNS,
    CompressorSpec,
    OutputMode,
    compressors_for,
    detect_language,
    get_compressor,
)
from minidispatch.compress.config import CompressorOptions, CompressorSettings
from minidispatch.compress.utils import SizeReport, measure_sizes, read_file, write_file
from minidispatch.utils.exceptions import CompressorError, CompressorErrorKind, ConfigurationError

PathLike = Union[str, pathlib.Path]
OptionsLike = Union[CompressorOptions, Mapping[str, Any], None]


@dataclass
class CompressionResult:
    """Outcome of a successful compressor run.

    Attributes:
        compressor: Name of the compressor
        input_path: Source file
        output_path: File holding the minified result
        command: Command line that was spawned, empty for in-process runs
        before: Sizes of the source file
        after: Sizes of the minified file
    """

    compressor: str
    input_path: pathlib.Path
    output_path: pathlib.Path
    command: List[str] = field(default_factory=list)
    before: Optional[SizeReport] = None
    after: Optional[SizeReport] = None


@dataclass
class BatchResult:
    """Per-compressor outcomes of a batch run, in run order."""

    input_path: pathlib.Path
    outcomes: Dict[str, Union[CompressionResult, CompressorError]] = field(default_factory=dict)

    @property
    def succeeded(self) -> Dict[str, CompressionResult]:
        return {
            name: outcome for name, outcome in self.outcomes.items()
            if isinstance(outcome, CompressionResult)
        }

    @property
    def failed(self) -> Dict[str, CompressorError]:
        return {
            name: outcome for name, outcome in self.outcomes.items()
            if isinstance(outcome, CompressorError)
        }


def batch_output_path(output_path: PathLike, compressor: str) -> pathlib.Path:
    """Per-compressor output path for batch runs.

    ``dist/app.min.js`` for ``terser`` gives ``dist/app.min.terser.js``.
    """
    output_path = pathlib.Path(output_path)
    return output_path.with_name(f"{output_path.stem}.{compressor}{output_path.suffix}")


class Invoker:
    """Runs compressors against source files.

    Attributes:
        settings: Program lookup and measuring settings
        logger: Logger used for progress messages
    """

    def __init__(
            self, settings: Optional[CompressorSettings] = None, logger: Optional[Any] = None
    ) -> None:
        """Initialize the Invoker.

        Args:
            settings: Compressor settings, defaults when omitted
            logger: Optional logger, the module logger when omitted
        """
        self.settings = settings or CompressorSettings()
        self.logger = logger or logging.getLogger(__name__)

    async def run(
            self,
            compressor: str,
            input_path: PathLike,
            output_path: PathLike,
            options: OptionsLike = None,
    ) -> CompressionResult:
        """Minify a file with one compressor.

        Args:
            compressor: Name of the compressor
            input_path: Source file
            output_path: Destination of the minified result
            options: Compressor options, as a mapping or CompressorOptions

        Returns:
            CompressionResult with sizes before and after

        Raises:
            CompressorError: If the compressor cannot produce output
            FileNotFoundError: If the input file does not exist
        """
        spec = get_compressor(compressor)
        input_path = pathlib.Path(input_path)
        output_path = pathlib.Path(output_path)

        # Fails with FileNotFoundError before anything is spawned
        os.stat(input_path)

        language = detect_language(input_path)
        if not spec.accepts(language):
            raise CompressorError(
                f"{spec.name} cannot minify {language or 'unknown'} files: {input_path}",
                compressor=spec.name,
                kind=CompressorErrorKind.UNSUPPORTED_INPUT,
            )

        if not isinstance(options, CompressorOptions):
            options = CompressorOptions.from_mapping(options)

        output_path.parent.mkdir(parents=True, exist_ok=True)

        self.logger.info(f"Minifying {input_path} with {spec.name}")

        command: List[str] = []
        if spec.output_mode == OutputMode.LIBRARY:
            await self._run_library(spec, input_path, output_path)
        else:
            try:
                command = spec.build_command(input_path, output_path, options, self.settings, language)
            except ConfigurationError as e:
                raise CompressorError(
                    f"Could not start {spec.name}: {e}",
                    compressor=spec.name,
                    kind=CompressorErrorKind.SPAWN_FAILED,
                    diagnostic=str(e),
                    config_key=e.config_key,
                ) from e
            await self._run_process(spec, command, output_path)

        before = await measure_sizes(
            input_path, level=self.settings.gzip_level, chunk_size=self.settings.chunk_size
        )
        after = await measure_sizes(
            output_path, level=self.settings.gzip_level, chunk_size=self.settings.chunk_size
        )

        self.logger.info(
            f"{spec.name} finished: {before.raw} ({before.gzip} gzip) -> {after.raw} ({after.gzip} gzip)"
        )

        return CompressionResult(
            compressor=spec.name,
            input_path=input_path,
            output_path=output_path,
            command=command,
            before=before,
            after=after,
        )

    async def run_all(
            self,
            input_path: PathLike,
            output_path: PathLike,
            options: OptionsLike = None,
            concurrent: Optional[bool] = None,
    ) -> BatchResult:
        """Minify a file with every compressor that accepts its language.

        Each compressor writes to its own output, see batch_output_path.
        A failing compressor is recorded and does not stop the others.

        Args:
            input_path: Source file
            output_path: Base destination path
            options: Compressor options passed to every compressor
            concurrent: Run all compressors at once, defaults to the setting

        Returns:
            BatchResult with one outcome per compressor

        Raises:
            FileNotFoundError: If the input file does not exist
        """
        input_path = pathlib.Path(input_path)
        os.stat(input_path)

        if concurrent is None:
            concurrent = self.settings.concurrent

        specs = compressors_for(detect_language(input_path))
        result = BatchResult(input_path=input_path)

        if not specs:
            self.logger.warning(f"No compressor accepts {input_path}")
            return result

        self.logger.info(
            f"Running {len(specs)} compressors on {input_path}"
            f" ({'concurrently' if concurrent else 'sequentially'})"
        )

        if concurrent:
            outcomes = await asyncio.gather(
                *(self._run_one(spec.name, input_path, output_path, options) for spec in specs)
            )
        else:
            outcomes = [
                await self._run_one(spec.name, input_path, output_path, options) for spec in specs
            ]

        for name, outcome in outcomes:
            result.outcomes[name] = outcome

        self.logger.info(
            f"Batch finished: {len(result.succeeded)} succeeded, {len(result.failed)} failed"
        )
        return result

    async def _run_one(
            self, name: str, input_path: pathlib.Path, output_path: PathLike, options: OptionsLike
    ) -> Tuple[str, Union[CompressionResult, CompressorError]]:
        try:
            return name, await self.run(name, input_path, batch_output_path(output_path, name), options)
        except CompressorError as e:
            self.logger.warning(f"{name} failed: {e}")
            return name, e

    async def _run_library(
            self, spec: CompressorSpec, input_path: pathlib.Path, output_path: pathlib.Path
    ) -> None:
        """Run an in-process compressor and write its result."""
        loop = asyncio.get_running_loop()

        try:
            content = read_file(input_path)
            minified = await loop.run_in_executor(None, spec.minify, content)
        except Exception as e:
            raise CompressorError(
                f"{spec.name} failed: {e}",
                compressor=spec.name,
                kind=CompressorErrorKind.MINIFY_FAILED,
                diagnostic=str(e),
            ) from e

        write_file(output_path, minified)

    async def _spawn(self, command: List[str]) -> Tuple[int, bytes, bytes]:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        return process.returncode, stdout, stderr

    async def _run_process(
            self, spec: CompressorSpec, command: List[str], output_path: pathlib.Path
    ) -> None:
        """Spawn an external compressor and check its result.

        Raises:
            CompressorError: If spawning fails, the process exits non-zero or
                no output was produced
        """
        self.logger.debug(f"Running {spec.name}: {' '.join(command)}")

        try:
            returncode, stdout, stderr = await self._spawn(command)
        except Exception as e:
            diagnostic = str(e)
            raise self._failure(spec, diagnostic, CompressorErrorKind.SPAWN_FAILED) from e

        diagnostic = stderr.decode("utf-8", errors="replace").strip()

        if returncode != 0:
            raise self._failure(
                spec, diagnostic, CompressorErrorKind.NON_ZERO_EXIT, returncode=returncode
            )

        if diagnostic:
            self.logger.debug(f"{spec.name} stderr: {diagnostic}")

        if spec.output_mode == OutputMode.STDOUT:
            if not stdout:
                raise self._failure(spec, diagnostic, CompressorErrorKind.EMPTY_OUTPUT, returncode=0)
            output_path.write_bytes(stdout)
        elif not output_path.exists() or output_path.stat().st_size == 0:
            raise self._failure(spec, diagnostic, CompressorErrorKind.EMPTY_OUTPUT, returncode=0)

    def _failure(
            self,
            spec: CompressorSpec,
            diagnostic: str,
            kind: CompressorErrorKind,
            returncode: Optional[int] = None,
    ) -> CompressorError:
        if spec.incompatible(diagnostic):
            kind = CompressorErrorKind.INCOMPATIBLE_RUNTIME
            runtime = "Java" if any(p in diagnostic for p in JAVA_INCOMPATIBLE_PATTERNS) else "Node.js"
            message = f"{spec.name} requires a newer {runtime} than the one installed: {diagnostic}"
        elif kind == CompressorErrorKind.SPAWN_FAILED:
            message = f"Could not start {spec.name}: {diagnostic}"
        elif kind == CompressorErrorKind.EMPTY_OUTPUT:
            message = f"{spec.name} produced no output"
            if diagnostic:
                message = f"{message}: {diagnostic}"
        else:
            message = f"{spec.name} exited with code {returncode}: {diagnostic}"

        return CompressorError(
            message,
            compressor=spec.name,
            kind=kind,
            diagnostic=diagnostic,
            returncode=returncode,
        )
