from __future__ import annotations
import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Mapping, Optional, Union

from minidispatch.compress.compressors import ALL, COMPRESSORS
from minidispatch.compress.invoker import BatchResult, CompressionResult, Invoker
from minidispatch.compress.utils import set_file_name_min
from minidispatch.core.config_manager import ConfigManager
from minidispatch.core.logging_manager import LoggingManager
from minidispatch.utils.exceptions import (
    CompressorError,
    ConfigurationError,
    ManagerInitializationError,
)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog='minidispatch',
        description='Minify a file with an external compressor and report sizes',
    )
    parser.add_argument('--compressor', '-c', type=str, help=f'Compressor name, or "{ALL}"')
    parser.add_argument('--input', '-i', type=str, help='File to minify')
    parser.add_argument('--output', '-o', type=str, help='Destination file, "$1" is replaced by the input name')
    parser.add_argument('--option', type=str, help='Compressor options as a JSON object', default=None)
    parser.add_argument('--config', type=str, help='Path to configuration file', default=None)
    parser.add_argument('--concurrent', action='store_true', help='Run all compressors at once', default=None)
    parser.add_argument('--debug', action='store_true', help='Enable debug logging', default=False)
    parser.add_argument('--list', action='store_true', help='List available compressors', default=False)

    args = parser.parse_args(argv)
    if not args.list and not (args.compressor and args.input and args.output):
        parser.error('--compressor, --input and --output are required')
    return args


def parse_option(option: Union[str, Mapping[str, Any], None]) -> Optional[Dict[str, Any]]:
    """Decode the compressor options given on the command line.

    Raises:
        ConfigurationError: If the options are not a JSON object
    """
    if option is None or option == '':
        return None
    if isinstance(option, Mapping):
        return dict(option)

    try:
        decoded = json.loads(option)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f'Invalid JSON in --option: {e}', config_key='option') from e

    if not isinstance(decoded, dict):
        raise ConfigurationError(
            f'--option must be a JSON object, got {type(decoded).__name__}',
            config_key='option'
        )
    return decoded


async def run(
        compressor: str,
        input: str,
        output: str,
        option: Union[str, Mapping[str, Any], None] = None,
        config_path: Optional[str] = None,
        concurrent: Optional[bool] = None,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[Any] = None,
) -> Union[CompressionResult, BatchResult]:
    """Minify ``input`` with ``compressor`` and write the result to ``output``.

    Args:
        compressor: Compressor name, or "all" for every compressor
        input: Source file
        output: Destination file, "$1" is replaced by the input name
        option: Compressor options as a JSON string or a mapping
        config_path: Configuration file, used when no config_manager is given
        concurrent: Run all compressors at once in "all" mode
        config_manager: Already initialized configuration manager
        logger: Logger handed to the invoker

    Returns:
        CompressionResult for a single compressor, BatchResult for "all"

    Raises:
        CompressorError: If the single requested compressor fails
        ConfigurationError: If the options or configuration are invalid
        FileNotFoundError: If the input file does not exist
    """
    if config_manager is None:
        config_manager = ConfigManager(config_path=config_path)
        await config_manager.initialize()

    settings = await config_manager.compressor_settings()
    options = parse_option(option)

    if '$1' in output:
        output = set_file_name_min(input, output)

    invoker = Invoker(settings, logger)

    if compressor == ALL:
        return await invoker.run_all(input, output, options, concurrent=concurrent)
    return await invoker.run(compressor, input, output, options)


def format_result(result: CompressionResult) -> str:
    """Render one result as a single report line."""
    return (
        f'{result.compressor}: {result.output_path} '
        f'{result.before.raw} -> {result.after.raw} '
        f'(gzip {result.before.gzip} -> {result.after.gzip})'
    )


def print_report(result: Union[CompressionResult, BatchResult]) -> None:
    """Print results to stdout and failures to stderr."""
    if isinstance(result, CompressionResult):
        print(format_result(result))
        return

    for name, outcome in result.outcomes.items():
        if isinstance(outcome, CompressionResult):
            print(format_result(outcome))
        else:
            print(f'{name}: failed ({outcome.kind.value}): {outcome}', file=sys.stderr)


def list_compressors() -> None:
    """Print the registered compressors with their languages and runtime."""
    for spec in COMPRESSORS.values():
        print(f"{spec.name:<14} {','.join(sorted(spec.languages)):<12} {spec.runtime.value}")


async def main_async(argv: Optional[List[str]] = None) -> int:
    """Run the command line interface and return the exit code."""
    args = parse_arguments(argv)

    if args.list:
        list_compressors()
        return 0

    config_manager = ConfigManager(config_path=args.config)
    logging_manager = LoggingManager(config_manager)

    try:
        await config_manager.initialize()
        if args.debug:
            await config_manager.set('logging.level', 'DEBUG')
            await config_manager.set('logging.console.level', 'DEBUG')
        await logging_manager.initialize()
    except (ManagerInitializationError, ConfigurationError) as e:
        print(f'Error: {e}', file=sys.stderr)
        return 2

    logger = logging_manager.get_logger('minidispatch')
    logger.debug(f'Managers ready: {[m.status() for m in (config_manager, logging_manager)]}')

    try:
        result = await run(
            args.compressor,
            args.input,
            args.output,
            option=args.option,
            concurrent=args.concurrent,
            config_manager=config_manager,
            logger=logger,
        )
    except ConfigurationError as e:
        print(f'Error: {e}', file=sys.stderr)
        return 2
    except (CompressorError, FileNotFoundError) as e:
        print(f'Error: {e}', file=sys.stderr)
        return 1
    finally:
        await logging_manager.shutdown()
        await config_manager.shutdown()

    print_report(result)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the minidispatch console script."""
    try:
        return asyncio.run(main_async(argv))
    except KeyboardInterrupt:
        print('\nStopped by user.', file=sys.stderr)
        return 130


if __name__ == '__main__':
    sys.exit(main())
