from __future__ import annotations

import json
import os
import pathlib
from copy import deepcopy
from typing import Any, Dict, List, Optional, Set, Union

import aiofiles
import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from minidispatch.compress.config import CompressorSettings
from minidispatch.core.base import MinidispatchManager
from minidispatch.utils.exceptions import ConfigurationError, ManagerInitializationError


class ConfigSchema(BaseModel):
    """Schema for validating configuration data.

    This model defines the expected structure and default values for the
    minidispatch configuration.
    """
    logging: Dict[str, Any] = Field(
        default_factory=lambda: {
            'level': 'INFO',
            'format': 'text',
            'file': {
                'enabled': False,
                'path': 'logs/minidispatch.log',
                'rotation': '10 MB',
                'retention': '5 days',
            },
            'console': {
                'enabled': True,
                'level': 'WARNING',
            },
        },
        description='Logging settings',
    )
    compressors: Dict[str, Any] = Field(
        default_factory=lambda: CompressorSettings().model_dump(mode='json'),
        description='Compressor lookup and size reporting settings',
    )

    @model_validator(mode='after')
    def validate_logging_format(self) -> 'ConfigSchema':
        """Validate that the log format is one we can render."""
        if str(self.logging.get('format', 'text')).lower() not in ('text', 'json'):
            raise ValueError('Logging format must be "text" or "json".')
        return self

    @model_validator(mode='after')
    def validate_compressors(self) -> 'ConfigSchema':
        """Validate the compressors section against CompressorSettings."""
        try:
            CompressorSettings(**self.compressors)
        except ValidationError as e:
            raise ValueError(f'Invalid compressors section: {e}') from e
        return self


class ConfigManager(MinidispatchManager):
    """Asynchronous configuration manager.

    This manager handles loading, validating, and providing access to
    configuration settings from files and environment variables.

    Attributes:
        _config_path: Path to the configuration file
        _env_prefix: Prefix for environment variables
        _config: The loaded configuration
        _loaded_from_file: Whether configuration was loaded from a file
        _env_vars_applied: Set of applied environment variables
    """

    def __init__(
            self,
            config_path: Optional[Union[str, pathlib.Path]] = None,
            env_prefix: str = 'MINIDISPATCH_'
    ) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
            env_prefix: Prefix for environment variables
        """
        super().__init__(name='config_manager')
        self._config_path = pathlib.Path(config_path) if config_path else pathlib.Path('minidispatch.yaml')
        self._env_prefix = env_prefix
        self._config: Dict[str, Any] = {}
        self._loaded_from_file = False
        self._env_vars_applied: Set[str] = set()

    async def initialize(self) -> None:
        """Initialize the configuration manager asynchronously.

        Loads configuration from default schema, file, and environment variables.

        Raises:
            ManagerInitializationError: If initialization fails
        """
        try:
            self._config = ConfigSchema().model_dump()
            await self._load_from_file()
            self._apply_env_vars()
            await self._validate_config()

            self._initialized = True
            self._healthy = True
        except Exception as e:
            raise ManagerInitializationError(
                f'Failed to initialize ConfigManager: {str(e)}',
                manager_name=self.name
            ) from e

    async def _load_from_file(self) -> None:
        """Load configuration from a file asynchronously.

        Raises:
            ConfigurationError: If the file cannot be parsed
        """
        if not self._config_path.exists():
            return

        try:
            async with aiofiles.open(self._config_path, 'r', encoding='utf-8') as f:
                content = await f.read()

                if self._config_path.suffix.lower() in ('.yaml', '.yml'):
                    file_config = yaml.safe_load(content)
                elif self._config_path.suffix.lower() == '.json':
                    file_config = json.loads(content)
                else:
                    raise ConfigurationError(
                        f'Unsupported config file format: {self._config_path.suffix}',
                        config_key='config_path'
                    )

                if file_config:
                    if not isinstance(file_config, dict):
                        raise ConfigurationError(
                            f'Config file {self._config_path} must contain a mapping',
                            config_key='config_path'
                        )
                    self._merge_config(file_config)
                    self._loaded_from_file = True
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f'Error parsing config file {self._config_path}: {str(e)}',
                config_key='config_path'
            ) from e

    def _apply_env_vars(self) -> None:
        """Apply environment variables to the configuration.

        ``MINIDISPATCH_LOGGING_LEVEL=debug`` sets ``logging.level``.
        """
        for env_name, env_value in os.environ.items():
            if not env_name.startswith(self._env_prefix):
                continue

            parts = env_name[len(self._env_prefix):].lower().split('_')
            config_path = self._resolve_env_path(self._config, parts)
            self._set_nested_value(self._config, config_path, self._parse_env_value(env_value))
            self._env_vars_applied.add(env_name)

    @staticmethod
    def _resolve_env_path(config: Dict[str, Any], parts: List[str]) -> List[str]:
        """Group environment variable name parts into configuration keys.

        Keys may contain underscores themselves, so the longest run of parts
        naming an existing key wins: ``COMPRESSORS_GZIP_LEVEL`` becomes
        ``['compressors', 'gzip_level']``. Unknown keys are split on every
        underscore.
        """
        path: List[str] = []
        node: Any = config
        i = 0
        while i < len(parts):
            for j in range(len(parts), i, -1):
                key = '_'.join(parts[i:j])
                if isinstance(node, dict) and key in node:
                    break
            else:
                key, j = parts[i], i + 1
            path.append(key)
            node = node.get(key) if isinstance(node, dict) else None
            i = j
        return path

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse environment variable values into appropriate types.

        Args:
            value: The string value from the environment

        Returns:
            The parsed value (bool, int, float, or string)
        """
        if value.lower() in ('true', 'yes', 'on'):
            return True
        if value.lower() in ('false', 'no', 'off'):
            return False

        try:
            if value.isdigit() or (value.startswith('-') and value[1:].isdigit()):
                return int(value)
            return float(value)
        except ValueError:
            return value

    def _set_nested_value(self, config: Dict[str, Any], path: List[str], value: Any) -> None:
        """Set a nested value in the configuration dictionary.

        Args:
            config: The configuration dictionary
            path: List of keys forming the path to the value
            value: The value to set
        """
        if not path:
            return

        if len(path) == 1:
            config[path[0]] = value
            return

        key = path[0]
        if not isinstance(config.get(key), dict):
            config[key] = {}

        self._set_nested_value(config[key], path[1:], value)

    async def _validate_config(self) -> None:
        """Validate the configuration against the schema.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        try:
            self._config = ConfigSchema(**self._config).model_dump()
        except ValidationError as e:
            errors = e.errors()
            error_details = ', '.join((
                f"{'.'.join((str(loc) for loc in error['loc']))}: {error['msg']}"
                for error in errors
            ))
            raise ConfigurationError(
                f'Invalid configuration: {error_details}',
                details={'validation_errors': errors}
            ) from e

    async def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key.

        Args:
            key: The configuration key (dot-separated for nested values)
            default: Default value if the key doesn't exist

        Returns:
            The configuration value or default

        Raises:
            ConfigurationError: If the manager isn't initialized
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot access configuration before initialization',
                config_key=key
            )

        result: Any = self._config
        try:
            for part in key.split('.'):
                result = result[part]
            return result
        except (KeyError, TypeError):
            return default

    async def set(self, key: str, value: Any) -> None:
        """Set a configuration value by key.

        Args:
            key: The configuration key (dot-separated for nested values)
            value: The value to set

        Raises:
            ConfigurationError: If the manager isn't initialized or the value is invalid
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot modify configuration before initialization',
                config_key=key
            )

        new_config = deepcopy(self._config)
        self._set_nested_value(new_config, key.split('.'), value)

        try:
            self._config = ConfigSchema(**new_config).model_dump()
        except ValidationError as e:
            raise ConfigurationError(
                f'Invalid configuration value for {key}: {str(e)}',
                config_key=key,
                details={'validation_errors': e.errors()}
            ) from e

    async def compressor_settings(self) -> CompressorSettings:
        """Get the compressors section as a CompressorSettings model."""
        return CompressorSettings.from_dict(await self.get('compressors', {}))

    def _merge_config(
            self,
            from_config: Dict[str, Any],
            to_config: Optional[Dict[str, Any]] = None
    ) -> None:
        """Merge a configuration dictionary into another.

        Args:
            from_config: The source configuration
            to_config: The target configuration (defaults to self._config)
        """
        if to_config is None:
            to_config = self._config

        for key, value in from_config.items():
            if isinstance(to_config.get(key), dict) and isinstance(value, dict):
                self._merge_config(value, to_config[key])
            elif value not in [None, '', {}]:
                to_config[key] = value

    async def shutdown(self) -> None:
        """Shut down the configuration manager."""
        self._initialized = False
        self._healthy = False

    def status(self) -> Dict[str, Any]:
        """Get the status of the configuration manager.

        Returns:
            Dictionary with status information
        """
        status = super().status()
        status.update({
            'config_file': str(self._config_path) if self._loaded_from_file else None,
            'loaded_from_file': self._loaded_from_file,
            'env_vars_applied': len(self._env_vars_applied),
        })
        return status
