from __future__ import annotations

import logging
import logging.handlers
import os
import pathlib
import sys
from typing import Any, Dict, List, Optional, Union

import structlog
from pythonjsonlogger import jsonlogger

from minidispatch.core.base import MinidispatchManager
from minidispatch.utils.exceptions import ManagerInitializationError, ManagerShutdownError


class LoggingManager(MinidispatchManager):
    """Manages logging configuration and access.

    Configures Python's logging module with console and file handlers based
    on the ``logging`` configuration section, and hands out loggers to the
    rest of the application. With the ``json`` format, records are rendered
    by python-json-logger and loggers are structlog loggers.
    """

    # Mapping from string log levels to logging module constants
    LOG_LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    def __init__(self, config_manager: Any) -> None:
        """Initialize the Logging Manager.

        Args:
            config_manager: The Configuration Manager to use for logging settings.
        """
        super().__init__(name="logging_manager")
        self._config_manager = config_manager
        self._root_logger: Optional[logging.Logger] = None
        self._file_handler: Optional[logging.Handler] = None
        self._console_handler: Optional[logging.Handler] = None
        self._log_directory: Optional[pathlib.Path] = None
        self._enable_structlog = False
        self._handlers: List[logging.Handler] = []

    async def initialize(self) -> None:
        """Initialize the Logging Manager.

        Raises:
            ManagerInitializationError: If initialization fails.
        """
        try:
            logging_config = await self._config_manager.get("logging", {})
            log_level = self._level(logging_config.get("level", "INFO"))
            log_format = str(logging_config.get("format", "text")).lower()
            file_config = logging_config.get("file", {})
            console_config = logging_config.get("console", {})

            self._root_logger = logging.getLogger()
            self._root_logger.setLevel(log_level)

            # Drop handlers left behind by an earlier initialization
            for handler in self._handlers:
                self._root_logger.removeHandler(handler)
                handler.close()
            self._handlers = []
            self._console_handler = None
            self._file_handler = None

            self._enable_structlog = False
            if log_format == "json":
                self._enable_structlog = True
                formatter = self._create_json_formatter()
            else:
                formatter = logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                )

            if console_config.get("enabled", True):
                self._console_handler = logging.StreamHandler(sys.stderr)
                self._console_handler.setLevel(self._level(console_config.get("level", "INFO")))
                self._console_handler.setFormatter(formatter)
                self._add_handler(self._console_handler)

            if file_config.get("enabled", False):
                file_path = file_config.get("path", "logs/minidispatch.log")
                self._log_directory = pathlib.Path(file_path).parent
                os.makedirs(self._log_directory, exist_ok=True)

                self._file_handler = logging.handlers.RotatingFileHandler(
                    file_path,
                    maxBytes=self._parse_rotation(file_config.get("rotation", "10 MB")),
                    backupCount=self._parse_retention(file_config.get("retention", "5 days")),
                )
                self._file_handler.setLevel(log_level)
                self._file_handler.setFormatter(formatter)
                self._add_handler(self._file_handler)

            if self._enable_structlog:
                self._configure_structlog()

            self._root_logger.debug("Logging Manager initialized")

            self._initialized = True
            self._healthy = True

        except Exception as e:
            raise ManagerInitializationError(
                f"Failed to initialize LoggingManager: {str(e)}",
                manager_name=self.name,
            ) from e

    def _add_handler(self, handler: logging.Handler) -> None:
        self._root_logger.addHandler(handler)
        self._handlers.append(handler)

    def _level(self, name: Any) -> int:
        return self.LOG_LEVELS.get(str(name).lower(), logging.INFO)

    @staticmethod
    def _parse_rotation(rotation: Any) -> int:
        """Parse a rotation size such as "10 MB" into bytes."""
        if isinstance(rotation, str) and "MB" in rotation:
            return int(rotation.split()[0]) * 1024 * 1024
        if isinstance(rotation, int):
            return rotation
        return 10 * 1024 * 1024

    @staticmethod
    def _parse_retention(retention: Any) -> int:
        """Parse a retention such as "5 days" into a backup count."""
        if isinstance(retention, str) and "days" in retention:
            return int(retention.split()[0])
        if isinstance(retention, int):
            return retention
        return 5

    def _create_json_formatter(self) -> logging.Formatter:
        """Create a JSON formatter for log records.

        Returns:
            logging.Formatter: A formatter that outputs logs in JSON format.
        """
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
            json_ensure_ascii=False,
        )

    def _configure_structlog(self) -> None:
        """Configure structlog to hand its events to stdlib logging."""
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.stdlib.render_to_log_kwargs,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str) -> Union[logging.Logger, Any]:
        """Get a logger for a specific component.

        Args:
            name: The name of the component requesting a logger.

        Returns:
            Union[logging.Logger, Any]: A structlog logger when JSON logging
            is enabled, a standard logger otherwise.
        """
        if self._initialized and self._enable_structlog:
            return structlog.get_logger(name)
        return logging.getLogger(name)

    async def shutdown(self) -> None:
        """Shut down the Logging Manager.

        Raises:
            ManagerShutdownError: If shutdown fails.
        """
        if not self._initialized:
            return

        try:
            for handler in self._handlers:
                self._root_logger.removeHandler(handler)
                handler.flush()
                handler.close()
            self._handlers = []

            self._initialized = False
            self._healthy = False

        except Exception as e:
            raise ManagerShutdownError(
                f"Failed to shut down LoggingManager: {str(e)}",
                manager_name=self.name,
            ) from e

    def status(self) -> Dict[str, Any]:
        """Get the status of the Logging Manager.

        Returns:
            Dict[str, Any]: Status information about the Logging Manager.
        """
        status = super().status()

        if self._initialized:
            status.update(
                {
                    "log_directory": str(self._log_directory) if self._log_directory else None,
                    "handlers": {
                        "console": self._console_handler in self._handlers,
                        "file": self._file_handler in self._handlers,
                    },
                    "structured_logging": self._enable_structlog,
                }
            )

        return status
