"""Core package containing the configuration and logging managers."""

from minidispatch.core.base import MinidispatchManager
from minidispatch.core.config_manager import ConfigManager
from minidispatch.core.logging_manager import LoggingManager
