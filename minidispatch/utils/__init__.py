"""Utility functions and classes for minidispatch."""

from minidispatch.utils.exceptions import (
    CompressorError,
    CompressorErrorKind,
    ConfigurationError,
    InvalidByteCountError,
    ManagerError,
    ManagerInitializationError,
    ManagerShutdownError,
    MinidispatchError,
)
