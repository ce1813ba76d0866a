from __future__ import annotations

import enum
from typing import Any, Dict, Optional


class MinidispatchError(Exception):
    """Base exception for all minidispatch errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, **kwargs: Any) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error information
            **kwargs: Additional error information, merged into details
        """
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.details.update({k: v for k, v in kwargs.items() if v is not None})
        super().__init__(message)

    def __str__(self) -> str:
        """String representation."""
        return f"{self.message}"


class ManagerError(MinidispatchError):
    """Base exception for manager-related errors."""

    def __init__(self, message: str, manager_name: Optional[str] = None, **kwargs: Any) -> None:
        """
        Initialize manager error.

        Args:
            message: Error message
            manager_name: Name of the affected manager
            **kwargs: Additional error information
        """
        super().__init__(message, manager_name=manager_name, **kwargs)
        self.manager_name = manager_name

    def __str__(self) -> str:
        """String representation."""
        if self.manager_name:
            return f"{self.message} (Manager: {self.manager_name})"
        return super().__str__()


class ManagerInitializationError(ManagerError):
    """Exception raised when a manager fails to initialize."""

    pass


class ManagerShutdownError(ManagerError):
    """Exception raised when a manager fails to shut down cleanly."""

    pass


class ConfigurationError(MinidispatchError):
    """Exception raised for configuration-related errors."""

    def __init__(
            self, message: str, *, config_key: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: A descriptive error message.
            config_key: The configuration key that caused the error.
            **kwargs: Additional keyword arguments stored as details.
        """
        super().__init__(message, config_key=config_key, **kwargs)
        self.config_key = config_key


class InvalidByteCountError(ConfigurationError, TypeError):
    """Raised when a byte count cannot be formatted (not a finite number)."""

    pass


class CompressorErrorKind(str, enum.Enum):
    """Why a compressor invocation failed."""

    UNKNOWN_COMPRESSOR = "unknown_compressor"
    UNSUPPORTED_INPUT = "unsupported_input"
    SPAWN_FAILED = "spawn_failed"
    NON_ZERO_EXIT = "non_zero_exit"
    EMPTY_OUTPUT = "empty_output"
    INCOMPATIBLE_RUNTIME = "incompatible_runtime"
    MINIFY_FAILED = "minify_failed"


class CompressorError(MinidispatchError):
    """Exception raised when a compressor cannot produce minified output.

    The message always carries the raw diagnostic text (stderr output or the
    spawn error message) so callers can still match on substrings; ``kind``
    is the structured reason.
    """

    def __init__(
            self,
            message: str,
            *,
            compressor: Optional[str] = None,
            kind: CompressorErrorKind = CompressorErrorKind.NON_ZERO_EXIT,
            diagnostic: str = "",
            returncode: Optional[int] = None,
            **kwargs: Any,
    ) -> None:
        """Initialize a CompressorError.

        Args:
            message: A descriptive error message.
            compressor: Name of the compressor that failed.
            kind: Structured failure reason.
            diagnostic: Raw stderr or spawn error text.
            returncode: Exit status of the process, if it ran.
            **kwargs: Additional keyword arguments stored as details.
        """
        super().__init__(
            message,
            compressor=compressor,
            kind=kind.value,
            returncode=returncode,
            **kwargs,
        )
        self.compressor = compressor
        self.kind = kind
        self.diagnostic = diagnostic
        self.returncode = returncode

    @property
    def incompatible_runtime(self) -> bool:
        """Whether the failure was caused by an outdated runtime."""
        return self.kind == CompressorErrorKind.INCOMPATIBLE_RUNTIME

    def __str__(self) -> str:
        """String representation."""
        if self.compressor:
            return f"{self.message} (Compressor: {self.compressor})"
        return super().__str__()
