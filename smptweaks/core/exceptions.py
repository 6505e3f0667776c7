"""
Progression store exceptions.

Every store failure is a `ProgressionStoreException` subclass with a stable
`error_code`, a `severity` for log routing and an `is_retryable` flag.
Subclasses set those through class attributes; callers may override any of
them per instance.

The ProgressionManager is the only place these are caught. It turns them into
degraded `StoreResult` values, so gameplay code never handles them directly.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"  # persistence off for the session


def _cause(original_error: Optional[BaseException]) -> Dict[str, Optional[str]]:
    if original_error is None:
        return {"error": None, "error_type": None}
    return {"error": str(original_error), "error_type": type(original_error).__name__}


class ProgressionStoreException(Exception):
    """
    Base class for progression store failures.

    Args:
        message: Human-readable description
        details: Structured context merged into log records
        severity: Overrides the class severity
        is_retryable: Overrides the class retry flag
        error_code: Overrides the class code (defaults to the class name)
    """

    code: Optional[str] = None
    severity_default = ErrorSeverity.ERROR
    retryable_default = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.severity: ErrorSeverity = severity or self.severity_default
        self.is_retryable: bool = (
            self.retryable_default if is_retryable is None else is_retryable
        )
        self.error_code: str = error_code or self.code or type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        if not self.details:
            return f"[{self.error_code}] {self.message}"
        return f"[{self.error_code}] {self.message} | Details: {self.details}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, code={self.error_code!r})"


class ConfigurationError(ProgressionStoreException):
    """A setting is missing or has a value the store cannot use."""

    code = "CONFIG_ERROR"
    severity_default = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
        )


class ConnectivityError(ProgressionStoreException):
    """
    No connection could be opened: server down, bad credentials, an
    uncreatable database file, or a pool checkout that waited too long.
    """

    code = "STORE_UNREACHABLE"
    severity_default = ErrorSeverity.CRITICAL
    retryable_default = True

    def __init__(
        self,
        backend: str,
        message: str,
        original_error: Optional[BaseException] = None,
    ) -> None:
        self.backend = backend
        self.original_error = original_error
        super().__init__(
            f"{backend} store unreachable: {message}",
            details={"backend": backend, **_cause(original_error)},
        )


class SchemaError(ProgressionStoreException):
    """The progression table is absent or malformed and creating it failed."""

    code = "SCHEMA_ERROR"
    severity_default = ErrorSeverity.CRITICAL

    def __init__(self, table: str, original_error: BaseException) -> None:
        self.table = table
        self.original_error = original_error
        super().__init__(
            f"Could not set up table {table!r}: {original_error}",
            details={"table": table, **_cause(original_error)},
        )


class StoreError(ProgressionStoreException):
    """One fetch / upsert / timestamp operation failed."""

    code = "STORE_ERROR"
    retryable_default = True

    def __init__(
        self,
        operation: str,
        player_id: Optional[Any] = None,
        message: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        self.operation = operation
        self.player_id = player_id
        self.original_error = original_error
        if message is None:
            message = str(original_error) if original_error is not None else "failed"
        details = {
            "operation": operation,
            "player_id": None if player_id is None else str(player_id),
            **_cause(original_error),
        }
        if original_error is None:
            details["error"] = message
        super().__init__(f"Store error during {operation}: {message}", details=details)


class ParseError(ProgressionStoreException):
    """A stored timestamp does not match the storage format."""

    code = "TIMESTAMP_PARSE_ERROR"
    severity_default = ErrorSeverity.WARNING

    def __init__(self, raw_value: Any, expected_format: str) -> None:
        self.raw_value = raw_value
        self.expected_format = expected_format
        super().__init__(
            f"Malformed timestamp {raw_value!r}",
            details={"raw_value": repr(raw_value), "expected_format": expected_format},
        )


def is_transient_error(exc: Exception) -> bool:
    return isinstance(exc, ProgressionStoreException) and exc.is_retryable


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """Severity for log routing; non-store exceptions count as ERROR."""
    if isinstance(exc, ProgressionStoreException):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
