"""
Custom exceptions for the data mover with structured error context.

Errors fall into three tiers that decide how far a failure reaches:

    Row tier      - one row is bad; it is quarantined and the file goes on.
    Source tier   - one source cannot be read; that source is abandoned
                    and the run moves on to the next one.
    Run tier      - network, server, auth or configuration faults; the run
                    stops. Only RetryableError subclasses are retried, and
                    only by the outer runner.

Exception Hierarchy:
    DataMoverException (base)
    ├── RowError
    │   └── ColumnValueError
    │       ├── RequiredValueMissingError
    │       └── UnparseableValueError
    ├── SourceError
    │   ├── SourceReadError
    │   ├── GeneratedFileFormatError
    │   └── HeaderValidationError
    ├── ConfigurationError
    │   ├── UnknownColumnTypeError
    │   └── SchemaCompositionError
    ├── UploadError
    │   ├── TransmissionError
    │   ├── ServerResponseError
    │   ├── ServerUnavailableError
    │   ├── AuthenticationError
    │   ├── StuckUploadError
    │   ├── AttemptsExhaustedError
    │   └── CleanDataCheckError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class DataMoverException(Exception):
    """
    Base exception for all data mover errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, row, status, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(DataMoverException):
    """
    Mixin for errors the outer runner may retry.

    Use this for transient errors like:
    - Connection failures and timeouts
    - Service unavailable (HTTP 503) without the upload-disabled message
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(DataMoverException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Unexpected server responses
    - A stuck upload loop
    - Invalid configuration
    """
    pass


# ============================================================================
# Row Errors
# ============================================================================

class RowError(DataMoverException):
    """Base exception for a single bad row. Always recoverable."""
    pass


class ColumnValueError(RowError):
    """
    Exception raised when one cell cannot be read or converted.

    Context should include:
        - column_name: Column that failed
        - column_type: Logical type of the column
        - value: Raw value (truncated if large)
    """
    pass


class RequiredValueMissingError(ColumnValueError):
    """A required cell was empty after trimming."""
    pass


class UnparseableValueError(ColumnValueError):
    """A cell was present but could not be parsed as the column's type."""
    pass


# ============================================================================
# Source Errors
# ============================================================================

class SourceError(DataMoverException):
    """Base exception for a source that cannot be read any further."""
    pass


class SourceReadError(SourceError):
    """
    Exception raised when reading a row source fails outright.

    Context should include:
        - source_name: Name of the row source
        - row: Row ordinal where the read failed (if known)
    """
    pass


class GeneratedFileFormatError(SourceError):
    """The metadata lines of a generated extract file are malformed."""
    pass


class HeaderValidationError(SourceError):
    """
    Exception raised when an external file's header does not match its schema.

    Context should include:
        - file_path: Path to the file
        - unmatched: Header cells that matched no configured column
        - missing: Required columns absent from the header
    """
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(NonRetryableError):
    """Base exception for invalid configuration found at setup time."""
    pass


class UnknownColumnTypeError(ConfigurationError):
    """A column definition named a type tag that is not recognised."""
    pass


class SchemaCompositionError(ConfigurationError):
    """
    Exception raised when a customer file schema cannot be applied to its base.

    Context should include:
        - table_name: Table the schema describes
        - column_name: Column that caused the failure
    """
    pass


# ============================================================================
# Upload Errors
# ============================================================================

class UploadError(DataMoverException):
    """Base exception for failures talking to the collection server."""
    pass


class TransmissionError(RetryableError, UploadError):
    """The request never got a response (connect failure, timeout, reset)."""
    pass


class ServerUnavailableError(RetryableError, UploadError):
    """HTTP 503 without the upload-disabled acknowledgment."""
    pass


class ServerResponseError(NonRetryableError, UploadError):
    """
    Exception raised for any other non-OK response.

    Context should include:
        - status_code: HTTP status code
        - url: Endpoint that was called
        - response_body: Response body (truncated)
    """
    pass


class AuthenticationError(NonRetryableError, UploadError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class StuckUploadError(NonRetryableError, UploadError):
    """Two failed passes in a row sent no new rows."""
    pass


class AttemptsExhaustedError(NonRetryableError, UploadError):
    """The bounded number of send passes ran out before the source did."""
    pass


class CleanDataCheckError(NonRetryableError, UploadError):
    """The server reported that its tables are not clean for an initial load."""
    pass
