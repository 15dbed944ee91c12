"""
Custom exceptions for the ingestion engine with structured error context.

Every exception carries a context dictionary for debugging and monitoring,
and is marked either retryable or non-retryable. Retryable errors never
leave the Fetcher or the Batch Loader: once the retry ceiling is reached
they are converted into their fatal counterpart.

Exception Hierarchy:
    ETLException (base)
    ├── ExtractionError
    │   ├── FetchError
    │   │   ├── FetchTransientError      (retryable: network, 5xx, 429)
    │   │   ├── FetchExhaustedError      (fatal: retry ceiling reached)
    │   │   └── NotFoundError            (fatal: dataset kind not published)
    │   ├── UnknownFormatError           (fatal: artifact is neither array nor JSONL)
    │   └── DecodeError                  (fatal: malformed record)
    ├── LoadError
    │   ├── StoreTransientError          (retryable: timeout, connection, serialization)
    │   └── StoreFatalError              (fatal: constraint, schema, retries exhausted)
    ├── CheckpointError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class ETLException(Exception):
    """
    Base exception for all ETL-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (dataset kind, offsets, etc.)
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
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

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
        """Convert exception to dictionary for logging/storage."""
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

class RetryableError(ETLException):
    """
    Mixin for errors that should trigger retry logic.

    ``retry_after`` is a server-provided hint (seconds) that overrides the
    computed backoff for the next attempt.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after is not None:
            self.context["retry_after"] = retry_after


class NonRetryableError(ETLException):
    """Mixin for errors that should NOT trigger retry logic."""
    pass


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ETLException):
    """Base exception for fetch/detect/decode failures."""
    pass


class FetchError(ExtractionError):
    """
    Exception raised when the discovery or download endpoint fails.

    Context should include:
        - url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - dataset_kind: Requested dataset kind (if applicable)
    """
    pass


class FetchTransientError(RetryableError, FetchError):
    """Connection-level failures, HTTP 5xx and HTTP 429."""
    pass


class FetchExhaustedError(NonRetryableError, FetchError):
    """Raised once the fetch retry ceiling has been reached."""
    pass


class NotFoundError(NonRetryableError, FetchError):
    """The discovery endpoint does not publish the requested dataset kind."""
    pass


class UnknownFormatError(NonRetryableError, ExtractionError):
    """
    Exception raised when an artifact is neither a JSON array nor JSON Lines.

    Context should include:
        - file_path: Path to the artifact
        - first_char: First non-whitespace character found
    """
    pass


class DecodeError(NonRetryableError, ExtractionError):
    """
    Exception raised when a record cannot be decoded.

    Context should include:
        - file_path: Path to the artifact
        - record_index: 1-based index of the failing record
        - line_number: Line number (line-delimited artifacts only)
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Base exception for data loading failures."""
    pass


class StoreTransientError(RetryableError, LoadError):
    """Timeouts, dropped connections and serialization conflicts."""
    pass


class StoreFatalError(NonRetryableError, LoadError):
    """
    Exception raised when a batch cannot be committed.

    Context should include:
        - stream: Dataset kind being loaded
        - batch_size: Number of records in the failed batch
        - attempts: Number of attempts made (when retries were exhausted)
        - sqlstate: Database error code (if available)
    """
    pass


# ============================================================================
# Checkpoint Errors
# ============================================================================

class CheckpointError(NonRetryableError):
    """
    Exception raised when the checkpoint side-file cannot be read or written.

    Context should include:
        - path: Checkpoint file path
        - operation: Operation that failed (load, save)
    """
    pass
