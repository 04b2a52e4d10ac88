"""
Standardized error classification for the listing feed service.

Provides one hierarchy for every failure the ingestion and caching layers
can produce. Each error carries a source, a human-readable message and a
flag saying whether the operation may be retried by the caller.

Transport failures are classified into a fixed set of reasons so that
schedule state and logs can report them uniformly.
"""
import ftplib
import socket
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional


class FeedError(Exception):
    """
    Base exception for all feed service errors.

    Attributes:
        message: Human-readable error description
        source: Component or upstream name (e.g., 'ftp', 'parser', 'partner-api')
        retryable: Whether the caller may retry the operation
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.source = source
        self.retryable = retryable

    def __str__(self) -> str:
        if self.source:
            return f"[{self.source}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source": self.source,
            "retryable": self.retryable,
        }


# =============================================================================
# Transport
# =============================================================================

REASON_TIMEOUT = "timeout"
REASON_CONNECTION_REFUSED = "connection refused"
REASON_CONNECTION_FAILED = "connection failed"
REASON_AUTHENTICATION = "authentication rejected"
REASON_RESOURCE_VANISHED = "resource vanished"
REASON_INTERRUPTED = "transfer interrupted"
REASON_NO_FEEDS = "no feeds available"

RETRYABLE_REASONS = frozenset({
    REASON_TIMEOUT,
    REASON_CONNECTION_REFUSED,
    REASON_CONNECTION_FAILED,
    REASON_INTERRUPTED,
})


class TransportError(FeedError):
    """
    The remote file server could not be listed or read.

    The reason is one of the REASON_* constants; retryability follows from it.
    """

    def __init__(
        self,
        reason: str,
        message: Optional[str] = None,
        source: Optional[str] = None,
    ):
        super().__init__(
            message=message or reason,
            source=source,
            retryable=reason in RETRYABLE_REASONS,
        )
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


def classify_transport_error(exc: BaseException, source: Optional[str] = None) -> TransportError:
    """
    Map a raw ftplib/socket/OS error onto a TransportError.

    Args:
        exc: The exception raised by the transport internals
        source: Transport name for the error context

    Returns:
        TransportError with one of the REASON_* constants
    """
    if isinstance(exc, TransportError):
        return exc

    text = f"{type(exc).__name__}: {exc}"

    if isinstance(exc, (socket.timeout, TimeoutError)):
        return TransportError(REASON_TIMEOUT, text, source)

    if isinstance(exc, ftplib.error_perm):
        code = str(exc)[:3]
        if code in ("530", "532"):
            return TransportError(REASON_AUTHENTICATION, text, source)
        if code in ("550", "450", "553"):
            return TransportError(REASON_RESOURCE_VANISHED, text, source)
        return TransportError(REASON_CONNECTION_FAILED, text, source)

    if isinstance(exc, ftplib.error_temp):
        return TransportError(REASON_CONNECTION_FAILED, text, source)

    if isinstance(exc, FileNotFoundError):
        return TransportError(REASON_RESOURCE_VANISHED, text, source)

    if isinstance(exc, ConnectionRefusedError):
        return TransportError(REASON_CONNECTION_REFUSED, text, source)

    if isinstance(exc, (EOFError, ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
        return TransportError(REASON_INTERRUPTED, text, source)

    if isinstance(exc, (ftplib.Error, OSError)):
        return TransportError(REASON_CONNECTION_FAILED, text, source)

    return TransportError(REASON_CONNECTION_FAILED, text, source)


@contextmanager
def transport_error_guard(source: Optional[str] = None) -> Iterator[None]:
    """Context manager that turns unexpected transport failures into TransportError."""
    try:
        yield
    except TransportError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise classify_transport_error(exc, source) from exc


# =============================================================================
# Parsing, cache, scheduling
# =============================================================================


class ParseError(FeedError):
    """Feed bytes are malformed for the declared wire format."""

    def __init__(self, message: str, source: Optional[str] = "parser"):
        super().__init__(message=message, source=source, retryable=False)


class NormalizationError(FeedError):
    """
    A single feed record could not be normalized.

    Raised per record and caught by the parser; the record is dropped.
    """

    def __init__(self, message: str, record_index: Optional[int] = None):
        super().__init__(message=message, source="parser", retryable=False)
        self.record_index = record_index


class CacheError(FeedError):
    """The cache store cannot serve a request. Callers treat it as a miss."""

    def __init__(self, message: str, namespace: Optional[str] = None):
        super().__init__(message=message, source="cache", retryable=False)
        self.namespace = namespace


class ScheduleConflict(FeedError):
    """A refresh cycle was requested while another one is running."""

    def __init__(self, message: str = "refresh already running"):
        super().__init__(message=message, source="scheduler", retryable=False)


class InvalidScheduleError(FeedError, ValueError):
    """A cron expression was rejected."""

    def __init__(self, expression: str, detail: str = ""):
        message = f"Invalid cron expression '{expression}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message=message, source="scheduler", retryable=False)
        self.expression = expression


class PropertyNotFoundError(FeedError):
    """No property with the requested identifier exists in the current snapshot."""

    def __init__(self, property_id: str):
        super().__init__(
            message=f"Property {property_id} not found",
            source="lookup",
            retryable=False,
        )
        self.property_id = property_id


# =============================================================================
# Partner API (HTTP)
# =============================================================================


class APIError(FeedError):
    """
    Base exception for partner API errors.

    Attributes:
        status_code: HTTP status code if applicable
        response_data: Raw response data for debugging
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message=message, source=source, retryable=retryable)
        self.status_code = status_code
        self.response_data = response_data

    def __str__(self) -> str:
        text = super().__str__()
        if self.status_code:
            text = f"{text} (HTTP {self.status_code})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        data["response_data"] = self.response_data
        return data


class RetryableError(APIError):
    """
    Transient errors that should trigger a retry.

    Examples:
    - HTTP 500-599 server errors
    - Network timeouts
    - Connection reset errors
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            source=source,
            status_code=status_code,
            response_data=response_data,
            retryable=True,
        )


class RateLimitError(APIError):
    """
    Rate limiting error (HTTP 429).

    The retry_after attribute indicates how long to wait.
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        retry_after: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            source=source,
            status_code=429,
            response_data=response_data,
            retryable=True,
        )
        self.retry_after = retry_after or 60


class FatalError(APIError):
    """Non-retryable errors that indicate a permanent problem."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            source=source,
            status_code=status_code,
            response_data=response_data,
            retryable=False,
        )


class AuthenticationError(FatalError):
    """Authentication failed - invalid or expired bearer token."""

    def __init__(
        self,
        message: str = "Authentication failed - check partner API token",
        source: Optional[str] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message, source=source, status_code=401, response_data=response_data
        )


class NotFoundError(FatalError):
    """Requested resource not found (HTTP 404)."""

    def __init__(
        self,
        message: str = "Resource not found",
        source: Optional[str] = None,
        resource_id: Optional[str] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        if resource_id:
            message = f"{message}: {resource_id}"
        super().__init__(
            message=message, source=source, status_code=404, response_data=response_data
        )
        self.resource_id = resource_id


class ValidationError(FatalError):
    """Request validation failed (HTTP 400)."""

    def __init__(
        self,
        message: str = "Invalid request parameters",
        source: Optional[str] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message, source=source, status_code=400, response_data=response_data
        )


class ConfigurationError(FatalError):
    """Required settings are missing for the requested operation."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        missing_config: Optional[str] = None,
    ):
        super().__init__(message=message, source=source)
        self.missing_config = missing_config


def classify_http_error(
    status_code: int, response_text: str = "", source: Optional[str] = None
) -> APIError:
    """
    Classify an HTTP error into the appropriate APIError subclass.

    Args:
        status_code: HTTP status code
        response_text: Response body text
        source: API source name

    Returns:
        Appropriate APIError subclass instance
    """
    if status_code == 429:
        return RateLimitError(
            message=f"Rate limited: {response_text[:200]}", source=source
        )
    elif status_code == 401:
        return AuthenticationError(
            message=f"Authentication failed: {response_text[:200]}", source=source
        )
    elif status_code == 403:
        return FatalError(
            message=f"Access forbidden: {response_text[:200]}",
            source=source,
            status_code=403,
        )
    elif status_code == 404:
        return NotFoundError(message=f"Not found: {response_text[:200]}", source=source)
    elif status_code == 400:
        return ValidationError(
            message=f"Bad request: {response_text[:200]}", source=source
        )
    elif 500 <= status_code < 600:
        return RetryableError(
            message=f"Server error: {response_text[:200]}",
            source=source,
            status_code=status_code,
        )
    else:
        return APIError(
            message=f"HTTP error {status_code}: {response_text[:200]}",
            source=source,
            status_code=status_code,
            retryable=False,
        )
