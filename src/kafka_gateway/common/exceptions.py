"""
Exception types and error classification for kafka_gateway.

Provides:
- ErrorCategory enum for retry decisions
- Typed exception hierarchy for gateway errors
- Classification helpers used by the consumer reset path
"""

import errno
from enum import Enum
from typing import Any, Optional

import aiohttp

# REST proxy error codes (first three digits mirror the HTTP status)
TOPIC_NOT_FOUND_CODE = 40401
CONSUMER_INSTANCE_NOT_FOUND_CODE = 40403


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., connection refused, 5xx responses)
        PERMANENT: Failures that won't succeed on retry
                   (e.g., 4xx responses, invalid schemas)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error should trigger a retry."""
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class TransientError(GatewayError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(GatewayError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class ConfigurationError(PermanentError):
    """Invalid configuration."""

    pass


class ConsumerDisposedError(PermanentError):
    """Operation attempted on a consumer that has been disposed."""

    pass


# =============================================================================
# Gateway HTTP Errors
# =============================================================================


class GatewayHTTPError(GatewayError):
    """
    Error response returned by the REST gateway.

    The gateway reports failures as ``{"error_code": 40401, "message": "..."}``
    bodies. ``status`` is the HTTP status, ``error_code`` the gateway code
    (falls back to the status when the body carries none).
    """

    def __init__(
        self,
        message: str,
        status: int,
        error_code: Optional[int] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, context=context)
        self.status = status
        self.error_code = error_code if error_code is not None else status

    @property
    def category(self) -> ErrorCategory:  # type: ignore[override]
        return classify_http_status(self.status)

    def __str__(self) -> str:
        return f"{self.message} (status={self.status}, error_code={self.error_code})"


class TopicNotFoundError(GatewayHTTPError):
    """The requested topic does not exist (yet)."""

    pass


class ConsumerInstanceNotFoundError(GatewayHTTPError):
    """The gateway no longer knows the consumer instance."""

    pass


def error_from_response(status: int, payload: Any) -> GatewayHTTPError:
    """
    Build the matching GatewayHTTPError for a gateway error response.

    Args:
        status: HTTP response status
        payload: Decoded response body (dict, or anything else)

    Returns:
        GatewayHTTPError subclass instance
    """
    error_code: Optional[int] = None
    message = f"Gateway request failed with status {status}"
    if isinstance(payload, dict):
        raw_code = payload.get("error_code")
        if isinstance(raw_code, int):
            error_code = raw_code
        message = payload.get("message") or message

    if error_code == TOPIC_NOT_FOUND_CODE:
        return TopicNotFoundError(message, status, error_code)
    if error_code == CONSUMER_INSTANCE_NOT_FOUND_CODE:
        return ConsumerInstanceNotFoundError(message, status, error_code)
    return GatewayHTTPError(message, status, error_code)


class RetriesExhaustedError(GatewayError):
    """
    Publishing gave up after the configured number of retries.

    Attributes:
        source: The error raised by the last publish attempt
        topic: Topic the message was published to
        attempts: Number of publish attempts made (first attempt included)
    """

    category = ErrorCategory.PERMANENT

    def __init__(self, source: BaseException, topic: str, attempts: int):
        super().__init__(
            "Max retries exceeded",
            cause=source,
            context={"topic": topic, "attempts": attempts},
        )
        self.source = source
        self.topic = topic
        self.attempts = attempts

    @property
    def retries(self) -> int:
        """Retries made after the first attempt."""
        return self.attempts - 1


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """
    Classify HTTP status code into error category.

    Args:
        status_code: HTTP response status

    Returns:
        Appropriate ErrorCategory
    """
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code in (408, 429):
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def is_topic_not_found(exc: BaseException) -> bool:
    """Whether the gateway reported the topic as missing."""
    if isinstance(exc, TopicNotFoundError):
        return True
    return getattr(exc, "error_code", None) == TOPIC_NOT_FOUND_CODE


def is_connection_reset(exc: BaseException) -> bool:
    """Whether the transport connection was dropped by the peer."""
    if isinstance(exc, (ConnectionResetError, aiohttp.ServerDisconnectedError)):
        return True
    if isinstance(exc, aiohttp.ClientOSError) and exc.errno == errno.ECONNRESET:
        return True
    return False


def classify_exception(exc: BaseException) -> ErrorCategory:
    """
    Classify an exception into error category.

    Args:
        exc: Exception to classify

    Returns:
        Appropriate ErrorCategory
    """
    # Already classified
    if isinstance(exc, GatewayError):
        return exc.category

    if is_connection_reset(exc):
        return ErrorCategory.TRANSIENT

    if isinstance(exc, (aiohttp.ClientConnectionError, OSError)):
        return ErrorCategory.TRANSIENT

    if isinstance(exc, aiohttp.ClientResponseError):
        return classify_http_status(exc.status)

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    connection_markers = (
        "connection refused",
        "connection reset",
        "connection aborted",
        "network unreachable",
        "name resolution",
        "broken pipe",
    )
    if any(m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN
