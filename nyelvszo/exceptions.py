"""
Exception hierarchy for the nyelvszo real-time layer.

Protocol, authentication and authorization errors are recovered locally and
turned into error frames. Concurrency errors surface to the calling handler.
Delivery errors are absorbed by the notification retry policy, and transport
errors are treated exactly like a clean disconnect.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .error_types import ErrorCode, ErrorMessages
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorContext:
    """Contextual information attached to every domain error."""

    connection_id: str | None = None
    user_id: str | None = None
    stream_id: str | None = None
    command: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {
            "connection_id": self.connection_id,
            "user_id": self.user_id,
            "stream_id": self.stream_id,
            "command": self.command,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class NyelvSzoError(Exception):
    """
    Base exception for all nyelvszo errors.

    Provides structured error handling with context and metadata
    for proper error categorization and debugging.
    """

    log_level = "error"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        details: dict[str, Any] | None = None,
        user_friendly: str | None = None,
    ):
        """
        Initialize the error.

        Args:
            message: Technical error message
            context: Error context information
            details: Additional error details
            user_friendly: User-facing error message
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.details = details or {}
        self.user_friendly = user_friendly or message
        self.timestamp = datetime.now(UTC)

        self._log_error()

    def _log_error(self) -> None:
        """Log the error with structured context."""
        log_method = getattr(logger, self.log_level, logger.error)
        log_method(
            "nyelvszo error occurred",
            error_type=self.__class__.__name__,
            message=self.message,
            context=self.context.to_dict(),
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "user_friendly": self.user_friendly,
            "context": self.context.to_dict(),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class RealtimeError(NyelvSzoError):
    """Errors that are reported back to a live connection with a stable code."""

    log_level = "warning"
    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str | None = None,
        context: ErrorContext | None = None,
        code: ErrorCode | None = None,
        **kwargs: Any,
    ):
        self.code = code or self.default_code
        super().__init__(message or ErrorMessages.for_code(self.code), context, **kwargs)
        self.details["code"] = self.code.value


class ProtocolError(RealtimeError):
    """Malformed frame or unknown frame type."""

    default_code = ErrorCode.UNKNOWN_MESSAGE_TYPE


class AuthenticationError(RealtimeError):
    """Bad, missing or expired bearer credential."""

    default_code = ErrorCode.AUTH_FAILED


class AuthorizationError(RealtimeError):
    """Role too low for a command, or command needs an authenticated connection."""

    default_code = ErrorCode.INSUFFICIENT_PERMISSIONS


class ConcurrencyError(NyelvSzoError):
    """Expected version did not match the current head of an event stream."""

    log_level = "warning"

    def __init__(self, stream_id: str, expected_version: int, actual_version: int, **kwargs: Any):
        context = kwargs.pop("context", None) or ErrorContext(stream_id=stream_id)
        super().__init__(
            f"Concurrency conflict on stream {stream_id}: expected version {expected_version}, "
            f"actual version {actual_version}",
            context,
            **kwargs,
        )
        self.stream_id = stream_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.details.update({"expected_version": expected_version, "actual_version": actual_version})


class DeliveryError(NyelvSzoError):
    """A notification channel failed to deliver a message."""

    log_level = "warning"

    def __init__(self, message: str, channel: str, context: ErrorContext | None = None, **kwargs: Any):
        super().__init__(message, context, **kwargs)
        self.channel = channel
        self.details["channel"] = channel


class TransportError(NyelvSzoError):
    """Socket-level failure on a live connection."""

    log_level = "info"


class ValidationError(NyelvSzoError):
    """Invalid request data."""

    log_level = "warning"

    def __init__(self, message: str, context: ErrorContext | None = None, field: str | None = None, **kwargs: Any):
        super().__init__(message, context, **kwargs)
        self.field = field
        if field:
            self.details["field"] = field


class ConfigurationError(NyelvSzoError):
    """Missing or invalid configuration."""

    def __init__(self, message: str, context: ErrorContext | None = None, config_key: str | None = None, **kwargs: Any):
        super().__init__(message, context, **kwargs)
        self.config_key = config_key
        if config_key:
            self.details["config_key"] = config_key


class DatabaseError(NyelvSzoError):
    """Event store operation errors."""

    def __init__(self, message: str, context: ErrorContext | None = None, operation: str = "unknown", **kwargs: Any):
        super().__init__(message, context, **kwargs)
        self.operation = operation
        self.details["operation"] = operation


def create_error_context(**kwargs: Any) -> ErrorContext:
    """Create an error context from keyword arguments."""
    return ErrorContext(**kwargs)
