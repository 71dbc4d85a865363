"""
Stable error codes and error frame builders for the real-time layer.

Codes are part of the wire protocol: clients switch on them, so existing
values must never change.
"""

from enum import Enum
from typing import Any

from .realtime.envelope import build_frame, utc_now_z


class ErrorCode(str, Enum):
    """Error codes carried by `error` and `auth_failed` frames."""

    # Protocol
    INVALID_JSON = "INVALID_JSON"
    MISSING_TYPE = "MISSING_TYPE"
    UNKNOWN_MESSAGE_TYPE = "UNKNOWN_MESSAGE_TYPE"
    MESSAGE_TOO_LARGE = "MESSAGE_TOO_LARGE"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"

    # Authentication
    AUTH_TOKEN_REQUIRED = "AUTH_TOKEN_REQUIRED"
    AUTH_FAILED = "AUTH_FAILED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    ALREADY_AUTHENTICATED = "ALREADY_AUTHENTICATED"

    # Authorization
    UNAUTHORIZED = "UNAUTHORIZED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"

    # Channels and rooms
    INVALID_CHANNELS = "INVALID_CHANNELS"
    INVALID_ROOM = "INVALID_ROOM"

    # Command handlers
    SEARCH_FAILED = "SEARCH_FAILED"
    EDIT_FAILED = "EDIT_FAILED"

    # System
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorMessages:
    """Default human-readable messages per error code."""

    INVALID_JSON = "Invalid JSON message format"
    MISSING_TYPE = "Message type is required"
    UNKNOWN_MESSAGE_TYPE = "Unknown message type"
    MESSAGE_TOO_LARGE = "Message exceeds the maximum allowed size"
    INVALID_PAYLOAD = "Message payload must be an object"
    AUTH_TOKEN_REQUIRED = "Authentication token required"
    AUTH_FAILED = "Authentication failed"
    TOKEN_EXPIRED = "Your session has expired. Please log in again."
    ALREADY_AUTHENTICATED = "Connection is already authenticated; reconnect to change identity"
    UNAUTHORIZED = "Authentication required"
    INSUFFICIENT_PERMISSIONS = "Insufficient permissions"
    INVALID_CHANNELS = "Channels must be an array"
    INVALID_ROOM = "Room ID is required"
    SEARCH_FAILED = "Search failed"
    EDIT_FAILED = "Edit operation failed"
    INTERNAL_ERROR = "Internal server error"

    @classmethod
    def for_code(cls, code: ErrorCode) -> str:
        """Return the default message for an error code."""
        return getattr(cls, code.value, cls.INTERNAL_ERROR)


def create_websocket_error_response(
    code: ErrorCode,
    message: str | None = None,
    details: dict[str, Any] | None = None,
    frame_type: str = "error",
) -> dict[str, Any]:
    """
    Create an error frame for a live connection.

    Args:
        code: Stable error code
        message: Human-readable message (defaults to the code's message)
        details: Additional error details
        frame_type: Frame type, "error" or "auth_failed"

    Returns:
        Error frame dictionary
    """
    payload: dict[str, Any] = {
        "code": code.value,
        "message": message or ErrorMessages.for_code(code),
        "timestamp": utc_now_z(),
    }
    if details:
        payload["details"] = details
    return build_frame(frame_type, payload)
