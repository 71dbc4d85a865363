"""
Frame envelope utilities for the real-time wire protocol.

Every frame exchanged over a live connection has the same shape:
- type: str
- payload: dict

Timestamps inside payloads are ISO 8601 UTC strings with a 'Z' suffix.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


def utc_now_z() -> str:
    """Return current UTC time in ISO 8601 format with 'Z' suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_frame(frame_type: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Create a normalized frame envelope.

    Args:
        frame_type: Type tag of the frame
        payload: Frame payload

    Returns:
        dict: {"type": frame_type, "payload": payload}
    """
    return {"type": frame_type, "payload": payload or {}}


def stamped(payload: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of payload carrying the current timestamp."""
    return {**payload, "timestamp": utc_now_z()}
