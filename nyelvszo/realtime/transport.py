"""
Starlette WebSocket adapter for the Transport interface.
"""

from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from ..exceptions import TransportError
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

# Errors Starlette and the ASGI server raise when the peer has gone away
TRANSPORT_ERRORS = (WebSocketDisconnect, RuntimeError, ConnectionError, OSError)


class WebSocketTransport:
    """Wraps a Starlette WebSocket so the registry can write to it."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    @property
    def remote_address(self) -> str | None:
        client = self.websocket.client
        return f"{client.host}:{client.port}" if client else None

    @property
    def user_agent(self) -> str | None:
        return self.websocket.headers.get("user-agent")

    async def send_json(self, frame: dict[str, Any]) -> None:
        try:
            await self.websocket.send_json(frame)
        except TRANSPORT_ERRORS as e:
            raise TransportError(f"WebSocket send failed: {e}", details={"error_type": type(e).__name__}) from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.is_open:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except TRANSPORT_ERRORS as e:
            logger.debug("WebSocket already closed", error=str(e), error_type=type(e).__name__)
