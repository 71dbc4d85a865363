"""
Real-time communication endpoint.

Clients connect anonymously and authenticate in-band with an `auth` frame.
"""

from fastapi import APIRouter, WebSocket

from ..realtime.websocket_handler import handle_websocket_connection
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

realtime_router = APIRouter(tags=["realtime"])


@realtime_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for search, collaboration and notifications."""
    container = getattr(websocket.app.state, "container", None)
    hub = getattr(container, "hub", None) if container else None
    if hub is None:
        logger.warning("WebSocket rejected, real-time hub unavailable")
        await websocket.close(code=1013, reason="Service temporarily unavailable")
        return
    await handle_websocket_connection(websocket, hub)
