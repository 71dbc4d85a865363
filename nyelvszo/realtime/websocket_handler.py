"""
WebSocket connection handling for the real-time layer.

One coroutine per accepted socket: register it with the hub, feed every
inbound frame to the dispatcher, and clean up on every exit path.
"""

from fastapi import WebSocket, WebSocketDisconnect

from ..structured_logging.enhanced_logging_config import bind_request_context, clear_request_context, get_logger
from .hub import RealtimeHub
from .transport import WebSocketTransport

logger = get_logger(__name__)


async def _handle_websocket_message_loop(websocket: WebSocket, connection_id: str, hub: RealtimeHub) -> None:
    """Receive frames until the peer goes away."""
    while True:
        try:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("WebSocket disconnected", connection_id=connection_id, code=message.get("code"))
                break

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await hub.handle_frame(connection_id, raw)

        except WebSocketDisconnect:
            logger.info("WebSocket disconnected", connection_id=connection_id)
            break

        except RuntimeError as e:
            error_message = str(e)
            if "WebSocket is not connected" in error_message or 'Need to call "accept" first' in error_message:
                logger.info("WebSocket connection closed by server", connection_id=connection_id, error=error_message)
                break
            raise


async def handle_websocket_connection(websocket: WebSocket, hub: RealtimeHub) -> None:
    """
    Handle one WebSocket connection from accept to cleanup.

    Args:
        websocket: The WebSocket connection
        hub: The real-time hub (injected from the endpoint)
    """
    await websocket.accept()
    transport = WebSocketTransport(websocket)
    connection_id = await hub.connect(
        transport,
        remote_address=transport.remote_address,
        user_agent=transport.user_agent,
    )
    bind_request_context(connection_id=connection_id)

    try:
        await _handle_websocket_message_loop(websocket, connection_id, hub)
    except Exception as e:  # pylint: disable=broad-except  # Reason: any failure in the loop is treated as a disconnect
        logger.error(
            "WebSocket connection failed",
            connection_id=connection_id,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
    finally:
        await hub.disconnect(connection_id)
        clear_request_context()
