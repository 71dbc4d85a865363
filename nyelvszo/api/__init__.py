"""
API module for the nyelvszo real-time server.

The WebSocket endpoint and the management routes of the real-time layer.
"""

from .real_time import realtime_router
from .websocket_admin import websocket_admin_router

__all__ = ["realtime_router", "websocket_admin_router"]
