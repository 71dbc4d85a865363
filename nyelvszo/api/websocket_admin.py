"""
Management routes for the real-time layer.

HTTP endpoints for connection statistics, session and room listings,
broadcasts, forced disconnects and targeted notifications.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..auth.dependencies import require_role
from ..auth.roles import Role, allowed_channel_grants, features_for
from ..auth.tokens import Identity
from ..exceptions import ValidationError
from ..realtime.envelope import stamped
from ..realtime.hub import RealtimeHub
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

websocket_admin_router = APIRouter(prefix="/api/websocket", tags=["websocket"])


class UserFilter(BaseModel):
    """Broadcast target filter."""

    role: int | str | None = None
    user_id: str | None = Field(default=None, alias="userId")

    model_config = {"populate_by_name": True}


class BroadcastRequest(BaseModel):
    """Request body for a broadcast."""

    message: dict[str, Any] | None = None
    channels: list[str] = Field(default_factory=list)
    user_filter: UserFilter = Field(default_factory=UserFilter, alias="userFilter")

    model_config = {"populate_by_name": True}


class DisconnectRequest(BaseModel):
    """Request body for a forced disconnect."""

    reason: str = "Disconnected by admin"


class NotifyRequest(BaseModel):
    """Request body for a targeted notification."""

    notification: dict[str, Any] | None = None


def get_hub(request: Request) -> RealtimeHub:
    container = getattr(request.app.state, "container", None)
    hub = getattr(container, "hub", None) if container else None
    if hub is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="WebSocket service unavailable")
    return hub


@websocket_admin_router.get("/stats")
async def get_websocket_stats(
    hub: RealtimeHub = Depends(get_hub),
    identity: Identity = Depends(require_role(Role.USER)),
) -> dict[str, Any]:
    """Connection statistics."""
    stats = hub.get_stats()
    logger.info("WebSocket stats requested", user_id=identity.user_id, total_connections=stats["totalConnections"])
    return {"success": True, "data": stamped({"connections": stats})}


@websocket_admin_router.get("/sessions")
async def list_websocket_sessions(
    hub: RealtimeHub = Depends(get_hub),
    identity: Identity = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Live sessions, newest first."""
    sessions = hub.list_sessions()
    logger.info("WebSocket sessions listed", admin_user_id=identity.user_id, total_sessions=sessions["total"])
    return {"success": True, "data": sessions}


@websocket_admin_router.get("/rooms")
async def list_websocket_rooms(
    hub: RealtimeHub = Depends(get_hub),
    identity: Identity = Depends(require_role(Role.EDITOR)),
) -> dict[str, Any]:
    """Active rooms and their members."""
    return {"success": True, "data": hub.list_rooms()}


@websocket_admin_router.post("/broadcast")
async def broadcast_message(
    body: BroadcastRequest,
    hub: RealtimeHub = Depends(get_hub),
    identity: Identity = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Broadcast a system message to every connection passing the filters."""
    if not body.message or not body.message.get("type"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message type is required")

    role = None
    if body.user_filter.role is not None:
        try:
            role = Role.parse(body.user_filter.role)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    result = await hub.broadcast(body.message, channels=body.channels, role=role, user_id=body.user_filter.user_id)
    logger.info(
        "WebSocket broadcast sent",
        admin_user_id=identity.user_id,
        message_type=body.message.get("type"),
        sent_to=result["sent"],
        filtered=result["filtered"],
        channels=body.channels,
    )
    return {"success": True, "data": result}


@websocket_admin_router.post("/disconnect/{connection_id}")
async def disconnect_client(
    connection_id: str,
    body: DisconnectRequest | None = None,
    hub: RealtimeHub = Depends(get_hub),
    identity: Identity = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Disconnect one connection, telling it why first."""
    reason = body.reason if body else DisconnectRequest().reason
    result = await hub.force_disconnect(connection_id, reason)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    logger.info("Client disconnected by admin", admin_user_id=identity.user_id, connection_id=connection_id)
    return {"success": True, "data": result}


@websocket_admin_router.post("/notify/{user_id}")
async def notify_user(
    user_id: str,
    body: NotifyRequest,
    hub: RealtimeHub = Depends(get_hub),
    identity: Identity = Depends(require_role(Role.EDITOR)),
) -> dict[str, Any]:
    """Send a targeted notification to one user."""
    if hub.notification_service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Real-time services unavailable")
    if not body.notification or not body.notification.get("type"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Notification type is required")

    try:
        notification_id = await hub.notify_user(
            user_id, body.notification, sender={"userId": identity.user_id, "email": identity.email}
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.user_friendly) from e

    logger.info(
        "Targeted notification sent",
        sender_user_id=identity.user_id,
        target_user_id=user_id,
        notification_id=notification_id,
        type=body.notification.get("type"),
    )
    return {
        "success": True,
        "data": {"notificationId": notification_id, "targetUser": user_id, "type": body.notification.get("type")},
    }


@websocket_admin_router.get("/config")
async def get_websocket_config(
    request: Request,
    identity: Identity = Depends(require_role(Role.USER)),
) -> dict[str, Any]:
    """Feature flags, limits and channel grants for the caller's role."""
    container = request.app.state.container
    features = {**features_for(identity.role), "eventStreaming": True}
    return {
        "success": True,
        "data": {
            "features": features,
            "limits": {
                "maxMessageBytes": container.config.realtime.max_message_bytes,
                "maxBacklogPerConnection": container.config.realtime.max_backlog_per_connection,
                "maxConnectionsWarning": container.config.realtime.max_connections_warning,
            },
            "channels": {
                "public": allowed_channel_grants(Role.ANONYMOUS),
                "user": allowed_channel_grants(Role.USER),
                "editor": allowed_channel_grants(Role.EDITOR),
                "admin": allowed_channel_grants(Role.ADMIN),
            },
            "settings": container.config.to_public_dict(),
        },
    }


@websocket_admin_router.get("/notifications/stats")
async def get_notification_stats(
    hub: RealtimeHub = Depends(get_hub),
    identity: Identity = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Delivery task statistics."""
    if hub.notification_service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Notification service unavailable")
    return {"success": True, "data": hub.notification_service.get_stats()}


@websocket_admin_router.get("/health")
async def websocket_health(request: Request) -> JSONResponse:
    """Health of the real-time layer; open to unauthenticated callers."""
    container = getattr(request.app.state, "container", None)
    hub = getattr(container, "hub", None) if container else None
    if hub is None:
        health = stamped({"status": "unhealthy", "service": "websocket", "message": "WebSocket service not available"})
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"success": False, "data": health})
    return JSONResponse(status_code=status.HTTP_200_OK, content={"success": True, "data": hub.health()})
