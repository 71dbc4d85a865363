"""
Real-time hub.

The hub owns the connection registry, the channel multiplexer, the
authentication gate, the protocol dispatcher and the liveness sweep. It is
the single object handed to the WebSocket endpoint and the management
routes; nothing in the real-time layer is a module-level singleton.
"""

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..auth.gate import AuthenticationGate
from ..auth.roles import Role
from ..auth.tokens import TokenVerifier
from ..config.models import RealtimeConfig
from ..events.event_store import EventStore
from ..events.event_types import PersistedEvent
from ..services.search import SearchProvider
from ..structured_logging.enhanced_logging_config import get_logger
from .channel_multiplexer import ChannelMultiplexer
from .connection_models import Connection, Transport
from .connection_registry import ConnectionRegistry
from .envelope import build_frame, stamped
from .liveness_monitor import LivenessMonitor
from .protocol_dispatcher import ProtocolDispatcher

if TYPE_CHECKING:
    from ..services.notification_service import NotificationService

logger = get_logger(__name__)

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001


def events_channel(aggregate_type: str) -> str:
    return f"events:{aggregate_type}"


class RealtimeHub:
    """
    Facade over the connection layer.

    Connections enter through connect(), every inbound frame goes through
    handle_frame(), and every exit path (client close, transport error,
    liveness timeout, forced disconnect) ends in disconnect().
    """

    def __init__(
        self,
        verifier: TokenVerifier,
        config: RealtimeConfig | None = None,
        event_store: EventStore | None = None,
        search_provider: SearchProvider | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the hub.

        Args:
            verifier: Bearer token verifier
            config: Connection layer settings
            event_store: Event log for collaborative edits and domain event fan-out
            search_provider: External search collaborator
            clock: Time source in seconds
        """
        self.config = config or RealtimeConfig()
        self.clock = clock
        self.started_at = clock()
        self.registry = ConnectionRegistry(self.config.max_backlog_per_connection, clock=clock)
        self.multiplexer = ChannelMultiplexer(self.registry)
        self.gate = AuthenticationGate(self.registry, verifier)
        self.event_store = event_store
        self.dispatcher = ProtocolDispatcher(
            self.registry,
            self.multiplexer,
            self.gate,
            event_store=event_store,
            search_provider=search_provider,
            max_message_bytes=self.config.max_message_bytes,
            search_result_limit=self.config.search_result_limit,
            search_suggestion_limit=self.config.search_suggestion_limit,
        )
        self.liveness = LivenessMonitor(
            self.registry,
            self.terminate,
            interval=self.config.heartbeat_interval,
            timeout=self.config.heartbeat_timeout,
            backlog_max_age=self.config.backlog_max_age,
        )
        # Set by the application container once the notification service exists
        self.notification_service: NotificationService | None = None
        self._unsubscribe_events: Callable[[], None] | None = None
        if event_store is not None:
            self._unsubscribe_events = event_store.on_appended(self.publish_domain_event)

    # Connection lifecycle

    async def connect(
        self,
        transport: Transport,
        remote_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        """Register an accepted transport and greet it with its connection id."""
        connection_id = self.registry.register(transport, remote_address=remote_address, user_agent=user_agent)
        await self.registry.send_to(
            connection_id,
            build_frame(
                "connection",
                stamped(
                    {
                        "clientId": connection_id,
                        "features": {
                            "realTimeSearch": True,
                            "liveCollaboration": True,
                            "pushNotifications": True,
                            "eventStreaming": self.event_store is not None,
                        },
                    }
                ),
            ),
        )
        return connection_id

    async def handle_frame(self, connection_id: str, raw: str | bytes) -> None:
        await self.dispatcher.dispatch(connection_id, raw)

    async def disconnect(self, connection_id: str) -> bool:
        """
        Remove every trace of a connection and tell its rooms it left.

        Safe to call more than once for the same id.

        Returns:
            bool: True if the connection was still registered
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            return False

        left_rooms = self.multiplexer.remove_connection(connection_id)
        self.registry.remove(connection_id)
        for room_id, remaining in left_rooms.items():
            if not remaining:
                continue
            await self.multiplexer.fan_out_room(
                room_id,
                build_frame(
                    "user_left",
                    stamped({"roomId": room_id, "userId": connection.user_id, "clientId": connection_id}),
                ),
            )
        logger.info(
            "Connection cleaned up",
            connection_id=connection_id,
            user_id=connection.user_id,
            rooms_left=len(left_rooms),
        )
        return True

    async def terminate(self, connection_id: str, reason: str) -> None:
        """Close an unresponsive connection and clean it up."""
        await self.registry.close(connection_id, code=CLOSE_GOING_AWAY, reason=reason)
        await self.disconnect(connection_id)

    # Event log

    async def publish_domain_event(self, event: PersistedEvent) -> int:
        """Fan an appended event out to subscribers of its aggregate type."""
        return await self.multiplexer.fan_out(
            events_channel(event.aggregate_type),
            build_frame("domain_event", stamped({"event": event.to_dict()})),
        )

    # Management

    def get_stats(self) -> dict[str, Any]:
        return {
            "totalConnections": len(self.registry),
            "authenticatedUsers": self.registry.authenticated_user_count,
            "activeRooms": self.multiplexer.room_count,
            "activeChannels": self.multiplexer.channel_count,
            "queuedMessages": self.registry.queued_message_count(),
            "uptime": round(self.clock() - self.started_at, 3),
        }

    def list_sessions(self) -> dict[str, Any]:
        """Live sessions, newest first."""
        sessions = sorted(
            (connection.to_session_dict() for connection in self.registry.connections()),
            key=lambda session: session["connectedAt"],
            reverse=True,
        )
        authenticated = sum(1 for session in sessions if session["userId"])
        return {
            "sessions": sessions,
            "total": len(sessions),
            "authenticated": authenticated,
            "anonymous": len(sessions) - authenticated,
        }

    def list_rooms(self) -> dict[str, Any]:
        rooms = self.multiplexer.list_rooms()
        return {
            "rooms": rooms,
            "totalRooms": len(rooms),
            "totalMembers": sum(room["memberCount"] for room in rooms),
        }

    async def force_disconnect(self, connection_id: str, reason: str = "Disconnected by admin") -> dict[str, Any] | None:
        """
        Tell a connection why it is being dropped, then close and clean it up.

        Returns:
            dict | None: Summary of the disconnected session, or None if the id is unknown
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            return None
        await self.registry.send_to(connection_id, build_frame("admin_disconnect", stamped({"reason": reason})))
        await self.registry.close(connection_id, code=CLOSE_NORMAL, reason=reason)
        await self.disconnect(connection_id)
        logger.info(
            "Connection disconnected by admin",
            connection_id=connection_id,
            disconnected_user_id=connection.user_id,
            reason=reason,
        )
        return {"clientId": connection_id, "reason": reason, "disconnectedUser": connection.user_id}

    async def broadcast(
        self,
        message: dict[str, Any],
        channels: list[str] | None = None,
        role: Role | None = None,
        user_id: str | None = None,
    ) -> dict[str, int]:
        """
        Broadcast a system message to every connection passing the filters.

        Args:
            message: Message body; sent as a `broadcast` frame
            channels: Only connections subscribed to any of these channels
            role: Only connections bound to exactly this role
            user_id: Only sessions of this user

        Returns:
            dict: sent, filtered and total counts
        """
        wanted_channels = set(channels or ())

        def matches(connection: Connection) -> bool:
            if role is not None and connection.role != role:
                return False
            if user_id is not None and connection.user_id != user_id:
                return False
            if wanted_channels and not wanted_channels & connection.subscriptions:
                return False
            return True

        total = len(self.registry)
        matching = sum(1 for connection in self.registry.connections() if matches(connection))
        frame = build_frame("broadcast", stamped({**message, "sender": "system"}))
        sent = await self.registry.broadcast(matches, frame)
        logger.info("Broadcast sent", message_type=message.get("type"), sent=sent, filtered=total - matching)
        return {"sent": sent, "filtered": total - matching, "total": total}

    async def notify_user(self, user_id: str, notification: dict[str, Any], sender: dict[str, Any]) -> str | None:
        """Send an admin message to one user through the notification service."""
        if self.notification_service is None:
            return None
        return await self.notification_service.send_notification(
            {
                "recipients": [{"userId": user_id}],
                "template": "admin_message",
                "data": {"message": notification, "sender": sender},
                "channels": ["websocket"],
                "priority": "high",
                "context": {"source": "admin_api", "sender": sender.get("userId")},
            }
        )

    def health(self) -> dict[str, Any]:
        stats = self.get_stats()
        health: dict[str, Any] = {
            "status": "healthy",
            "service": "websocket",
            "details": {
                "connections": stats["totalConnections"],
                "uptime": stats["uptime"],
                "queuedMessages": stats["queuedMessages"],
                "livenessSweep": self.liveness.is_running,
            },
        }
        if stats["totalConnections"] > self.config.max_connections_warning:
            health["status"] = "warning"
            health["message"] = "High connection count"
        return stamped(health)

    # Lifecycle

    def start(self) -> None:
        self.liveness.start()
        logger.info("Realtime hub started")

    async def stop(self) -> None:
        """Stop the sweep and close every live connection."""
        await self.liveness.stop()
        if self._unsubscribe_events is not None:
            self._unsubscribe_events()
            self._unsubscribe_events = None
        connection_ids = self.registry.connection_ids()
        for connection_id in connection_ids:
            await self.registry.close(connection_id, code=CLOSE_GOING_AWAY, reason="Server shutting down")
            await self.disconnect(connection_id)
        logger.info("Realtime hub stopped", closed_connections=len(connection_ids))
