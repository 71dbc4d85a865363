"""
Connection registry for the real-time layer.

The registry owns every live connection and is the only component that
writes to transport handles. Other components address connections by id.
"""

import time
import uuid
from collections.abc import Callable, Iterable
from typing import Any

from ..auth.tokens import Identity
from ..exceptions import TransportError
from ..structured_logging.enhanced_logging_config import get_logger
from .connection_models import Connection, Transport
from .message_queue import MessageQueue

logger = get_logger(__name__)


def _user_backlog_key(user_id: str) -> str:
    return f"user:{user_id}"


class ConnectionRegistry:
    """
    Live connections, the per-user session index, and the per-connection backlog.

    A frame that cannot be written is parked in a bounded backlog and flushed
    ahead of the next successful write. When an authenticated connection goes
    away its backlog is carried over to the user and flushed to the next
    connection that authenticates as that user.
    """

    def __init__(self, max_backlog_per_connection: int = 100, clock: Callable[[], float] = time.time):
        """
        Initialize the registry.

        Args:
            max_backlog_per_connection: Frames kept per connection that cannot be written
            clock: Time source in seconds
        """
        self._connections: dict[str, Connection] = {}
        self._user_sessions: dict[str, set[str]] = {}
        self.backlog = MessageQueue(max_messages_per_key=max_backlog_per_connection)
        self.clock = clock

    # Lifecycle

    def register(
        self,
        transport: Transport,
        remote_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        """
        Register a freshly accepted transport.

        Returns:
            str: The opaque connection id
        """
        connection_id = uuid.uuid4().hex
        now = self.clock()
        self._connections[connection_id] = Connection(
            connection_id=connection_id,
            transport=transport,
            connected_at=now,
            last_seen=now,
            remote_address=remote_address,
            user_agent=user_agent,
        )
        logger.info(
            "Connection registered",
            connection_id=connection_id,
            remote_address=remote_address,
            total_connections=len(self._connections),
        )
        return connection_id

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def remove(self, connection_id: str) -> Connection | None:
        """
        Remove a connection and its session index entry.

        Channel and room membership is cleared by the multiplexer; this only
        drops what the registry itself owns. Removing an unknown id is a no-op.

        Returns:
            Connection | None: The removed connection
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None

        pending = self.backlog.get_messages(connection_id)
        if connection.user_id is not None:
            sessions = self._user_sessions.get(connection.user_id)
            if sessions is not None:
                sessions.discard(connection_id)
                if not sessions:
                    del self._user_sessions[connection.user_id]
            if pending:
                self.backlog.extend(_user_backlog_key(connection.user_id), pending)
                logger.debug(
                    "Carried backlog over to user",
                    connection_id=connection_id,
                    user_id=connection.user_id,
                    frames=len(pending),
                )

        logger.info(
            "Connection removed",
            connection_id=connection_id,
            user_id=connection.user_id,
            total_connections=len(self._connections),
        )
        return connection

    def bind_identity(self, connection_id: str, identity: Identity) -> Connection | None:
        """Bind a verified identity onto a connection and index the session."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return None
        connection.bind(identity)
        self._user_sessions.setdefault(identity.user_id, set()).add(connection_id)
        return connection

    def touch(self, connection_id: str) -> None:
        """Record a liveness signal."""
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.last_seen = self.clock()

    # Writes

    async def send_to(self, connection_id: str, frame: dict[str, Any], queue: bool = True) -> bool:
        """
        Send a frame to one connection.

        Args:
            connection_id: Target connection
            frame: Frame to write
            queue: Park the frame in the backlog when it cannot be written. Callers
                with their own retry policy pass False so a frame is never
                delivered twice.

        Returns:
            bool: True if the frame was written; False if it was parked in the
            backlog or the connection is unknown
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return False

        if not connection.transport.is_open:
            if queue:
                self.backlog.add_message(connection_id, frame, self.clock())
            return False

        if self.backlog.has_messages(connection_id) and not await self._flush(connection, connection_id):
            if queue:
                self.backlog.add_message(connection_id, frame, self.clock())
            return False

        try:
            await connection.transport.send_json(frame)
            return True
        except TransportError as e:
            logger.warning(
                "Send failed",
                connection_id=connection_id,
                frame_type=frame.get("type"),
                queued=queue,
                error=str(e),
                error_type=type(e).__name__,
            )
            if queue:
                self.backlog.add_message(connection_id, frame, self.clock())
            return False

    async def send_to_user(self, user_id: str, frame: dict[str, Any], queue: bool = True) -> int:
        """Send a frame to every session of one user; returns the number written."""
        sent = 0
        for connection_id in sorted(self._user_sessions.get(user_id, ())):
            if await self.send_to(connection_id, frame, queue=queue):
                sent += 1
        return sent

    async def broadcast(
        self,
        predicate: Callable[[Connection], bool],
        frame: dict[str, Any],
        exclude: Iterable[str] | None = None,
    ) -> int:
        """
        Send a frame to every connection matching a predicate.

        Returns:
            int: Number of connections the frame was written to
        """
        excluded = set(exclude or ())
        targets = [
            connection_id
            for connection_id, connection in list(self._connections.items())
            if connection_id not in excluded and predicate(connection)
        ]
        sent = 0
        for connection_id in targets:
            if await self.send_to(connection_id, frame):
                sent += 1
        return sent

    async def ping(self, connection_id: str, frame: dict[str, Any]) -> bool:
        """Write a liveness probe; probes are never parked in the backlog."""
        connection = self._connections.get(connection_id)
        if connection is None or not connection.transport.is_open:
            return False
        try:
            await connection.transport.send_json(frame)
            return True
        except TransportError:
            return False

    async def close(self, connection_id: str, code: int = 1000, reason: str = "") -> None:
        """Close the transport of a connection; cleanup happens through remove()."""
        connection = self._connections.get(connection_id)
        if connection is not None:
            await connection.transport.close(code=code, reason=reason)

    async def flush_user_backlog(self, user_id: str, connection_id: str) -> int:
        """
        Deliver frames carried over from a user's previous connections.

        Returns:
            int: Number of frames delivered
        """
        entries = self.backlog.get_messages(_user_backlog_key(user_id))
        if not entries:
            return 0
        self.backlog.extend(connection_id, entries)
        connection = self._connections.get(connection_id)
        if connection is None or not connection.transport.is_open:
            return 0
        delivered = len(entries)
        if not await self._flush(connection, connection_id):
            delivered -= self.backlog.get_message_count(connection_id)
        logger.info("Flushed carried-over backlog", user_id=user_id, connection_id=connection_id, frames=delivered)
        return delivered

    async def _flush(self, connection: Connection, connection_id: str) -> bool:
        """Write queued frames in order; re-queue the rest on the first failure."""
        entries = self.backlog.get_messages(connection_id)
        for index, entry in enumerate(entries):
            try:
                await connection.transport.send_json(entry["frame"])
            except TransportError as e:
                logger.warning("Backlog flush interrupted", connection_id=connection_id, error=str(e))
                self.backlog.extend(connection_id, entries[index:])
                return False
        return True

    # Queries

    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def connection_ids(self) -> list[str]:
        return list(self._connections)

    def sessions_for_user(self, user_id: str) -> set[str]:
        return set(self._user_sessions.get(user_id, ()))

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    @property
    def authenticated_user_count(self) -> int:
        return len(self._user_sessions)

    def queued_message_count(self) -> int:
        return self.backlog.total_messages()

    def prune_backlog(self, max_age_seconds: float) -> int:
        """
        Drop parked frames older than max_age_seconds.

        Carried-over user backlogs are otherwise only released when that user
        authenticates again.

        Returns:
            int: Number of frames dropped
        """
        return self.backlog.cleanup_old_messages(max_age_seconds, now=self.clock())
