"""
Channel and room multiplexing for the real-time layer.

Topic channels are role-gated and well known; rooms are ad-hoc identifiers
created on first join and deleted as soon as their last member leaves.
Neither has any state beyond its member set.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from ..auth.roles import WILDCARD_TOPIC, ChannelName, can_access_channel
from ..structured_logging.enhanced_logging_config import get_logger
from .connection_registry import ConnectionRegistry

logger = get_logger(__name__)


class ChannelMultiplexer:
    """
    Maps topic channels and rooms to connection ids and fans frames out.

    Every write goes through the ConnectionRegistry; a target that cannot be
    reached is logged and skipped without failing the rest of the fan-out.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry
        # channel name -> connection ids
        self.channel_subscriptions: dict[str, set[str]] = {}
        # room id -> connection ids
        self.room_members: dict[str, set[str]] = {}

    # Topic channels

    def subscribe(self, connection_id: str, channel_names: Iterable[Any]) -> list[str]:
        """
        Subscribe a connection to every requested channel its role allows.

        Disallowed or malformed names are silently dropped.

        Returns:
            list[str]: The granted channel names, in request order
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            return []

        granted: list[str] = []
        for name in channel_names:
            if not isinstance(name, str) or name in granted:
                continue
            if not can_access_channel(connection.effective_role, name):
                logger.debug(
                    "Channel subscription denied",
                    connection_id=connection_id,
                    channel=name,
                    role=connection.effective_role.label,
                )
                continue
            self.channel_subscriptions.setdefault(name, set()).add(connection_id)
            connection.subscriptions.add(name)
            granted.append(name)

        logger.debug("Channels subscribed", connection_id=connection_id, channels=granted)
        return granted

    def unsubscribe(self, connection_id: str, channel_names: Iterable[Any]) -> list[str]:
        """
        Remove a connection from the given channels.

        Returns:
            list[str]: Names the connection was actually subscribed to
        """
        connection = self.registry.get(connection_id)
        removed: list[str] = []
        for name in channel_names:
            if not isinstance(name, str) or name in removed:
                continue
            members = self.channel_subscriptions.get(name)
            if members is None or connection_id not in members:
                continue
            members.discard(connection_id)
            if not members:
                del self.channel_subscriptions[name]
            if connection is not None:
                connection.subscriptions.discard(name)
            removed.append(name)
        return removed

    def get_channel_subscribers(self, channel_name: str) -> set[str]:
        """
        Connections receiving fan-out for a channel.

        Includes connections subscribed to the namespace wildcard
        (``<namespace>:*``) as well as to the channel itself.
        """
        subscribers = set(self.channel_subscriptions.get(channel_name, ()))
        channel = ChannelName.parse(channel_name)
        if channel is not None and not channel.is_wildcard:
            subscribers |= self.channel_subscriptions.get(f"{channel.namespace}:{WILDCARD_TOPIC}", set())
        return subscribers

    # Rooms

    def join_room(self, connection_id: str, room_id: str) -> int:
        """
        Add a connection to a room, creating the room on first join.

        Returns:
            int: Member count after joining (0 if the connection is unknown)
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            return 0
        members = self.room_members.setdefault(room_id, set())
        members.add(connection_id)
        connection.rooms.add(room_id)
        logger.debug("Connection joined room", connection_id=connection_id, room_id=room_id, members=len(members))
        return len(members)

    def leave_room(self, connection_id: str, room_id: str) -> int | None:
        """
        Remove a connection from a room; the room is deleted when it empties.

        Returns:
            int | None: Remaining member count, or None if the connection was not a member
        """
        members = self.room_members.get(room_id)
        if members is None or connection_id not in members:
            return None
        members.discard(connection_id)
        connection = self.registry.get(connection_id)
        if connection is not None:
            connection.rooms.discard(room_id)
        if not members:
            del self.room_members[room_id]
            logger.debug("Room deleted", room_id=room_id)
            return 0
        return len(members)

    def get_room_members(self, room_id: str) -> set[str]:
        return set(self.room_members.get(room_id, ()))

    # Cleanup

    def remove_connection(self, connection_id: str) -> dict[str, set[str]]:
        """
        Drop a connection from every channel and room it belongs to.

        Returns:
            dict[str, set[str]]: Room id -> remaining members, for every room
            the connection was in
        """
        connection = self.registry.get(connection_id)
        channel_names = set(connection.subscriptions) if connection else set()
        room_ids = set(connection.rooms) if connection else set()
        # Fall back to a full scan when the record is already gone
        if connection is None:
            channel_names = {name for name, ids in self.channel_subscriptions.items() if connection_id in ids}
            room_ids = {room_id for room_id, ids in self.room_members.items() if connection_id in ids}

        self.unsubscribe(connection_id, channel_names)
        left: dict[str, set[str]] = {}
        for room_id in room_ids:
            if self.leave_room(connection_id, room_id) is not None:
                left[room_id] = self.get_room_members(room_id)
        return left

    # Fan-out

    async def fan_out(self, channel_name: str, frame: dict[str, Any], exclude: Iterable[str] | None = None) -> int:
        """Deliver a frame to every subscriber of a topic channel."""
        return await self._deliver(self.get_channel_subscribers(channel_name), frame, exclude, channel_name)

    async def fan_out_room(self, room_id: str, frame: dict[str, Any], exclude: Iterable[str] | None = None) -> int:
        """Deliver a frame to every member of a room."""
        return await self._deliver(self.get_room_members(room_id), frame, exclude, room_id)

    async def fan_out_many(
        self,
        frame: dict[str, Any],
        channels: Iterable[str] = (),
        rooms: Iterable[str] = (),
        exclude: Iterable[str] | None = None,
    ) -> int:
        """Deliver a frame once to the union of several channels and rooms."""
        targets: set[str] = set()
        for channel_name in channels:
            targets |= self.get_channel_subscribers(channel_name)
        for room_id in rooms:
            targets |= self.get_room_members(room_id)
        return await self._deliver(targets, frame, exclude, "many")

    async def _deliver(
        self,
        targets: set[str],
        frame: dict[str, Any],
        exclude: Iterable[str] | None,
        target_name: str,
    ) -> int:
        excluded = set(exclude or ())
        sent = 0
        failed: list[str] = []
        for connection_id in sorted(targets - excluded):
            if await self.registry.send_to(connection_id, frame):
                sent += 1
            else:
                failed.append(connection_id)
        if failed:
            logger.info(
                "Fan-out partially undelivered",
                target=target_name,
                frame_type=frame.get("type"),
                sent=sent,
                failed=failed,
            )
        return sent

    # Queries

    def list_rooms(self) -> list[dict[str, Any]]:
        rooms = []
        for room_id, members in sorted(self.room_members.items()):
            users = []
            for connection_id in sorted(members):
                connection = self.registry.get(connection_id)
                users.append(
                    {
                        "clientId": connection_id,
                        "userId": connection.user_id if connection else None,
                        "email": connection.email if connection else None,
                    }
                )
            rooms.append({"roomId": room_id, "memberCount": len(members), "members": users})
        return rooms

    @property
    def room_count(self) -> int:
        return len(self.room_members)

    @property
    def channel_count(self) -> int:
        return len(self.channel_subscriptions)
