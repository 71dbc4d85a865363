"""
Unit tests for the real-time hub.

Tests connection lifecycle, management operations and domain event fan-out.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from nyelvszo.auth.roles import Role
from nyelvszo.config.models import RealtimeConfig
from nyelvszo.events.event_types import NewEvent
from nyelvszo.realtime.hub import CLOSE_GOING_AWAY, CLOSE_NORMAL, RealtimeHub


class TestConnectionLifecycle:
    """Tests for connect, disconnect and terminate."""

    @pytest.mark.asyncio
    async def test_connect_sends_greeting(self, hub, transport_factory):
        """Test a new connection is greeted with its id and the feature flags."""
        transport = transport_factory()

        connection_id = await hub.connect(transport, remote_address="127.0.0.1:1234")

        greeting = transport.sent[0]
        assert greeting["type"] == "connection"
        assert greeting["payload"]["clientId"] == connection_id
        assert greeting["payload"]["features"]["eventStreaming"] is False

    @pytest.mark.asyncio
    async def test_disconnect_leaves_no_trace(self, hub, open_session, encode):
        """Test a disconnected id appears in no registry, channel or room."""
        connection_id, _ = await open_session(hub, "user-1")
        await hub.handle_frame(connection_id, encode("subscribe", channels=["entries:public", "events:Entry"]))
        await hub.handle_frame(connection_id, encode("join_room", roomId="r"))

        assert await hub.disconnect(connection_id) is True

        assert connection_id not in hub.registry
        assert hub.registry.sessions_for_user("user-1") == set()
        assert all(connection_id not in ids for ids in hub.multiplexer.channel_subscriptions.values())
        assert all(connection_id not in ids for ids in hub.multiplexer.room_members.values())
        assert hub.get_stats()["activeRooms"] == 0

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, hub, open_session):
        """Test a second disconnect of the same id is a no-op."""
        connection_id, _ = await open_session(hub)

        assert await hub.disconnect(connection_id) is True
        assert await hub.disconnect(connection_id) is False

    @pytest.mark.asyncio
    async def test_disconnect_tells_remaining_room_members(self, hub, open_session, encode):
        """Test room members are told when someone drops."""
        first_id, first = await open_session(hub, "alice")
        second_id, _ = await open_session(hub, "bob")
        for connection_id in (first_id, second_id):
            await hub.handle_frame(connection_id, encode("join_room", roomId="r"))

        await hub.disconnect(second_id)

        left = first.frames("user_left")
        assert [f["payload"]["clientId"] for f in left] == [second_id]

    @pytest.mark.asyncio
    async def test_terminate_closes_with_going_away(self, hub, open_session):
        """Test terminate closes the transport and cleans up."""
        connection_id, transport = await open_session(hub)

        await hub.terminate(connection_id, "heartbeat timeout")

        assert transport.closed_with == (CLOSE_GOING_AWAY, "heartbeat timeout")
        assert connection_id not in hub.registry

    @pytest.mark.asyncio
    async def test_liveness_sweep_terminates_through_hub(self, hub, open_session, clock):
        """Test the sweep uses the hub's terminate path."""
        connection_id, transport = await open_session(hub)
        clock.advance(hub.config.heartbeat_timeout + 1)

        result = await hub.liveness.sweep()

        assert result["terminated"] == 1
        assert transport.closed_with[0] == CLOSE_GOING_AWAY
        assert connection_id not in hub.registry


class TestManagement:
    """Tests for statistics, listings, broadcast and forced disconnect."""

    @pytest.mark.asyncio
    async def test_stats_and_sessions(self, hub, open_session, clock):
        """Test stats count connections and sessions are listed newest first."""
        await open_session(hub, "user-1")
        clock.advance(5)
        newest_id, _ = await open_session(hub)

        stats = hub.get_stats()
        assert stats["totalConnections"] == 2
        assert stats["authenticatedUsers"] == 1
        assert stats["uptime"] == 5

        sessions = hub.list_sessions()
        assert sessions["total"] == 2
        assert sessions["authenticated"] == 1
        assert sessions["anonymous"] == 1
        assert sessions["sessions"][0]["clientId"] == newest_id

    @pytest.mark.asyncio
    async def test_list_rooms(self, hub, open_session, encode):
        """Test room listings include member summaries."""
        connection_id, _ = await open_session(hub, "alice")
        await hub.handle_frame(connection_id, encode("join_room", roomId="entry-1"))

        rooms = hub.list_rooms()

        assert rooms["totalRooms"] == 1
        assert rooms["totalMembers"] == 1
        assert rooms["rooms"][0]["members"][0]["userId"] == "alice"

    @pytest.mark.asyncio
    async def test_force_disconnect(self, hub, open_session):
        """Test a forced disconnect tells the client why, closes normally and cleans up."""
        connection_id, transport = await open_session(hub, "user-1")

        result = await hub.force_disconnect(connection_id, "Maintenance")

        assert result == {"clientId": connection_id, "reason": "Maintenance", "disconnectedUser": "user-1"}
        assert transport.frames("admin_disconnect")[0]["payload"]["reason"] == "Maintenance"
        assert transport.closed_with == (CLOSE_NORMAL, "Maintenance")
        assert connection_id not in hub.registry

    @pytest.mark.asyncio
    async def test_force_disconnect_unknown(self, hub):
        """Test forcing an unknown id returns None."""
        assert await hub.force_disconnect("missing") is None

    @pytest.mark.asyncio
    async def test_broadcast_filters_by_exact_role(self, hub, open_session):
        """Test a role filter matches only connections bound to exactly that role."""
        _, user = await open_session(hub, "u", Role.USER)
        _, editor = await open_session(hub, "e", Role.EDITOR)
        _, admin = await open_session(hub, "a", Role.ADMIN)

        result = await hub.broadcast({"type": "announcement", "message": "hello"}, role=Role.EDITOR)

        assert result == {"sent": 1, "filtered": 2, "total": 3}
        payload = editor.frames("broadcast")[0]["payload"]
        assert payload["sender"] == "system"
        assert payload["message"] == "hello"
        assert user.frames("broadcast") == []
        assert admin.frames("broadcast") == []

    @pytest.mark.asyncio
    async def test_broadcast_filters_by_channel_and_user(self, hub, open_session, encode):
        """Test channel and user filters combine."""
        first_id, first = await open_session(hub, "alice")
        second_id, second = await open_session(hub, "bob")
        for connection_id in (first_id, second_id):
            await hub.handle_frame(connection_id, encode("subscribe", channels=["entries:public"]))

        result = await hub.broadcast({"type": "x"}, channels=["entries:public"], user_id="bob")

        assert result["sent"] == 1
        assert first.frames("broadcast") == []
        assert len(second.frames("broadcast")) == 1

    @pytest.mark.asyncio
    async def test_notify_user_without_service(self, hub):
        """Test notify_user returns None when no notification service is attached."""
        assert await hub.notify_user("user-1", {"type": "info"}, {"userId": "admin"}) is None

    @pytest.mark.asyncio
    async def test_notify_user_builds_admin_message_request(self, hub):
        """Test notify_user hands an admin_message request to the notification service."""
        hub.notification_service = MagicMock()
        hub.notification_service.send_notification = AsyncMock(return_value="n-1")

        result = await hub.notify_user("user-1", {"type": "info", "message": "hi"}, {"userId": "admin-1"})

        assert result == "n-1"
        request = hub.notification_service.send_notification.await_args.args[0]
        assert request["recipients"] == [{"userId": "user-1"}]
        assert request["template"] == "admin_message"
        assert request["channels"] == ["websocket"]
        assert request["context"]["sender"] == "admin-1"

    @pytest.mark.asyncio
    async def test_health_warns_on_high_connection_count(self, verifier, clock, open_session):
        """Test health turns to warning above the configured connection count."""
        hub = RealtimeHub(verifier, config=RealtimeConfig(max_connections_warning=1), clock=clock)
        await open_session(hub)
        assert hub.health()["status"] == "healthy"

        await open_session(hub)
        health = hub.health()

        assert health["status"] == "warning"
        assert health["message"] == "High connection count"
        assert health["details"]["connections"] == 2

    @pytest.mark.asyncio
    async def test_stop_closes_every_connection(self, hub, open_session):
        """Test stopping the hub closes and removes every connection."""
        _, first = await open_session(hub)
        _, second = await open_session(hub, "user-1")
        hub.start()

        await hub.stop()

        assert len(hub.registry) == 0
        assert first.closed_with[0] == CLOSE_GOING_AWAY
        assert second.closed_with[0] == CLOSE_GOING_AWAY
        assert not hub.liveness.is_running


class TestDomainEvents:
    """Tests for event log fan-out."""

    @pytest.mark.asyncio
    async def test_appended_events_reach_event_channel_subscribers(self, collab_hub, open_session, encode, event_store):
        """Test an appended event is published to events:<aggregateType> subscribers."""
        connection_id, transport = await open_session(collab_hub, "user-1")
        await collab_hub.handle_frame(connection_id, encode("subscribe", channels=["events:Entry"]))

        await event_store.append(
            "entry-9",
            [NewEvent("EntryApproved", "9", "Entry", {"entry": {"id": "9"}})],
        )

        event = transport.frames("domain_event")[0]["payload"]["event"]
        assert event["eventType"] == "EntryApproved"
        assert event["aggregateType"] == "Entry"
        assert event["eventData"] == {"entry": {"id": "9"}}

    @pytest.mark.asyncio
    async def test_stop_unsubscribes_from_event_store(self, collab_hub, open_session, encode, event_store):
        """Test a stopped hub no longer publishes appended events."""
        await collab_hub.stop()
        connection_id, transport = await open_session(collab_hub, "user-1")
        await collab_hub.handle_frame(connection_id, encode("subscribe", channels=["events:Entry"]))

        await event_store.append("entry-9", [NewEvent("EntryApproved", "9", "Entry", {})])

        assert transport.frames("domain_event") == []
