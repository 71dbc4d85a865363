"""
Unit tests for the connection registry.

Tests the ConnectionRegistry class and its bounded backlog.
"""

import pytest

from nyelvszo.auth.roles import Role
from nyelvszo.auth.tokens import Identity
from nyelvszo.realtime.connection_registry import ConnectionRegistry
from nyelvszo.realtime.message_queue import MessageQueue


@pytest.fixture
def registry(clock):
    """Registry with a small backlog bound."""
    return ConnectionRegistry(max_backlog_per_connection=3, clock=clock)


def _frame(n: int) -> dict:
    return {"type": "test", "payload": {"n": n}}


class TestRegistration:
    """Tests for register, bind_identity and remove."""

    def test_register_creates_anonymous_connection(self, registry, transport_factory, clock):
        """Test a registered connection starts anonymous and is timestamped."""
        connection_id = registry.register(transport_factory(), remote_address="10.0.0.1:5000", user_agent="pytest")

        connection = registry.get(connection_id)
        assert connection_id in registry
        assert len(registry) == 1
        assert not connection.is_authenticated
        assert connection.effective_role == Role.ANONYMOUS
        assert connection.connected_at == clock.now
        assert connection.to_session_dict()["remoteAddress"] == "10.0.0.1:5000"

    def test_connection_ids_are_unique(self, registry, transport_factory):
        """Test every registration gets a fresh id."""
        ids = {registry.register(transport_factory()) for _ in range(20)}
        assert len(ids) == 20

    def test_user_sessions_index(self, registry, transport_factory):
        """Test several sessions of one user are indexed together."""
        first = registry.register(transport_factory())
        second = registry.register(transport_factory())
        identity = Identity("user-1", "u@example.com", Role.USER)
        registry.bind_identity(first, identity)
        registry.bind_identity(second, identity)

        assert registry.sessions_for_user("user-1") == {first, second}
        assert registry.authenticated_user_count == 1

        registry.remove(first)
        assert registry.sessions_for_user("user-1") == {second}

        registry.remove(second)
        assert registry.sessions_for_user("user-1") == set()
        assert registry.authenticated_user_count == 0

    def test_remove_unknown_is_noop(self, registry):
        """Test removing an unknown id returns None."""
        assert registry.remove("missing") is None

    def test_touch_updates_last_seen(self, registry, transport_factory, clock):
        """Test touch records the current clock time."""
        connection_id = registry.register(transport_factory())
        clock.advance(12)
        registry.touch(connection_id)
        assert registry.get(connection_id).last_seen == clock.now


class TestSending:
    """Tests for send_to and the backlog."""

    @pytest.mark.asyncio
    async def test_send_to_open_transport(self, registry, transport_factory):
        """Test a frame is written directly to an open transport."""
        transport = transport_factory()
        connection_id = registry.register(transport)

        assert await registry.send_to(connection_id, _frame(1)) is True
        assert transport.sent == [_frame(1)]

    @pytest.mark.asyncio
    async def test_send_to_unknown_connection(self, registry):
        """Test sending to an unknown id reports failure."""
        assert await registry.send_to("missing", _frame(1)) is False

    @pytest.mark.asyncio
    async def test_failed_send_is_queued_and_flushed_in_order(self, registry, transport_factory):
        """Test frames that fail are flushed ahead of the next successful write."""
        transport = transport_factory()
        connection_id = registry.register(transport)
        transport.fail_sends = True

        assert await registry.send_to(connection_id, _frame(1)) is False
        assert await registry.send_to(connection_id, _frame(2)) is False
        assert registry.queued_message_count() == 2

        transport.fail_sends = False
        assert await registry.send_to(connection_id, _frame(3)) is True
        assert transport.sent == [_frame(1), _frame(2), _frame(3)]
        assert registry.queued_message_count() == 0

    @pytest.mark.asyncio
    async def test_closed_transport_queues_frames(self, registry, transport_factory):
        """Test frames to a closed transport go to the backlog."""
        transport = transport_factory()
        connection_id = registry.register(transport)
        transport.open = False

        assert await registry.send_to(connection_id, _frame(1)) is False
        assert transport.sent == []
        assert registry.queued_message_count() == 1

    @pytest.mark.asyncio
    async def test_backlog_is_bounded(self, registry, transport_factory):
        """Test the backlog keeps only the newest frames."""
        transport = transport_factory()
        connection_id = registry.register(transport)
        transport.fail_sends = True
        for n in range(5):
            await registry.send_to(connection_id, _frame(n))

        assert registry.queued_message_count() == 3

        transport.fail_sends = False
        await registry.send_to(connection_id, _frame(5))
        assert transport.sent == [_frame(2), _frame(3), _frame(4), _frame(5)]

    @pytest.mark.asyncio
    async def test_backlog_carries_over_to_next_session(self, registry, transport_factory):
        """Test an authenticated connection's backlog reaches the user's next session."""
        identity = Identity("user-1", None, Role.USER)
        old = transport_factory()
        old_id = registry.register(old)
        registry.bind_identity(old_id, identity)
        old.fail_sends = True
        await registry.send_to(old_id, _frame(1))
        registry.remove(old_id)

        new = transport_factory()
        new_id = registry.register(new)
        registry.bind_identity(new_id, identity)
        delivered = await registry.flush_user_backlog("user-1", new_id)

        assert delivered == 1
        assert new.sent == [_frame(1)]
        assert registry.queued_message_count() == 0

    @pytest.mark.asyncio
    async def test_stale_carried_over_backlog_is_pruned(self, registry, transport_factory, clock):
        """Test a user who never comes back does not keep a backlog forever."""
        stale = transport_factory()
        stale_id = registry.register(stale)
        registry.bind_identity(stale_id, Identity("user-1", None, Role.USER))
        stale.fail_sends = True
        await registry.send_to(stale_id, _frame(1))
        registry.remove(stale_id)
        clock.advance(600)

        recent = transport_factory()
        recent_id = registry.register(recent)
        registry.bind_identity(recent_id, Identity("user-2", None, Role.USER))
        recent.fail_sends = True
        await registry.send_to(recent_id, _frame(2))
        registry.remove(recent_id)
        clock.advance(100)

        assert registry.prune_backlog(max_age_seconds=300) == 1
        assert registry.queued_message_count() == 1
        assert await registry.flush_user_backlog("user-1", "missing") == 0

    @pytest.mark.asyncio
    async def test_unqueued_send_is_not_parked(self, registry, transport_factory):
        """Test queue=False leaves a failed frame out of the backlog."""
        transport = transport_factory()
        connection_id = registry.register(transport)
        transport.fail_sends = True

        assert await registry.send_to(connection_id, _frame(1), queue=False) is False

        assert registry.queued_message_count() == 0
        transport.fail_sends = False
        await registry.send_to(connection_id, _frame(2))
        assert transport.sent == [_frame(2)]

    @pytest.mark.asyncio
    async def test_anonymous_backlog_is_dropped_on_remove(self, registry, transport_factory):
        """Test an anonymous connection's backlog is discarded with it."""
        transport = transport_factory()
        connection_id = registry.register(transport)
        transport.fail_sends = True
        await registry.send_to(connection_id, _frame(1))

        registry.remove(connection_id)

        assert registry.queued_message_count() == 0

    @pytest.mark.asyncio
    async def test_send_to_user_reaches_every_session(self, registry, transport_factory):
        """Test send_to_user writes to each session of the user."""
        identity = Identity("user-1", None, Role.USER)
        transports = [transport_factory(), transport_factory()]
        for transport in transports:
            registry.bind_identity(registry.register(transport), identity)
        other = transport_factory()
        registry.register(other)

        sent = await registry.send_to_user("user-1", _frame(1))

        assert sent == 2
        assert all(t.sent == [_frame(1)] for t in transports)
        assert other.sent == []

    @pytest.mark.asyncio
    async def test_broadcast_with_predicate_and_exclusion(self, registry, transport_factory):
        """Test broadcast honours the predicate and the exclusion set."""
        editor = transport_factory()
        editor_id = registry.register(editor)
        registry.bind_identity(editor_id, Identity("e", None, Role.EDITOR))
        second_editor = transport_factory()
        second_id = registry.register(second_editor)
        registry.bind_identity(second_id, Identity("f", None, Role.EDITOR))
        anonymous = transport_factory()
        registry.register(anonymous)

        sent = await registry.broadcast(
            lambda c: c.effective_role >= Role.EDITOR, _frame(1), exclude={second_id}
        )

        assert sent == 1
        assert editor.sent == [_frame(1)]
        assert second_editor.sent == []
        assert anonymous.sent == []

    @pytest.mark.asyncio
    async def test_ping_is_never_queued(self, registry, transport_factory):
        """Test a failed probe is not parked in the backlog."""
        transport = transport_factory()
        connection_id = registry.register(transport)
        transport.fail_sends = True

        assert await registry.ping(connection_id, {"type": "ping", "payload": {}}) is False
        assert registry.queued_message_count() == 0


class TestMessageQueue:
    """Tests for MessageQueue housekeeping."""

    def test_cleanup_old_messages(self):
        """Test frames older than the cutoff are dropped."""
        queue = MessageQueue(max_messages_per_key=10)
        queue.add_message("a", _frame(1), queued_at=100.0)
        queue.add_message("a", _frame(2), queued_at=500.0)
        queue.add_message("b", _frame(3), queued_at=100.0)

        removed = queue.cleanup_old_messages(max_age_seconds=300, now=600.0)

        assert removed == 2
        assert queue.get_stats()["total_messages"] == 1
        assert [entry["frame"] for entry in queue.get_messages("a")] == [_frame(2)]
