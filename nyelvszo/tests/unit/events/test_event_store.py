"""
Unit tests for the event store.

Tests the EventStore class against a SQLite database.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from nyelvszo.events.event_store import EventStore
from nyelvszo.events.event_types import EXPECTED_VERSION_ANY, SNAPSHOT_RESTORED, NewEvent
from nyelvszo.exceptions import ConcurrencyError, ValidationError


def _edit(entry_id: str = "42", n: int = 0) -> NewEvent:
    return NewEvent("EntryEditOperation", entry_id, "Entry", {"operation": "update", "n": n})


class TestAppend:
    """Tests for append."""

    @pytest.mark.asyncio
    async def test_append_assigns_contiguous_sequence_numbers(self, event_store):
        """Test events are numbered from 1 in append order."""
        first = await event_store.append("entry-42", [_edit(n=0), _edit(n=1)])
        second = await event_store.append("entry-42", [_edit(n=2)])

        assert [e.sequence_number for e in first + second] == [1, 2, 3]
        assert await event_store.get_stream_version("entry-42") == 3
        assert [e.payload["n"] for e in await event_store.read_stream("entry-42")] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_streams_are_numbered_independently(self, event_store):
        """Test each stream has its own sequence."""
        await event_store.append("entry-1", [_edit("1")])
        appended = await event_store.append("entry-2", [_edit("2")])

        assert appended[0].sequence_number == 1

    @pytest.mark.asyncio
    async def test_append_enriches_metadata(self, event_store):
        """Test appended events carry correlation and trace identifiers."""
        appended = await event_store.append("entry-42", [_edit()], metadata={"userId": "u1", "source": "test"})

        metadata = appended[0].metadata
        assert metadata["userId"] == "u1"
        assert metadata["source"] == "test"
        assert metadata["correlationId"]
        assert metadata["traceId"]
        assert "timestamp" in metadata

    @pytest.mark.asyncio
    async def test_expected_version_matches(self, event_store):
        """Test an append with the correct expected version succeeds."""
        await event_store.append("s", [_edit()], expected_version=0)
        appended = await event_store.append("s", [_edit()], expected_version=1)

        assert appended[0].sequence_number == 2

    @pytest.mark.asyncio
    async def test_expected_version_mismatch(self, event_store):
        """Test a stale expected version raises ConcurrencyError and appends nothing."""
        await event_store.append("s", [_edit()])

        with pytest.raises(ConcurrencyError) as exc_info:
            await event_store.append("s", [_edit()], expected_version=0)

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1
        assert await event_store.get_stream_version("s") == 1

    @pytest.mark.asyncio
    async def test_concurrent_appends_with_same_expected_version(self, event_store):
        """Test exactly one of two writers expecting the same version wins."""
        results = await asyncio.gather(
            event_store.append("s", [_edit(n=1)], expected_version=0),
            event_store.append("s", [_edit(n=2)], expected_version=0),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, list)]
        failures = [r for r in results if isinstance(r, ConcurrencyError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert await event_store.get_stream_version("s") == 1

    @pytest.mark.asyncio
    async def test_concurrent_unchecked_appends_all_succeed(self, event_store):
        """Test unchecked appends are serialized per stream without gaps."""
        await asyncio.gather(
            *(event_store.append("s", [_edit(n=n)], expected_version=EXPECTED_VERSION_ANY) for n in range(5))
        )

        events = await event_store.read_stream("s")
        assert [e.sequence_number for e in events] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_stream_locks_are_released_after_appends(self, event_store):
        """Test per-stream locks do not accumulate for short-lived streams."""
        for n in range(50):
            await event_store.append(f"notifications-{n}", [_edit(n=n)])
        await asyncio.gather(*(event_store.append("s", [_edit(n=n)]) for n in range(3)))
        with pytest.raises(ConcurrencyError):
            await event_store.append("s", [_edit()], expected_version=0)

        assert event_store._stream_locks == {}  # pylint: disable=protected-access

    @pytest.mark.asyncio
    async def test_empty_append(self, event_store):
        """Test appending no events is a no-op."""
        assert await event_store.append("s", []) == []

    @pytest.mark.asyncio
    async def test_stream_id_is_required(self, event_store):
        """Test an empty stream id is rejected."""
        with pytest.raises(ValidationError):
            await event_store.append("", [_edit()])


class TestObservers:
    """Tests for append observers."""

    @pytest.mark.asyncio
    async def test_observers_see_events_in_sequence_order(self, event_store):
        """Test observers are notified once per event, in order."""
        seen = []

        async def observer(event):
            seen.append(event.sequence_number)

        event_store.on_appended(observer)
        await event_store.append("s", [_edit(), _edit()])
        await event_store.append("s", [_edit()])

        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_filtered_observer(self, event_store):
        """Test stream and type filters restrict notifications."""
        seen = []

        async def observer(event):
            seen.append((event.stream_id, event.event_type))

        event_store.on_appended(observer, stream_id="entry-1", event_type="EntryEditOperation")
        await event_store.append("entry-1", [_edit("1")])
        await event_store.append("entry-2", [_edit("2")])
        await event_store.append("entry-1", [NewEvent("EntryApproved", "1", "Entry")])

        assert seen == [("entry-1", "EntryEditOperation")]

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_fail_append(self, event_store):
        """Test an observer exception is logged and the append still succeeds."""

        async def broken(event):
            raise RuntimeError("observer down")

        event_store.on_appended(broken)

        appended = await event_store.append("s", [_edit()])

        assert appended[0].sequence_number == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self, event_store):
        """Test the returned callable removes the observer."""
        seen = []

        async def observer(event):
            seen.append(event)

        unsubscribe = event_store.on_appended(observer)
        unsubscribe()
        unsubscribe()
        await event_store.append("s", [_edit()])

        assert seen == []


class TestReads:
    """Tests for reads, snapshots, statistics and replay."""

    @pytest.mark.asyncio
    async def test_read_stream_range(self, event_store):
        """Test from/to bounds are inclusive."""
        await event_store.append("s", [_edit(n=n) for n in range(5)])

        events = await event_store.read_stream("s", from_version=2, to_version=4)

        assert [e.sequence_number for e in events] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_read_aggregate_starts_from_snapshot(self, event_store):
        """Test a snapshot replaces the events it covers."""
        await event_store.append("entry-42", [_edit(n=n) for n in range(3)])
        await event_store.create_snapshot("42", "Entry", 2, {"term": "víz"})
        await event_store.append("entry-42", [_edit(n=3)])

        events = await event_store.read_aggregate("42", "Entry")

        assert events[0].event_type == SNAPSHOT_RESTORED
        assert events[0].payload == {"term": "víz"}
        assert [e.sequence_number for e in events[1:]] == [3, 4]

    @pytest.mark.asyncio
    async def test_read_aggregate_is_repeatable(self, event_store):
        """Test two reads of the same aggregate return equal histories."""
        await event_store.append("entry-42", [_edit()])
        await event_store.create_snapshot("42", "Entry", 1, {"term": "víz"})

        first = await event_store.read_aggregate("42", "Entry")
        second = await event_store.read_aggregate("42", "Entry")

        assert first == second

    @pytest.mark.asyncio
    async def test_snapshot_is_replaced(self, event_store):
        """Test a newer snapshot overwrites the previous one."""
        await event_store.create_snapshot("42", "Entry", 1, {"v": 1})
        await event_store.create_snapshot("42", "Entry", 5, {"v": 5})

        snapshot = await event_store.get_snapshot("42", "Entry")

        assert snapshot.aggregate_version == 5
        assert snapshot.state == {"v": 5}
        assert await event_store.get_snapshot("43", "Entry") is None

    @pytest.mark.asyncio
    async def test_stream_statistics(self, event_store):
        """Test statistics report counts, version and event types."""
        await event_store.append("entry-1", [_edit("1"), NewEvent("EntryApproved", "1", "Entry")])

        stats = await event_store.get_stream_statistics("entry-1")

        assert stats["eventCount"] == 2
        assert stats["currentVersion"] == 2
        assert stats["eventTypes"] == ["EntryApproved", "EntryEditOperation"]
        assert stats["firstEventAt"] is not None

    @pytest.mark.asyncio
    async def test_statistics_of_empty_stream(self, event_store):
        """Test an unknown stream reports zeroes."""
        stats = await event_store.get_stream_statistics("missing")

        assert stats["eventCount"] == 0
        assert stats["currentVersion"] == 0
        assert stats["firstEventAt"] is None

    @pytest.mark.asyncio
    async def test_replay_events_since_timestamp(self, database):
        """Test replay feeds events recorded since the timestamp, oldest first, in batches."""
        now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        times = iter([now, now, now + timedelta(hours=1), now + timedelta(hours=1)])
        store = EventStore(database, clock=lambda: next(times))
        await store.append("s", [_edit(n=0)])
        await store.append("s", [_edit(n=1), _edit(n=2)])

        replayed = []

        async def handler(event):
            replayed.append(event.payload["n"])

        count = await store.replay_events(now + timedelta(minutes=30), handler, batch_size=1)

        assert count == 2
        assert replayed == [1, 2]
