"""
Append-only, versioned event store.

Each stream is an ordered sequence of events numbered from 1. Appends read the
current head inside a transaction, check the caller's expected version
(EXPECTED_VERSION_ANY skips the check), and insert contiguous sequence numbers;
the (stream_id, sequence_number) unique constraint rejects a concurrent writer
that slipped in between. Observers are notified after commit, in sequence
order.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import DatabaseManager
from ..exceptions import ConcurrencyError, DatabaseError, ErrorContext, ValidationError
from ..models.event_store import AggregateSnapshot, StoredEvent
from ..structured_logging.enhanced_logging_config import get_logger
from .event_types import EXPECTED_VERSION_ANY, NewEvent, PersistedEvent, Snapshot

logger = get_logger(__name__)

AppendObserver = Callable[[PersistedEvent], Awaitable[Any]]

# Unchecked appends that lose a cross-process race are retried this many times
_MAX_UNCHECKED_RETRIES = 3


def _utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored time is UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _to_persisted(row: StoredEvent) -> PersistedEvent:
    return PersistedEvent(
        event_id=row.event_id,
        stream_id=row.stream_id,
        sequence_number=row.sequence_number,
        event_type=row.event_type,
        event_version=row.event_version,
        aggregate_id=row.aggregate_id,
        aggregate_type=row.aggregate_type,
        payload=dict(row.payload or {}),
        metadata=dict(row.event_metadata or {}),
        recorded_at=_utc(row.recorded_at),
    )


def _to_snapshot(row: AggregateSnapshot) -> Snapshot:
    return Snapshot(
        aggregate_id=row.aggregate_id,
        aggregate_type=row.aggregate_type,
        aggregate_version=row.aggregate_version,
        state=dict(row.state or {}),
        metadata=dict(row.snapshot_metadata or {}),
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


@dataclass
class _Observer:
    handler: AppendObserver
    stream_id: str | None
    event_type: str | None

    def wants(self, event: PersistedEvent) -> bool:
        if self.stream_id is not None and self.stream_id != event.stream_id:
            return False
        return self.event_type is None or self.event_type == event.event_type


class EventStore:
    """
    Event log bridge between collaborative handlers and the database.

    The store is the only writer of event and snapshot rows.
    """

    def __init__(self, database: DatabaseManager, clock: Callable[[], datetime] | None = None) -> None:
        """
        Initialize the event store.

        Args:
            database: Database manager owning the engine
            clock: Source of UTC timestamps for recorded events
        """
        self.database = database
        self.clock = clock or (lambda: datetime.now(UTC))
        # stream id -> (lock, number of appenders holding or waiting for it)
        self._stream_locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._observers: list[_Observer] = []

    # Observers

    def on_appended(
        self,
        handler: AppendObserver,
        stream_id: str | None = None,
        event_type: str | None = None,
    ) -> Callable[[], None]:
        """
        Register a coroutine called with every appended event.

        Args:
            handler: Coroutine taking the persisted event
            stream_id: Only observe this stream (None for all streams)
            event_type: Only observe this event type (None for all types)

        Returns:
            Callable that removes the registration
        """
        observer = _Observer(handler, stream_id, event_type)
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    async def _emit(self, events: Sequence[PersistedEvent]) -> None:
        for event in events:
            for observer in list(self._observers):
                if not observer.wants(event):
                    continue
                try:
                    await observer.handler(event)
                except Exception as e:  # pylint: disable=broad-except  # Reason: the append is committed; observer failures must not surface to the writer
                    logger.error(
                        "Event observer failed",
                        stream_id=event.stream_id,
                        sequence_number=event.sequence_number,
                        event_type=event.event_type,
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )

    # Writes

    async def append(
        self,
        stream_id: str,
        events: Sequence[NewEvent],
        expected_version: int = EXPECTED_VERSION_ANY,
        metadata: dict[str, Any] | None = None,
    ) -> list[PersistedEvent]:
        """
        Atomically append events to a stream.

        Args:
            stream_id: Target stream
            events: Events to append, in order
            expected_version: Required current head, or EXPECTED_VERSION_ANY
            metadata: Metadata shared by every appended event

        Returns:
            list[PersistedEvent]: The appended events with their sequence numbers

        Raises:
            ConcurrencyError: If expected_version does not match the stream head
            DatabaseError: If the store fails
        """
        if not stream_id:
            raise ValidationError("Stream id is required", field="stream_id")
        if not events:
            return []

        enriched = self._enrich_metadata(metadata)
        async with self._stream_lock(stream_id):
            persisted = await self._append_with_retry(stream_id, events, expected_version, enriched)
            logger.debug(
                "Events appended",
                stream_id=stream_id,
                count=len(persisted),
                version=persisted[-1].sequence_number,
            )
            # Emitting under the stream lock keeps observers in sequence order
            await self._emit(persisted)
        return persisted

    @asynccontextmanager
    async def _stream_lock(self, stream_id: str) -> AsyncIterator[None]:
        """Serialize in-process appends to one stream; the lock is dropped once nobody uses it."""
        lock, users = self._stream_locks.get(stream_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._stream_locks[stream_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._stream_locks[stream_id]
            if users > 1:
                self._stream_locks[stream_id] = (lock, users - 1)
            else:
                del self._stream_locks[stream_id]

    async def _append_with_retry(
        self,
        stream_id: str,
        events: Sequence[NewEvent],
        expected_version: int,
        metadata: dict[str, Any],
    ) -> list[PersistedEvent]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._append_once(stream_id, events, expected_version, metadata)
            except IntegrityError as e:
                # Another process appended to the stream between our read and insert
                actual = await self.get_stream_version(stream_id)
                if expected_version != EXPECTED_VERSION_ANY or attempt >= _MAX_UNCHECKED_RETRIES:
                    raise ConcurrencyError(stream_id, expected_version, actual) from e
                logger.info("Retrying unchecked append after a concurrent write", stream_id=stream_id, attempt=attempt)
            except SQLAlchemyError as e:
                raise DatabaseError(
                    f"Failed to append to stream {stream_id}: {e}",
                    ErrorContext(stream_id=stream_id),
                    operation="append",
                ) from e

    async def _append_once(
        self,
        stream_id: str,
        events: Sequence[NewEvent],
        expected_version: int,
        metadata: dict[str, Any],
    ) -> list[PersistedEvent]:
        async with self.database.session() as session:
            async with session.begin():
                current = await self._head(session, stream_id)
                if expected_version != EXPECTED_VERSION_ANY and expected_version != current:
                    raise ConcurrencyError(stream_id, expected_version, current)

                recorded_at = self.clock()
                rows = [
                    StoredEvent(
                        event_id=str(uuid.uuid4()),
                        stream_id=stream_id,
                        sequence_number=current + index + 1,
                        event_type=event.event_type,
                        event_version=event.event_version,
                        aggregate_id=str(event.aggregate_id),
                        aggregate_type=event.aggregate_type,
                        payload=event.payload,
                        event_metadata=metadata,
                        recorded_at=recorded_at,
                    )
                    for index, event in enumerate(events)
                ]
                session.add_all(rows)
            return [_to_persisted(row) for row in rows]

    def _enrich_metadata(self, metadata: dict[str, Any] | None) -> dict[str, Any]:
        enriched = dict(metadata or {})
        enriched.setdefault("timestamp", self.clock().isoformat().replace("+00:00", "Z"))
        enriched["correlationId"] = enriched.get("correlationId") or str(uuid.uuid4())
        enriched["traceId"] = enriched.get("traceId") or str(uuid.uuid4())
        enriched.setdefault("causationId", None)
        enriched.setdefault("userId", None)
        return enriched

    async def create_snapshot(
        self,
        aggregate_id: str,
        aggregate_type: str,
        aggregate_version: int,
        state: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> Snapshot:
        """
        Store the snapshot of an aggregate, replacing any previous one.

        Returns:
            Snapshot: The stored snapshot
        """
        now = self.clock()
        try:
            async with self.database.session() as session:
                async with session.begin():
                    row = await session.scalar(
                        select(AggregateSnapshot).where(
                            AggregateSnapshot.aggregate_id == aggregate_id,
                            AggregateSnapshot.aggregate_type == aggregate_type,
                        )
                    )
                    if row is None:
                        row = AggregateSnapshot(
                            aggregate_id=aggregate_id,
                            aggregate_type=aggregate_type,
                            created_at=now,
                        )
                        session.add(row)
                    row.aggregate_version = aggregate_version
                    row.state = state
                    row.snapshot_metadata = metadata or {}
                    row.updated_at = now
                snapshot = _to_snapshot(row)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to store snapshot: {e}", operation="create_snapshot") from e

        logger.debug(
            "Snapshot stored",
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            version=aggregate_version,
        )
        return snapshot

    # Reads

    async def _head(self, session: AsyncSession, stream_id: str) -> int:
        head = await session.scalar(
            select(func.max(StoredEvent.sequence_number)).where(StoredEvent.stream_id == stream_id)
        )
        return int(head or 0)

    async def get_stream_version(self, stream_id: str) -> int:
        """Current head sequence number of a stream (0 when empty)."""
        async with self.database.session() as session:
            return await self._head(session, stream_id)

    async def read_stream(
        self,
        stream_id: str,
        from_version: int = 0,
        to_version: int | None = None,
    ) -> list[PersistedEvent]:
        """
        Read events of one stream in ascending sequence order.

        Args:
            stream_id: Stream to read
            from_version: Lowest sequence number included
            to_version: Highest sequence number included (None for the head)
        """
        query = select(StoredEvent).where(
            StoredEvent.stream_id == stream_id,
            StoredEvent.sequence_number >= from_version,
        )
        if to_version is not None:
            query = query.where(StoredEvent.sequence_number <= to_version)
        query = query.order_by(StoredEvent.sequence_number)
        async with self.database.session() as session:
            rows = (await session.scalars(query)).all()
        return [_to_persisted(row) for row in rows]

    async def read_aggregate(
        self,
        aggregate_id: str,
        aggregate_type: str,
        from_version: int = 0,
    ) -> list[PersistedEvent]:
        """
        Read the history of one aggregate.

        When reading from the start and a snapshot exists, the result starts
        with a synthetic SnapshotRestored event followed by the events recorded
        after the snapshot version.
        """
        start = from_version
        prefix: list[PersistedEvent] = []
        if from_version == 0:
            snapshot = await self.get_snapshot(aggregate_id, aggregate_type)
            if snapshot is not None:
                prefix.append(snapshot.as_restored_event())
                start = snapshot.aggregate_version + 1

        query = (
            select(StoredEvent)
            .where(
                StoredEvent.aggregate_id == aggregate_id,
                StoredEvent.aggregate_type == aggregate_type,
                StoredEvent.sequence_number >= start,
            )
            .order_by(StoredEvent.sequence_number, StoredEvent.id)
        )
        async with self.database.session() as session:
            rows = (await session.scalars(query)).all()
        return prefix + [_to_persisted(row) for row in rows]

    async def get_snapshot(self, aggregate_id: str, aggregate_type: str) -> Snapshot | None:
        async with self.database.session() as session:
            row = await session.scalar(
                select(AggregateSnapshot).where(
                    AggregateSnapshot.aggregate_id == aggregate_id,
                    AggregateSnapshot.aggregate_type == aggregate_type,
                )
            )
        return _to_snapshot(row) if row is not None else None

    async def get_stream_statistics(self, stream_id: str) -> dict[str, Any]:
        """Event count, version, time range and distinct event types of a stream."""
        async with self.database.session() as session:
            count, version, first_at, last_at = (
                await session.execute(
                    select(
                        func.count(StoredEvent.id),
                        func.max(StoredEvent.sequence_number),
                        func.min(StoredEvent.recorded_at),
                        func.max(StoredEvent.recorded_at),
                    ).where(StoredEvent.stream_id == stream_id)
                )
            ).one()
            event_types = (
                await session.scalars(
                    select(distinct(StoredEvent.event_type))
                    .where(StoredEvent.stream_id == stream_id)
                    .order_by(StoredEvent.event_type)
                )
            ).all()
        return {
            "streamId": stream_id,
            "eventCount": int(count or 0),
            "currentVersion": int(version or 0),
            "firstEventAt": _utc(first_at).isoformat() if first_at else None,
            "lastEventAt": _utc(last_at).isoformat() if last_at else None,
            "eventTypes": list(event_types),
        }

    async def replay_events(
        self,
        from_timestamp: datetime,
        handler: AppendObserver,
        batch_size: int = 1000,
    ) -> int:
        """
        Feed every event recorded since a timestamp to a handler, oldest first.

        Events are read in batches of batch_size using the insertion order.

        Returns:
            int: Number of events replayed
        """
        if from_timestamp.tzinfo is None:
            from_timestamp = from_timestamp.replace(tzinfo=UTC)
        last_id = 0
        replayed = 0
        while True:
            async with self.database.session() as session:
                rows = (
                    await session.scalars(
                        select(StoredEvent)
                        .where(StoredEvent.recorded_at >= from_timestamp, StoredEvent.id > last_id)
                        .order_by(StoredEvent.id)
                        .limit(batch_size)
                    )
                ).all()
            if not rows:
                break
            for row in rows:
                await handler(_to_persisted(row))
            replayed += len(rows)
            last_id = rows[-1].id
            if len(rows) < batch_size:
                break
        logger.info("Event replay completed", from_timestamp=from_timestamp.isoformat(), replayed=replayed)
        return replayed
