"""
Event records of the event log.

NewEvent is what callers hand to EventStore.append; PersistedEvent is what
comes back once a stream position has been assigned. Both are immutable.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# Passing this as expected_version skips the optimistic concurrency check
EXPECTED_VERSION_ANY = -1

SNAPSHOT_RESTORED = "SnapshotRestored"


def _iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class NewEvent:
    """An event that has not been appended yet."""

    event_type: str
    aggregate_id: str
    aggregate_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    event_version: int = 1


@dataclass(frozen=True)
class PersistedEvent:
    """An event at a fixed position of its stream."""

    event_id: str
    stream_id: str
    sequence_number: int
    event_type: str
    event_version: int
    aggregate_id: str
    aggregate_type: str
    payload: dict[str, Any]
    metadata: dict[str, Any]
    recorded_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """Wire representation carried by entry_updated and domain_event frames."""
        return {
            "eventId": self.event_id,
            "streamId": self.stream_id,
            "sequenceNumber": self.sequence_number,
            "eventType": self.event_type,
            "eventVersion": self.event_version,
            "aggregateId": self.aggregate_id,
            "aggregateType": self.aggregate_type,
            "eventData": self.payload,
            "metadata": self.metadata,
            "timestamp": _iso(self.recorded_at),
        }


@dataclass(frozen=True)
class Snapshot:
    """Materialized aggregate state at a given version."""

    aggregate_id: str
    aggregate_type: str
    aggregate_version: int
    state: dict[str, Any]
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    def as_restored_event(self) -> PersistedEvent:
        """
        The synthetic event that stands in for the snapshot when reading an aggregate.

        Built only from snapshot fields, so repeated reads produce equal events.
        """
        return PersistedEvent(
            event_id=f"snapshot:{self.aggregate_type}:{self.aggregate_id}:{self.aggregate_version}",
            stream_id=f"snapshot-{self.aggregate_type}-{self.aggregate_id}",
            sequence_number=self.aggregate_version,
            event_type=SNAPSHOT_RESTORED,
            event_version=1,
            aggregate_id=self.aggregate_id,
            aggregate_type=self.aggregate_type,
            payload=self.state,
            metadata=self.metadata,
            recorded_at=self.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "aggregateId": self.aggregate_id,
            "aggregateType": self.aggregate_type,
            "aggregateVersion": self.aggregate_version,
            "snapshotData": self.state,
            "metadata": self.metadata,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
