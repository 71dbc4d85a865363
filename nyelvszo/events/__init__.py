"""Event log: append-only versioned streams, snapshots and append observers."""

from .event_store import EventStore
from .event_types import EXPECTED_VERSION_ANY, NewEvent, PersistedEvent, Snapshot

__all__ = ["EventStore", "EXPECTED_VERSION_ANY", "NewEvent", "PersistedEvent", "Snapshot"]
