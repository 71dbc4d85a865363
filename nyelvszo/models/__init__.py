"""SQLAlchemy models for the event log."""

from .base import Base
from .event_store import AggregateSnapshot, StoredEvent

__all__ = ["Base", "StoredEvent", "AggregateSnapshot"]
