"""
Event log tables.

event_store holds every appended event; (stream_id, sequence_number) is
unique, which is what makes concurrent appends to one stream fail instead of
interleaving. aggregate_snapshots keeps one upserted row per aggregate.
"""

# pylint: disable=too-few-public-methods  # Reason: SQLAlchemy model data class

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

# SQLite only auto-increments INTEGER PRIMARY KEY columns
_PK = BigInteger().with_variant(Integer, "sqlite")


class StoredEvent(Base):
    """One immutable event of a stream."""

    __tablename__ = "event_store"
    __table_args__ = (
        UniqueConstraint("stream_id", "sequence_number", name="uq_event_store_stream_sequence"),
        Index("ix_event_store_aggregate", "aggregate_id", "aggregate_type", "sequence_number"),
        Index("ix_event_store_recorded_at", "recorded_at"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    stream_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    event_type: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    event_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    aggregate_id: Mapped[str] = mapped_column(String(255), nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StoredEvent(stream_id={self.stream_id!r}, sequence_number={self.sequence_number}, "
            f"event_type={self.event_type!r})>"
        )


class AggregateSnapshot(Base):
    """Latest materialized state of one aggregate."""

    __tablename__ = "aggregate_snapshots"
    __table_args__ = (
        UniqueConstraint("aggregate_id", "aggregate_type", name="uq_aggregate_snapshots_aggregate"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    aggregate_id: Mapped[str] = mapped_column(String(255), nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(255), nullable=False)
    aggregate_version: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    snapshot_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AggregateSnapshot(aggregate_id={self.aggregate_id!r}, aggregate_type={self.aggregate_type!r}, "
            f"version={self.aggregate_version})>"
        )
