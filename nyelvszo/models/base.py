"""
Shared SQLAlchemy DeclarativeBase for all models.
"""

from sqlalchemy.orm import DeclarativeBase

from ..metadata import metadata


class Base(DeclarativeBase):
    """Shared declarative base; every table registers on the shared metadata."""

    metadata = metadata
