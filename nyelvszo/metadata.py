"""
Shared SQLAlchemy metadata for the event store models.
"""

from sqlalchemy import MetaData

# Explicit constraint names keep migrations stable across SQLite and PostgreSQL
metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "pk": "pk_%(table_name)s",
    }
)
