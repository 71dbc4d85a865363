"""
Database engine and session management for the event store.

The engine is created lazily from the configured URL. SQLite (through
aiosqlite) is the default; PostgreSQL is used through asyncpg.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from .exceptions import DatabaseError, ErrorContext
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class DatabaseManager:
    """
    Owns the async engine and session maker of the event store.

    One instance is created by the application container and passed to the
    components that need it.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        """
        Initialize the database manager.

        Args:
            database_url: Async SQLAlchemy URL
            echo: Echo SQL statements
        """
        self.database_url = database_url
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self.session_maker: async_sessionmaker[AsyncSession] | None = None

    def _initialize(self) -> None:
        if self.engine is not None:
            return

        engine_kwargs: dict[str, Any] = {"echo": self.echo}
        if self.database_url.startswith("sqlite"):
            # One shared connection keeps an in-memory database alive across sessions
            if ":memory:" in self.database_url:
                engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_pre_ping"] = True

        self.engine = create_async_engine(self.database_url, **engine_kwargs)
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database engine created", dialect=self.engine.dialect.name)

    def get_engine(self) -> AsyncEngine:
        self._initialize()
        assert self.engine is not None
        return self.engine

    def get_session_maker(self) -> async_sessionmaker[AsyncSession]:
        self._initialize()
        assert self.session_maker is not None
        return self.session_maker

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that is closed on exit."""
        async with self.get_session_maker()() as session:
            yield session

    async def init_schema(self) -> None:
        """
        Create the event store tables if they do not exist and verify connectivity.

        Raises:
            DatabaseError: If the database cannot be reached or the DDL fails
        """
        # Importing the models registers their tables on the shared metadata
        from .models import Base

        try:
            async with self.get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            context = ErrorContext(metadata={"operation": "init_schema"})
            raise DatabaseError(f"Event store initialization failed: {e}", context, operation="init_schema") from e
        logger.info("Event store schema ready")

    async def close(self) -> None:
        """Dispose of the engine and its connections."""
        if self.engine is None:
            return
        try:
            await self.engine.dispose()
            logger.info("Database connections closed")
        except (RuntimeError, SQLAlchemyError) as e:
            logger.warning("Error disposing database engine", error=str(e), error_type=type(e).__name__)
        finally:
            self.engine = None
            self.session_maker = None
