"""
Database connection management.
Handles async SQLAlchemy engine and session creation for one backing store.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from balin.db.models import Base
from balin.errors import ConfigurationError

logger = logging.getLogger(__name__)


def parse_database_url(database_url: str | URL) -> URL:
    """
    Parse a database URL, failing fast on malformed input.

    Args:
        database_url: SQLAlchemy URL such as ``sqlite+aiosqlite:///queue.db``.

    Returns:
        URL: The parsed URL.

    Raises:
        ConfigurationError: If the URL cannot be parsed.
    """
    try:
        return make_url(database_url)
    except ArgumentError as e:
        raise ConfigurationError(f"Invalid database URL: {e}") from e


def _is_file_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:")


def _configure_sqlite(engine: AsyncEngine, busy_timeout_seconds: float) -> None:
    """Enable WAL journaling and a busy timeout on every new connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_seconds * 1000)}")
        cursor.close()


class Database:
    """
    Engine and session factory bound to a single backing store.

    One instance is created per queue handle and shared by everything that
    talks to that store.
    """

    def __init__(
        self,
        database_url: str | URL,
        pool_size: int = 10,
        max_overflow: int = 20,
        echo: bool = False,
        sqlite_busy_timeout_seconds: float = 30.0,
    ):
        """
        Create the engine and session factory.

        Args:
            database_url: SQLAlchemy async database URL.
            pool_size: Connection pool size (ignored for SQLite).
            max_overflow: Pool overflow (ignored for SQLite).
            echo: Log every SQL statement.
            sqlite_busy_timeout_seconds: How long SQLite waits on a locked file.
        """
        self.url = parse_database_url(database_url)
        self.dialect = self.url.get_backend_name()

        engine_kwargs: dict = {"echo": echo, "pool_pre_ping": True}
        if self.dialect == "sqlite":
            engine_kwargs["connect_args"] = {"timeout": sqlite_busy_timeout_seconds}
            if _is_file_sqlite(self.url):
                Path(self.url.database).parent.mkdir(parents=True, exist_ok=True)
        else:
            engine_kwargs["pool_size"] = pool_size
            engine_kwargs["max_overflow"] = max_overflow

        self.engine: AsyncEngine = create_async_engine(self.url, **engine_kwargs)
        if self.dialect == "sqlite":
            _configure_sqlite(self.engine, sqlite_busy_timeout_seconds)

        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create_schema(self) -> None:
        """
        Create the queue table and its indices if they do not exist.

        Safe to call on every startup.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, checkfirst=True)
        logger.info(
            "Queue schema ready",
            extra={"dialect": self.dialect},
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Transactional session scope.

        Commits when the block exits cleanly, rolls back and re-raises
        otherwise.

        Yields:
            AsyncSession: An async database session.
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self.engine.dispose()
        logger.info("Database connection closed", extra={"dialect": self.dialect})
