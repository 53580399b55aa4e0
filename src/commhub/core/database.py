"""Database engine and session lifecycle."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path

import structlog
from alembic import command
from alembic.config import Config as AlembicConfig
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from commhub.models.base import Base

logger = structlog.get_logger(__name__)

# Type alias for session factory
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def to_async_url(database_url: str) -> str:
    """Convert a plain database URL to its async driver form.

    Args:
        database_url: URL such as ``postgresql://...`` or ``sqlite:///...``.

    Returns:
        URL using ``asyncpg`` or ``aiosqlite``.
    """
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


def alembic_config() -> AlembicConfig:
    """Build an Alembic config pointing at the packaged migrations."""
    config = AlembicConfig()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    return config


def upgrade_schema(connection: Connection, revision: str = "head") -> None:
    """Apply migrations up to ``revision`` on an open sync connection."""
    config = alembic_config()
    config.attributes["connection"] = connection
    command.upgrade(config, revision)


class DatabaseNotConnectedError(RuntimeError):
    """Raised when a session is requested before connect()."""


class Database:
    """Owns the async engine and hands out sessions.

    Constructed once at startup and passed to every component that needs
    storage; there is no module-level instance.
    """

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        """Initialize database wrapper.

        Args:
            database_url: Database URL (sync or async form).
            echo: Echo SQL statements.
        """
        self.url = to_async_url(database_url)
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get the connected engine."""
        if self._engine is None:
            raise DatabaseNotConnectedError("Database.connect() has not been called")
        return self._engine

    async def connect(self) -> None:
        """Create the engine and session factory."""
        if self._engine is not None:
            return
        self._engine = create_async_engine(self.url, echo=self._echo, pool_pre_ping=True)
        self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)
        await logger.ainfo("database_connected", url=self._engine.url.render_as_string())

    async def disconnect(self) -> None:
        """Dispose of the engine."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        await logger.ainfo("database_disconnected")

    async def migrate(self, revision: str = "head") -> None:
        """Upgrade the schema to ``revision`` with Alembic.

        Already-applied revisions are skipped, so this is safe on every start.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(upgrade_schema, revision)
        await logger.ainfo("database_migrated", revision=revision)

    async def create_tables(self) -> None:
        """Create all tables straight from the models, bypassing migrations.

        For throwaway databases only; a database created this way has no
        Alembic revision stamped.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session for one unit of work.

        Yields:
            AsyncSession, rolled back if the block raises.
        """
        if self._sessionmaker is None:
            raise DatabaseNotConnectedError("Database.connect() has not been called")
        async with self._sessionmaker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
