"""Async database engine and session management."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = structlog.get_logger(__name__)


def to_async_url(database_url: str) -> str:
    """Rewrite a PostgreSQL URL to use the asyncpg driver.

    Args:
        database_url: URL as configured.

    Returns:
        URL with the ``postgresql+asyncpg`` scheme.
    """
    for prefix in ("postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql+asyncpg://" + database_url[len(prefix) :]
    return database_url


class Database:
    """Owns the async engine and hands out sessions."""

    def __init__(self, database_url: str, pool_size: int = 10, echo: bool = False) -> None:
        """Initialize database.

        Args:
            database_url: Database URL; plain PostgreSQL URLs are rewritten for asyncpg.
            pool_size: Connection pool size.
            echo: Log SQL statements.
        """
        self.url = to_async_url(database_url)
        self.pool_size = pool_size
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get the engine.

        Raises:
            RuntimeError: If not connected.
        """
        if self._engine is None:
            raise RuntimeError("Database not connected")
        return self._engine

    async def connect(self) -> None:
        """Create the engine and session factory."""
        if self._engine is not None:
            return
        self._engine = create_async_engine(
            self.url,
            pool_size=self.pool_size,
            pool_pre_ping=True,
            echo=self.echo,
        )
        self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)

    async def disconnect(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    async def ping(self) -> bool:
        """Check connectivity with a trivial query."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            await logger.awarning("database_ping_failed", error=str(e))
            return False
        return True

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session, rolling back on error.

        Yields:
            AsyncSession instance.

        Raises:
            RuntimeError: If not connected.
        """
        if self._sessionmaker is None:
            raise RuntimeError("Database not connected")
        async with self._sessionmaker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
