"""Tests for database session management."""

from __future__ import annotations

from unittest import mock

import pytest

from mail_sync.api.database import Database, to_async_url


class TestToAsyncUrl:
    """Tests for to_async_url."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgresql://u:p@localhost/db", "postgresql+asyncpg://u:p@localhost/db"),
            ("postgres://u:p@localhost/db", "postgresql+asyncpg://u:p@localhost/db"),
            ("postgresql+asyncpg://localhost/db", "postgresql+asyncpg://localhost/db"),
            ("sqlite+aiosqlite:///test.db", "sqlite+aiosqlite:///test.db"),
        ],
    )
    def test_rewrite(self, url: str, expected: str) -> None:
        """Test plain PostgreSQL URLs switch to asyncpg."""
        assert to_async_url(url) == expected


class TestDatabase:
    """Tests for Database."""

    def test_init(self) -> None:
        """Test the URL is rewritten on construction."""
        db = Database("postgresql://localhost/db", pool_size=5)

        assert db.url == "postgresql+asyncpg://localhost/db"
        assert db.pool_size == 5

    def test_engine_before_connect(self) -> None:
        """Test the engine is unavailable until connected."""
        with pytest.raises(RuntimeError, match="not connected"):
            _ = Database("postgresql://localhost/db").engine

    @pytest.mark.asyncio
    async def test_session_before_connect(self) -> None:
        """Test sessions are unavailable until connected."""
        db = Database("postgresql://localhost/db")

        with pytest.raises(RuntimeError, match="not connected"):
            async with db.session():
                pass

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self) -> None:
        """Test the engine lifecycle."""
        engine = mock.MagicMock()
        engine.dispose = mock.AsyncMock()

        with mock.patch(
            "mail_sync.api.database.create_async_engine", return_value=engine
        ) as create:
            db = Database("postgresql://localhost/db")
            await db.connect()
            await db.connect()

        create.assert_called_once()
        assert create.call_args.args[0] == "postgresql+asyncpg://localhost/db"
        assert db.engine is engine

        await db.disconnect()

        engine.dispose.assert_awaited_once()
        with pytest.raises(RuntimeError):
            _ = db.engine

    @pytest.mark.asyncio
    async def test_ping_failure(self) -> None:
        """Test a failing ping returns False."""
        db = Database("postgresql://localhost/db")

        assert await db.ping() is False
