"""Tests for EmailRepository."""

from __future__ import annotations

from unittest import mock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from mail_sync.core.types import EmailRowData
from mail_sync.repositories.email import EmailRepository


@pytest.fixture
def mock_session() -> mock.MagicMock:
    """Create a mock async session."""
    session = mock.MagicMock()
    session.execute = mock.AsyncMock()
    session.commit = mock.AsyncMock()
    return session


@pytest.fixture
def repository(mock_session: mock.MagicMock) -> EmailRepository:
    """Create a repository instance."""
    return EmailRepository(mock_session)


class TestEmailRepositoryInsert:
    """Tests for insert_if_absent method."""

    @pytest.mark.asyncio
    async def test_returns_inserted_ids(
        self, repository: EmailRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test the IDs returned by the insert are reported."""
        account_id = uuid4()
        rows: list[EmailRowData] = [
            {"account_id": account_id, "provider_message_id": "a", "folder": "inbox"},
            {"account_id": account_id, "provider_message_id": "b", "folder": "inbox"},
        ]
        mock_result = mock.MagicMock()
        mock_result.scalars.return_value.all.return_value = ["b"]
        mock_session.execute.return_value = mock_result

        inserted = await repository.insert_if_absent(rows)

        assert inserted == {"b"}
        mock_session.commit.assert_called_once()
        sql = str(
            mock_session.execute.call_args.args[0].compile(dialect=postgresql.dialect())
        )
        assert "ON CONFLICT (account_id, provider_message_id) DO NOTHING" in sql
        assert "RETURNING emails.provider_message_id" in sql

    @pytest.mark.asyncio
    async def test_empty_rows(
        self, repository: EmailRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test an empty batch does not touch the database."""
        assert await repository.insert_if_absent([]) == set()

        mock_session.execute.assert_not_called()
        mock_session.commit.assert_not_called()


class TestEmailRepositoryCounts:
    """Tests for count methods."""

    @pytest.mark.asyncio
    async def test_count_for_account(
        self, repository: EmailRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test counting an account's emails."""
        mock_result = mock.MagicMock()
        mock_result.scalar.return_value = 42
        mock_session.execute.return_value = mock_result

        assert await repository.count_for_account(uuid4()) == 42

    @pytest.mark.asyncio
    async def test_count_for_account_empty(
        self, repository: EmailRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test a missing count is zero."""
        mock_result = mock.MagicMock()
        mock_result.scalar.return_value = None
        mock_session.execute.return_value = mock_result

        assert await repository.count_for_account(uuid4()) == 0

    @pytest.mark.asyncio
    async def test_folder_counts(
        self, repository: EmailRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test per-folder counts."""
        mock_result = mock.MagicMock()
        mock_result.all.return_value = [("inbox", 10), ("sent", 3), (None, 1)]
        mock_session.execute.return_value = mock_result

        counts = await repository.folder_counts(uuid4())

        assert counts == {"inbox": 10, "sent": 3, "unknown": 1}
