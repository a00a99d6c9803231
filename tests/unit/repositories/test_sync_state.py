"""Tests for SyncStateRepository."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest import mock
from uuid import uuid4

import pytest

from mail_sync.repositories.sync_state import SyncStateRepository
from mail_sync.schemas.sync import AccountSyncUpdate, SyncStatus

from tests.fakes import make_state


def account_row(**overrides: object) -> SimpleNamespace:
    """Build an object shaped like an EmailAccount row."""
    values = make_state().model_dump()
    values["sync_status"] = "idle"
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def mock_session() -> mock.MagicMock:
    """Create a mock async session."""
    session = mock.MagicMock()
    session.execute = mock.AsyncMock()
    session.commit = mock.AsyncMock()
    return session


@pytest.fixture
def repository(mock_session: mock.MagicMock) -> SyncStateRepository:
    """Create a repository instance."""
    return SyncStateRepository(mock_session)


class TestSyncStateRepositoryLoad:
    """Tests for load method."""

    def test_init(self, mock_session: mock.MagicMock) -> None:
        """Test repository initialization."""
        repo = SyncStateRepository(mock_session)
        assert repo.session is mock_session

    @pytest.mark.asyncio
    async def test_load_found(
        self, repository: SyncStateRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test loading an existing account."""
        row = account_row(sync_status="background_syncing", sync_cursor="c1")
        mock_result = mock.MagicMock()
        mock_result.scalar_one_or_none.return_value = row
        mock_session.execute.return_value = mock_result

        state = await repository.load(row.id)

        assert state is not None
        assert state.id == row.id
        assert state.sync_status == SyncStatus.BACKGROUND_SYNCING
        assert state.sync_cursor == "c1"

    @pytest.mark.asyncio
    async def test_load_not_found(
        self, repository: SyncStateRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test loading a missing account returns None."""
        mock_result = mock.MagicMock()
        mock_result.scalar_one_or_none.return_value = None
        mock_session.execute.return_value = mock_result

        assert await repository.load(uuid4()) is None


class TestSyncStateRepositorySave:
    """Tests for save method."""

    @pytest.mark.asyncio
    async def test_save_updates_and_commits(
        self, repository: SyncStateRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test a partial update is executed and committed."""
        mock_result = mock.MagicMock()
        mock_result.rowcount = 1
        mock_session.execute.return_value = mock_result

        saved = await repository.save(
            uuid4(), AccountSyncUpdate(sync_status=SyncStatus.SYNCING, sync_cursor=None)
        )

        assert saved is True
        mock_session.execute.assert_called_once()
        mock_session.commit.assert_called_once()
        params = mock_session.execute.call_args.args[0].compile().params
        assert params["sync_status"] == "syncing"
        assert params["sync_cursor"] is None
        assert "synced_email_count" not in params
        assert "updated_at" in params

    @pytest.mark.asyncio
    async def test_save_missing_account(
        self, repository: SyncStateRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test saving for a deleted account returns False."""
        mock_result = mock.MagicMock()
        mock_result.rowcount = 0
        mock_session.execute.return_value = mock_result

        assert await repository.save(uuid4(), AccountSyncUpdate(retry_count=1)) is False

    @pytest.mark.asyncio
    async def test_save_nothing(
        self, repository: SyncStateRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test an empty update does not touch the database."""
        assert await repository.save(uuid4(), AccountSyncUpdate()) is True

        mock_session.execute.assert_not_called()
        mock_session.commit.assert_not_called()


class TestSyncStateRepositoryStopFlag:
    """Tests for is_stop_requested method."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("flag", [True, False])
    async def test_flag(
        self, repository: SyncStateRepository, mock_session: mock.MagicMock, flag: bool
    ) -> None:
        """Test the stored flag is returned."""
        mock_result = mock.MagicMock()
        mock_result.first.return_value = (flag,)
        mock_session.execute.return_value = mock_result

        assert await repository.is_stop_requested(uuid4()) is flag

    @pytest.mark.asyncio
    async def test_missing_account(
        self, repository: SyncStateRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test a missing account returns None."""
        mock_result = mock.MagicMock()
        mock_result.first.return_value = None
        mock_session.execute.return_value = mock_result

        assert await repository.is_stop_requested(uuid4()) is None


class TestSyncStateRepositoryListResumable:
    """Tests for list_resumable method."""

    @pytest.mark.asyncio
    async def test_returns_snapshots(
        self, repository: SyncStateRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test matching rows are converted to snapshots."""
        rows = [account_row(sync_status="pending_resume"), account_row(sync_status="syncing")]
        mock_result = mock.MagicMock()
        mock_result.scalars.return_value.all.return_value = rows
        mock_session.execute.return_value = mock_result

        states = await repository.list_resumable(
            datetime.now(UTC), timedelta(minutes=10), limit=5
        )

        assert [s.sync_status for s in states] == [
            SyncStatus.PENDING_RESUME,
            SyncStatus.SYNCING,
        ]
        mock_session.execute.assert_called_once()

    @pytest.mark.asyncio
    async def test_empty(
        self, repository: SyncStateRepository, mock_session: mock.MagicMock
    ) -> None:
        """Test no matching rows."""
        mock_result = mock.MagicMock()
        mock_result.scalars.return_value.all.return_value = []
        mock_session.execute.return_value = mock_result

        assert await repository.list_resumable(datetime.now(UTC), timedelta(minutes=10)) == []
