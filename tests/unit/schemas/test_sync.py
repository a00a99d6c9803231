"""Tests for account sync state schemas."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from mail_sync.schemas.sync import AccountSyncState, AccountSyncUpdate, SyncStatus


class TestSyncStatus:
    """Tests for SyncStatus enum."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (SyncStatus.SYNCING, True),
            (SyncStatus.BACKGROUND_SYNCING, True),
            (SyncStatus.PENDING_RESUME, False),
            (SyncStatus.PAUSED, False),
            (SyncStatus.COMPLETED, False),
            (SyncStatus.IDLE, False),
        ],
    )
    def test_is_in_progress(self, status: SyncStatus, expected: bool) -> None:
        """Test which statuses mean a loop should be running."""
        assert status.is_in_progress is expected


class TestAccountSyncState:
    """Tests for AccountSyncState schema."""

    def test_defaults(self) -> None:
        """Test a fresh account's defaults."""
        state = AccountSyncState(id=uuid.uuid4(), email_address="me@example.com")

        assert state.sync_status == SyncStatus.IDLE
        assert state.sync_cursor is None
        assert state.synced_email_count == 0
        assert state.sync_progress == 0
        assert state.sync_stopped is False

    def test_from_attributes(self) -> None:
        """Test building a snapshot from an ORM-like object."""
        now = datetime.now(UTC)
        row = SimpleNamespace(
            id=uuid.uuid4(),
            email_address="me@example.com",
            provider="microsoft",
            grant_id="g1",
            sync_status="paused",
            sync_cursor="c1",
            synced_email_count=10,
            total_email_count=100,
            sync_progress=10,
            continuation_count=1,
            retry_count=2,
            last_activity_at=now,
            last_synced_at=None,
            last_retry_at=now,
            next_retry_at=now,
            sync_stopped=False,
            suppress_webhooks=True,
            initial_sync_completed=False,
            last_error="Rate limited",
            sync_metadata={"pages_fetched": 1},
        )

        state = AccountSyncState.model_validate(row)

        assert state.sync_status == SyncStatus.PAUSED
        assert state.provider == "microsoft"
        assert state.retry_count == 2
        assert state.sync_metadata == {"pages_fetched": 1}

    def test_progress_bounds(self) -> None:
        """Test progress is validated to 0-100."""
        with pytest.raises(ValidationError):
            AccountSyncState(id=uuid.uuid4(), email_address="me@example.com", sync_progress=101)

    def test_invalid_status(self) -> None:
        """Test an unknown status is rejected."""
        with pytest.raises(ValidationError):
            AccountSyncState(
                id=uuid.uuid4(),
                email_address="me@example.com",
                sync_status="exploded",  # type: ignore[arg-type]
            )


class TestAccountSyncUpdate:
    """Tests for AccountSyncUpdate schema."""

    def test_empty(self) -> None:
        """Test an empty update has no changes."""
        assert AccountSyncUpdate().changes() == {}

    def test_only_set_fields(self) -> None:
        """Test explicitly set fields are returned, including None."""
        update = AccountSyncUpdate(sync_status=SyncStatus.COMPLETED, last_error=None)

        assert update.changes() == {"sync_status": "completed", "last_error": None}

    def test_status_from_string(self) -> None:
        """Test statuses may be given as strings."""
        assert AccountSyncUpdate(sync_status="paused").changes() == {"sync_status": "paused"}  # type: ignore[arg-type]

    def test_validates_status(self) -> None:
        """Test that status is validated."""
        with pytest.raises(ValidationError):
            AccountSyncUpdate(sync_status="invalid")  # type: ignore[arg-type]

    def test_validates_progress(self) -> None:
        """Test progress bounds."""
        with pytest.raises(ValidationError):
            AccountSyncUpdate(sync_progress=-1)
