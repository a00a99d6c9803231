"""Account sync state Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SyncStatus(str, Enum):
    """Sync status of an account."""

    IDLE = "idle"
    QUEUED = "queued"
    SYNCING = "syncing"
    BACKGROUND_SYNCING = "background_syncing"
    PENDING_RESUME = "pending_resume"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    ERROR_PERMANENT = "error_permanent"

    @property
    def is_in_progress(self) -> bool:
        """Check if a loop is expected to be running in this state."""
        return self in (SyncStatus.SYNCING, SyncStatus.BACKGROUND_SYNCING)


class AccountSyncState(BaseModel):
    """Snapshot of an account's sync state."""

    id: UUID
    email_address: str
    provider: str = "google"
    grant_id: str | None = None
    sync_status: SyncStatus = SyncStatus.IDLE
    sync_cursor: str | None = None
    synced_email_count: int = 0
    total_email_count: int = 0
    sync_progress: int = Field(default=0, ge=0, le=100)
    continuation_count: int = 0
    retry_count: int = 0
    last_activity_at: datetime | None = None
    last_synced_at: datetime | None = None
    last_retry_at: datetime | None = None
    next_retry_at: datetime | None = None
    sync_stopped: bool = False
    suppress_webhooks: bool = False
    initial_sync_completed: bool = False
    last_error: str | None = None
    sync_metadata: dict[str, Any] | None = None

    model_config = ConfigDict(from_attributes=True)


class AccountSyncUpdate(BaseModel):
    """Partial update of an account's sync state.

    Only fields that were explicitly set are written.
    """

    sync_status: SyncStatus | None = None
    sync_cursor: str | None = None
    synced_email_count: int | None = None
    total_email_count: int | None = None
    sync_progress: int | None = Field(default=None, ge=0, le=100)
    continuation_count: int | None = None
    retry_count: int | None = None
    last_activity_at: datetime | None = None
    last_synced_at: datetime | None = None
    last_retry_at: datetime | None = None
    next_retry_at: datetime | None = None
    sync_stopped: bool | None = None
    suppress_webhooks: bool | None = None
    initial_sync_completed: bool | None = None
    last_error: str | None = None
    sync_metadata: dict[str, Any] | None = None

    model_config = ConfigDict(use_enum_values=True)

    def changes(self) -> dict[str, Any]:
        """Return the explicitly set fields."""
        return self.model_dump(exclude_unset=True)
