"""Pydantic schemas for mail-sync."""

from mail_sync.schemas.sync import AccountSyncState, AccountSyncUpdate, SyncStatus

__all__ = [
    "AccountSyncState",
    "AccountSyncUpdate",
    "SyncStatus",
]
