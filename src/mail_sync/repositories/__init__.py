"""Repository classes for data access."""

from mail_sync.repositories.email import EmailRepository
from mail_sync.repositories.sync_state import SyncStateRepository

__all__ = [
    "EmailRepository",
    "SyncStateRepository",
]
