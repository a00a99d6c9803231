"""SQLAlchemy models for mail-sync."""

from mail_sync.models.base import Base
from mail_sync.models.email import Email
from mail_sync.models.email_account import EmailAccount

__all__ = [
    "Base",
    "Email",
    "EmailAccount",
]
