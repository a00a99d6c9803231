"""Email account model holding per-account sync state."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mail_sync.models.base import Base

if TYPE_CHECKING:
    from mail_sync.models.email import Email


IN_PROGRESS_STATUSES = frozenset({"syncing", "background_syncing"})


class EmailAccount(Base):
    """Connected mail account and its sync state.

    Only the sync engine writes the sync columns. The UI and usage metering
    read them.
    """

    __tablename__ = "email_accounts"
    __table_args__ = (Index("ix_email_accounts_sync_status", "sync_status"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email_address: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="google")
    grant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Sync state
    sync_status: Mapped[str] = mapped_column(String(50), default="idle", server_default="idle")
    sync_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    synced_email_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    total_email_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    sync_progress: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    continuation_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    retry_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    last_activity_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_stopped: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    suppress_webhooks: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    initial_sync_completed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    emails: Mapped[list[Email]] = relationship(
        "Email",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )

    @property
    def is_syncing(self) -> bool:
        """Check if a sync loop is (supposedly) running."""
        return self.sync_status in IN_PROGRESS_STATUSES

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"EmailAccount(id={self.id}, status={self.sync_status!r}, "
            f"synced={self.synced_email_count})"
        )
