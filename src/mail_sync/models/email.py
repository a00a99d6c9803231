"""Synced email model."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mail_sync.models.base import Base

if TYPE_CHECKING:
    from mail_sync.models.email_account import EmailAccount


class Email(Base):
    """One provider message synced into local storage."""

    __tablename__ = "emails"
    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "provider_message_id",
            name="uq_emails_account_provider_message",
        ),
        Index("ix_emails_account_folder", "account_id", "folder"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("email_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider_message_id: Mapped[str] = mapped_column(String(255), nullable=False)
    thread_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    folder: Mapped[str] = mapped_column(String(255), default="inbox", server_default="inbox")
    folders: Mapped[list[str] | None] = mapped_column(JSONB, nullable=True)

    from_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    from_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    to_emails: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONB, nullable=True)
    cc_emails: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONB, nullable=True)
    bcc_emails: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONB, nullable=True)
    reply_to: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONB, nullable=True)

    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    is_starred: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")

    has_attachments: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    attachments_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    attachments: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONB, nullable=True)

    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    account: Mapped[EmailAccount] = relationship(
        "EmailAccount",
        back_populates="emails",
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return f"Email(id={self.id}, provider_message_id={self.provider_message_id!r})"
