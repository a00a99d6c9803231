"""Shared type definitions."""

from __future__ import annotations

from datetime import datetime
from typing import TypedDict
from uuid import UUID


class ParticipantData(TypedDict, total=False):
    """Email participant as stored in JSON columns."""

    email: str
    name: str | None


class AttachmentData(TypedDict):
    """Attachment metadata in its fixed stored shape."""

    id: str
    filename: str
    size: int
    content_type: str
    content_id: str | None
    is_inline: bool


class EmailRowData(TypedDict, total=False):
    """Normalized email row ready for insertion."""

    account_id: UUID
    provider_message_id: str
    thread_id: str | None
    folder: str
    folders: list[str]
    from_email: str | None
    from_name: str | None
    to_emails: list[ParticipantData]
    cc_emails: list[ParticipantData]
    bcc_emails: list[ParticipantData]
    reply_to: list[ParticipantData]
    subject: str | None
    snippet: str | None
    body_html: str | None
    received_at: datetime | None
    is_read: bool
    is_starred: bool
    has_attachments: bool
    attachments_count: int
    attachments: list[AttachmentData]


class SyncMetadata(TypedDict, total=False):
    """Progress metadata kept on the account row."""

    pages_fetched: int
    last_page_size: int
    messages_per_minute: float
    run_started_at: str  # ISO format datetime
