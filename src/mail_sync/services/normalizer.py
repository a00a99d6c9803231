"""Provider message to email row normalization."""

from __future__ import annotations

import re
from uuid import UUID

from mail_sync.core.types import AttachmentData, EmailRowData, ParticipantData
from mail_sync.integrations.nylas.models import (
    ProviderAttachment,
    ProviderMessage,
    ProviderParticipant,
)
from mail_sync.services.folders import assign_folder, validate_folder_assignment

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_ATTACHMENT_NAME = "attachment"

# C0 controls except tab, newline and carriage return, plus DEL
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_text(value: str | bytes | None) -> str | None:
    """Make free text safe for storage.

    Strips NUL and other control characters (keeping tab, newline and
    carriage return) and replaces invalid encodings.

    Args:
        value: Raw text.

    Returns:
        Sanitized text, or None for None.
    """
    if value is None:
        return None
    if isinstance(value, bytes):
        text = value.decode("utf-8", errors="replace")
    else:
        # Lone surrogates cannot be encoded by the database driver
        text = value.encode("utf-8", errors="replace").decode("utf-8")
    return _CONTROL_CHARS.sub("", text)


def normalize_attachment(attachment: ProviderAttachment) -> AttachmentData:
    """Map attachment metadata into its stored shape with safe defaults."""
    size = attachment.size if attachment.size is not None and attachment.size >= 0 else 0
    return AttachmentData(
        id=attachment.id,
        filename=sanitize_text(attachment.filename) or DEFAULT_ATTACHMENT_NAME,
        size=size,
        content_type=attachment.content_type or DEFAULT_CONTENT_TYPE,
        content_id=attachment.content_id,
        is_inline=attachment.is_inline,
    )


def normalize_attachments(attachments: tuple[ProviderAttachment, ...]) -> list[AttachmentData]:
    """Normalize every attachment of a message."""
    return [normalize_attachment(a) for a in attachments]


def _participants(participants: tuple[ProviderParticipant, ...]) -> list[ParticipantData]:
    return [
        ParticipantData(email=p.email.strip().lower(), name=sanitize_text(p.name))
        for p in participants
    ]


def normalize_message(
    message: ProviderMessage,
    account_id: UUID,
    account_email: str,
) -> EmailRowData:
    """Build an email row from a provider message.

    Args:
        message: Parsed provider message.
        account_id: Owning account.
        account_email: Address of the account, used for the self-sent rule.

    Returns:
        Row with every column populated.

    Raises:
        ValueError: If the message has no provider ID.
    """
    if not message.id:
        raise ValueError("Message without provider id")

    folder = assign_folder(message.folders, message.from_email, account_email)
    validate_folder_assignment(message.folders, folder, message_id=message.id)

    sender = message.sender[0] if message.sender else None
    attachments = normalize_attachments(message.attachments)

    return EmailRowData(
        account_id=account_id,
        provider_message_id=message.id,
        thread_id=message.thread_id,
        folder=folder,
        folders=list(message.folders),
        from_email=sender.email.strip().lower() if sender else None,
        from_name=sanitize_text(sender.name) if sender else None,
        to_emails=_participants(message.to),
        cc_emails=_participants(message.cc),
        bcc_emails=_participants(message.bcc),
        reply_to=_participants(message.reply_to),
        subject=sanitize_text(message.subject),
        snippet=sanitize_text(message.snippet),
        body_html=sanitize_text(message.body),
        received_at=message.date,
        is_read=not message.unread,
        is_starred=message.starred,
        has_attachments=bool(attachments),
        attachments_count=len(attachments),
        attachments=attachments,
    )
