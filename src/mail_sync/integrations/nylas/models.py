"""Typed records for Nylas message listing responses.

Provider JSON is loose: most fields are optional and some arrive with the
wrong type. Everything is normalized here so nothing past the client has to
deal with provider-specific optionality.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class ProviderParticipant:
    """Sender or recipient."""

    email: str
    name: str | None = None


@dataclass(frozen=True, slots=True)
class ProviderAttachment:
    """Attachment metadata as reported by the provider.

    Unknown values stay None here; defaults are applied by the normalizer.
    """

    id: str
    filename: str | None = None
    size: int | None = None
    content_type: str | None = None
    content_id: str | None = None
    is_inline: bool = False


@dataclass(frozen=True, slots=True)
class ProviderMessage:
    """A single message from a listing page."""

    id: str
    thread_id: str | None = None
    subject: str | None = None
    snippet: str | None = None
    body: str | None = None
    sender: tuple[ProviderParticipant, ...] = ()
    to: tuple[ProviderParticipant, ...] = ()
    cc: tuple[ProviderParticipant, ...] = ()
    bcc: tuple[ProviderParticipant, ...] = ()
    reply_to: tuple[ProviderParticipant, ...] = ()
    folders: tuple[str, ...] = ()
    date: datetime | None = None
    unread: bool = False
    starred: bool = False
    attachments: tuple[ProviderAttachment, ...] = ()

    @property
    def from_email(self) -> str | None:
        """First sender address."""
        return self.sender[0].email if self.sender else None


@dataclass(frozen=True, slots=True)
class RateLimitInfo:
    """Quota headers returned with a response."""

    limit: int | None = None
    remaining: int | None = None
    reset_at: int | None = None  # unix seconds
    quota_used: int | None = None


@dataclass(frozen=True, slots=True)
class MessagePage:
    """One page of a message listing.

    Attributes:
        records: Messages in provider order.
        next_cursor: Token for the next page. None means there are no more pages.
        rate_limit: Quota headers from the response.
    """

    records: list[ProviderMessage] = field(default_factory=list)
    next_cursor: str | None = None
    rate_limit: RateLimitInfo = field(default_factory=RateLimitInfo)


def _str_or_none(value: object) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def _int_or_none(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value))
    except ValueError:
        return None


def _participants(raw: object) -> tuple[ProviderParticipant, ...]:
    if not isinstance(raw, list):
        return ()
    participants = []
    for item in raw:
        if isinstance(item, Mapping):
            email = _str_or_none(item.get("email"))
            if email:
                participants.append(
                    ProviderParticipant(email=email, name=_str_or_none(item.get("name")))
                )
    return tuple(participants)


def _attachments(raw: object) -> tuple[ProviderAttachment, ...]:
    if not isinstance(raw, list):
        return ()
    attachments = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        attachment_id = _str_or_none(item.get("id"))
        if not attachment_id:
            continue
        attachments.append(
            ProviderAttachment(
                id=attachment_id,
                filename=_str_or_none(item.get("filename")),
                size=_int_or_none(item.get("size")),
                content_type=_str_or_none(item.get("content_type")),
                content_id=_str_or_none(item.get("content_id")),
                is_inline=bool(item.get("is_inline", False)),
            )
        )
    return tuple(attachments)


def _timestamp(raw: object) -> datetime | None:
    seconds = _int_or_none(raw)
    if seconds is None or seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=UTC)


def parse_message(raw: Mapping[str, Any]) -> ProviderMessage:
    """Parse one message object from the listing response.

    Args:
        raw: Message JSON object.

    Returns:
        Parsed message.

    Raises:
        ValueError: If the message has no ID.
    """
    message_id = _str_or_none(raw.get("id"))
    if not message_id:
        raise ValueError("Message without id")

    folders = raw.get("folders")
    return ProviderMessage(
        id=message_id,
        thread_id=_str_or_none(raw.get("thread_id")),
        subject=_str_or_none(raw.get("subject")),
        snippet=_str_or_none(raw.get("snippet")),
        body=_str_or_none(raw.get("body")),
        sender=_participants(raw.get("from")),
        to=_participants(raw.get("to")),
        cc=_participants(raw.get("cc")),
        bcc=_participants(raw.get("bcc")),
        reply_to=_participants(raw.get("reply_to")),
        folders=tuple(str(f) for f in folders if f) if isinstance(folders, list) else (),
        date=_timestamp(raw.get("date")),
        unread=bool(raw.get("unread", False)),
        starred=bool(raw.get("starred", False)),
        attachments=_attachments(raw.get("attachments")),
    )


def parse_rate_limit_headers(headers: Mapping[str, str]) -> RateLimitInfo:
    """Extract quota information from response headers.

    Args:
        headers: Response headers (case-insensitive mapping).

    Returns:
        Parsed quota info; unknown values are None.
    """
    return RateLimitInfo(
        limit=_int_or_none(headers.get("x-ratelimit-limit")),
        remaining=_int_or_none(headers.get("x-ratelimit-remaining")),
        reset_at=_int_or_none(headers.get("x-ratelimit-reset")),
        quota_used=_int_or_none(headers.get("nylas-gmail-quota-usage")),
    )


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds.

    Args:
        value: Header value.

    Returns:
        Delay in seconds, or None if absent or not numeric.
    """
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None
