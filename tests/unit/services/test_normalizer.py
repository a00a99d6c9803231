"""Tests for message normalization."""

from __future__ import annotations

import uuid

import pytest

from mail_sync.integrations.nylas.models import (
    ProviderAttachment,
    ProviderMessage,
    ProviderParticipant,
)
from mail_sync.services.normalizer import (
    DEFAULT_ATTACHMENT_NAME,
    DEFAULT_CONTENT_TYPE,
    normalize_attachment,
    normalize_message,
    sanitize_text,
)

from tests.fakes import ACCOUNT_EMAIL, make_message


class TestSanitizeText:
    """Tests for sanitize_text."""

    def test_strips_nul_and_controls(self) -> None:
        """Test NUL and control characters are removed."""
        assert sanitize_text("a\x00b\x07c\x7f") == "abc"

    def test_keeps_whitespace(self) -> None:
        """Test tab, newline and carriage return survive."""
        assert sanitize_text("line1\r\n\tline2") == "line1\r\n\tline2"

    def test_replaces_invalid_bytes(self) -> None:
        """Test undecodable bytes become replacement characters."""
        assert sanitize_text(b"caf\xe9") == "caf\ufffd"

    def test_replaces_lone_surrogates(self) -> None:
        """Test lone surrogates are replaced."""
        result = sanitize_text("bad\ud800text")

        assert result is not None
        assert "\ud800" not in result
        assert result.startswith("bad")

    def test_none(self) -> None:
        """Test None passes through."""
        assert sanitize_text(None) is None


class TestNormalizeAttachment:
    """Tests for normalize_attachment."""

    def test_defaults(self) -> None:
        """Test missing metadata gets safe defaults."""
        result = normalize_attachment(ProviderAttachment(id="att-1", size=-5))

        assert result == {
            "id": "att-1",
            "filename": DEFAULT_ATTACHMENT_NAME,
            "size": 0,
            "content_type": DEFAULT_CONTENT_TYPE,
            "content_id": None,
            "is_inline": False,
        }

    def test_keeps_values(self) -> None:
        """Test provided metadata is kept."""
        result = normalize_attachment(
            ProviderAttachment(
                id="att-2",
                filename="report.pdf",
                size=2048,
                content_type="application/pdf",
                content_id="cid-1",
                is_inline=True,
            )
        )

        assert result["filename"] == "report.pdf"
        assert result["size"] == 2048
        assert result["content_type"] == "application/pdf"
        assert result["is_inline"] is True


class TestNormalizeMessage:
    """Tests for normalize_message."""

    def test_full_row(self) -> None:
        """Test every column is populated."""
        account_id = uuid.uuid4()
        message = make_message(
            "m1",
            folders=("INBOX", "IMPORTANT"),
            sender="Alice@Example.COM",
            attachments=(ProviderAttachment(id="a1", filename="x.txt", size=3),),
        )

        row = normalize_message(message, account_id, ACCOUNT_EMAIL)

        assert row["account_id"] == account_id
        assert row["provider_message_id"] == "m1"
        assert row["thread_id"] == "thread-m1"
        assert row["folder"] == "inbox"
        assert row["folders"] == ["INBOX", "IMPORTANT"]
        assert row["from_email"] == "alice@example.com"
        assert row["from_name"] == "Alice"
        assert row["to_emails"] == [{"email": ACCOUNT_EMAIL, "name": None}]
        assert row["is_read"] is False
        assert row["is_starred"] is False
        assert row["has_attachments"] is True
        assert row["attachments_count"] == 1
        assert row["attachments"][0]["content_type"] == DEFAULT_CONTENT_TYPE

    def test_self_sent(self) -> None:
        """Test the account owner's mail is filed as sent."""
        message = make_message("m2", folders=("INBOX",), sender=ACCOUNT_EMAIL)

        row = normalize_message(message, uuid.uuid4(), ACCOUNT_EMAIL)

        assert row["folder"] == "sent"

    def test_sanitizes_text_fields(self) -> None:
        """Test subject and body are sanitized."""
        message = ProviderMessage(
            id="m3",
            subject="Hi\x00there",
            body="<p>\x01ok</p>",
            sender=(ProviderParticipant(email="bob@example.com", name="Bo\x00b"),),
        )

        row = normalize_message(message, uuid.uuid4(), ACCOUNT_EMAIL)

        assert row["subject"] == "Hithere"
        assert row["body_html"] == "<p>ok</p>"
        assert row["from_name"] == "Bob"
        assert row["has_attachments"] is False
        assert row["folders"] == []

    def test_missing_id(self) -> None:
        """Test a message without an ID is rejected."""
        with pytest.raises(ValueError):
            normalize_message(ProviderMessage(id=""), uuid.uuid4(), ACCOUNT_EMAIL)
