"""Tests for the page writer and attachment extraction."""

from __future__ import annotations

import json
import uuid
from unittest.mock import MagicMock

import httpx
import pytest

from mail_sync.integrations.nylas.models import ProviderMessage
from mail_sync.services.attachments import AttachmentExtractor
from mail_sync.services.message_writer import MessageWriter

from tests.fakes import ACCOUNT_EMAIL, FakeEmailRepository, make_message


class TestMessageWriter:
    """Tests for MessageWriter."""

    @pytest.mark.asyncio
    async def test_writes_page(self) -> None:
        """Test a page is normalized and inserted."""
        store = FakeEmailRepository()
        writer = MessageWriter(store, uuid.uuid4(), ACCOUNT_EMAIL)

        result = await writer.write_page([make_message("a"), make_message("b")])

        assert result.received == 2
        assert result.inserted == 2
        assert result.skipped_malformed == 0
        assert result.duplicates == 0

    @pytest.mark.asyncio
    async def test_existing_rows_not_counted(self) -> None:
        """Test rows already stored are ignored."""
        store = FakeEmailRepository()
        writer = MessageWriter(store, uuid.uuid4(), ACCOUNT_EMAIL)
        await writer.write_page([make_message("a")])

        result = await writer.write_page([make_message("a"), make_message("b")])

        assert result.inserted == 1
        assert result.duplicates == 1

    @pytest.mark.asyncio
    async def test_skips_malformed(self) -> None:
        """Test a malformed record is skipped and the rest are written."""
        store = FakeEmailRepository()
        writer = MessageWriter(store, uuid.uuid4(), ACCOUNT_EMAIL)

        result = await writer.write_page([ProviderMessage(id=""), make_message("b")])

        assert result.received == 2
        assert result.inserted == 1
        assert result.skipped_malformed == 1

    @pytest.mark.asyncio
    async def test_empty_page(self) -> None:
        """Test an empty page does not touch storage."""
        store = FakeEmailRepository()
        writer = MessageWriter(store, uuid.uuid4(), ACCOUNT_EMAIL)

        result = await writer.write_page([])

        assert result.inserted == 0
        assert store.insert_calls == 0

    @pytest.mark.asyncio
    async def test_schedules_extraction_for_new_rows(self) -> None:
        """Test only newly inserted rows are handed to the extractor."""
        store = FakeEmailRepository()
        extractor = MagicMock(spec=AttachmentExtractor)
        writer = MessageWriter(store, uuid.uuid4(), ACCOUNT_EMAIL, extractor)
        await writer.write_page([make_message("a")])
        extractor.reset_mock()

        await writer.write_page([make_message("a"), make_message("b")])

        rows = extractor.schedule.call_args.args[1]
        assert [r["provider_message_id"] for r in rows] == ["b"]


class TestAttachmentExtractor:
    """Tests for AttachmentExtractor."""

    def test_disabled_without_url(self) -> None:
        """Test nothing is scheduled without a processor."""
        extractor = AttachmentExtractor()
        row = {"provider_message_id": "a", "attachments": [{"id": "x"}]}

        assert extractor.enabled is False
        assert extractor.schedule(uuid.uuid4(), [row]) == 0  # type: ignore[list-item]

    @pytest.mark.asyncio
    async def test_posts_rows_with_attachments(self) -> None:
        """Test one job is posted per row carrying attachments."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        extractor = AttachmentExtractor("https://processor.example.com/jobs", http_client=client)
        account_id = uuid.uuid4()
        rows = [
            {"provider_message_id": "a", "attachments": [{"id": "att-1"}]},
            {"provider_message_id": "b", "attachments": []},
        ]

        scheduled = extractor.schedule(account_id, rows)  # type: ignore[arg-type]
        await extractor.drain()

        assert scheduled == 1
        assert len(requests) == 1
        body = json.loads(requests[0].content)
        assert body == {
            "accountId": str(account_id),
            "messageId": "a",
            "attachments": [{"id": "att-1"}],
        }
        await client.aclose()

    @pytest.mark.asyncio
    async def test_failures_do_not_propagate(self) -> None:
        """Test a failing processor never raises into the caller."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )
        extractor = AttachmentExtractor("https://processor.example.com/jobs", http_client=client)
        rows = [{"provider_message_id": "a", "attachments": [{"id": "att-1"}]}]

        extractor.schedule(uuid.uuid4(), rows)  # type: ignore[arg-type]
        await extractor.close()

        assert extractor.pending == 0
        await client.aclose()
