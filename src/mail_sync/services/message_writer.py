"""Page writer: normalize, deduplicate and persist provider messages."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

import structlog

from mail_sync.core.types import EmailRowData
from mail_sync.integrations.nylas.models import ProviderMessage
from mail_sync.services.attachments import AttachmentExtractor
from mail_sync.services.normalizer import normalize_message

logger = structlog.get_logger(__name__)


class EmailStore(Protocol):
    """Insert-ignore persistence for email rows."""

    async def insert_if_absent(self, rows: list[EmailRowData]) -> set[str]: ...


@dataclass(frozen=True, slots=True)
class WriteResult:
    """Outcome of writing one page."""

    received: int
    inserted: int
    skipped_malformed: int

    @property
    def duplicates(self) -> int:
        """Valid records that were already stored."""
        return self.received - self.skipped_malformed - self.inserted


class MessageWriter:
    """Writes provider pages for one account."""

    def __init__(
        self,
        store: EmailStore,
        account_id: UUID,
        account_email: str,
        extractor: AttachmentExtractor | None = None,
    ) -> None:
        self.store = store
        self.account_id = account_id
        self.account_email = account_email
        self.extractor = extractor

    async def write_page(self, records: Sequence[ProviderMessage]) -> WriteResult:
        """Normalize and insert one page.

        Malformed records are skipped with a warning. Records already stored
        are ignored and not counted. Storage errors propagate.

        Args:
            records: Messages in provider order.

        Returns:
            Counts for the page.
        """
        rows: list[EmailRowData] = []
        seen: set[str] = set()
        skipped = 0
        for record in records:
            try:
                row = normalize_message(record, self.account_id, self.account_email)
            except (ValueError, TypeError, AttributeError) as e:
                skipped += 1
                await logger.awarning(
                    "record_skipped_malformed",
                    account_id=str(self.account_id),
                    message_id=getattr(record, "id", None),
                    error=str(e),
                )
                continue
            # A page can repeat a message; the insert must not see it twice
            if row["provider_message_id"] in seen:
                continue
            seen.add(row["provider_message_id"])
            rows.append(row)

        inserted_ids = await self.store.insert_if_absent(rows) if rows else set()

        if self.extractor is not None and inserted_ids:
            self.extractor.schedule(
                self.account_id,
                [r for r in rows if r["provider_message_id"] in inserted_ids],
            )

        return WriteResult(received=len(records), inserted=len(inserted_ids), skipped_malformed=skipped)
