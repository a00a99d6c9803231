"""Fire-and-forget attachment extraction."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from uuid import UUID

import httpx
import structlog

from mail_sync.core.types import EmailRowData

logger = structlog.get_logger(__name__)


class AttachmentExtractor:
    """Hands messages with attachments to an external processor.

    Work runs as background tasks. Failures are logged from the task's done
    callback and never reach the caller, so extraction cannot block or fail
    the write path.
    """

    def __init__(
        self,
        processor_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize extractor.

        Args:
            processor_url: Endpoint receiving extraction jobs. None disables extraction.
            http_client: Optional shared client.
            timeout: Request timeout in seconds.
        """
        self.processor_url = processor_url
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def enabled(self) -> bool:
        """Check if a processor is configured."""
        return bool(self.processor_url)

    @property
    def pending(self) -> int:
        """Number of jobs still running."""
        return len(self._tasks)

    def schedule(self, account_id: UUID, rows: Sequence[EmailRowData]) -> int:
        """Schedule extraction for rows that carry attachments.

        Args:
            account_id: Owning account.
            rows: Newly inserted rows.

        Returns:
            Number of jobs scheduled.
        """
        if not self.enabled:
            return 0

        scheduled = 0
        for row in rows:
            attachments = row.get("attachments") or []
            if not attachments:
                continue
            payload = {
                "accountId": str(account_id),
                "messageId": row["provider_message_id"],
                "attachments": list(attachments),
            }
            task = asyncio.create_task(self._submit(payload))
            self._tasks.add(task)
            task.add_done_callback(self._on_done)
            scheduled += 1
        return scheduled

    async def _submit(self, payload: dict[str, object]) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        response = await self._client.post(str(self.processor_url), json=payload)
        response.raise_for_status()

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("attachment_extraction_failed", error=str(exc))

    async def drain(self) -> None:
        """Wait for all scheduled jobs to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        """Drain pending jobs and close the owned HTTP client."""
        await self.drain()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
