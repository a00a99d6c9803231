"""Progress and heartbeat persistence for a running sync."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

import structlog

from mail_sync.core.types import SyncMetadata
from mail_sync.schemas.sync import AccountSyncState, AccountSyncUpdate

logger = structlog.get_logger(__name__)

DEFAULT_TOTAL_ESTIMATE = 10_000


def compute_progress(synced: int, total: int, fallback_estimate: int = DEFAULT_TOTAL_ESTIMATE) -> int:
    """Compute in-progress percentage.

    Args:
        synced: Messages stored so far.
        total: Known mailbox size, 0 if unknown.
        fallback_estimate: Estimate used when the size is unknown.

    Returns:
        Percentage in [0, 99]. 100 is reserved for completion.
    """
    estimate = total if total > 0 else fallback_estimate
    if estimate <= 0:
        return 0
    return max(0, min(99, round(synced / estimate * 100)))


class ProgressStore(Protocol):
    """Persistence needed by the tracker."""

    async def save(self, account_id: UUID, data: AccountSyncUpdate) -> bool: ...


class ProgressTracker:
    """Tracks counters for one run and persists them.

    Heartbeats (activity time, cursor, count) are written every page; the
    full checkpoint (progress, total, metadata) every ``every_pages`` pages
    and on loop exit.
    """

    def __init__(
        self,
        state: AccountSyncState,
        store: ProgressStore,
        every_pages: int = 5,
        fallback_estimate: int = DEFAULT_TOTAL_ESTIMATE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize tracker from the account's persisted state.

        Args:
            state: State snapshot at run start.
            store: Sync state persistence.
            every_pages: Pages between full checkpoints.
            fallback_estimate: Mailbox size estimate when the total is unknown.
            clock: Monotonic clock for throughput.
        """
        self.account_id = state.id
        self.store = store
        self.every_pages = max(1, every_pages)
        self.fallback_estimate = fallback_estimate
        self._clock = clock
        self._started = clock()
        self.run_started_at = datetime.now(UTC)

        self.synced = state.synced_email_count
        self.total = state.total_email_count
        self.cursor = state.sync_cursor
        # 100 belongs to a previous completed run
        self.progress = min(99, state.sync_progress)
        previous = state.sync_metadata or {}
        self.pages_fetched = int(previous.get("pages_fetched", 0) or 0)
        self.run_pages = 0
        self.run_inserted = 0
        self.last_page_size = 0

    def _refresh_progress(self) -> int:
        computed = compute_progress(self.synced, self.total, self.fallback_estimate)
        self.progress = max(self.progress, computed)
        return self.progress

    def metadata(self) -> SyncMetadata:
        """Throughput metadata for the current run."""
        minutes = (self._clock() - self._started) / 60
        rate = self.run_inserted / minutes if minutes > 0 else 0.0
        return SyncMetadata(
            pages_fetched=self.pages_fetched,
            last_page_size=self.last_page_size,
            messages_per_minute=round(rate, 2),
            run_started_at=self.run_started_at.isoformat(),
        )

    async def heartbeat(self, cursor: str | None, inserted: int, page_size: int) -> bool:
        """Record a processed page.

        Args:
            cursor: Cursor for the next page as returned by the provider.
            inserted: Rows newly inserted from the page.
            page_size: Records the provider returned.

        Returns:
            False if the account no longer exists.
        """
        self.synced += inserted
        self.run_inserted += inserted
        self.cursor = cursor
        self.pages_fetched += 1
        self.run_pages += 1
        self.last_page_size = page_size

        exists = await self.store.save(
            self.account_id,
            AccountSyncUpdate(
                last_activity_at=datetime.now(UTC),
                sync_cursor=cursor,
                synced_email_count=self.synced,
            ),
        )

        if exists and self.run_pages % self.every_pages == 0:
            await self.checkpoint()
        return exists

    async def checkpoint(self) -> None:
        """Write the full progress snapshot."""
        self._refresh_progress()

        await self.store.save(
            self.account_id,
            AccountSyncUpdate(
                last_activity_at=datetime.now(UTC),
                sync_cursor=self.cursor,
                synced_email_count=self.synced,
                sync_progress=self.progress,
                total_email_count=self.total,
                sync_metadata=dict(self.metadata()),
            ),
        )
        await logger.ainfo(
            "sync_checkpoint",
            account_id=str(self.account_id),
            synced=self.synced,
            progress=self.progress,
            pages=self.pages_fetched,
        )

    def restart(self) -> None:
        """Forget the cursor after an invalid-cursor restart.

        Counters are kept; re-fetched messages are deduplicated on insert.
        """
        self.cursor = None
