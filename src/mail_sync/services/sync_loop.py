"""Time-budgeted sync loop for one account.

The loop pulls pages in cursor order until the provider reports no more
pages or the execution window is nearly used up. It never schedules its own
continuation: it returns a ``SyncOutcome`` and the caller decides what to do
with a ``CONTINUE``.
"""

from __future__ import annotations

import functools
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Protocol
from uuid import UUID

import structlog

from mail_sync.core.config import SyncSettings
from mail_sync.core.errors import (
    CircuitOpenError,
    CursorInvalidError,
    DeadlineReachedError,
    ManuallyStoppedError,
    PermanentError,
    RetriesExhaustedError,
)
from mail_sync.schemas.sync import AccountSyncState, AccountSyncUpdate, SyncStatus
from mail_sync.services.cancellation import CancellationToken, CancelReason, StopSignalPoller
from mail_sync.services.circuit_breaker import CircuitBreaker
from mail_sync.services.deadline import Deadline
from mail_sync.services.fetcher import PageFetcher
from mail_sync.services.message_writer import MessageWriter
from mail_sync.services.progress import ProgressTracker
from mail_sync.services.quota_monitor import QuotaMonitor
from mail_sync.services.retry import BackoffPolicy, RetryController

logger = structlog.get_logger(__name__)


class OutcomeKind(str, Enum):
    """How a loop run ended."""

    COMPLETED = "completed"
    CONTINUE = "continue"
    STOPPED = "stopped"
    ACCOUNT_MISSING = "account_missing"
    PAUSED = "paused"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """Resumable position saved when the loop yields."""

    cursor: str | None
    synced_email_count: int
    sync_progress: int
    pages_fetched: int


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    """Result of one loop run.

    Attributes:
        kind: How the run ended.
        checkpoint: Saved position for CONTINUE, STOPPED, PAUSED and FAILED.
        error: Failure or pause reason.
        permanent: True when the failure requires reconnecting the account.
        retry_after_ms: Delay before a paused sync may resume.
    """

    kind: OutcomeKind
    checkpoint: Checkpoint | None = None
    error: str | None = None
    permanent: bool = False
    retry_after_ms: int = 0


class SyncStateStore(Protocol):
    """Sync state persistence used by the loop."""

    async def save(self, account_id: UUID, data: AccountSyncUpdate) -> bool: ...

    async def is_stop_requested(self, account_id: UUID) -> bool | None: ...


class SyncLoop:
    """Runs the page loop for one account within one execution window."""

    def __init__(
        self,
        fetcher: PageFetcher,
        writer: MessageWriter,
        store: SyncStateStore,
        breaker: CircuitBreaker,
        settings: SyncSettings | None = None,
        quota_monitor: QuotaMonitor | None = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """Initialize sync loop.

        Args:
            fetcher: Provider page fetcher.
            writer: Page writer for the account.
            store: Sync state persistence.
            breaker: Circuit breaker of the account's provider.
            settings: Sync tunables.
            quota_monitor: Usage observer used to slow down near the quota.
            rng: Jitter source for backoff.
        """
        self.fetcher = fetcher
        self.writer = writer
        self.store = store
        self.breaker = breaker
        self.settings = settings or SyncSettings()
        self.quota_monitor = quota_monitor
        self._rng = rng

    async def run(
        self,
        state: AccountSyncState,
        deadline: Deadline,
        token: CancellationToken,
    ) -> SyncOutcome:
        """Sync pages until completion, yield, stop or failure.

        Args:
            state: Account state at the start of the run.
            deadline: Execution window.
            token: Stop signal.

        Returns:
            Outcome of the run. Errors are reported here, not raised; an
            unexpected failure (storage, normalization) ends the run as
            ``error``. Task cancellation still propagates.
        """
        s = self.settings
        account_id = state.id
        tracker = ProgressTracker(
            state,
            self.store,
            every_pages=s.progress_every_pages,
            fallback_estimate=s.total_estimate_fallback,
        )
        poller = StopSignalPoller(account_id, self.store, token, every_pages=s.stop_poll_every_pages)
        retry = RetryController(
            account_id,
            self.breaker,
            self.store,
            token,
            max_retries=s.max_retries,
            policy=BackoffPolicy.from_settings(s),
            rng=self._rng,
        )

        await logger.ainfo(
            "sync_loop_started",
            account_id=str(account_id),
            cursor_present=state.sync_cursor is not None,
            synced=state.synced_email_count,
            budget_seconds=deadline.budget_seconds,
        )

        try:
            cursor = state.sync_cursor
            if cursor:
                cursor = await self._validate_cursor(state, cursor, retry, tracker)

            restarted = False
            page_number = 0
            while True:
                if token.is_cancelled:
                    return await self._cancelled(token, tracker)

                if deadline.should_yield():
                    return await self._yield(tracker, deadline)

                try:
                    page = await retry.call(
                        functools.partial(self.fetcher.fetch, state, cursor),
                        "list_messages",
                    )
                except CursorInvalidError as e:
                    if restarted or cursor is None:
                        raise PermanentError(e.message, account_id) from e
                    restarted = True
                    cursor = None
                    await self._restart(tracker, f"Sync cursor rejected mid-run: {e.message}")
                    continue

                result = await self.writer.write_page(page.records)
                page_number += 1
                cursor = page.next_cursor

                if not await tracker.heartbeat(cursor, result.inserted, len(page.records)):
                    await logger.ainfo("sync_account_deleted", account_id=str(account_id))
                    return SyncOutcome(kind=OutcomeKind.ACCOUNT_MISSING)

                await logger.ainfo(
                    "sync_page_processed",
                    account_id=str(account_id),
                    page=page_number,
                    received=result.received,
                    inserted=result.inserted,
                    skipped=result.skipped_malformed,
                    synced=tracker.synced,
                    has_more=cursor is not None,
                )

                # next_cursor is the only completion signal
                if cursor is None:
                    return await self._complete(tracker)

                if await poller.poll(page_number):
                    return await self._cancelled(token, tracker)

                if not await token.sleep(self._inter_page_delay(state)):
                    return await self._cancelled(token, tracker)

        except ManuallyStoppedError:
            return await self._cancelled(token, tracker)

        except DeadlineReachedError:
            return await self._yield(tracker, deadline)

        except CircuitOpenError as e:
            return await self._pause(tracker, e)

        except (PermanentError, RetriesExhaustedError) as e:
            permanent = isinstance(e, PermanentError) and e.requires_reconnect
            return await self._fail(tracker, e.message, permanent)

        except Exception as e:
            await logger.aexception("sync_loop_error", account_id=str(account_id), error=str(e))
            return await self._fail(tracker, str(e) or type(e).__name__, permanent=False)

    def _inter_page_delay(self, state: AccountSyncState) -> float:
        delay = self.settings.inter_page_delay_seconds
        if self.quota_monitor is not None and self.quota_monitor.is_approaching_limit(
            state.provider, state.id
        ):
            return delay * 2
        return delay

    async def _validate_cursor(
        self,
        state: AccountSyncState,
        cursor: str,
        retry: RetryController,
        tracker: ProgressTracker,
    ) -> str | None:
        """Check a persisted cursor with a single-record fetch.

        Returns:
            The cursor if the provider accepts it, None after a reset.
        """
        try:
            await retry.call(
                functools.partial(self.fetcher.fetch, state, cursor, 1),
                "validate_cursor",
            )
        except CursorInvalidError as e:
            await self._restart(tracker, f"Invalid sync cursor, restarting: {e.message}")
            return None
        except PermanentError as e:
            if e.requires_reconnect:
                raise
            await self._restart(tracker, f"Invalid sync cursor, restarting: {e.message}")
            return None
        return cursor

    async def _restart(self, tracker: ProgressTracker, reason: str) -> None:
        tracker.restart()
        await self.store.save(
            tracker.account_id,
            AccountSyncUpdate(sync_cursor=None, last_error=reason),
        )
        await logger.awarning("sync_cursor_reset", account_id=str(tracker.account_id), reason=reason)

    def _checkpoint(self, tracker: ProgressTracker) -> Checkpoint:
        return Checkpoint(
            cursor=tracker.cursor,
            synced_email_count=tracker.synced,
            sync_progress=tracker.progress,
            pages_fetched=tracker.pages_fetched,
        )

    async def _complete(self, tracker: ProgressTracker) -> SyncOutcome:
        now = datetime.now(UTC)
        total = max(tracker.total, tracker.synced)
        tracker.total = total
        tracker.progress = 100
        await self.store.save(
            tracker.account_id,
            AccountSyncUpdate(
                sync_status=SyncStatus.COMPLETED,
                sync_progress=100,
                sync_cursor=None,
                synced_email_count=tracker.synced,
                total_email_count=total,
                initial_sync_completed=True,
                suppress_webhooks=False,
                continuation_count=0,
                retry_count=0,
                last_error=None,
                next_retry_at=None,
                last_synced_at=now,
                last_activity_at=now,
                sync_metadata=dict(tracker.metadata()),
            ),
        )
        await logger.ainfo(
            "sync_completed",
            account_id=str(tracker.account_id),
            synced=tracker.synced,
            total=total,
            pages=tracker.pages_fetched,
        )
        return SyncOutcome(kind=OutcomeKind.COMPLETED, checkpoint=self._checkpoint(tracker))

    async def _yield(self, tracker: ProgressTracker, deadline: Deadline) -> SyncOutcome:
        await tracker.checkpoint()
        await logger.ainfo(
            "sync_budget_exhausted",
            account_id=str(tracker.account_id),
            elapsed_seconds=round(deadline.elapsed, 1),
            synced=tracker.synced,
        )
        return SyncOutcome(kind=OutcomeKind.CONTINUE, checkpoint=self._checkpoint(tracker))

    async def _cancelled(self, token: CancellationToken, tracker: ProgressTracker) -> SyncOutcome:
        if token.reason == CancelReason.ACCOUNT_MISSING:
            return SyncOutcome(kind=OutcomeKind.ACCOUNT_MISSING)

        await tracker.checkpoint()
        await self.store.save(tracker.account_id, AccountSyncUpdate(sync_status=SyncStatus.IDLE))
        await logger.ainfo("sync_stopped", account_id=str(tracker.account_id), synced=tracker.synced)
        return SyncOutcome(kind=OutcomeKind.STOPPED, checkpoint=self._checkpoint(tracker))

    async def _pause(self, tracker: ProgressTracker, error: CircuitOpenError) -> SyncOutcome:
        await tracker.checkpoint()
        await self.store.save(
            tracker.account_id,
            AccountSyncUpdate(
                sync_status=SyncStatus.PAUSED,
                last_error=error.message,
                next_retry_at=datetime.now(UTC) + timedelta(milliseconds=error.retry_after_ms),
            ),
        )
        await logger.awarning(
            "sync_paused",
            account_id=str(tracker.account_id),
            reason=error.message,
            retry_after_ms=error.retry_after_ms,
        )
        return SyncOutcome(
            kind=OutcomeKind.PAUSED,
            checkpoint=self._checkpoint(tracker),
            error=error.message,
            retry_after_ms=error.retry_after_ms,
        )

    async def _fail(self, tracker: ProgressTracker, message: str, permanent: bool) -> SyncOutcome:
        await tracker.checkpoint()
        status = SyncStatus.ERROR_PERMANENT if permanent else SyncStatus.ERROR
        await self.store.save(
            tracker.account_id,
            AccountSyncUpdate(sync_status=status, last_error=message),
        )
        await logger.aerror(
            "sync_failed",
            account_id=str(tracker.account_id),
            status=status.value,
            error=message,
        )
        return SyncOutcome(
            kind=OutcomeKind.FAILED,
            checkpoint=self._checkpoint(tracker),
            error=message,
            permanent=permanent,
        )
