"""Continuation hand-off for syncs that outlive one execution window."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

import httpx
import structlog

from mail_sync.core.config import SyncSettings
from mail_sync.schemas.sync import AccountSyncState, AccountSyncUpdate, SyncStatus

logger = structlog.get_logger(__name__)

INTERNAL_SECRET_HEADER = "X-Internal-Secret"


class ContinuationDispatcher(Protocol):
    """Starts a fresh invocation of the sync for an account.

    Implementations raise on failure.
    """

    async def dispatch(self, account_id: UUID) -> None: ...


class HttpContinuationDispatcher:
    """Dispatches continuations by calling this service's own endpoint."""

    def __init__(
        self,
        base_url: str,
        internal_secret: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize dispatcher.

        Args:
            base_url: Public base URL of this service.
            internal_secret: Shared secret checked by ``/sync/continue``.
            http_client: Optional shared client.
            timeout: Request timeout in seconds.
        """
        self.url = f"{base_url.rstrip('/')}/sync/continue"
        self.internal_secret = internal_secret
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def dispatch(self, account_id: UUID) -> None:
        """POST the continuation request.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx response.
        """
        response = await self._client.post(
            self.url,
            json={"accountId": str(account_id)},
            headers={INTERNAL_SECRET_HEADER: self.internal_secret},
        )
        response.raise_for_status()

    async def close(self) -> None:
        """Close the owned HTTP client."""
        if self._owns_client:
            await self._client.aclose()


class LocalContinuationDispatcher:
    """Dispatches continuations as tasks in the current event loop.

    Used by the CLI, where there is no HTTP endpoint to call back.
    """

    def __init__(self, runner: Callable[[UUID], Awaitable[Any]]) -> None:
        """Initialize dispatcher.

        Args:
            runner: Coroutine function resuming the sync of an account.
        """
        self.runner = runner
        self._tasks: set[asyncio.Task[Any]] = set()

    async def dispatch(self, account_id: UUID) -> None:
        """Schedule the runner for the account."""
        task = asyncio.create_task(self.runner(account_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def join(self) -> None:
        """Wait until every dispatched chain has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


class HandOffResult(str, Enum):
    """Outcome of a continuation hand-off."""

    DISPATCHED = "dispatched"
    PENDING_RESUME = "pending_resume"
    LIMIT_REACHED = "limit_reached"


class ContinuationStore(Protocol):
    """Persistence needed by the trigger."""

    async def save(self, account_id: UUID, data: AccountSyncUpdate) -> bool: ...


class ContinuationTrigger:
    """Hands an unfinished sync to a fresh invocation."""

    def __init__(
        self,
        store: ContinuationStore,
        dispatcher: ContinuationDispatcher,
        settings: SyncSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize trigger.

        Args:
            store: Sync state persistence.
            dispatcher: Starts the next invocation.
            settings: Sync tunables (continuation limit, dispatch retries).
            sleep: Delay between dispatch attempts.
        """
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings or SyncSettings()
        self._sleep = sleep

    async def hand_off(self, state: AccountSyncState) -> HandOffResult:
        """Record the continuation and dispatch it.

        The account is marked ``background_syncing`` with an incremented
        ``continuation_count`` before dispatch. If every dispatch attempt
        fails the account becomes ``pending_resume`` for the scheduler.

        Args:
            state: Account state after the loop's final checkpoint.

        Returns:
            What happened to the continuation.
        """
        account_id = state.id
        s = self.settings

        if state.continuation_count >= s.max_continuations:
            await self.store.save(
                account_id,
                AccountSyncUpdate(
                    sync_status=SyncStatus.ERROR,
                    last_error=f"Exceeded maximum continuations ({s.max_continuations})",
                ),
            )
            await logger.aerror(
                "continuation_limit_reached",
                account_id=str(account_id),
                continuation_count=state.continuation_count,
            )
            return HandOffResult.LIMIT_REACHED

        continuation_count = state.continuation_count + 1
        await self.store.save(
            account_id,
            AccountSyncUpdate(
                sync_status=SyncStatus.BACKGROUND_SYNCING,
                continuation_count=continuation_count,
                last_activity_at=datetime.now(UTC),
            ),
        )

        last_error = ""
        for attempt in range(s.dispatch_attempts):
            try:
                await self.dispatcher.dispatch(account_id)
            except Exception as e:
                last_error = str(e) or type(e).__name__
                await logger.awarning(
                    "continuation_dispatch_failed",
                    account_id=str(account_id),
                    attempt=attempt + 1,
                    max_attempts=s.dispatch_attempts,
                    error=last_error,
                )
                if attempt + 1 < s.dispatch_attempts:
                    await self._sleep(s.dispatch_base_delay * 2**attempt)
                continue

            await logger.ainfo(
                "continuation_dispatched",
                account_id=str(account_id),
                continuation_count=continuation_count,
            )
            return HandOffResult.DISPATCHED

        await self.store.save(
            account_id,
            AccountSyncUpdate(
                sync_status=SyncStatus.PENDING_RESUME,
                next_retry_at=datetime.now(UTC) + timedelta(seconds=s.pending_resume_delay_seconds),
                last_error=f"Continuation dispatch failed: {last_error}",
            ),
        )
        await logger.aerror(
            "continuation_pending_resume",
            account_id=str(account_id),
            error=last_error,
        )
        return HandOffResult.PENDING_RESUME
