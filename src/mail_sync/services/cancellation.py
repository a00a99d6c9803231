"""Cooperative cancellation for the sync loop."""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import Protocol
from uuid import UUID

import structlog

from mail_sync.services.deadline import Deadline

logger = structlog.get_logger(__name__)


class CancelReason(str, Enum):
    """Why a token fired."""

    STOPPED = "stopped"
    ACCOUNT_MISSING = "account_missing"


class CancellationToken:
    """Event-backed stop signal with deadline-bounded sleeps."""

    def __init__(self, deadline: Deadline | None = None) -> None:
        """Initialize token.

        Args:
            deadline: Optional deadline capping every sleep.
        """
        self._event = asyncio.Event()
        self.deadline = deadline
        self.reason: CancelReason | None = None

    @property
    def is_cancelled(self) -> bool:
        """Check if the token has fired."""
        return self._event.is_set()

    def cancel(self, reason: CancelReason = CancelReason.STOPPED) -> None:
        """Fire the token. The first reason wins."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep unless cancelled.

        The sleep is cut short when the token fires or the deadline runs out.

        Args:
            seconds: Requested sleep.

        Returns:
            False if the token fired, True otherwise.
        """
        if self.deadline is not None:
            seconds = min(seconds, self.deadline.remaining())
        if self._event.is_set():
            return False
        if seconds <= 0:
            return True
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        return not self._event.is_set()

    def can_wait(self, seconds: float) -> bool:
        """Check if a wait of this length ends inside the execution window.

        Backoff waits must run in full; a wait the deadline would cut short
        is not started at all.
        """
        return self.deadline is None or self.deadline.allows(seconds)


class StopFlagSource(Protocol):
    """Storage read used to refresh the token."""

    async def is_stop_requested(self, account_id: UUID) -> bool | None: ...


class StopSignalPoller:
    """Refreshes a cancellation token from storage every N pages."""

    def __init__(
        self,
        account_id: UUID,
        source: StopFlagSource,
        token: CancellationToken,
        every_pages: int = 3,
    ) -> None:
        """Initialize poller.

        Args:
            account_id: Account whose stop flag is read.
            source: Storage holding the stop flag.
            token: Token fired when a stop is requested or the account is gone.
            every_pages: Pages between storage reads.
        """
        self.account_id = account_id
        self.source = source
        self.token = token
        self.every_pages = max(1, every_pages)

    async def poll(self, page_number: int) -> bool:
        """Poll storage if this page is due.

        Args:
            page_number: One-based count of pages processed in this run.

        Returns:
            True if the token has fired.
        """
        if self.token.is_cancelled:
            return True
        if page_number % self.every_pages != 0:
            return False
        return await self.refresh()

    async def refresh(self) -> bool:
        """Read the stop flag now.

        Returns:
            True if the token has fired.
        """
        stop_requested = await self.source.is_stop_requested(self.account_id)
        if stop_requested is None:
            self.token.cancel(CancelReason.ACCOUNT_MISSING)
            await logger.ainfo("sync_account_deleted", account_id=str(self.account_id))
        elif stop_requested:
            self.token.cancel(CancelReason.STOPPED)
            await logger.ainfo("sync_stop_requested", account_id=str(self.account_id))
        return self.token.is_cancelled
