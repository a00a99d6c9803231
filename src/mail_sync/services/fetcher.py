"""Provider page fetching for one account."""

from __future__ import annotations

from typing import Protocol

import structlog

from mail_sync.core.errors import CursorInvalidError, PermanentError
from mail_sync.integrations.nylas.client import MAX_PAGE_SIZE, ProviderApiError
from mail_sync.integrations.nylas.models import MessagePage
from mail_sync.schemas.sync import AccountSyncState
from mail_sync.services.quota_monitor import QuotaMonitor

logger = structlog.get_logger(__name__)

CURSOR_REJECTION_HINTS = ("cursor", "page_token", "page token")


class MessageSource(Protocol):
    """Paginated message listing keyed by grant."""

    async def list_messages(
        self,
        grant_id: str,
        limit: int = MAX_PAGE_SIZE,
        page_token: str | None = None,
    ) -> MessagePage: ...


def is_cursor_rejection(error: ProviderApiError) -> bool:
    """Check if a provider error rejects the pagination cursor itself."""
    if error.status_code == 410:
        return True
    if error.status_code in (400, 404):
        text = f"{error.error_type or ''} {error.message}".lower()
        return any(hint in text for hint in CURSOR_REJECTION_HINTS)
    return False


class PageFetcher:
    """Fetches message pages and reports quota usage."""

    def __init__(
        self,
        source: MessageSource,
        quota_monitor: QuotaMonitor | None = None,
        page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        """Initialize fetcher.

        Args:
            source: Provider client.
            quota_monitor: Optional usage observer.
            page_size: Records per page.
        """
        self.source = source
        self.quota_monitor = quota_monitor
        self.page_size = max(1, min(page_size, MAX_PAGE_SIZE))

    async def fetch(
        self,
        account: AccountSyncState,
        cursor: str | None,
        limit: int | None = None,
    ) -> MessagePage:
        """Fetch one page.

        Args:
            account: Account being synced.
            cursor: Page token, None for the first page.
            limit: Page size override.

        Returns:
            The page. ``next_cursor`` None means pagination is complete.

        Raises:
            PermanentError: If the account has no grant.
            CursorInvalidError: If the provider rejected ``cursor``.
            ProviderApiError: For any other provider failure.
        """
        if not account.grant_id:
            raise PermanentError(
                "Account has no provider grant", account.id, requires_reconnect=True
            )

        try:
            page = await self.source.list_messages(
                account.grant_id,
                limit=limit or self.page_size,
                page_token=cursor,
            )
        except ProviderApiError as e:
            if self.quota_monitor is not None:
                self.quota_monitor.record(
                    account.provider,
                    account.id,
                    rate_limited=e.is_rate_limited,
                )
            if cursor and is_cursor_rejection(e):
                await logger.awarning(
                    "cursor_rejected",
                    account_id=str(account.id),
                    status_code=e.status_code,
                    error=e.message,
                )
                raise CursorInvalidError(e.message, account.id) from e
            raise

        if self.quota_monitor is not None:
            self.quota_monitor.record(account.provider, account.id, page.rate_limit)
        return page
