"""Provider quota usage tracking."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from mail_sync.integrations.nylas.models import RateLimitInfo

MAX_HISTORY_ENTRIES = 1000
RECENT_WINDOW_SECONDS = 3600.0


@dataclass(frozen=True, slots=True)
class QuotaUsage:
    """One observed provider request."""

    provider: str
    account_id: UUID
    timestamp: float
    rate_limited: bool
    quota_used: int | None = None
    quota_remaining: int | None = None
    quota_limit: int | None = None


@dataclass(frozen=True, slots=True)
class QuotaStats:
    """Aggregated quota statistics."""

    total_requests: int
    rate_limits_hit: int
    recent_rate_limits: int
    average_quota_used: float | None = None
    last_quota_remaining: int | None = None
    last_quota_limit: int | None = None


class QuotaMonitor:
    """Bounded in-memory history of provider requests."""

    def __init__(
        self,
        max_entries: int = MAX_HISTORY_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._history: deque[QuotaUsage] = deque(maxlen=max_entries)
        self._clock = clock

    def record(
        self,
        provider: str,
        account_id: UUID,
        info: RateLimitInfo | None = None,
        rate_limited: bool = False,
    ) -> None:
        """Record one provider request.

        Args:
            provider: Provider key.
            account_id: Account the request was made for.
            info: Quota headers, if the provider sent any.
            rate_limited: Whether the request was rejected for quota.
        """
        info = info or RateLimitInfo()
        self._history.append(
            QuotaUsage(
                provider=provider,
                account_id=account_id,
                timestamp=self._clock(),
                rate_limited=rate_limited,
                quota_used=info.quota_used,
                quota_remaining=info.remaining,
                quota_limit=info.limit,
            )
        )

    def _filter(self, provider: str | None, account_id: UUID | None) -> list[QuotaUsage]:
        return [
            h
            for h in self._history
            if (provider is None or h.provider == provider)
            and (account_id is None or h.account_id == account_id)
        ]

    def stats(self, provider: str | None = None, account_id: UUID | None = None) -> QuotaStats:
        """Aggregate statistics, optionally scoped to a provider and account."""
        entries = self._filter(provider, account_id)
        cutoff = self._clock() - RECENT_WINDOW_SECONDS

        used = [h.quota_used for h in entries if h.quota_used is not None]
        last = entries[-1] if entries else None
        return QuotaStats(
            total_requests=len(entries),
            rate_limits_hit=sum(1 for h in entries if h.rate_limited),
            recent_rate_limits=sum(1 for h in entries if h.rate_limited and h.timestamp >= cutoff),
            average_quota_used=sum(used) / len(used) if used else None,
            last_quota_remaining=last.quota_remaining if last else None,
            last_quota_limit=last.quota_limit if last else None,
        )

    def is_approaching_limit(self, provider: str, account_id: UUID) -> bool:
        """Check the last ten requests for low quota or frequent rate limits."""
        recent = self._filter(provider, account_id)[-10:]
        if not recent:
            return False

        last = recent[-1]
        if last.quota_remaining is not None and last.quota_limit:
            if last.quota_remaining / last.quota_limit * 100 < 10:
                return True

        return sum(1 for h in recent if h.rate_limited) >= 3

    def clear(self) -> None:
        """Drop all history."""
        self._history.clear()
