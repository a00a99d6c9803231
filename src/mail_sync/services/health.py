"""Sync health scoring."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from mail_sync.schemas.sync import AccountSyncState, SyncStatus

# (age in hours, penalty), checked in order
SYNC_AGE_PENALTIES: tuple[tuple[float, int], ...] = ((24, 30), (12, 20), (6, 10), (1, 5))
NEVER_SYNCED_PENALTY = 20


class HealthStatus(str, Enum):
    """Health label derived from the score."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


def calculate_health_score(
    state: AccountSyncState,
    circuit_open: bool = False,
    recent_rate_limits: int = 0,
    now: datetime | None = None,
) -> int:
    """Score an account's sync health from 0 to 100.

    Args:
        state: Account sync state.
        circuit_open: Whether the provider circuit is open.
        recent_rate_limits: Rate limits seen in the last hour.
        now: Current time.

    Returns:
        Score clamped to [0, 100].
    """
    now = now or datetime.now(UTC)
    score = 100

    if state.sync_status in (SyncStatus.ERROR, SyncStatus.ERROR_PERMANENT):
        score -= 40
    elif state.sync_status == SyncStatus.PAUSED:
        score -= 20

    if state.last_synced_at is not None:
        last_synced = state.last_synced_at
        if last_synced.tzinfo is None:
            last_synced = last_synced.replace(tzinfo=UTC)
        age_hours = (now - last_synced).total_seconds() / 3600
        for threshold, penalty in SYNC_AGE_PENALTIES:
            if age_hours > threshold:
                score -= penalty
                break
    else:
        score -= NEVER_SYNCED_PENALTY

    if state.last_error:
        score -= 10

    if circuit_open:
        score -= 25

    if recent_rate_limits > 5:
        score -= 15
    elif recent_rate_limits > 2:
        score -= 10
    elif recent_rate_limits > 0:
        score -= 5

    return max(0, min(100, score))


def health_status(score: int) -> HealthStatus:
    """Map a score to its label."""
    if score >= 80:
        return HealthStatus.HEALTHY
    if score >= 50:
        return HealthStatus.WARNING
    return HealthStatus.CRITICAL
