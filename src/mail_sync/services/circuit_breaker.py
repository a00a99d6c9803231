"""Per-provider circuit breaker for rate-limit protection.

States:
- CLOSED: normal operation, all requests allowed
- OPEN: too many consecutive rate limits, requests short-circuited
- HALF_OPEN: cool-down elapsed, a single trial request is in flight

One breaker exists per provider and is shared by every account syncing
against it, since provider quotas are global rather than per mailbox.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from mail_sync.core.config import SyncSettings

logger = structlog.get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class GuardDecision:
    """Whether a request may be sent."""

    allowed: bool
    state: CircuitState
    reason: str | None = None
    retry_after_ms: int = 0


@dataclass(frozen=True, slots=True)
class BreakerSnapshot:
    """Point-in-time breaker statistics."""

    provider: str
    state: CircuitState
    consecutive_failures: int
    total_failures: int
    total_successes: int
    current_backoff_seconds: float
    open_for_seconds: float | None


class CircuitBreaker:
    """Circuit breaker counting consecutive rate-limit responses.

    All state transitions happen under a lock so concurrent account loops
    can record outcomes safely.
    """

    def __init__(
        self,
        provider: str,
        failure_threshold: int = 5,
        failure_window_seconds: float = 60.0,
        initial_backoff_seconds: float = 30.0,
        max_backoff_seconds: float = 300.0,
        reset_after_seconds: float = 300.0,
        trial_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            provider: Provider key this breaker guards.
            failure_threshold: Consecutive rate limits that open the circuit.
            failure_window_seconds: Max gap between failures counted as one run.
            initial_backoff_seconds: First open window.
            max_backoff_seconds: Cap for the open window.
            reset_after_seconds: Failure-free time after which the window resets.
            trial_timeout_seconds: Age after which an unreported half-open trial
                is given up and another request may claim it.
            clock: Monotonic clock.
        """
        self.provider = provider
        self.failure_threshold = failure_threshold
        self.failure_window_seconds = failure_window_seconds
        self.initial_backoff_seconds = initial_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.reset_after_seconds = reset_after_seconds
        self.trial_timeout_seconds = trial_timeout_seconds
        self._clock = clock
        self._lock = asyncio.Lock()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_at: float | None = None
        self._open_until: float | None = None
        self._backoff = initial_backoff_seconds
        self._trial_in_flight = False
        self._trial_claimed_at: float | None = None
        self._total_failures = 0
        self._total_successes = 0

    @property
    def state(self) -> CircuitState:
        """Current state (without applying time-based transitions)."""
        return self._state

    async def check(self) -> GuardDecision:
        """Decide whether a request may be sent now.

        An allowed decision in the half-open state claims the single trial;
        the caller must report its outcome, or call ``release_trial`` if the
        request was abandoned.

        Returns:
            Decision; when blocked, carries the reason and retry delay.
        """
        async with self._lock:
            return self._decide(claim_trial=True)

    async def peek(self) -> GuardDecision:
        """Decide like ``check`` without claiming the half-open trial."""
        async with self._lock:
            return self._decide(claim_trial=False)

    def _decide(self, claim_trial: bool) -> GuardDecision:
        now = self._clock()

        if self._state == CircuitState.CLOSED:
            return GuardDecision(allowed=True, state=CircuitState.CLOSED)

        if self._state == CircuitState.OPEN:
            if self._open_until is not None and now >= self._open_until:
                if claim_trial:
                    self._state = CircuitState.HALF_OPEN
                    self._claim_trial(now)
                    logger.info("circuit_half_open", provider=self.provider)
                return GuardDecision(allowed=True, state=CircuitState.HALF_OPEN)

            remaining = (self._open_until or now) - now
            return GuardDecision(
                allowed=False,
                state=CircuitState.OPEN,
                reason=(
                    f"Circuit open for {self.provider}: too many rate limits. "
                    f"Retry in {round(remaining)}s"
                ),
                retry_after_ms=max(0, int(remaining * 1000)),
            )

        # HALF_OPEN: exactly one trial request
        if self._trial_in_flight and self._trial_expired(now):
            logger.warning(
                "circuit_trial_expired",
                provider=self.provider,
                timeout_seconds=self.trial_timeout_seconds,
            )
            self._release_trial()
        if not self._trial_in_flight:
            if claim_trial:
                self._claim_trial(now)
            return GuardDecision(allowed=True, state=CircuitState.HALF_OPEN)
        return GuardDecision(
            allowed=False,
            state=CircuitState.HALF_OPEN,
            reason=f"Circuit half-open for {self.provider}: waiting for trial request",
            retry_after_ms=5000,
        )

    def _claim_trial(self, now: float) -> None:
        self._trial_in_flight = True
        self._trial_claimed_at = now

    def _release_trial(self) -> None:
        self._trial_in_flight = False
        self._trial_claimed_at = None

    def _trial_expired(self, now: float) -> bool:
        return (
            self._trial_claimed_at is not None
            and now - self._trial_claimed_at >= self.trial_timeout_seconds
        )

    def release_trial(self) -> None:
        """Give up a claimed half-open trial without an outcome.

        Used when the trial request was abandoned, e.g. its task was
        cancelled. Synchronous so it can run while a cancellation unwinds.
        """
        if self._state == CircuitState.HALF_OPEN and self._trial_in_flight:
            self._release_trial()
            logger.info("circuit_trial_released", provider=self.provider)

    async def record_success(self) -> None:
        """Record a successful provider call."""
        async with self._lock:
            now = self._clock()
            self._total_successes += 1

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._open_until = None
                self._release_trial()
                logger.info("circuit_closed", provider=self.provider)

            self._consecutive_failures = 0
            if (
                self._last_failure_at is None
                or now - self._last_failure_at > self.reset_after_seconds
            ):
                self._backoff = self.initial_backoff_seconds

    async def record_rate_limit(self) -> bool:
        """Record a rate-limit response.

        Returns:
            True if the circuit is open after recording.
        """
        async with self._lock:
            now = self._clock()
            if (
                self._last_failure_at is not None
                and now - self._last_failure_at > self.failure_window_seconds
            ):
                self._consecutive_failures = 0

            self._consecutive_failures += 1
            self._total_failures += 1
            self._last_failure_at = now

            if self._state == CircuitState.HALF_OPEN:
                self._open(now, reason="trial_failed")
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                self._open(now, reason="threshold_reached")
            else:
                logger.info(
                    "circuit_rate_limit_recorded",
                    provider=self.provider,
                    consecutive_failures=self._consecutive_failures,
                    threshold=self.failure_threshold,
                )

            return self._state == CircuitState.OPEN

    async def record_failure(self) -> None:
        """Record a non-rate-limit failure.

        These do not count toward the threshold but release a half-open trial.
        """
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._release_trial()

    def _open(self, now: float, reason: str) -> None:
        self._state = CircuitState.OPEN
        self._open_until = now + self._backoff
        self._release_trial()
        logger.warning(
            "circuit_opened",
            provider=self.provider,
            reason=reason,
            consecutive_failures=self._consecutive_failures,
            backoff_seconds=self._backoff,
        )
        self._backoff = min(self._backoff * 2, self.max_backoff_seconds)

    async def reset(self) -> None:
        """Manually close the circuit and forget its history."""
        async with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._last_failure_at = None
            self._open_until = None
            self._backoff = self.initial_backoff_seconds
            self._release_trial()
            logger.info("circuit_reset", provider=self.provider)

    def snapshot(self) -> BreakerSnapshot:
        """Return current statistics."""
        now = self._clock()
        open_for = None
        if self._state == CircuitState.OPEN and self._open_until is not None:
            open_for = max(0.0, self._open_until - now)
        return BreakerSnapshot(
            provider=self.provider,
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            total_failures=self._total_failures,
            total_successes=self._total_successes,
            current_backoff_seconds=self._backoff,
            open_for_seconds=open_for,
        )


class CircuitBreakerRegistry:
    """Process-wide registry of breakers keyed by provider."""

    def __init__(
        self,
        settings: SyncSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or SyncSettings()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, provider: str) -> CircuitBreaker:
        """Get or create the breaker for a provider."""
        breaker = self._breakers.get(provider)
        if breaker is None:
            s = self._settings
            breaker = CircuitBreaker(
                provider,
                failure_threshold=s.breaker_failure_threshold,
                failure_window_seconds=s.breaker_failure_window_seconds,
                initial_backoff_seconds=s.breaker_initial_backoff_seconds,
                max_backoff_seconds=s.breaker_max_backoff_seconds,
                reset_after_seconds=s.breaker_reset_after_seconds,
                trial_timeout_seconds=s.breaker_trial_timeout_seconds,
                clock=self._clock,
            )
            self._breakers[provider] = breaker
        return breaker

    def open_circuits(self) -> list[str]:
        """Providers whose circuit is currently open."""
        return [p for p, b in self._breakers.items() if b.state == CircuitState.OPEN]

    def snapshots(self) -> list[BreakerSnapshot]:
        """Statistics for every known provider."""
        return [b.snapshot() for b in self._breakers.values()]
