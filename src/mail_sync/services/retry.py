"""Retry and backoff for provider calls.

Every provider call of the sync loop goes through ``RetryController.call``.
Each attempt, the first included, is admitted by the provider circuit
breaker. Failures are classified into three buckets:

- RATE_LIMITED: quota exhausted; recorded on the circuit breaker and
  retried with a long backoff (or the provider's retry-after hint)
- TRANSIENT: 5xx and network failures; retried with a shorter backoff
- PERMANENT: everything else; raised immediately

A backoff that would not finish inside the execution window is not started;
the call raises ``DeadlineReachedError`` so the run can yield instead.
"""

from __future__ import annotations

import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol, TypeVar
from uuid import UUID

import structlog

from mail_sync.core.config import SyncSettings
from mail_sync.core.errors import (
    CircuitOpenError,
    CursorInvalidError,
    DeadlineReachedError,
    ManuallyStoppedError,
    PermanentError,
    RateLimitedError,
    RetriesExhaustedError,
    TransientServiceError,
)
from mail_sync.integrations.nylas.client import ProviderApiError
from mail_sync.schemas.sync import AccountSyncUpdate
from mail_sync.services.cancellation import CancellationToken
from mail_sync.services.circuit_breaker import CircuitBreaker, CircuitState

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RECONNECT_STATUS_CODES = frozenset({401, 403})


class ErrorClass(str, Enum):
    """Failure categories driving the retry decision."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True, slots=True)
class Classification:
    """Result of classifying a failure."""

    error_class: ErrorClass
    message: str
    retry_after: float | None = None
    requires_reconnect: bool = False


def classify_error(exc: BaseException) -> Classification:
    """Classify a failure raised by a provider call.

    Args:
        exc: The exception.

    Returns:
        Classification with the retry-after hint if the provider gave one.
    """
    if isinstance(exc, ProviderApiError):
        status = exc.status_code
        if exc.is_rate_limited:
            return Classification(ErrorClass.RATE_LIMITED, exc.message, exc.retry_after)
        if exc.network_error or (status is not None and status >= 500):
            return Classification(ErrorClass.TRANSIENT, exc.message, exc.retry_after)
        return Classification(
            ErrorClass.PERMANENT,
            exc.message,
            requires_reconnect=status in RECONNECT_STATUS_CODES,
        )
    if isinstance(exc, RateLimitedError):
        return Classification(ErrorClass.RATE_LIMITED, exc.message, exc.retry_after)
    if isinstance(exc, TransientServiceError | TimeoutError | ConnectionError):
        return Classification(ErrorClass.TRANSIENT, str(exc) or type(exc).__name__)
    if isinstance(exc, PermanentError):
        return Classification(
            ErrorClass.PERMANENT, exc.message, requires_reconnect=exc.requires_reconnect
        )
    return Classification(ErrorClass.PERMANENT, str(exc) or type(exc).__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff delays per error class."""

    rate_limit_base: float = 10.0
    rate_limit_max: float = 40.0
    jitter: float = 1.0
    transient_base: float = 5.0
    transient_max: float = 30.0

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> BackoffPolicy:
        """Build the policy from sync settings."""
        return cls(
            rate_limit_base=settings.rate_limit_base_delay,
            rate_limit_max=settings.rate_limit_max_delay,
            jitter=settings.rate_limit_jitter,
            transient_base=settings.transient_base_delay,
            transient_max=settings.transient_max_delay,
        )

    def delay(
        self,
        error_class: ErrorClass,
        attempt: int,
        retry_after: float | None = None,
        rng: Callable[[], float] = random.random,
    ) -> float:
        """Compute the delay before the next attempt.

        Args:
            error_class: Class of the failure just seen.
            attempt: Zero-based retry number.
            retry_after: Provider hint in seconds; overrides the computed delay.
            rng: Source of jitter in [0, 1).

        Returns:
            Delay in seconds.
        """
        if error_class == ErrorClass.RATE_LIMITED:
            if retry_after is not None:
                return retry_after
            return min(self.rate_limit_base * 2**attempt, self.rate_limit_max) + rng() * self.jitter
        return min(self.transient_base * 2**attempt, self.transient_max)


class RetryStateStore(Protocol):
    """Persistence needed to record retries."""

    async def save(self, account_id: UUID, data: AccountSyncUpdate) -> bool: ...


class RetryController:
    """Runs provider operations with bounded retries for one account."""

    def __init__(
        self,
        account_id: UUID,
        breaker: CircuitBreaker,
        store: RetryStateStore,
        token: CancellationToken,
        max_retries: int = 3,
        policy: BackoffPolicy | None = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """Initialize retry controller.

        Args:
            account_id: Account the calls are made for.
            breaker: Provider circuit breaker.
            store: Sync state persistence.
            token: Cancellation token; backoff sleeps end early when it fires.
            max_retries: Retries after the initial attempt.
            policy: Backoff policy.
            rng: Jitter source.
        """
        self.account_id = account_id
        self.breaker = breaker
        self.store = store
        self.token = token
        self.max_retries = max_retries
        self.policy = policy or BackoffPolicy()
        self._rng = rng

    async def call(self, operation: Callable[[], Awaitable[T]], description: str = "fetch") -> T:
        """Run an operation, retrying rate-limited and transient failures.

        Args:
            operation: Zero-argument coroutine factory, invoked once per attempt.
            description: Operation name for logs.

        Returns:
            The operation's result.

        Raises:
            PermanentError: On a non-retryable failure.
            CursorInvalidError: If the provider rejected the pagination cursor.
            RetriesExhaustedError: If all attempts failed.
            CircuitOpenError: If the provider circuit is open before an attempt
                or a rate limit opened it.
            ManuallyStoppedError: If the token fired during a backoff sleep.
            DeadlineReachedError: If the next backoff would run past the
                execution window.
        """
        attempt = 0
        while True:
            decision = await self.breaker.check()
            if not decision.allowed:
                raise CircuitOpenError(
                    decision.reason or "Circuit open",
                    self.account_id,
                    retry_after_ms=decision.retry_after_ms,
                )
            holds_trial = decision.state == CircuitState.HALF_OPEN

            try:
                result = await operation()
            except CursorInvalidError:
                await self.breaker.record_failure()
                raise
            except Exception as e:
                classification = classify_error(e)
                await self._on_failure(classification)

                if classification.error_class == ErrorClass.PERMANENT:
                    raise PermanentError(
                        classification.message,
                        self.account_id,
                        requires_reconnect=classification.requires_reconnect,
                    ) from e

                if attempt >= self.max_retries:
                    await logger.aerror(
                        "retries_exhausted",
                        account_id=str(self.account_id),
                        operation=description,
                        attempts=attempt + 1,
                        error=classification.message,
                    )
                    raise RetriesExhaustedError(
                        f"{description} failed after {attempt + 1} attempts: "
                        f"{classification.message}",
                        self.account_id,
                        attempts=attempt + 1,
                    ) from e

                attempt += 1
                await self._wait_before_retry(classification, attempt, description)
                continue
            except BaseException:
                # cancelled mid-request: no outcome will be reported
                if holds_trial:
                    self.breaker.release_trial()
                raise

            await self.breaker.record_success()
            if attempt > 0:
                await self.store.save(
                    self.account_id, AccountSyncUpdate(retry_count=0, last_error=None)
                )
                await logger.ainfo(
                    "retry_recovered",
                    account_id=str(self.account_id),
                    operation=description,
                    attempts=attempt + 1,
                )
            return result

    async def _on_failure(self, classification: Classification) -> None:
        if classification.error_class != ErrorClass.RATE_LIMITED:
            await self.breaker.record_failure()
            return

        opened = await self.breaker.record_rate_limit()
        if opened:
            decision = await self.breaker.peek()
            raise CircuitOpenError(
                decision.reason or "Circuit open: too many rate limits",
                self.account_id,
                retry_after_ms=decision.retry_after_ms,
            )

    async def _wait_before_retry(
        self,
        classification: Classification,
        attempt: int,
        description: str,
    ) -> None:
        delay = self.policy.delay(
            classification.error_class,
            attempt - 1,
            retry_after=classification.retry_after,
            rng=self._rng,
        )
        if not self.token.can_wait(delay):
            await logger.awarning(
                "retry_deferred",
                account_id=str(self.account_id),
                operation=description,
                error_class=classification.error_class.value,
                attempt=attempt,
                delay_seconds=round(delay, 2),
                error=classification.message,
            )
            raise DeadlineReachedError(
                f"Backoff of {delay:.1f}s exceeds the execution window", self.account_id
            )
        await self.store.save(
            self.account_id,
            AccountSyncUpdate(
                retry_count=attempt,
                last_retry_at=datetime.now(UTC),
                last_error=classification.message,
            ),
        )
        await logger.awarning(
            "retry_scheduled",
            account_id=str(self.account_id),
            operation=description,
            error_class=classification.error_class.value,
            attempt=attempt,
            max_retries=self.max_retries,
            delay_seconds=round(delay, 2),
            error=classification.message,
        )
        if not await self.token.sleep(delay):
            raise ManuallyStoppedError("Sync stopped during backoff", self.account_id)
