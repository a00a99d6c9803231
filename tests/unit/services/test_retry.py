"""Tests for error classification, backoff and the retry controller."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

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
from mail_sync.services.cancellation import CancellationToken
from mail_sync.services.circuit_breaker import CircuitBreaker, CircuitState
from mail_sync.services.deadline import Deadline
from mail_sync.services.retry import (
    BackoffPolicy,
    ErrorClass,
    RetryController,
    classify_error,
)

from tests.fakes import FakeSyncStateRepository, make_state


class TestClassifyError:
    """Tests for classify_error."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (ProviderApiError("slow down", status_code=429), ErrorClass.RATE_LIMITED),
            (
                ProviderApiError("quota", status_code=400, error_type="rate_limit_error"),
                ErrorClass.RATE_LIMITED,
            ),
            (ProviderApiError("boom", status_code=500), ErrorClass.TRANSIENT),
            (ProviderApiError("unavailable", status_code=503), ErrorClass.TRANSIENT),
            (ProviderApiError("reset", network_error=True), ErrorClass.TRANSIENT),
            (ProviderApiError("bad", status_code=400), ErrorClass.PERMANENT),
            (ProviderApiError("gone", status_code=404), ErrorClass.PERMANENT),
            (RateLimitedError("limited"), ErrorClass.RATE_LIMITED),
            (TransientServiceError("flaky"), ErrorClass.TRANSIENT),
            (TimeoutError(), ErrorClass.TRANSIENT),
            (ConnectionError("refused"), ErrorClass.TRANSIENT),
            (PermanentError("nope"), ErrorClass.PERMANENT),
            (KeyError("surprise"), ErrorClass.PERMANENT),
        ],
    )
    def test_classes(self, error: Exception, expected: ErrorClass) -> None:
        """Test each failure lands in its class."""
        assert classify_error(error).error_class == expected

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_auth_errors_require_reconnect(self, status_code: int) -> None:
        """Test revoked grants are permanent and need reconnection."""
        result = classify_error(ProviderApiError("unauthorized", status_code=status_code))

        assert result.error_class == ErrorClass.PERMANENT
        assert result.requires_reconnect is True

    def test_retry_after_carried(self) -> None:
        """Test the provider retry hint is kept."""
        result = classify_error(ProviderApiError("slow", status_code=429, retry_after=12.0))

        assert result.retry_after == 12.0

    def test_timeout_message(self) -> None:
        """Test exceptions without a message are named by type."""
        assert classify_error(TimeoutError()).message == "TimeoutError"


class TestBackoffPolicy:
    """Tests for BackoffPolicy."""

    def test_rate_limit_delays(self) -> None:
        """Test rate-limit delays double up to the cap plus jitter."""
        policy = BackoffPolicy()

        delays = [policy.delay(ErrorClass.RATE_LIMITED, n, rng=lambda: 0.5) for n in range(4)]

        assert delays == [10.5, 20.5, 40.5, 40.5]

    def test_transient_delays(self) -> None:
        """Test transient delays double up to the cap."""
        policy = BackoffPolicy()

        delays = [policy.delay(ErrorClass.TRANSIENT, n) for n in range(4)]

        assert delays == [5.0, 10.0, 20.0, 30.0]

    def test_retry_after_overrides(self) -> None:
        """Test a provider retry-after hint replaces the computed delay."""
        policy = BackoffPolicy()

        assert policy.delay(ErrorClass.RATE_LIMITED, 0, retry_after=3.0) == 3.0

    def test_from_settings(self) -> None:
        """Test the policy follows sync settings."""
        settings = SyncSettings(transient_base_delay=1.0, transient_max_delay=2.0)

        policy = BackoffPolicy.from_settings(settings)

        assert policy.delay(ErrorClass.TRANSIENT, 5) == 2.0


def make_controller(
    breaker: CircuitBreaker | None = None,
    token: CancellationToken | None = None,
    max_retries: int = 3,
    policy: BackoffPolicy | None = None,
) -> tuple[RetryController, FakeSyncStateRepository]:
    state = make_state()
    repo = FakeSyncStateRepository(state)
    controller = RetryController(
        state.id,
        breaker or CircuitBreaker("google"),
        repo,
        token or CancellationToken(),
        max_retries=max_retries,
        policy=policy or BackoffPolicy(0, 0, 0, 0, 0),
        rng=lambda: 0.0,
    )
    return controller, repo


class TestRetryController:
    """Tests for RetryController."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        """Test a successful call returns without persisting anything."""
        controller, repo = make_controller()
        operation = AsyncMock(return_value="page")

        result = await controller.call(operation)

        assert result == "page"
        operation.assert_awaited_once()
        assert repo.saves == []

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        """Test transient failures are retried and the count cleared on success."""
        controller, repo = make_controller()
        operation = AsyncMock(
            side_effect=[ProviderApiError("down", status_code=502), "page"]
        )

        result = await controller.call(operation, "list_messages")

        assert result == "page"
        assert operation.await_count == 2
        changes = [c for _, c in repo.saves]
        assert changes[0]["retry_count"] == 1
        assert changes[0]["last_error"] == "down"
        assert changes[-1] == {"retry_count": 0, "last_error": None}

    @pytest.mark.asyncio
    async def test_exhausts_budget(self) -> None:
        """Test the initial attempt plus three retries, then failure."""
        controller, _ = make_controller()
        operation = AsyncMock(side_effect=ProviderApiError("down", status_code=500))

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await controller.call(operation)

        assert exc_info.value.attempts == 4
        assert operation.await_count == 4

    @pytest.mark.asyncio
    async def test_permanent_not_retried(self) -> None:
        """Test permanent failures are raised at once."""
        controller, _ = make_controller()
        operation = AsyncMock(side_effect=ProviderApiError("forbidden", status_code=403))

        with pytest.raises(PermanentError) as exc_info:
            await controller.call(operation)

        assert exc_info.value.requires_reconnect is True
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cursor_invalid_passes_through(self) -> None:
        """Test a rejected cursor is left to the caller."""
        controller, _ = make_controller()
        operation = AsyncMock(side_effect=CursorInvalidError("expired"))

        with pytest.raises(CursorInvalidError):
            await controller.call(operation)
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rate_limit_opens_circuit(self) -> None:
        """Test the rate limit that opens the circuit aborts retrying."""
        breaker = CircuitBreaker("google", failure_threshold=2)
        controller, _ = make_controller(breaker=breaker, max_retries=5)
        operation = AsyncMock(side_effect=ProviderApiError("slow", status_code=429))

        with pytest.raises(CircuitOpenError) as exc_info:
            await controller.call(operation)

        assert operation.await_count == 2
        assert exc_info.value.retry_after_ms > 0

    @pytest.mark.asyncio
    async def test_records_breaker_outcomes(self) -> None:
        """Test rate limits and successes are reported to the breaker."""
        breaker = CircuitBreaker("google")
        controller, _ = make_controller(breaker=breaker)
        operation = AsyncMock(side_effect=[ProviderApiError("slow", status_code=429), "ok"])

        await controller.call(operation)

        snapshot = breaker.snapshot()
        assert snapshot.total_failures == 1
        assert snapshot.total_successes == 1
        assert snapshot.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_stop_during_backoff(self) -> None:
        """Test a fired token ends the backoff with a stop."""
        token = CancellationToken()
        token.cancel()
        controller, _ = make_controller(token=token)
        operation = AsyncMock(side_effect=ProviderApiError("down", status_code=500))

        with pytest.raises(ManuallyStoppedError):
            await controller.call(operation)
        operation.assert_awaited_once()


class TestRetryDeadline:
    """Tests for backoffs that meet the end of the execution window."""

    @pytest.mark.asyncio
    async def test_backoff_past_deadline_not_started(self) -> None:
        """Test a backoff longer than the remaining window ends the call."""
        deadline = Deadline(20.0, safety_margin_seconds=5.0, clock=lambda: 0.0)
        controller, repo = make_controller(
            token=CancellationToken(deadline),
            policy=BackoffPolicy(transient_base=30.0, transient_max=30.0),
        )
        operation = AsyncMock(side_effect=ProviderApiError("down", status_code=503))

        with pytest.raises(DeadlineReachedError):
            await controller.call(operation)

        operation.assert_awaited_once()
        assert [c for _, c in repo.saves if "retry_count" in c] == []

    @pytest.mark.asyncio
    async def test_backoff_inside_window_retries(self) -> None:
        """Test a backoff that fits the window is waited out and retried."""
        deadline = Deadline(20.0, safety_margin_seconds=5.0, clock=lambda: 0.0)
        controller, _ = make_controller(
            token=CancellationToken(deadline),
            policy=BackoffPolicy(transient_base=0.01, transient_max=0.01),
        )
        operation = AsyncMock(side_effect=[ProviderApiError("down", status_code=503), "page"])

        assert await controller.call(operation) == "page"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_real_deadline_no_back_to_back_retries(self) -> None:
        """Test retries never fire without their backoff near a real deadline."""
        controller, _ = make_controller(
            token=CancellationToken(Deadline(0.3, safety_margin_seconds=0.1)),
            policy=BackoffPolicy(transient_base=1.0, transient_max=8.0),
        )
        operation = AsyncMock(side_effect=ProviderApiError("down", status_code=503))

        with pytest.raises(DeadlineReachedError):
            await controller.call(operation)

        operation.assert_awaited_once()


class TestRetryCircuitGuard:
    """Tests for the circuit breaker admitting each attempt."""

    @pytest.mark.asyncio
    async def test_open_circuit_blocks_first_attempt(self) -> None:
        """Test no request is sent while the circuit is open."""
        breaker = CircuitBreaker("google", failure_threshold=1)
        await breaker.record_rate_limit()
        controller, _ = make_controller(breaker=breaker)
        operation = AsyncMock(return_value="page")

        with pytest.raises(CircuitOpenError) as exc_info:
            await controller.call(operation)

        operation.assert_not_awaited()
        assert exc_info.value.retry_after_ms > 0

    @pytest.mark.asyncio
    async def test_circuit_opened_between_retries(self) -> None:
        """Test a circuit opened by another sync stops the pending retry."""
        breaker = CircuitBreaker("google", failure_threshold=1)
        controller, _ = make_controller(breaker=breaker)
        calls = 0

        async def operation() -> str:
            nonlocal calls
            calls += 1
            # another account trips the shared breaker meanwhile
            await breaker.record_rate_limit()
            raise ProviderApiError("down", status_code=503)

        with pytest.raises(CircuitOpenError):
            await controller.call(operation)

        assert calls == 1

    @pytest.mark.asyncio
    async def test_half_open_trial_not_retried_concurrently(self) -> None:
        """Test a second caller is blocked while a trial is in flight."""
        now = [1000.0]
        breaker = CircuitBreaker(
            "google", failure_threshold=1, initial_backoff_seconds=30, clock=lambda: now[0]
        )
        await breaker.record_rate_limit()
        now[0] += 30
        assert (await breaker.check()).allowed is True
        controller, _ = make_controller(breaker=breaker)
        operation = AsyncMock(return_value="page")

        with pytest.raises(CircuitOpenError):
            await controller.call(operation)
        operation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancelled_trial_is_released(self) -> None:
        """Test cancelling the half-open trial lets the next request through."""
        now = [1000.0]
        breaker = CircuitBreaker(
            "google", failure_threshold=1, initial_backoff_seconds=30, clock=lambda: now[0]
        )
        await breaker.record_rate_limit()
        now[0] += 30
        controller, _ = make_controller(breaker=breaker)
        operation = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await controller.call(operation)

        assert breaker.state == CircuitState.HALF_OPEN
        assert (await breaker.check()).allowed is True

    @pytest.mark.asyncio
    async def test_cancelled_task_releases_trial(self) -> None:
        """Test a trial whose task is cancelled mid-request is not left claimed."""
        now = [1000.0]
        breaker = CircuitBreaker(
            "google", failure_threshold=1, initial_backoff_seconds=30, clock=lambda: now[0]
        )
        await breaker.record_rate_limit()
        now[0] += 30
        controller, _ = make_controller(breaker=breaker)
        started = asyncio.Event()

        async def hang() -> str:
            started.set()
            await asyncio.Event().wait()
            return "never"

        task = asyncio.create_task(controller.call(hang))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert (await breaker.check()).allowed is True
