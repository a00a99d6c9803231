"""Tests for mail_sync.core.errors."""

from __future__ import annotations

from uuid import uuid4

import pytest

from mail_sync.core.errors import (
    AccountMissingError,
    AdmissionDeniedError,
    CircuitOpenError,
    CursorInvalidError,
    ManuallyStoppedError,
    PermanentError,
    RateLimitedError,
    RetriesExhaustedError,
    SyncError,
    TransientServiceError,
)


class TestSyncErrors:
    """Tests for the sync error hierarchy."""

    @pytest.mark.parametrize(
        "error_cls",
        [
            AccountMissingError,
            AdmissionDeniedError,
            CursorInvalidError,
            ManuallyStoppedError,
            TransientServiceError,
        ],
    )
    def test_subclasses(self, error_cls: type[SyncError]) -> None:
        """Test every error is a SyncError carrying message and account."""
        account_id = uuid4()

        error = error_cls("boom", account_id)

        assert isinstance(error, SyncError)
        assert error.message == "boom"
        assert error.account_id == account_id
        assert str(error) == "boom"

    def test_rate_limited(self) -> None:
        """Test RateLimitedError carries the provider delay."""
        error = RateLimitedError("slow down", retry_after=12.5)

        assert error.retry_after == 12.5
        assert error.account_id is None

    def test_permanent(self) -> None:
        """Test PermanentError defaults to not requiring reconnect."""
        assert PermanentError("bad").requires_reconnect is False
        assert PermanentError("revoked", requires_reconnect=True).requires_reconnect is True

    def test_retries_exhausted(self) -> None:
        """Test RetriesExhaustedError records attempts."""
        assert RetriesExhaustedError("gave up", attempts=4).attempts == 4

    def test_circuit_open(self) -> None:
        """Test CircuitOpenError records the wait."""
        assert CircuitOpenError("open", retry_after_ms=30_000).retry_after_ms == 30_000
