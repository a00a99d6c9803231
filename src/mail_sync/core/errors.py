"""Sync error taxonomy."""

from __future__ import annotations

from uuid import UUID


class SyncError(Exception):
    """Base exception for sync engine errors."""

    def __init__(self, message: str, account_id: UUID | None = None) -> None:
        """Initialize sync error.

        Args:
            message: Error description.
            account_id: Account the error relates to.
        """
        super().__init__(message)
        self.message = message
        self.account_id = account_id


class RateLimitedError(SyncError):
    """Provider quota exhausted (429-equivalent)."""

    def __init__(
        self,
        message: str,
        account_id: UUID | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, account_id)
        self.retry_after = retry_after


class TransientServiceError(SyncError):
    """Provider 5xx or network failure."""


class PermanentError(SyncError):
    """Failure that retrying will not fix.

    Attributes:
        requires_reconnect: True when the grant is revoked or expired and the
            user has to reconnect the account.
    """

    def __init__(
        self,
        message: str,
        account_id: UUID | None = None,
        requires_reconnect: bool = False,
    ) -> None:
        super().__init__(message, account_id)
        self.requires_reconnect = requires_reconnect


class RetriesExhaustedError(SyncError):
    """A retryable failure persisted past the retry budget."""

    def __init__(self, message: str, account_id: UUID | None = None, attempts: int = 0) -> None:
        super().__init__(message, account_id)
        self.attempts = attempts


class CursorInvalidError(SyncError):
    """The persisted pagination cursor was rejected by the provider."""


class AdmissionDeniedError(SyncError):
    """No free sync slot in this process."""


class CircuitOpenError(SyncError):
    """The provider circuit breaker is open."""

    def __init__(
        self,
        message: str,
        account_id: UUID | None = None,
        retry_after_ms: int = 0,
    ) -> None:
        super().__init__(message, account_id)
        self.retry_after_ms = retry_after_ms


class AccountMissingError(SyncError):
    """The account was deleted."""


class ManuallyStoppedError(SyncError):
    """An operator stopped the sync."""


class DeadlineReachedError(SyncError):
    """The execution window ends before the next attempt could be made."""
