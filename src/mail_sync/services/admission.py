"""Per-process admission control for concurrent syncs."""

from __future__ import annotations

from uuid import UUID

import structlog

logger = structlog.get_logger(__name__)


class AdmissionQueue:
    """Bounds the number of account syncs running in this process.

    Acquisition never waits: a caller that does not get a slot marks the
    account ``queued`` and returns, and a scheduler picks it up later.
    """

    def __init__(self, max_concurrent: int = 10) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._active: set[UUID] = set()

    @property
    def active_count(self) -> int:
        """Number of held slots."""
        return len(self._active)

    def is_active(self, account_id: UUID) -> bool:
        """Check if the account holds a slot."""
        return account_id in self._active

    def try_acquire(self, account_id: UUID) -> bool:
        """Take a slot for an account.

        Args:
            account_id: Account UUID.

        Returns:
            False if the account already holds a slot or none is free.
        """
        if account_id in self._active:
            return False
        if len(self._active) >= self.max_concurrent:
            logger.info(
                "admission_denied",
                account_id=str(account_id),
                active=len(self._active),
                max_concurrent=self.max_concurrent,
            )
            return False
        self._active.add(account_id)
        return True

    def release(self, account_id: UUID) -> None:
        """Free the account's slot. Releasing twice is a no-op."""
        self._active.discard(account_id)
