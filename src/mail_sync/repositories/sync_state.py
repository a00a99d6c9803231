"""Account sync state repository for database operations."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mail_sync.models.email_account import IN_PROGRESS_STATUSES, EmailAccount
from mail_sync.schemas.sync import AccountSyncState, AccountSyncUpdate

SCHEDULED_STATUSES = ("pending_resume", "paused", "queued")


class SyncStateRepository:
    """Repository for account sync state.

    The engine never holds ORM instances across awaits; callers get
    ``AccountSyncState`` snapshots and write back partial updates.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def load(self, account_id: UUID) -> AccountSyncState | None:
        """Load the sync state of an account.

        Args:
            account_id: Account UUID.

        Returns:
            Snapshot if the account exists, None otherwise.
        """
        result = await self.session.execute(
            select(EmailAccount).where(EmailAccount.id == account_id)
        )
        account = result.scalar_one_or_none()
        if account is None:
            return None
        return AccountSyncState.model_validate(account)

    async def save(self, account_id: UUID, data: AccountSyncUpdate) -> bool:
        """Apply a partial update to an account's sync state.

        Fields not set on ``data`` are left untouched.

        Args:
            account_id: Account UUID.
            data: Update data.

        Returns:
            True if the account exists and was updated, False otherwise.
        """
        changes = data.changes()
        if not changes:
            return True

        changes["updated_at"] = datetime.now(UTC)
        result = await self.session.execute(
            update(EmailAccount)
            .where(EmailAccount.id == account_id)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return bool(result.rowcount)

    async def is_stop_requested(self, account_id: UUID) -> bool | None:
        """Read the operator stop flag.

        Args:
            account_id: Account UUID.

        Returns:
            The flag, or None if the account no longer exists.
        """
        result = await self.session.execute(
            select(EmailAccount.sync_stopped).where(EmailAccount.id == account_id)
        )
        row = result.first()
        if row is None:
            return None
        return bool(row[0])

    async def list_resumable(
        self,
        now: datetime,
        stuck_threshold: timedelta,
        limit: int = 50,
    ) -> list[AccountSyncState]:
        """List accounts a scheduler should re-dispatch.

        Includes accounts waiting on a scheduled retry whose time has come and
        in-progress accounts whose last activity is older than the stuck
        threshold.

        Args:
            now: Current time.
            stuck_threshold: Inactivity after which an in-progress sync is abandoned.
            limit: Maximum number of accounts.

        Returns:
            Snapshots ordered by oldest activity first.
        """
        scheduled = and_(
            EmailAccount.sync_status.in_(SCHEDULED_STATUSES),
            or_(EmailAccount.next_retry_at.is_(None), EmailAccount.next_retry_at <= now),
        )
        stuck = and_(
            EmailAccount.sync_status.in_(IN_PROGRESS_STATUSES),
            or_(
                EmailAccount.last_activity_at.is_(None),
                EmailAccount.last_activity_at < now - stuck_threshold,
            ),
        )
        query = (
            select(EmailAccount)
            .where(and_(or_(scheduled, stuck), EmailAccount.sync_stopped.is_(False)))
            .order_by(EmailAccount.last_activity_at.asc().nulls_first())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [AccountSyncState.model_validate(a) for a in result.scalars().all()]
