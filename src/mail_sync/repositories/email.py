"""Email repository for database operations."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from mail_sync.core.types import EmailRowData
from mail_sync.models.email import Email


class EmailRepository:
    """Repository for synced email rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def insert_if_absent(self, rows: list[EmailRowData]) -> set[str]:
        """Insert rows, ignoring ones that already exist.

        Conflicts on ``(account_id, provider_message_id)`` are no-ops.

        Args:
            rows: Normalized email rows.

        Returns:
            Provider message IDs of the rows that were actually inserted.
        """
        if not rows:
            return set()

        stmt = (
            insert(Email)
            .values([dict(row) for row in rows])
            .on_conflict_do_nothing(index_elements=["account_id", "provider_message_id"])
            .returning(Email.provider_message_id)
        )
        result = await self.session.execute(stmt)
        inserted = {str(pid) for pid in result.scalars().all()}
        await self.session.commit()
        return inserted

    async def count_for_account(self, account_id: UUID) -> int:
        """Count stored emails of an account.

        Args:
            account_id: Account UUID.

        Returns:
            Number of rows.
        """
        result = await self.session.execute(
            select(func.count()).select_from(Email).where(Email.account_id == account_id)
        )
        return result.scalar() or 0

    async def folder_counts(self, account_id: UUID) -> dict[str, int]:
        """Count stored emails per canonical folder.

        Args:
            account_id: Account UUID.

        Returns:
            Mapping of folder to count.
        """
        result = await self.session.execute(
            select(Email.folder, func.count())
            .where(Email.account_id == account_id)
            .group_by(Email.folder)
        )
        return {str(folder or "unknown"): int(total) for folder, total in result.all()}
