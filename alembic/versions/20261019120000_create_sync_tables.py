"""create_sync_tables

Revision ID: 20261019120000
Revises:
Create Date: 2026-10-19 12:00:00

Create the account table carrying per-account sync state and the emails
table the sync engine writes into. The (account_id, provider_message_id)
unique constraint is what makes ingestion idempotent.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = "20261019120000"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create email_accounts and emails."""

    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # email_accounts - connected mailbox plus its sync state
    op.create_table(
        "email_accounts",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("email_address", sa.String(255), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False, server_default="google"),
        sa.Column("grant_id", sa.String(255), nullable=True),
        sa.Column("sync_status", sa.String(50), nullable=False, server_default="idle"),
        sa.Column("sync_cursor", sa.Text, nullable=True),
        sa.Column("synced_email_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_email_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("sync_progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("continuation_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_activity_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_retry_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("sync_stopped", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("suppress_webhooks", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("initial_sync_completed", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("sync_metadata", JSONB, nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_email_accounts_sync_status", "email_accounts", ["sync_status"])

    # emails - one row per provider message per account
    op.create_table(
        "emails",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "account_id",
            UUID(as_uuid=True),
            sa.ForeignKey("email_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider_message_id", sa.String(255), nullable=False),
        sa.Column("thread_id", sa.String(255), nullable=True),
        sa.Column("folder", sa.String(255), nullable=False, server_default="inbox"),
        sa.Column("folders", JSONB, nullable=True),
        sa.Column("from_email", sa.String(255), nullable=True),
        sa.Column("from_name", sa.String(255), nullable=True),
        sa.Column("to_emails", JSONB, nullable=True),
        sa.Column("cc_emails", JSONB, nullable=True),
        sa.Column("bcc_emails", JSONB, nullable=True),
        sa.Column("reply_to", JSONB, nullable=True),
        sa.Column("subject", sa.Text, nullable=True),
        sa.Column("snippet", sa.Text, nullable=True),
        sa.Column("body_html", sa.Text, nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("is_starred", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("has_attachments", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("attachments_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attachments", JSONB, nullable=True),
        sa.Column("received_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "account_id",
            "provider_message_id",
            name="uq_emails_account_provider_message",
        ),
    )
    op.create_index("ix_emails_account_folder", "emails", ["account_id", "folder"])


def downgrade() -> None:
    """Drop sync tables."""
    op.drop_index("ix_emails_account_folder", table_name="emails")
    op.drop_table("emails")
    op.drop_index("ix_email_accounts_sync_status", table_name="email_accounts")
    op.drop_table("email_accounts")
