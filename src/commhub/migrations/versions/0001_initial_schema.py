"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00

Baseline schema: connected accounts, sync runs, the offline operation
queue, the message mirror with its reply outbox, automation settings and
the automated action audit log.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the commhub tables."""

    # connected_accounts
    op.create_table(
        "connected_accounts",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.Uuid, nullable=False),
        sa.Column("protocol", sa.String, nullable=False),
        sa.Column("email", sa.String),
        sa.Column("display_name", sa.String),
        sa.Column("sync_enabled", sa.Boolean, nullable=False),
        sa.Column("sync_frequency_seconds", sa.Integer),
        sa.Column("sync_since_cursor", sa.String),
        sa.Column("sync_status", sa.String, nullable=False),
        sa.Column("connection_health", sa.String, nullable=False),
        sa.Column("last_error", sa.String),
        sa.Column("last_sync_at", sa.DateTime(timezone=True)),
        sa.Column("consecutive_failures", sa.Integer, nullable=False),
        sa.Column("needs_reauth", sa.Boolean, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_connected_accounts_user_id", "connected_accounts", ["user_id"])
    op.create_index("ix_connected_accounts_sync_status", "connected_accounts", ["sync_status"])

    # sync_runs
    op.create_table(
        "sync_runs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("sync_id", sa.Uuid, nullable=False),
        sa.Column("account_id", sa.Uuid, nullable=False),
        sa.Column("user_id", sa.Uuid, nullable=False),
        sa.Column("status", sa.String, nullable=False),
        sa.Column("sync_type", sa.String, nullable=False),
        sa.Column("total_messages", sa.Integer, nullable=False),
        sa.Column("processed_messages", sa.Integer, nullable=False),
        sa.Column("stored_messages", sa.Integer, nullable=False),
        sa.Column("failed_messages", sa.Integer, nullable=False),
        sa.Column("current_batch", sa.Integer, nullable=False),
        sa.Column("total_batches", sa.Integer, nullable=False),
        sa.Column("batch_size", sa.Integer, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("estimated_time_remaining_ms", sa.Integer),
        sa.Column("errors", sa.JSON, nullable=False),
    )
    op.create_index("ix_sync_runs_sync_id", "sync_runs", ["sync_id"], unique=True)
    op.create_index("ix_sync_runs_account_id", "sync_runs", ["account_id"])
    op.create_index("ix_sync_runs_user_id", "sync_runs", ["user_id"])
    op.create_index("ix_sync_runs_status", "sync_runs", ["status"])
    op.create_index("ix_sync_runs_completed_at", "sync_runs", ["completed_at"])

    # offline_operations
    op.create_table(
        "offline_operations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Uuid, nullable=False),
        sa.Column("operation_type", sa.String, nullable=False),
        sa.Column("resource_type", sa.String, nullable=False),
        sa.Column("resource_id", sa.String),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("status", sa.String, nullable=False),
        sa.Column("priority", sa.Integer, nullable=False),
        sa.Column("attempt_count", sa.Integer, nullable=False),
        sa.Column("max_attempts", sa.Integer, nullable=False),
        sa.Column("failure_kind", sa.String),
        sa.Column("last_error", sa.String),
        sa.Column("client_id", sa.String),
        sa.Column("client_timestamp", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_offline_operations_user_id", "offline_operations", ["user_id"])
    op.create_index(
        "ix_offline_operations_user_status_order",
        "offline_operations",
        ["user_id", "status", "priority"],
    )
    op.create_index(
        "ix_offline_operations_user_client", "offline_operations", ["user_id", "client_id"]
    )

    # messages (local mirror)
    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.Uuid, nullable=False),
        sa.Column("account_id", sa.Uuid, nullable=False),
        sa.Column("external_id", sa.String, nullable=False),
        sa.Column("thread_id", sa.String),
        sa.Column("sender", sa.String, nullable=False),
        sa.Column("recipient", sa.String),
        sa.Column("subject", sa.String),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        sa.Column("category_id", sa.String),
        sa.Column("is_trashed", sa.Boolean, nullable=False),
        sa.Column("trashed_at", sa.DateTime(timezone=True)),
        sa.Column("auto_deleted", sa.Boolean, nullable=False),
        sa.Column("analysis_status", sa.String),
        sa.Column("analysis_claimed_at", sa.DateTime(timezone=True)),
        sa.Column("analysis_attempts", sa.Integer, nullable=False),
        sa.Column("analyzed_at", sa.DateTime(timezone=True)),
        sa.Column("spam_probability", sa.Float),
        sa.Column("reply_confidence", sa.Float),
        sa.Column("priority_score", sa.Float),
        sa.Column("server_modified_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("account_id", "external_id", name="uq_messages_external"),
    )
    op.create_index("ix_messages_user_id", "messages", ["user_id"])
    op.create_index("ix_messages_account_id", "messages", ["account_id"])
    op.create_index("ix_messages_analysis_status", "messages", ["analysis_status"])

    # sent_replies (reply outbox)
    op.create_table(
        "sent_replies",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("dedup_key", sa.String, nullable=False, unique=True),
        sa.Column("message_id", sa.Uuid, nullable=False),
        sa.Column("user_id", sa.Uuid, nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("provider_message_id", sa.String),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sent_replies_message_id", "sent_replies", ["message_id"])
    op.create_index("ix_sent_replies_user_id", "sent_replies", ["user_id"])

    # automation_settings
    op.create_table(
        "automation_settings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Uuid, nullable=False, unique=True),
        sa.Column("auto_delete_enabled", sa.Boolean, nullable=False),
        sa.Column("auto_reply_enabled", sa.Boolean, nullable=False),
        sa.Column("spam_threshold", sa.Integer, nullable=False),
        sa.Column("reply_confidence_threshold", sa.Integer, nullable=False),
        sa.Column("sender_allowlist", sa.JSON, nullable=False),
        sa.Column("sender_denylist", sa.JSON, nullable=False),
        sa.Column("business_hours_only", sa.Boolean, nullable=False),
        sa.Column("business_hours_start", sa.Integer, nullable=False),
        sa.Column("business_hours_end", sa.Integer, nullable=False),
        sa.Column("timezone", sa.String, nullable=False),
        sa.Column("max_replies_per_day", sa.Integer, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    # automated_action_logs (append-only audit)
    op.create_table(
        "automated_action_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("message_id", sa.Uuid, nullable=False),
        sa.Column("user_id", sa.Uuid, nullable=False),
        sa.Column("action", sa.String, nullable=False),
        sa.Column("spam_probability", sa.Float),
        sa.Column("confidence", sa.Float),
        sa.Column("threshold_used", sa.Float),
        sa.Column("outcome", sa.String, nullable=False),
        sa.Column("reason", sa.String),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_automated_action_logs_message_id", "automated_action_logs", ["message_id"])
    op.create_index("ix_automated_action_logs_user_id", "automated_action_logs", ["user_id"])
    op.create_index("ix_automated_action_logs_action", "automated_action_logs", ["action"])
    op.create_index("ix_automated_action_logs_created_at", "automated_action_logs", ["created_at"])


def downgrade() -> None:
    """Drop the commhub tables."""
    op.drop_table("automated_action_logs")
    op.drop_table("automation_settings")
    op.drop_table("sent_replies")
    op.drop_table("messages")
    op.drop_table("offline_operations")
    op.drop_table("sync_runs")
    op.drop_table("connected_accounts")
