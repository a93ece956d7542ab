"""Initial schema - audit tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the sync run and secret state tables."""

    # 1. sync_logs
    op.create_table(
        "sync_logs",
        sa.Column("id", UUID(as_uuid=False), primary_key=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), server_default="Running", nullable=False),
        sa.Column("phase", sa.String(50), server_default="Full Sync", nullable=False),
        sa.Column("total_items", sa.Integer, server_default="0", nullable=False),
        sa.Column("processed_items", sa.Integer, server_default="0", nullable=False),
        sa.Column("created_secrets", sa.Integer, server_default="0", nullable=False),
        sa.Column("updated_secrets", sa.Integer, server_default="0", nullable=False),
        sa.Column("skipped_secrets", sa.Integer, server_default="0", nullable=False),
        sa.Column("failed_secrets", sa.Integer, server_default="0", nullable=False),
        sa.Column("deleted_secrets", sa.Integer, server_default="0", nullable=False),
        sa.Column("duration_seconds", sa.Float, server_default="0", nullable=False),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("sync_interval_seconds", sa.Integer, server_default="0", nullable=False),
        sa.Column("continuous_sync", sa.Boolean, server_default="false", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_sync_logs_start_time", "sync_logs", ["start_time"])

    # 2. secret_states
    op.create_table(
        "secret_states",
        sa.Column("id", UUID(as_uuid=False), primary_key=True),
        sa.Column("namespace", sa.String(253), nullable=False),
        sa.Column("secret_name", sa.String(253), nullable=False),
        sa.Column("vault_item_id", sa.String(100), server_default="", nullable=False),
        sa.Column("vault_item_name", sa.String(255), server_default="", nullable=False),
        sa.Column("status", sa.String(20), server_default="Active", nullable=False),
        sa.Column("data_keys_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("last_synced", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("namespace", "secret_name", name="uq_secret_state_namespace_name"),
    )
    op.create_index("ix_secret_states_status", "secret_states", ["status"])


def downgrade() -> None:
    """Drop the audit tables."""
    op.drop_index("ix_secret_states_status", table_name="secret_states")
    op.drop_table("secret_states")
    op.drop_index("ix_sync_logs_start_time", table_name="sync_logs")
    op.drop_table("sync_logs")
