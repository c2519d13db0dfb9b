"""Create sessions, message_logs and bot_instances tables."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_create_relay_tables"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    op.create_table(
        "sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("conversation_id", sa.String(length=64), nullable=False),
        sa.Column("thread_id", sa.String(length=128), nullable=False),
        sa.Column(
            "human_handoff", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")
        ),
        sa.Column(
            "transferred_to_operator",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        _timestamp("operator_transfer_time", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("conversation_id", name="uq_sessions_conversation_id"),
    )

    op.create_table(
        "message_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("conversation_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "role IN ('user', 'assistant', 'system')", name="ck_message_logs_role"
        ),
    )
    op.create_index(
        "ix_message_logs_conversation_created",
        "message_logs",
        ["conversation_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "bot_instances",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("instance_id", sa.String(length=64), nullable=False),
        sa.Column("hostname", sa.String(length=255), nullable=False),
        _timestamp("started_at"),
        _timestamp("last_heartbeat"),
        sa.UniqueConstraint("instance_id", name="uq_bot_instances_instance_id"),
    )
    op.create_index("ix_bot_instances_hostname", "bot_instances", ["hostname"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_bot_instances_hostname", table_name="bot_instances")
    op.drop_table("bot_instances")
    op.drop_index("ix_message_logs_conversation_created", table_name="message_logs")
    op.drop_table("message_logs")
    op.drop_table("sessions")
