"""Create message_logs ledger table

Revision ID: 001_create_message_logs
Revises: None
Create Date: 2026-10-19

The `appointments` table belongs to the scheduling system and is not
managed here.
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_create_message_logs"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "message_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "appointment_id",
            sa.Integer(),
            nullable=True,
            comment="Appointment the entry refers to, null until resolved",
        ),
        sa.Column("phone", sa.String(32), nullable=True, comment="Contact as sent (+E164 when normalised)"),
        sa.Column("phone_key", sa.String(32), nullable=True, comment="Digits-only contact, conversation identity"),
        sa.Column(
            "provider_message_id",
            sa.String(255),
            nullable=True,
            comment="Provider message/event id (unique when present)",
        ),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("template_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("direction", sa.String(32), nullable=False, server_default="outbound"),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("retryable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("provider_message_id", name="uq_message_logs_provider_message_id"),
    )
    op.create_index("ix_message_logs_appointment_id", "message_logs", ["appointment_id"])
    op.create_index("ix_message_logs_phone_key", "message_logs", ["phone_key"])
    op.create_index("ix_message_logs_status", "message_logs", ["status"])
    op.create_index("idx_message_logs_created_at", "message_logs", ["created_at"])
    op.create_index("idx_message_logs_retry", "message_logs", ["status", "next_retry_at"])


def downgrade() -> None:
    op.drop_index("idx_message_logs_retry", table_name="message_logs")
    op.drop_index("idx_message_logs_created_at", table_name="message_logs")
    op.drop_index("ix_message_logs_status", table_name="message_logs")
    op.drop_index("ix_message_logs_phone_key", table_name="message_logs")
    op.drop_index("ix_message_logs_appointment_id", table_name="message_logs")
    op.drop_table("message_logs")
