"""create ai quota and usage tables

Revision ID: 202610190006
Revises: 202610190005
Create Date: 2026-10-19 09:50:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190006"
down_revision: str | None = "202610190005"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "ai_quotas",
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("monthly_limit", sa.BigInteger(), nullable=False),
        sa.Column("current_usage", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("cost_limit", sa.Numeric(12, 4), nullable=False),
        sa.Column("current_cost", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("reset_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "ai_usage",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("service", sa.String(length=32), nullable=False),
        sa.Column("operation", sa.String(length=64), nullable=False),
        sa.Column("tokens_used", sa.BigInteger(), nullable=False),
        sa.Column("cost", sa.Numeric(12, 4), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_usage_user_date", "ai_usage", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_ai_usage_user_date", table_name="ai_usage")
    op.drop_table("ai_usage")
    op.drop_table("ai_quotas")
