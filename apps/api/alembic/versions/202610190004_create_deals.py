"""create deals table

Revision ID: 202610190004
Revises: 202610190003
Create Date: 2026-10-19 09:30:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190004"
down_revision: str | None = "202610190003"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "deals",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("client_id", sa.String(length=128), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=True),
        sa.Column("value", sa.Numeric(18, 2), nullable=False),
        sa.Column("stage", sa.String(length=32), nullable=False, server_default="lead"),
        sa.Column("probability", sa.Numeric(5, 2), nullable=False),
        sa.Column("expected_close_date", sa.Date(), nullable=True),
        sa.Column("stage_entered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deals_stage_close_date", "deals", ["stage", "expected_close_date"])
    op.create_index("ix_deals_probability", "deals", ["probability"])


def downgrade() -> None:
    op.drop_index("ix_deals_probability", table_name="deals")
    op.drop_index("ix_deals_stage_close_date", table_name="deals")
    op.drop_table("deals")
