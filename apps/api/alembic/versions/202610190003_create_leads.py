"""create lead routing tables

Revision ID: 202610190003
Revises: 202610190002
Create Date: 2026-10-19 09:20:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190003"
down_revision: str | None = "202610190002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "leads",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("source", sa.String(length=64), nullable=False, server_default="web"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="new"),
        sa.Column("assigned_to", sa.String(length=128), nullable=True),
        sa.Column("score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contacted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_leads_assigned_status", "leads", ["assigned_to", "status"])
    op.create_index("ix_leads_status_created", "leads", ["status", "created_at"])

    op.create_table(
        "sales_reps",
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="sales"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_sales_reps_role_active", "sales_reps", ["role", "active"])

    op.create_table(
        "lead_assignment_cursor",
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )


def downgrade() -> None:
    op.drop_table("lead_assignment_cursor")
    op.drop_index("ix_sales_reps_role_active", table_name="sales_reps")
    op.drop_table("sales_reps")
    op.drop_index("ix_leads_status_created", table_name="leads")
    op.drop_index("ix_leads_assigned_status", table_name="leads")
    op.drop_table("leads")
