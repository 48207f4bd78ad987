"""create projects table

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19 09:10:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190002"
down_revision: str | None = "202610190001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("timeline", sa.String(length=255), nullable=True),
        sa.Column("design_files", sa.Text(), nullable=True),
        sa.Column("test_results", sa.Text(), nullable=True),
        sa.Column("deployment_url", sa.String(length=1024), nullable=True),
        sa.Column("completion_date", sa.Date(), nullable=True),
        sa.Column("hold_reason", sa.Text(), nullable=True),
        sa.Column("current_stage", sa.String(length=64), nullable=False, server_default="Discovery"),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_owner_stage", "projects", ["owner_id", "current_stage"])


def downgrade() -> None:
    op.drop_index("ix_projects_owner_stage", table_name="projects")
    op.drop_table("projects")
