"""pipeline projects, annual targets and kpi audit log

Revision ID: 3f9a1c7d2b64
Revises: 
Create Date: 2026-03-02 09:14:05.118204

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f9a1c7d2b64'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "pipeline_projects",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("pipeline_type", sa.String(20), nullable=False),
        sa.Column("stage_id", sa.String(50), nullable=False),
        sa.Column("project_state", sa.String(2), nullable=True),
        sa.Column("set_aside", sa.String(50), nullable=True),
        sa.Column("status", sa.String(50), nullable=True),
        sa.Column("contract_type", sa.String(50), nullable=True),
        sa.Column("value", sa.Float(), nullable=False, server_default="0"),
        sa.Column("awarded_amount", sa.Float(), nullable=True),
        sa.Column("options_value", sa.Float(), nullable=True),
        sa.Column("planned_hours", sa.Float(), nullable=True),
        sa.Column("submission_date", sa.DateTime(), nullable=True),
        sa.Column("award_date", sa.DateTime(), nullable=True),
        sa.Column("project_latitude", sa.Float(), nullable=True),
        sa.Column("project_longitude", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_pipeline_projects_pipeline_type", "pipeline_projects", ["pipeline_type"])
    op.create_index("ix_pipeline_projects_stage_id", "pipeline_projects", ["stage_id"])
    op.create_index("ix_pipeline_projects_project_state", "pipeline_projects", ["project_state"])
    op.create_index("ix_pipeline_projects_award_date", "pipeline_projects", ["award_date"])

    op.create_table(
        "annual_targets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("target_amount", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_annual_targets_year", "annual_targets", ["year"], unique=True)

    op.create_table(
        "kpi_audit_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("metric_name", sa.String(100), nullable=False),
        sa.Column("metric_value", sa.Float(), nullable=True),
        sa.Column("window_type", sa.String(20), nullable=False),
        sa.Column("source", sa.String(100), nullable=False),
        sa.Column("samples", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("params", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("filters", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_kpi_audit_log_metric_name", "kpi_audit_log", ["metric_name"])
    op.create_index("ix_kpi_audit_log_created_at", "kpi_audit_log", ["created_at"])


def downgrade() -> None:
    op.drop_table("kpi_audit_log")
    op.drop_table("annual_targets")
    op.drop_table("pipeline_projects")
