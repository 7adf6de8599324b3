"""
create integration_job table

Revision ID: 002_create_integration_job
Revises: 001_create_integration_entities
Create Date: 2026-10-19 00:00:02.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from migration_helpers import (
    table_exists,
    create_index_if_not_exists,
    drop_table_if_exists,
)

revision = "002_create_integration_job"
down_revision = "001_create_integration_entities"
branch_labels = None
depends_on = None

TABLE_NAME = "integration_job"


def _create_table() -> None:
    if not table_exists(TABLE_NAME):
        op.create_table(
            TABLE_NAME,
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("company_id", sa.String(64), nullable=False),
            sa.Column("entity_type", sa.String(32), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("file_name", sa.String(255), nullable=False),
            sa.Column("file_url", sa.String(1024), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("processed_rows", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("success_rows", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("error_rows", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("limited_rows", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("errors", sa.JSON(), nullable=False),
            sa.Column("failure_reason", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
        )

    create_index_if_not_exists("ix_integration_job_company_id", TABLE_NAME, ["company_id"])
    create_index_if_not_exists("ix_integration_job_company_status", TABLE_NAME, ["company_id", "status"])
    create_index_if_not_exists("ix_integration_job_type_status", TABLE_NAME, ["entity_type", "status"])
    # Scheduler fetch: oldest pending first
    create_index_if_not_exists("ix_integration_job_status_created", TABLE_NAME, ["status", "created_at"])


def upgrade() -> None:
    _create_table()


def downgrade() -> None:
    drop_table_if_exists(TABLE_NAME)
