"""
create location, machine_model, machine, maintenance_range and operation tables

Revision ID: 001_create_integration_entities
Revises:
Create Date: 2026-10-19 00:00:01.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from migration_helpers import (
    table_exists,
    create_index_if_not_exists,
    drop_table_if_exists,
)

revision = "001_create_integration_entities"
down_revision = None
branch_labels = None
depends_on = None


def _tenant_columns() -> list:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.String(64), nullable=False),
        sa.Column("internal_code", sa.String(36), nullable=False),
    ]


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def _create_location() -> None:
    if not table_exists("location"):
        op.create_table(
            "location",
            *_tenant_columns(),
            sa.Column("name", sa.String(100), nullable=False),
            sa.Column("description", sa.String(500), nullable=True),
            sa.Column("icon", sa.String(50), nullable=True),
            sa.Column("parent_id", sa.Integer(), sa.ForeignKey("location.id", ondelete="SET NULL"), nullable=True),
            sa.Column("path", sa.String(1000), nullable=False, server_default=""),
            sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_leaf", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.UniqueConstraint("company_id", "internal_code", name="uq_location_company_code"),
        )
    create_index_if_not_exists("ix_location_company_id", "location", ["company_id"])
    create_index_if_not_exists("ix_location_parent_id", "location", ["parent_id"])


def _create_machine_model() -> None:
    if not table_exists("machine_model"):
        op.create_table(
            "machine_model",
            *_tenant_columns(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("manufacturer", sa.String(255), nullable=False),
            sa.Column("brand", sa.String(255), nullable=False),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("properties", sa.JSON(), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("company_id", "internal_code", name="uq_machine_model_company_code"),
        )
    create_index_if_not_exists("ix_machine_model_company_id", "machine_model", ["company_id"])


def _create_machine() -> None:
    if not table_exists("machine"):
        op.create_table(
            "machine",
            *_tenant_columns(),
            sa.Column("model_id", sa.Integer(), sa.ForeignKey("machine_model.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("location_id", sa.Integer(), sa.ForeignKey("location.id", ondelete="RESTRICT"), nullable=True),
            sa.Column("location", sa.String(1000), nullable=False),
            sa.Column("description", sa.String(500), nullable=True),
            sa.Column("properties", sa.JSON(), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("company_id", "internal_code", name="uq_machine_company_code"),
        )
    create_index_if_not_exists("ix_machine_company_id", "machine", ["company_id"])
    create_index_if_not_exists("ix_machine_model_id", "machine", ["model_id"])
    create_index_if_not_exists("ix_machine_location_id", "machine", ["location_id"])


def _create_maintenance_range() -> None:
    if not table_exists("maintenance_range"):
        op.create_table(
            "maintenance_range",
            *_tenant_columns(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.String(500), nullable=False),
            sa.Column("type", sa.String(20), nullable=False),
            sa.Column("frequency", sa.String(100), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("start_time", sa.String(10), nullable=True),
            sa.Column("days_of_week", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("company_id", "internal_code", name="uq_maintenance_range_company_code"),
        )
    create_index_if_not_exists("ix_maintenance_range_company_id", "maintenance_range", ["company_id"])


def _create_operation() -> None:
    if not table_exists("operation"):
        op.create_table(
            "operation",
            *_tenant_columns(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.String(500), nullable=False),
            sa.Column("type", sa.String(20), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("company_id", "internal_code", name="uq_operation_company_code"),
        )
    create_index_if_not_exists("ix_operation_company_id", "operation", ["company_id"])


def upgrade() -> None:
    _create_location()
    _create_machine_model()
    _create_machine()
    _create_maintenance_range()
    _create_operation()


def downgrade() -> None:
    # Dependents first
    drop_table_if_exists("machine")
    drop_table_if_exists("operation")
    drop_table_if_exists("maintenance_range")
    drop_table_if_exists("machine_model")
    drop_table_if_exists("location")
