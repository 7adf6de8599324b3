"""
Dialect-neutral helper functions for Alembic migrations.
These functions make migrations idempotent by checking if objects exist before creating them.
"""

from alembic import op
import sqlalchemy as sa


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the current database."""
    inspector = sa.inspect(op.get_bind())
    return inspector.has_table(table_name)


def index_exists(table_name: str, index_name: str) -> bool:
    """Check if an index exists on the given table."""
    if not table_exists(table_name):
        return False
    inspector = sa.inspect(op.get_bind())
    return any(index["name"] == index_name for index in inspector.get_indexes(table_name))


def create_index_if_not_exists(index_name: str, table_name: str, columns, unique: bool = False) -> None:
    if not index_exists(table_name, index_name):
        op.create_index(index_name, table_name, columns, unique=unique)


def drop_table_if_exists(table_name: str) -> None:
    if table_exists(table_name):
        op.drop_table(table_name)
