"""Add the revision column to tracked tables that predate version control."""

import logging
from typing import Optional

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import BigInteger, Column, Connection, Table, inspect
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def add_revision_column(
    connection: Connection,
    table_name: str,
    column_name: str,
    schema: Optional[str] = None,
) -> bool:
    """Add ``column_name`` (BIGINT, default 0) when the table lacks it."""
    inspector = inspect(connection)
    if not inspector.has_table(table_name, schema=schema):
        logger.debug(f"Table {table_name} does not exist yet, nothing to migrate")
        return False

    existing = {column["name"] for column in inspector.get_columns(table_name, schema=schema)}
    if column_name in existing:
        return False

    logger.info(f"Adding revision column {column_name} to {table_name}")
    operations = Operations(MigrationContext.configure(connection))
    operations.add_column(
        table_name,
        Column(column_name, BigInteger, nullable=True, server_default="0"),
        schema=schema,
    )
    return True


async def ensure_revision_column(engine: AsyncEngine, table: Table, column_name: str) -> bool:
    """Async wrapper around ``add_revision_column`` for one mapped table."""
    async with engine.begin() as conn:
        return await conn.run_sync(add_revision_column, table.name, column_name, table.schema)
