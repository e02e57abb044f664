"""Store primitives the race-safety guarantees rest on.

``insert_ignoring_duplicates`` turns a unique-constraint violation into a
zero row count instead of an exception, for the broadcast (job, technician)
key and the ledger (job, type, source) key.

``insert_from_select_ignoring_duplicates`` does the same for an
``INSERT ... SELECT``, so the row only lands while the SELECT's guard still
holds at write time.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import Select, Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession


def _dialect_insert(session: AsyncSession, table: Table) -> Any:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    return None


async def insert_ignoring_duplicates(
    session: AsyncSession, table: Table, values: dict[str, Any]
) -> bool:
    """Insert one row; return False if a unique key already held it."""
    insert = _dialect_insert(session, table)
    if insert is None:
        try:
            async with session.begin_nested():
                await session.execute(table.insert().values(**values))
        except IntegrityError:
            return False
        return True

    result = await session.execute(insert.values(**values).on_conflict_do_nothing())
    return result.rowcount == 1


async def insert_from_select_ignoring_duplicates(
    session: AsyncSession, table: Table, columns: Sequence[str], select_stmt: Select
) -> bool:
    """Insert the single row ``select_stmt`` yields.

    Returns False when the SELECT matched nothing or a unique key already
    held the row. SQLite needs a WHERE clause on ``select_stmt`` to parse the
    upsert.
    """
    insert = _dialect_insert(session, table)
    if insert is None:
        try:
            async with session.begin_nested():
                result = await session.execute(table.insert().from_select(columns, select_stmt))
        except IntegrityError:
            return False
        return result.rowcount == 1

    result = await session.execute(
        insert.from_select(columns, select_stmt).on_conflict_do_nothing()
    )
    return result.rowcount == 1
