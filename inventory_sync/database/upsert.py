"""
Dialect-aware INSERT ... ON CONFLICT DO UPDATE builders.

PostgreSQL in production, SQLite in tests. Both dialects expose the same
``on_conflict_do_update`` / ``excluded`` API.
"""

from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(dialect_name: str, table: Table):
    if dialect_name == "postgresql":
        return pg_insert(table)
    if dialect_name == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"Upsert not supported for dialect: {dialect_name}")


def build_upsert(
    dialect_name: str,
    table: Table,
    values: Any,
    conflict_columns: Sequence[str],
    update_columns: Optional[Iterable[str]] = None,
    overrides: Optional[dict] = None,
    where: Any = None,
):
    """
    Build an upsert statement for ``values`` (a dict or list of dicts).

    Args:
        dialect_name: Name of the bound engine's dialect
        table: Target table
        values: Row or rows to insert
        conflict_columns: Columns of the unique constraint to conflict on
        update_columns: Columns copied from the excluded row on conflict.
            Defaults to every key of the first row that is not a conflict column.
        overrides: Extra ``SET`` expressions applied on conflict
        where: Condition on the existing row; when false the conflicting row
            is left untouched
    """
    insert_stmt = dialect_insert(dialect_name, table).values(values)

    if update_columns is None:
        first = values[0] if isinstance(values, list) else values
        update_columns = [key for key in first.keys() if key not in conflict_columns]

    set_ = {column: insert_stmt.excluded[column] for column in update_columns}
    if overrides:
        set_.update(overrides)

    return insert_stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_=set_,
        where=where,
    )


def session_dialect(session: AsyncSession) -> str:
    """Name of the dialect a session is bound to"""
    return session.get_bind().dialect.name
