"""
Dialect-aware write statements shared by the dataset writers.

All statements are built with SQLAlchemy Core and bound parameters. Upserts
use ``INSERT ... ON CONFLICT DO UPDATE``, which both PostgreSQL and SQLite
support; the matching ``insert`` construct is picked from the session's bind.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import StoreFatalError

logger = logging.getLogger(__name__)

MAX_BIND_PARAMS = 30000

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(session: AsyncSession, model):
    """``insert(model)`` supporting ``on_conflict_*`` for the session's dialect"""
    dialect = session.get_bind().dialect.name
    try:
        return _INSERTS[dialect](model.__table__)
    except KeyError:
        raise StoreFatalError(
            f"Unsupported database dialect: {dialect}",
            context={"table": model.__tablename__}
        )


def collapse_by_key(rows: Iterable[Dict[str, Any]], keys: Sequence[str]) -> List[Dict[str, Any]]:
    """Keep the last row per key; a multi-row upsert cannot touch one row twice."""
    collapsed: Dict[tuple, Dict[str, Any]] = {}
    for row in rows:
        collapsed[tuple(row.get(k) for k in keys)] = row
    return list(collapsed.values())


async def upsert_rows(
    session: AsyncSession,
    model,
    rows: Iterable[Dict[str, Any]],
    index_elements: Optional[Sequence[str]] = None,
) -> int:
    """
    Insert ``rows`` into ``model``'s table, overwriting every non-key column
    of rows that already exist.

    Args:
        session: Session inside an open transaction
        model: Declarative model class
        rows: Column dicts, all with the same keys
        index_elements: Conflict target; defaults to the primary key

    Returns:
        Number of distinct rows written
    """
    keys = list(index_elements or [c.name for c in model.__table__.primary_key.columns])
    values = collapse_by_key(rows, keys)
    if not values:
        return 0

    update_columns = [name for name in values[0] if name not in keys]

    for chunk in _chunks(values):
        stmt = dialect_insert(session, model).values(chunk)
        if update_columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=keys,
                set_={name: stmt.excluded[name] for name in update_columns}
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=keys)
        await session.execute(stmt)

    return len(values)


async def insert_rows(session: AsyncSession, model, rows: List[Dict[str, Any]]) -> int:
    """Plain multi-row insert (rows are expected not to exist)."""
    for chunk in _chunks(rows):
        await session.execute(dialect_insert(session, model).values(chunk))
    return len(rows)


def _chunks(rows: List[Dict[str, Any]]) -> Iterable[List[Dict[str, Any]]]:
    # Keep each statement under the driver's bind parameter limit
    if not rows:
        return
    size = max(1, MAX_BIND_PARAMS // max(1, len(rows[0])))
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


async def delete_where_in(session: AsyncSession, column, values: Iterable[Any]) -> int:
    """``DELETE FROM <table> WHERE <column> IN (...)``; returns the row count."""
    values = list(dict.fromkeys(values))
    if not values:
        return 0
    result = await session.execute(delete(column.table).where(column.in_(values)))
    return result.rowcount or 0


async def replace_catalog(session: AsyncSession, model, catalog: str, items: Iterable[str]) -> int:
    """Replace every item of one named catalog."""
    await session.execute(delete(model.__table__).where(model.__table__.c.catalog == catalog))
    rows = [{"catalog": catalog, "item": item} for item in dict.fromkeys(items) if item]
    return await upsert_rows(session, model, rows)
