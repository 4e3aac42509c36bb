"""Dialect-aware INSERT ... ON CONFLICT helpers.

PostgreSQL in production, SQLite in tests; both dialects expose the same
on_conflict_do_update / on_conflict_do_nothing API.
"""

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(db: AsyncSession, model):
    """Return the dialect-specific insert() construct for the session's bind."""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


async def upsert(
    db: AsyncSession,
    model,
    values: dict[str, Any],
    conflict_keys: Iterable[str],
    touch_updated_at: bool = True,
):
    """Insert a row or overwrite every non-key column on conflict.

    Column.onupdate is not applied by ON CONFLICT DO UPDATE, so updated_at
    is set explicitly when the model has one.
    """
    conflict_keys = list(conflict_keys)
    stmt = dialect_insert(db, model).values(**values)
    set_ = {col: stmt.excluded[col] for col in values if col not in conflict_keys}
    if touch_updated_at and hasattr(model, "updated_at"):
        set_["updated_at"] = datetime.utcnow()
    stmt = stmt.on_conflict_do_update(index_elements=conflict_keys, set_=set_)
    return await db.execute(stmt)


async def insert_ignore(db: AsyncSession, model, values: dict[str, Any], conflict_keys: Iterable[str]):
    """Insert a row unless one with the same key already exists."""
    stmt = dialect_insert(db, model).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_keys))
    return await db.execute(stmt)
