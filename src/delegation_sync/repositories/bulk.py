"""Batch insert helper shared by the repositories."""
from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from typing import Any, TypeVar

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from delegation_sync.db.session import Base

T = TypeVar("T")

# Keeps multi-row VALUES statements below SQLite's bound parameter limit.
INSERT_BATCH_SIZE = 500


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of ``items`` holding at most ``size`` elements."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def insert_ignore_duplicates(
    session: Session,
    model: type[Base],
    rows: Sequence[Mapping[str, Any]],
) -> int:
    """Insert ``rows`` skipping any that collide with a unique key.

    Args:
        session: Session whose bind decides the SQL dialect.
        model: Mapped class of the target table.
        rows: Column name to value mappings, one per row.

    Returns:
        Number of rows actually inserted.
    """
    if not rows:
        return 0

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise NotImplementedError(f"insert-ignore is not supported for dialect {dialect!r}")

    inserted = 0
    for batch in chunked(rows, INSERT_BATCH_SIZE):
        stmt = insert(model).values([dict(row) for row in batch]).on_conflict_do_nothing()
        result = session.execute(stmt)
        inserted += max(result.rowcount or 0, 0)
    return inserted
