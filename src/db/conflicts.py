"""
Conflict-tolerant write helpers.

`write_with_recovery` is the single place where "attempt a write, and if a
concurrent writer beat us to a unique key, re-read what they wrote" lives.
Writes run inside a SAVEPOINT so a conflict only rolls back the attempted
write, never the caller's surrounding unit of work.
"""
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class UniqueConflict:
    """
    Describes a unique constraint whose violation is recoverable.

    PostgreSQL reports the constraint name in the error message; SQLite only
    reports the offending columns ("UNIQUE constraint failed: tags.user_id,
    tags.name"), so both are checked.
    """

    name: str
    table: str
    columns: tuple[str, ...]

    def matches(self, error: IntegrityError) -> bool:
        """Return True if the IntegrityError was raised by this constraint."""
        message = str(error.orig) if error.orig is not None else str(error)
        if self.name in message:
            return True
        if "UNIQUE constraint failed" in message:
            return all(f"{self.table}.{column}" in message for column in self.columns)
        return False


async def write_with_recovery(
    db: AsyncSession,
    write: Callable[[], Awaitable[T]],
    recover: Callable[[], Awaitable[T]],
    conflict: UniqueConflict,
) -> T:
    """
    Attempt a write; on a matching unique violation, fall back to a re-read.

    Args:
        db: Database session.
        write: Coroutine factory performing the write.
        recover: Coroutine factory re-reading the rows the conflicting writer
            created. Called at most once; its errors propagate.
        conflict: The constraint whose violation triggers recovery.

    Returns:
        The result of `write`, or of `recover` after a conflict.

    Raises:
        IntegrityError: If the write failed on any other constraint.
    """
    try:
        async with db.begin_nested():
            return await write()
    except IntegrityError as e:
        if not conflict.matches(e):
            raise
        logger.info("Write conflicted on %s, recovering with a re-read", conflict.name)
    return await recover()


def _dialect_insert(db: AsyncSession, table: Table) -> Any:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"ON CONFLICT inserts are not supported for dialect '{dialect}'")


async def insert_ignoring_conflicts(
    db: AsyncSession,
    table: Table,
    rows: Sequence[dict[str, Any]],
    index_elements: Sequence[str],
) -> None:
    """Insert rows, silently skipping any that collide on `index_elements`."""
    if not rows:
        return
    stmt = (
        _dialect_insert(db, table)
        .values(list(rows))
        .on_conflict_do_nothing(index_elements=list(index_elements))
    )
    await db.execute(stmt)
