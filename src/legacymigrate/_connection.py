"""
Engine-or-connection handling shared by every store-facing component.

The reader, writer, lookup builder, checkpoint store and coverage checker
all accept an ``AsyncEngine`` (they open and release their own connection
per call) or an ``AsyncConnection`` (they join the caller's transaction).
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection for one unit of work.

    Args:
        conn: Engine or connection of a store
        transactional: Make the unit of work atomic. An engine connection is
            opened with ``begin()`` (commit on exit, roll back on error). A
            caller's connection gets a savepoint, so a failure rolls back
            only this unit and leaves the caller's transaction usable.

    Example:
        >>> async with execute_with_connection(self._target) as conn:
        ...     await conn.execute(insert_query, params)
    """
    if not isinstance(conn, AsyncEngine):
        if transactional:
            async with conn.begin_nested():
                yield conn
        else:
            yield conn
        return

    if transactional:
        async with conn.begin() as connection:
            yield connection
    else:
        async with conn.connect() as connection:
            yield connection


def dialect_name(conn: AsyncConnection | AsyncEngine) -> str:
    """SQLAlchemy dialect name of a store, e.g. 'postgresql' or 'sqlite'."""
    return conn.dialect.name
