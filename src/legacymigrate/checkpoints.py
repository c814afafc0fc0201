"""
Resume cursors for migrations.

A checkpoint records the source key of the last batch a migration finished
cleanly. With ``MigrationConfig.resume`` the engine starts keyset pagination
after that key instead of rescanning the whole source; without it the
default full rescan plus conflict-skip applies and checkpoints are only
written.

Cursor values are stored as JSON text so integer and string keys come back
with their original type.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate._connection import execute_with_connection
from legacymigrate.exceptions import CheckpointError
from legacymigrate.observability import (
    ATTR_CURSOR,
    ATTR_MIGRATION_NAME,
    Tracer,
    create_tracer,
)
from legacymigrate.serialization import json_dumps, json_loads


@dataclass(frozen=True)
class MigrationCheckpoint:
    """
    Persisted resume position of one migration.

    Attributes:
        migration_name: Name of the migration
        last_source_key: Source key of the last cleanly finished batch
        rows_processed: Source rows processed up to the cursor, across runs
        updated_at: When the checkpoint was last written
    """

    migration_name: str
    last_source_key: Any
    rows_processed: int = 0
    updated_at: datetime | None = None


@runtime_checkable
class CheckpointStore(Protocol):
    """
    Protocol for checkpoint stores.

    Implementations:
    - InMemoryCheckpointStore: process-local, for tests and single runs
    - SQLCheckpointStore: ``migration_checkpoints`` table in the target store
    """

    async def get_checkpoint(self, migration_name: str) -> MigrationCheckpoint | None:
        """
        Get the checkpoint for a migration.

        Returns:
            The checkpoint, or None if the migration never saved one
        """
        ...

    async def save_checkpoint(
        self,
        migration_name: str,
        last_source_key: Any,
        rows_processed: int,
    ) -> None:
        """
        Save (upsert) the checkpoint for a migration.

        Args:
            migration_name: Name of the migration
            last_source_key: Source key of the last cleanly finished batch
            rows_processed: Source rows processed up to the cursor
        """
        ...

    async def reset_checkpoint(self, migration_name: str) -> None:
        """Delete the checkpoint so the next resumed run starts from the beginning."""
        ...


class InMemoryCheckpointStore:
    """
    In-memory checkpoint store.

    All data is lost when the process terminates.

    Example:
        >>> store = InMemoryCheckpointStore()
        >>> await store.save_checkpoint("offices", 500, 500)
        >>> (await store.get_checkpoint("offices")).last_source_key
        500
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._checkpoints: dict[str, MigrationCheckpoint] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    async def get_checkpoint(self, migration_name: str) -> MigrationCheckpoint | None:
        with self._tracer.span(
            "legacymigrate.checkpoint.get",
            {ATTR_MIGRATION_NAME: migration_name},
        ):
            async with self._lock:
                return self._checkpoints.get(migration_name)

    async def save_checkpoint(
        self,
        migration_name: str,
        last_source_key: Any,
        rows_processed: int,
    ) -> None:
        with self._tracer.span(
            "legacymigrate.checkpoint.save",
            {ATTR_MIGRATION_NAME: migration_name, ATTR_CURSOR: str(last_source_key)},
        ):
            async with self._lock:
                self._checkpoints[migration_name] = MigrationCheckpoint(
                    migration_name=migration_name,
                    last_source_key=last_source_key,
                    rows_processed=rows_processed,
                    updated_at=datetime.now(UTC),
                )

    async def reset_checkpoint(self, migration_name: str) -> None:
        async with self._lock:
            self._checkpoints.pop(migration_name, None)

    async def clear(self) -> None:
        """Remove every checkpoint."""
        async with self._lock:
            self._checkpoints.clear()


class SQLCheckpointStore:
    """
    Checkpoint store backed by the ``migration_checkpoints`` table.

    Works against PostgreSQL and SQLite. Call :meth:`create_table` once
    before first use if the table is not managed by the target schema.

    Example:
        >>> store = SQLCheckpointStore(target_engine)
        >>> await store.create_table()
        >>> engine = MigrationEngine(source, target, checkpoint_store=store)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the checkpoint store.

        Args:
            conn: Database connection or engine
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn

    async def create_table(self) -> None:
        """
        Create the ``migration_checkpoints`` table if it does not exist.

        Raises:
            CheckpointError: If the DDL fails
        """
        query = text("""
            CREATE TABLE IF NOT EXISTS migration_checkpoints (
                migration_name VARCHAR(255) PRIMARY KEY,
                last_source_key TEXT NOT NULL,
                rows_processed INTEGER NOT NULL DEFAULT 0,
                updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)
        try:
            async with execute_with_connection(self.conn, transactional=True) as conn:
                await conn.execute(query)
        except SQLAlchemyError as e:
            raise CheckpointError("create", str(e)) from e

    async def get_checkpoint(self, migration_name: str) -> MigrationCheckpoint | None:
        """
        Get the checkpoint for a migration.

        Raises:
            CheckpointError: If the query fails
        """
        with self._tracer.span(
            "legacymigrate.checkpoint.get",
            {ATTR_MIGRATION_NAME: migration_name},
        ):
            query = text("""
                SELECT last_source_key, rows_processed, updated_at
                FROM migration_checkpoints
                WHERE migration_name = :migration_name
            """)
            try:
                async with execute_with_connection(self.conn, transactional=False) as conn:
                    result = await conn.execute(query, {"migration_name": migration_name})
                    row = result.fetchone()
            except SQLAlchemyError as e:
                raise CheckpointError("load", str(e), migration_name=migration_name) from e

            if row is None:
                return None

            return MigrationCheckpoint(
                migration_name=migration_name,
                last_source_key=json_loads(row[0]),
                rows_processed=row[1] or 0,
                updated_at=_parse_timestamp(row[2]),
            )

    async def save_checkpoint(
        self,
        migration_name: str,
        last_source_key: Any,
        rows_processed: int,
    ) -> None:
        """
        Upsert the checkpoint for a migration.

        Raises:
            CheckpointError: If the write fails
        """
        with self._tracer.span(
            "legacymigrate.checkpoint.save",
            {ATTR_MIGRATION_NAME: migration_name, ATTR_CURSOR: str(last_source_key)},
        ):
            query = text("""
                INSERT INTO migration_checkpoints
                    (migration_name, last_source_key, rows_processed, updated_at)
                VALUES (:migration_name, :last_source_key, :rows_processed, CURRENT_TIMESTAMP)
                ON CONFLICT (migration_name) DO UPDATE
                SET last_source_key = EXCLUDED.last_source_key,
                    rows_processed = EXCLUDED.rows_processed,
                    updated_at = CURRENT_TIMESTAMP
            """)
            params = {
                "migration_name": migration_name,
                "last_source_key": json_dumps(last_source_key),
                "rows_processed": rows_processed,
            }
            try:
                async with execute_with_connection(self.conn, transactional=True) as conn:
                    await conn.execute(query, params)
            except SQLAlchemyError as e:
                raise CheckpointError("save", str(e), migration_name=migration_name) from e

    async def reset_checkpoint(self, migration_name: str) -> None:
        """
        Delete the checkpoint for a migration.

        Raises:
            CheckpointError: If the delete fails
        """
        query = text("DELETE FROM migration_checkpoints WHERE migration_name = :migration_name")
        try:
            async with execute_with_connection(self.conn, transactional=True) as conn:
                await conn.execute(query, {"migration_name": migration_name})
        except SQLAlchemyError as e:
            raise CheckpointError("reset", str(e), migration_name=migration_name) from e


def _parse_timestamp(value: Any) -> datetime | None:
    # SQLite hands CURRENT_TIMESTAMP back as 'YYYY-MM-DD HH:MM:SS' text in UTC.
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


__all__ = [
    "MigrationCheckpoint",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SQLCheckpointStore",
]
