"""
Batched, idempotent writes to the target store.

Each batch becomes one multi-row statement per column set:

    INSERT INTO "table" ("a", "b", ...) VALUES (:p0_0, :p0_1, ...), (:p1_0, ...)
    ON CONFLICT ("conflict_key") DO NOTHING

Rows whose conflict key already exists are silently dropped by the store, so
re-running a migration never duplicates data. The statement's row count is
the number of rows actually inserted. A column a record leaves out is left
out of its statement too, so server-side defaults still apply.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate._connection import dialect_name, execute_with_connection
from legacymigrate._sql import equality_conditions, is_identifier, quote_identifier
from legacymigrate.exceptions import BatchWriteError, LookupBuildError
from legacymigrate.lookups import normalize_legacy_id
from legacymigrate.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_CONFLICT_KEY,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_MIGRATION_NAME,
    ATTR_ROWS_INSERTED,
    ATTR_TARGET_TABLE,
    Tracer,
    create_tracer,
)
from legacymigrate.serialization import json_dumps

logger = logging.getLogger(__name__)

# Both PostgreSQL and SQLite cap bound parameters per statement near 32767.
MAX_PARAMETERS_PER_STATEMENT = 32000


def coerce_value(value: Any) -> Any:
    """
    Convert a record value into something every supported driver can bind.

    Dicts and lists are serialized to JSON text (metadata payloads, arrays of
    emails); UUIDs become their string form. Everything else passes through.
    """
    if isinstance(value, dict | list):
        return json_dumps(value)
    if isinstance(value, UUID):
        return str(value)
    return value


def record_shape(record: Mapping[str, Any]) -> dict[str, str]:
    """Describe a record as column -> Python type name."""
    return {column: type(value).__name__ for column, value in record.items()}


class BatchWriter:
    """
    Inserts batches of transformed records into a target table.

    Example:
        >>> writer = BatchWriter(target_engine)
        >>> inserted = await writer.write_batch("offices", "legacy_office_id", records)
    """

    def __init__(
        self,
        target: AsyncEngine | AsyncConnection,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the writer.

        Args:
            target: Target store engine or connection
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._target = target
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def write_batch(
        self,
        table: str,
        conflict_key: str | Sequence[str],
        records: Sequence[Mapping[str, Any]],
        *,
        batch_number: int = 0,
        migration_name: str | None = None,
    ) -> int:
        """
        Insert a batch, ignoring rows whose conflict key already exists.

        The whole batch is atomic: one transaction on an engine, one
        savepoint on a caller's connection. Records sharing a column set go
        into one statement, split further only when it would exceed the
        driver's parameter limit.

        Args:
            table: Target table
            conflict_key: Unique column, or columns of a unique constraint,
                for ``ON CONFLICT``
            records: Column -> value mappings
            batch_number: Batch ordinal, for tracing and logging
            migration_name: Name of the migration, for error context

        Returns:
            Number of rows actually inserted

        Raises:
            BatchWriteError: If the store rejects the batch
        """
        if not records:
            return 0

        conflict_columns = (conflict_key,) if isinstance(conflict_key, str) else tuple(conflict_key)

        with self._tracer.span(
            "legacymigrate.writer.write_batch",
            {
                ATTR_MIGRATION_NAME: migration_name or "",
                ATTR_TARGET_TABLE: table,
                ATTR_CONFLICT_KEY: ",".join(conflict_columns),
                ATTR_BATCH_NUMBER: batch_number,
                ATTR_BATCH_SIZE: len(records),
                ATTR_DB_SYSTEM: dialect_name(self._target),
                ATTR_DB_OPERATION: "INSERT",
            },
        ) as span:
            groups = self._group_by_columns(records)
            try:
                for columns, _ in groups:
                    for column in columns:
                        if not is_identifier(column):
                            raise ValueError(f"Invalid column name in record: {column!r}")

                inserted = 0
                async with execute_with_connection(self._target) as conn:
                    for columns, group in groups:
                        for chunk in self._chunk(group, len(columns)):
                            query, params = self._build_insert(table, conflict_columns, columns, chunk)
                            result = await conn.execute(query, params)
                            inserted += max(result.rowcount, 0)
            except (SQLAlchemyError, ValueError) as e:
                logger.warning(
                    "Batch %d insert into %s failed (%d records): %s",
                    batch_number,
                    table,
                    len(records),
                    e,
                )
                raise BatchWriteError(
                    table,
                    len(records),
                    str(e),
                    first_record_shape=record_shape(records[0]),
                    migration_name=migration_name,
                ) from e

            if span:
                span.set_attribute(ATTR_ROWS_INSERTED, inserted)

            logger.debug(
                "Batch %d: inserted %d of %d records into %s",
                batch_number,
                inserted,
                len(records),
                table,
            )
            return inserted

    async def existing_keys(
        self,
        table: str,
        key_column: str,
        *,
        where: Mapping[str, Any] | None = None,
        migration_name: str | None = None,
    ) -> set[Any]:
        """
        Load every non-null value of ``key_column`` already in ``table``.

        Used to skip rows migrated by an earlier run before transforming them.

        Args:
            table: Target table
            key_column: Column carrying the legacy id
            where: Column -> value filters restricting the scan to the
                rows of one migration
            migration_name: Name of the migration, for error context

        Returns:
            Set of normalized key values

        Raises:
            LookupBuildError: If the query fails
        """
        column = quote_identifier(key_column)
        filters, params = equality_conditions(where)
        conditions = [f"{column} IS NOT NULL", *filters]
        query = text(
            f"SELECT {column} FROM {quote_identifier(table)} "
            f"WHERE {' AND '.join(conditions)}"
        )
        try:
            async with execute_with_connection(self._target, transactional=False) as conn:
                result = await conn.execute(query, params)
                keys = {normalize_legacy_id(value) for value in result.scalars().all()}
        except SQLAlchemyError as e:
            raise LookupBuildError(
                "already_migrated",
                table,
                str(e),
                migration_name=migration_name,
            ) from e

        logger.info("Found %d rows already migrated into %s", len(keys), table)
        return keys

    @staticmethod
    def _group_by_columns(
        records: Sequence[Mapping[str, Any]],
    ) -> list[tuple[list[str], list[Mapping[str, Any]]]]:
        groups: dict[frozenset[str], tuple[list[str], list[Mapping[str, Any]]]] = {}
        for record in records:
            group = groups.setdefault(frozenset(record), (list(record), []))
            group[1].append(record)
        return list(groups.values())

    @staticmethod
    def _chunk(
        records: Sequence[Mapping[str, Any]],
        column_count: int,
    ) -> list[Sequence[Mapping[str, Any]]]:
        rows_per_statement = max(1, MAX_PARAMETERS_PER_STATEMENT // max(column_count, 1))
        return [
            records[start : start + rows_per_statement]
            for start in range(0, len(records), rows_per_statement)
        ]

    @staticmethod
    def _build_insert(
        table: str,
        conflict_columns: Sequence[str],
        columns: list[str],
        records: Sequence[Mapping[str, Any]],
    ) -> tuple[Any, dict[str, Any]]:
        params: dict[str, Any] = {}
        value_rows = []
        for i, record in enumerate(records):
            placeholders = []
            for j, column in enumerate(columns):
                name = f"p{i}_{j}"
                placeholders.append(f":{name}")
                params[name] = coerce_value(record[column])
            value_rows.append(f"({', '.join(placeholders)})")

        column_list = ", ".join(quote_identifier(column) for column in columns)
        conflict_list = ", ".join(quote_identifier(column) for column in conflict_columns)
        sql = (
            f"INSERT INTO {quote_identifier(table)} ({column_list}) "
            f"VALUES {', '.join(value_rows)} "
            f"ON CONFLICT ({conflict_list}) DO NOTHING"
        )
        return text(sql), params


__all__ = [
    "BatchWriter",
    "MAX_PARAMETERS_PER_STATEMENT",
    "coerce_value",
    "record_shape",
]
