"""
Batched reads from the source store.

The configured source query is wrapped as a subquery and paged by its
stable key column, so any SELECT (including JOINs) can be streamed in
ascending key order:

    keyset:  SELECT * FROM (<query>) AS src
             WHERE src."id" > :after ORDER BY src."id" LIMIT :limit
    offset:  SELECT * FROM (<query>) AS src
             ORDER BY src."id" LIMIT :limit OFFSET :offset
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate._connection import dialect_name, execute_with_connection
from legacymigrate._sql import quote_identifier, strip_statement
from legacymigrate.exceptions import SourceReadError
from legacymigrate.models import MigrationConfig, PaginationMode
from legacymigrate.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_CURSOR,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_MIGRATION_NAME,
    ATTR_OFFSET,
    ATTR_ROWS_PROCESSED,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

_AFTER_PARAM = "_lm_after"
_LIMIT_PARAM = "_lm_limit"
_OFFSET_PARAM = "_lm_offset"


class SourceReader:
    """
    Streams rows of a migration's source query in batches.

    Example:
        >>> reader = SourceReader(source_engine)
        >>> async for batch in reader.iter_batches(config):
        ...     for row in batch:
        ...         print(row["id"])
    """

    def __init__(
        self,
        source: AsyncEngine | AsyncConnection,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the reader.

        Args:
            source: Source store engine or connection (only read from)
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._source = source
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def fetch_batch(
        self,
        config: MigrationConfig,
        *,
        batch_number: int,
        after: Any = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Fetch one batch of source rows.

        Args:
            config: Migration configuration
            batch_number: One-based batch ordinal, for tracing and errors
            after: Keyset cursor; rows with a key greater than this are returned
                (None starts from the beginning)
            offset: Row offset for offset pagination

        Returns:
            Up to ``config.batch_size`` rows as dictionaries, ascending by key

        Raises:
            SourceReadError: If the query fails
        """
        with self._tracer.span(
            "legacymigrate.reader.fetch_batch",
            {
                ATTR_MIGRATION_NAME: config.name,
                ATTR_BATCH_NUMBER: batch_number,
                ATTR_BATCH_SIZE: config.batch_size,
                ATTR_DB_SYSTEM: dialect_name(self._source),
                ATTR_DB_OPERATION: "SELECT",
                **(
                    {ATTR_CURSOR: str(after)}
                    if config.pagination is PaginationMode.KEYSET and after is not None
                    else {}
                ),
                **(
                    {ATTR_OFFSET: offset}
                    if config.pagination is PaginationMode.OFFSET
                    else {}
                ),
            },
        ) as span:
            query, params = self._build_query(config, after=after, offset=offset)
            try:
                async with execute_with_connection(self._source, transactional=False) as conn:
                    result = await conn.execute(query, params)
                    rows = [dict(row) for row in result.mappings().all()]
            except SQLAlchemyError as e:
                logger.error(
                    "Source read failed for %s at batch %d: %s",
                    config.name,
                    batch_number,
                    e,
                )
                raise SourceReadError(batch_number, str(e), migration_name=config.name) from e

            if rows and config.source_key not in rows[0]:
                raise SourceReadError(
                    batch_number,
                    f"source query does not return key column '{config.source_key}'",
                    migration_name=config.name,
                )

            if span:
                span.set_attribute(ATTR_ROWS_PROCESSED, len(rows))

            logger.debug(
                "Fetched batch %d for %s: %d rows",
                batch_number,
                config.name,
                len(rows),
            )
            return rows

    async def iter_batches(
        self,
        config: MigrationConfig,
        *,
        start_after: Any = None,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """
        Yield successive non-empty batches until the source is exhausted.

        Args:
            config: Migration configuration
            start_after: Keyset cursor to resume from (keyset pagination only)

        Yields:
            Lists of row dictionaries, ascending by ``config.source_key``

        Raises:
            SourceReadError: If any batch read fails
        """
        cursor = start_after
        offset = 0
        batch_number = 0

        while True:
            batch_number += 1
            rows = await self.fetch_batch(
                config,
                batch_number=batch_number,
                after=cursor,
                offset=offset,
            )
            if not rows:
                return

            yield rows

            if len(rows) < config.batch_size:
                return

            cursor = rows[-1][config.source_key]
            offset += len(rows)

    async def count(self, config: MigrationConfig) -> int:
        """
        Count the rows the source query would return.

        Raises:
            SourceReadError: If the query fails
        """
        query = text(f"SELECT COUNT(*) FROM ({strip_statement(config.source_query)}) AS src")
        try:
            async with execute_with_connection(self._source, transactional=False) as conn:
                result = await conn.execute(query, dict(config.source_params))
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise SourceReadError(0, str(e), migration_name=config.name) from e

    @staticmethod
    def _build_query(
        config: MigrationConfig,
        *,
        after: Any,
        offset: int,
    ) -> tuple[Any, dict[str, Any]]:
        key = f"src.{quote_identifier(config.source_key)}"
        params: dict[str, Any] = dict(config.source_params)
        params[_LIMIT_PARAM] = config.batch_size

        sql = f"SELECT * FROM ({strip_statement(config.source_query)}) AS src"
        if config.pagination is PaginationMode.KEYSET:
            if after is not None:
                sql += f" WHERE {key} > :{_AFTER_PARAM}"
                params[_AFTER_PARAM] = after
            sql += f" ORDER BY {key} LIMIT :{_LIMIT_PARAM}"
        else:
            sql += f" ORDER BY {key} LIMIT :{_LIMIT_PARAM} OFFSET :{_OFFSET_PARAM}"
            params[_OFFSET_PARAM] = offset

        return text(sql), params


__all__ = ["SourceReader"]
