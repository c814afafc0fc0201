"""
The legacy migration engine.

One generic engine runs any MigrationConfig:

1. Build every lookup table (fatal on failure, before any write).
2. Load the conflict keys already present in the target.
3. Stream source rows in batches ordered by the source key.
4. Classify each row: already migrated, skipped (unresolved required
   reference), errored (transform raised) or insertable.
5. Write the insertable records of the batch in one
   ``INSERT ... ON CONFLICT DO NOTHING``. A rejected batch marks its records
   errored and the run moves on.
6. Return a MigrationReport.

Batches are processed strictly one at a time.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate._connection import dialect_name
from legacymigrate.checkpoints import CheckpointStore
from legacymigrate.exceptions import (
    BatchWriteError,
    ConfigurationError,
    MigrationError,
    UnresolvedReferenceError,
)
from legacymigrate.lookups import LookupTableBuilder, LookupTables, normalize_legacy_id
from legacymigrate.models import (
    BatchProgress,
    MigrationConfig,
    MigrationReport,
    PaginationMode,
    RecordOutcome,
    Skip,
    SourceRow,
    TransformedRecord,
)
from legacymigrate.observability import (
    ATTR_BATCH_SIZE,
    ATTR_CONFLICT_KEY,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_MIGRATION_NAME,
    ATTR_ROWS_ERRORED,
    ATTR_ROWS_INSERTED,
    ATTR_ROWS_PROCESSED,
    ATTR_ROWS_SKIPPED,
    ATTR_SOURCE_KEY,
    ATTR_TARGET_TABLE,
    MigrationMetrics,
    Tracer,
    create_tracer,
)
from legacymigrate.reader import SourceReader
from legacymigrate.run import MigrationRun, log_report
from legacymigrate.writer import BatchWriter

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BatchProgress], None]


class MigrationEngine:
    """
    Runs migrations from a source store into a target store.

    The engine holds no per-run state; the same instance can run several
    configs one after another.

    Example:
        >>> engine = MigrationEngine(source_engine, target_engine)
        >>> report = await engine.run(offices_config)
        >>> print(f"{report.inserted}/{report.processed} ({report.success_rate_percent}%)")
    """

    def __init__(
        self,
        source: AsyncEngine | AsyncConnection,
        target: AsyncEngine | AsyncConnection,
        *,
        checkpoint_store: CheckpointStore | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        enable_metrics: bool = True,
    ) -> None:
        """
        Initialize the engine.

        Args:
            source: Source store engine or connection (read only)
            target: Target store engine or connection
            checkpoint_store: Optional store for resume cursors. When set,
                the cursor is saved after every cleanly finished batch.
            tracer: Optional custom Tracer instance, shared with the reader,
                writer and lookup builder
            enable_tracing: Whether to enable OpenTelemetry tracing
            enable_metrics: Whether to record OpenTelemetry metrics
        """
        self._source = source
        self._target = target
        self._checkpoint_store = checkpoint_store
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._enable_metrics = enable_metrics

        self._lookup_builder = LookupTableBuilder(target, tracer=self._tracer)
        self._reader = SourceReader(source, tracer=self._tracer)
        self._writer = BatchWriter(target, tracer=self._tracer)

    @property
    def target(self) -> AsyncEngine | AsyncConnection:
        """Target store this engine writes to."""
        return self._target

    @property
    def source(self) -> AsyncEngine | AsyncConnection:
        """Source store this engine reads from."""
        return self._source

    async def run(
        self,
        config: MigrationConfig,
        progress_callback: ProgressCallback | None = None,
    ) -> MigrationReport:
        """
        Run one migration to completion.

        Args:
            config: Migration configuration
            progress_callback: Called with running totals after every batch

        Returns:
            Report with counts, skipped row details and batch failures

        Raises:
            ConfigurationError: If ``resume`` is set without a checkpoint store
            LookupBuildError: If a lookup table or the migrated-key scan fails
            SourceReadError: If a source batch cannot be read
            CheckpointError: If the resume cursor cannot be loaded or saved
        """
        with self._tracer.span(
            "legacymigrate.engine.run",
            {
                ATTR_MIGRATION_NAME: config.name,
                ATTR_TARGET_TABLE: config.target_table,
                ATTR_CONFLICT_KEY: config.conflict_key,
                ATTR_SOURCE_KEY: config.source_key,
                ATTR_BATCH_SIZE: config.batch_size,
                ATTR_DB_SYSTEM: dialect_name(self._target),
            },
        ) as span:
            run = MigrationRun(config.name)
            metrics = MigrationMetrics(config.name, enable_metrics=self._enable_metrics)

            logger.info(
                "Starting migration %s into %s (batch size %d, %s pagination)",
                config.name,
                config.target_table,
                config.batch_size,
                config.pagination.value,
            )

            try:
                lookups = await self._lookup_builder.build_all(
                    config.lookups,
                    migration_name=config.name,
                )

                migrated: set[Any] = set()
                if config.prefilter_migrated:
                    migrated = await self._writer.existing_keys(
                        config.target_table,
                        config.conflict_key,
                        where=config.migrated_where,
                        migration_name=config.name,
                    )

                start_after, rows_before = await self._load_cursor(config)
                cursor_blocked = False
                batch_number = 0

                async for rows in self._reader.iter_batches(config, start_after=start_after):
                    batch_number += 1
                    batch_started = time.monotonic()
                    before = _counts(run)

                    await self._process_batch(config, lookups, migrated, rows, batch_number, run)

                    last_key = rows[-1][config.source_key]
                    progress = run.finish_batch(batch_number, len(rows), last_key)
                    after = _counts(run)

                    metrics.record_batch(
                        processed=after[0] - before[0],
                        inserted=after[1] - before[1],
                        already_migrated=after[2] - before[2],
                        skipped=after[3] - before[3],
                        errored=after[4] - before[4],
                    )
                    metrics.record_batch_duration(time.monotonic() - batch_started)

                    if after[4] > before[4] and not cursor_blocked:
                        cursor_blocked = True
                        logger.info(
                            "%s: batch %d had errors, checkpoint stays before key %s",
                            config.name,
                            batch_number,
                            rows[0][config.source_key],
                        )
                    if not cursor_blocked:
                        await self._save_cursor(config, last_key, rows_before + run.processed)

                    logger.info(
                        "%s: batch %d done, %d processed, %d inserted, %d skipped, %d errored",
                        config.name,
                        batch_number,
                        progress.processed,
                        progress.inserted,
                        progress.skipped,
                        progress.errored,
                    )
                    if progress_callback:
                        progress_callback(progress)

            except MigrationError as e:
                logger.error("Migration %s aborted: %s", config.name, e)
                if span:
                    span.set_attribute(ATTR_ERROR_TYPE, type(e).__name__)
                raise

            report = run.to_report()
            if span:
                span.set_attribute(ATTR_ROWS_PROCESSED, report.processed)
                span.set_attribute(ATTR_ROWS_INSERTED, report.inserted)
                span.set_attribute(ATTR_ROWS_SKIPPED, report.skipped)
                span.set_attribute(ATTR_ROWS_ERRORED, report.errored)

            log_report(report)
            return report

    async def _process_batch(
        self,
        config: MigrationConfig,
        lookups: LookupTables,
        migrated: set[Any],
        rows: Sequence[dict[str, Any]],
        batch_number: int,
        run: MigrationRun,
    ) -> None:
        insertable: list[tuple[Any, dict[str, Any]]] = []

        for row in rows:
            key = row[config.source_key]
            run.add_processed(1)

            if normalize_legacy_id(key) in migrated:
                run.add_already_migrated()
                continue

            outcome, payload = classify_row(config, lookups, row)
            if outcome is RecordOutcome.SKIPPED:
                run.add_skip(key, payload)
            elif outcome is RecordOutcome.ERRORED:
                run.add_row_error(key, "transform", payload)
            else:
                insertable.append((key, payload))

        if not insertable:
            return

        keys = [key for key, _ in insertable]
        records = [values for _, values in insertable]

        try:
            inserted = await self._writer.write_batch(
                config.target_table,
                config.conflict_columns,
                records,
                batch_number=batch_number,
                migration_name=config.name,
            )
        except BatchWriteError as e:
            run.add_batch_failure(batch_number, keys, e, count_rows=not config.row_fallback)
            if config.row_fallback:
                logger.info(
                    "%s: retrying %d records of batch %d one by one",
                    config.name,
                    len(records),
                    batch_number,
                )
                await self._write_rows(config, insertable, batch_number, run)
            return

        run.add_inserted(inserted)
        run.add_already_migrated(len(records) - inserted)

    async def _write_rows(
        self,
        config: MigrationConfig,
        insertable: Sequence[tuple[Any, dict[str, Any]]],
        batch_number: int,
        run: MigrationRun,
    ) -> None:
        for key, values in insertable:
            try:
                inserted = await self._writer.write_batch(
                    config.target_table,
                    config.conflict_columns,
                    [values],
                    batch_number=batch_number,
                    migration_name=config.name,
                )
            except BatchWriteError as e:
                run.add_row_error(key, "write", e.original_error)
                continue

            run.add_inserted(inserted)
            run.add_already_migrated(1 - inserted)

    async def _load_cursor(self, config: MigrationConfig) -> tuple[Any, int]:
        if not config.resume:
            return None, 0

        if self._checkpoint_store is None:
            raise ConfigurationError(
                f"Migration {config.name} has resume enabled but the engine has no checkpoint store"
            )

        checkpoint = await self._checkpoint_store.get_checkpoint(config.name)
        if checkpoint is None:
            logger.info("%s: no checkpoint found, starting from the beginning", config.name)
            return None, 0

        logger.info(
            "%s: resuming after source key %s (%d rows processed before)",
            config.name,
            checkpoint.last_source_key,
            checkpoint.rows_processed,
        )
        return checkpoint.last_source_key, checkpoint.rows_processed

    async def _save_cursor(self, config: MigrationConfig, last_key: Any, rows_processed: int) -> None:
        if self._checkpoint_store is None or config.pagination is not PaginationMode.KEYSET:
            return
        await self._checkpoint_store.save_checkpoint(config.name, last_key, rows_processed)


def classify_row(
    config: MigrationConfig,
    lookups: LookupTables,
    row: SourceRow,
) -> tuple[RecordOutcome, Any]:
    """
    Apply the config's transform to one source row and classify the result.

    Returns:
        ``(INSERTABLE, values)`` with the conflict key (from the source key)
        and the migrated_where values filled in when the transform left them
        out. ``(SKIPPED, Skip)`` for an unresolved required reference or an
        explicit Skip. ``(ERRORED, message)`` when the transform raised or
        returned something unexpected.
    """
    try:
        result = config.transform(row, lookups)
    except UnresolvedReferenceError as e:
        return RecordOutcome.SKIPPED, Skip.from_error(e)
    except Exception as e:
        return RecordOutcome.ERRORED, f"{type(e).__name__}: {e}"

    if isinstance(result, Skip):
        return RecordOutcome.SKIPPED, result

    if not isinstance(result, TransformedRecord):
        return (
            RecordOutcome.ERRORED,
            f"transform returned {type(result).__name__}, expected TransformedRecord or Skip",
        )

    values = result.as_row()
    values.setdefault(config.conflict_key, row[config.source_key])
    for column, value in (config.migrated_where or {}).items():
        values.setdefault(column, value)
    return RecordOutcome.INSERTABLE, values


def _counts(run: MigrationRun) -> tuple[int, int, int, int, int]:
    return (run.processed, run.inserted, run.already_migrated, run.skipped, run.errored)


__all__ = ["MigrationEngine", "ProgressCallback", "classify_row"]
