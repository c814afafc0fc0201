"""
Per-run accumulator for migration outcomes.

MigrationRun is process-local and owned by a single engine run. It counts
every source row into exactly one bucket (inserted, already migrated,
skipped, errored) and collects the details that end up in the
MigrationReport.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from legacymigrate.exceptions import BatchWriteError
from legacymigrate.models import (
    BatchFailure,
    BatchProgress,
    MigrationReport,
    RowError,
    Skip,
    SkippedRow,
)

logger = logging.getLogger(__name__)


class MigrationRun:
    """
    Mutable counters and details for one run of one migration.

    Example:
        >>> run = MigrationRun("offices")
        >>> run.add_processed(2)
        >>> run.add_inserted(1)
        >>> run.add_skip(7, Skip("no office", "offices", 99))
        >>> run.to_report().is_conserved
        True
    """

    def __init__(
        self,
        migration_name: str,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.migration_name = migration_name
        self._clock = clock
        self._started = clock()

        self.processed = 0
        self.inserted = 0
        self.already_migrated = 0
        self.skipped = 0
        self.errored = 0
        self.batches = 0
        self.last_source_key: Any = None

        self._skipped_rows: list[SkippedRow] = []
        self._row_errors: list[RowError] = []
        self._batch_failures: list[BatchFailure] = []

    @property
    def elapsed_seconds(self) -> float:
        """Seconds since the run started."""
        return self._clock() - self._started

    @property
    def batch_failures(self) -> list[BatchFailure]:
        """Batch failures recorded so far."""
        return list(self._batch_failures)

    def add_processed(self, count: int) -> None:
        self.processed += count

    def add_inserted(self, count: int) -> None:
        self.inserted += count

    def add_already_migrated(self, count: int = 1) -> None:
        self.already_migrated += count

    def add_skip(self, source_key: Any, skip: Skip) -> None:
        """Record a row excluded by its transform."""
        self.skipped += 1
        self._skipped_rows.append(
            SkippedRow(
                source_key=source_key,
                reason=skip.reason,
                lookup_name=skip.lookup_name,
                legacy_id=skip.legacy_id,
            )
        )
        logger.warning(
            "%s: skipping row %s: %s",
            self.migration_name,
            source_key,
            skip.reason,
        )

    def add_row_error(self, source_key: Any, stage: str, error: BaseException | str) -> None:
        """Record a single row that failed in ``stage`` ('transform' or 'write')."""
        self.errored += 1
        self._row_errors.append(RowError(source_key=source_key, stage=stage, error=str(error)))
        logger.warning(
            "%s: row %s failed during %s: %s",
            self.migration_name,
            source_key,
            stage,
            error,
        )

    def add_batch_failure(
        self,
        batch_number: int,
        source_keys: Sequence[Any],
        error: BatchWriteError,
        *,
        count_rows: bool = True,
    ) -> None:
        """
        Record a rejected batch insert.

        Args:
            batch_number: One-based batch ordinal
            source_keys: Source keys of the records in the rejected insert
            error: The write error
            count_rows: Count every record as errored. False when the rows
                are retried one by one and counted individually.
        """
        if count_rows:
            self.errored += len(source_keys)
        self._batch_failures.append(
            BatchFailure(
                batch_number=batch_number,
                record_count=len(source_keys),
                first_key=source_keys[0] if source_keys else None,
                last_key=source_keys[-1] if source_keys else None,
                error=error.original_error,
                first_record_shape=dict(error.first_record_shape),
            )
        )

    def finish_batch(self, batch_number: int, rows_in_batch: int, last_source_key: Any) -> BatchProgress:
        """
        Close a batch and snapshot running totals.

        Returns:
            Progress after the batch
        """
        self.batches = batch_number
        self.last_source_key = last_source_key
        elapsed = self.elapsed_seconds
        return BatchProgress(
            migration_name=self.migration_name,
            batch_number=batch_number,
            rows_in_batch=rows_in_batch,
            processed=self.processed,
            inserted=self.inserted,
            already_migrated=self.already_migrated,
            skipped=self.skipped,
            errored=self.errored,
            last_source_key=last_source_key,
            rows_per_second=self.processed / elapsed if elapsed > 0 else 0.0,
        )

    def to_report(self) -> MigrationReport:
        """Freeze the accumulated state into a MigrationReport."""
        return MigrationReport(
            migration_name=self.migration_name,
            processed=self.processed,
            inserted=self.inserted,
            already_migrated=self.already_migrated,
            skipped=self.skipped,
            errored=self.errored,
            duration_seconds=round(self.elapsed_seconds, 3),
            batches=self.batches,
            last_source_key=self.last_source_key,
            skipped_rows=tuple(self._skipped_rows),
            row_errors=tuple(self._row_errors),
            batch_failures=tuple(self._batch_failures),
        )


def log_report(
    report: MigrationReport,
    *,
    threshold: float = 90.0,
    log: logging.Logger | None = None,
) -> None:
    """
    Write the final summary of a run to the log.

    Args:
        report: Report to summarize
        threshold: Migrated percentage below which the run is flagged
        log: Logger to use (defaults to this module's logger)
    """
    log = log or logger
    log.info(
        "%s: processed=%d inserted=%d already_migrated=%d skipped=%d errored=%d "
        "success_rate=%.2f%% duration=%.1fs",
        report.migration_name,
        report.processed,
        report.inserted,
        report.already_migrated,
        report.skipped,
        report.errored,
        report.success_rate_percent,
        report.duration_seconds,
    )

    if report.batch_failures:
        for failure in report.batch_failures:
            log.warning(
                "%s: batch %d (%d records, keys %s..%s) failed: %s; first record shape %s",
                report.migration_name,
                failure.batch_number,
                failure.record_count,
                failure.first_key,
                failure.last_key,
                failure.error,
                failure.first_record_shape,
            )

    if report.is_healthy(threshold):
        log.info(
            "%s: %.2f%% of processed rows present in target",
            report.migration_name,
            report.migrated_percent,
        )
    else:
        log.warning(
            "%s: only %.2f%% of processed rows present in target (threshold %.0f%%)",
            report.migration_name,
            report.migrated_percent,
            threshold,
        )


__all__ = ["MigrationRun", "log_report"]
