"""
Data models for the legacy migration engine.

Models in this module:

Enums:
    - PaginationMode: How the source query is paged
    - RecordOutcome: Classification of one source row

Configuration:
    - LookupSpec: Which target table/columns form a legacy-id lookup table
    - MigrationConfig: Everything the engine needs for one migration run

Records:
    - TransformedRecord: A source row mapped into the target table's shape
    - Skip: A transform's decision not to migrate a row

Results:
    - SkippedRow: A row excluded because a required reference was unresolved
    - RowError: A row that failed to transform or to be written
    - BatchFailure: A batch the target store rejected
    - BatchProgress: Running totals after each batch
    - MigrationReport: Final outcome of a migration run
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from legacymigrate._sql import is_identifier

if TYPE_CHECKING:
    from legacymigrate.exceptions import UnresolvedReferenceError
    from legacymigrate.lookups import LookupTables

SourceRow = Mapping[str, Any]
"""One read-only record fetched from the source store, keyed by column name."""


class PaginationMode(Enum):
    """
    Strategy used to page through the source query.

    Attributes:
        KEYSET: ``WHERE key > :last ORDER BY key LIMIT n``. Stable under
            concurrent inserts and supports resuming from a cursor.
        OFFSET: ``ORDER BY key LIMIT n OFFSET m``. Matches the simplest
            legacy scripts; cannot resume from a cursor.
    """

    KEYSET = "keyset"
    OFFSET = "offset"


class RecordOutcome(Enum):
    """
    Classification of a source row before (and after) it is written.

    Attributes:
        INSERTABLE: Transformed successfully and queued for the batch insert.
        SKIPPED: A required lookup failed; excluded from the write set.
        ERRORED: The transform raised, or the batch write failed.
    """

    INSERTABLE = "insertable"
    SKIPPED = "skipped"
    ERRORED = "errored"


@dataclass(frozen=True)
class LookupSpec:
    """
    Definition of one legacy-id lookup table.

    The engine runs ``SELECT legacy_column, key_column FROM table WHERE
    legacy_column IS NOT NULL`` (plus any ``where`` equality filters) against
    the target store and loads the result into memory.

    Attributes:
        name: Name the transform uses to consult the lookup (e.g., 'profiles').
        table: Target table to read.
        legacy_column: Column holding the legacy integer id.
        key_column: Column holding the new surrogate key (default 'id').
        where: Optional column -> value equality filters, e.g.
            ``{"profile_type": "doctor"}``.

    Example:
        >>> LookupSpec("doctors", "profiles", "legacy_user_id", where={"profile_type": "doctor"})
    """

    name: str
    table: str
    legacy_column: str
    key_column: str = "id"
    where: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        """Validate identifiers."""
        if not self.name:
            raise ValueError("LookupSpec.name must not be empty")
        for label, value in (
            ("table", self.table),
            ("legacy_column", self.legacy_column),
            ("key_column", self.key_column),
        ):
            if not is_identifier(value):
                raise ValueError(f"LookupSpec.{label} is not a valid identifier: {value!r}")
        for column in self.where or {}:
            if not is_identifier(column):
                raise ValueError(f"LookupSpec.where column is not a valid identifier: {column!r}")


@dataclass
class TransformedRecord:
    """
    A source row mapped into the shape of the target table.

    Attributes:
        values: Target column -> value. Foreign keys are already resolved.
        metadata: Optional payload preserving unmapped legacy fields. Stored
            as JSON in ``metadata_column``.
        metadata_column: Target column receiving ``metadata`` (default 'metadata').
    """

    values: dict[str, Any]
    metadata: dict[str, Any] | None = None
    metadata_column: str = "metadata"

    def as_row(self) -> dict[str, Any]:
        """
        Flatten into the column -> value mapping handed to the writer.

        Returns:
            ``values`` plus the metadata column when a payload is present.
        """
        row = dict(self.values)
        if self.metadata is not None:
            row[self.metadata_column] = self.metadata
        return row


@dataclass(frozen=True)
class Skip:
    """
    A transform's decision not to migrate a source row.

    Attributes:
        reason: Human-readable reason.
        lookup_name: The lookup that failed, when the skip is an unresolved reference.
        legacy_id: The legacy id that could not be resolved.
    """

    reason: str
    lookup_name: str | None = None
    legacy_id: Any = None

    @classmethod
    def from_error(cls, error: UnresolvedReferenceError) -> Skip:
        """Build a Skip from an UnresolvedReferenceError raised inside a transform."""
        return cls(reason=error.message, lookup_name=error.lookup_name, legacy_id=error.legacy_id)


TransformFunc = Callable[["SourceRow", "LookupTables"], "TransformedRecord | Skip"]
"""Signature of a row transform: ``(row, lookups) -> TransformedRecord | Skip``."""


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for one migration run.

    This class is immutable (frozen) to prevent accidental modification
    during a run. Use :meth:`with_overrides` to derive a variant.

    Attributes:
        name: Identifier of the migration (logs, checkpoints, metrics).
        source_query: SELECT against the source store. It is wrapped as a
            subquery and paged by ``source_key``; do not add LIMIT/OFFSET.
        target_table: Table receiving the migrated rows.
        conflict_key: Unique target column used in ``ON CONFLICT``; normally
            the column carrying the legacy id.
        transform: Row transform, see :data:`TransformFunc`.
        lookups: Lookup tables built before processing begins.
        source_key: Stable, unique ordering column of the source query.
        source_params: Bound parameters referenced by ``source_query``.
        batch_size: Rows fetched and written per round trip (default 500).
        pagination: Paging strategy (default keyset).
        prefilter_migrated: Skip transform/write for rows whose key is
            already present in the target (default True).
        migrated_where: Column -> value filters identifying this migration's
            rows when the target table is shared, e.g.
            ``{"legacy_table": "dispatch_comment"}``. The filters apply to
            the already-migrated scan and coverage counts, are filled into
            records that leave them out, and their columns join
            ``conflict_key`` in ``ON CONFLICT``.
        row_fallback: After a failed batch insert, retry each record on its
            own so only offending rows count as errored (default False).
        resume: Start after the cursor stored in the checkpoint store
            (keyset pagination only, default False).
        dependency_level: Ordering hint for MigrationPlan (default 1).
        description: Free text shown by the command-line runner.

    Example:
        >>> config = MigrationConfig(
        ...     name="comments",
        ...     source_query="SELECT id, text, plan_id FROM dispatch_comment",
        ...     target_table="comments",
        ...     conflict_key="legacy_id",
        ...     transform=transform_comment,
        ...     lookups=(LookupSpec("plans", "treatment_plans", "legacy_plan_id"),),
        ...     batch_size=100,
        ... )
    """

    name: str
    source_query: str
    target_table: str
    conflict_key: str
    transform: TransformFunc
    lookups: tuple[LookupSpec, ...] = ()
    source_key: str = "id"
    source_params: Mapping[str, Any] = field(default_factory=dict)
    batch_size: int = 500
    pagination: PaginationMode = PaginationMode.KEYSET
    prefilter_migrated: bool = True
    migrated_where: Mapping[str, Any] | None = None
    row_fallback: bool = False
    resume: bool = False
    dependency_level: int = 1
    description: str = ""

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.name:
            raise ValueError("name must not be empty")

        if not self.source_query.strip():
            raise ValueError("source_query must not be empty")

        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")

        for label, value in (
            ("target_table", self.target_table),
            ("conflict_key", self.conflict_key),
            ("source_key", self.source_key),
        ):
            if not is_identifier(value):
                raise ValueError(f"{label} is not a valid identifier: {value!r}")

        for column in self.migrated_where or {}:
            if not is_identifier(column):
                raise ValueError(f"migrated_where column is not a valid identifier: {column!r}")
            if column == self.conflict_key:
                raise ValueError("migrated_where must not filter on conflict_key")

        if not callable(self.transform):
            raise ValueError("transform must be callable")

        object.__setattr__(self, "lookups", tuple(self.lookups))
        names = [spec.name for spec in self.lookups]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate lookup names: {', '.join(duplicates)}")

        if self.resume and self.pagination is not PaginationMode.KEYSET:
            raise ValueError("resume requires keyset pagination")

    @property
    def conflict_columns(self) -> tuple[str, ...]:
        """Columns of the ``ON CONFLICT`` target: the migrated_where columns, then conflict_key."""
        return (*(self.migrated_where or {}), self.conflict_key)

    def with_overrides(self, **changes: Any) -> MigrationConfig:
        """
        Return a copy with the given fields replaced (validated again).

        Example:
            >>> small = config.with_overrides(batch_size=1)
        """
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for logging.

        The transform is represented by its qualified name.
        """
        return {
            "name": self.name,
            "target_table": self.target_table,
            "conflict_key": self.conflict_key,
            "migrated_where": dict(self.migrated_where or {}),
            "source_key": self.source_key,
            "transform": getattr(self.transform, "__qualname__", repr(self.transform)),
            "lookups": [spec.name for spec in self.lookups],
            "batch_size": self.batch_size,
            "pagination": self.pagination.value,
            "prefilter_migrated": self.prefilter_migrated,
            "row_fallback": self.row_fallback,
            "resume": self.resume,
            "dependency_level": self.dependency_level,
        }


@dataclass(frozen=True)
class SkippedRow:
    """
    A source row excluded from the write set.

    Attributes:
        source_key: Value of the source ordering key for the row.
        reason: Why the row was skipped.
        lookup_name: Lookup that failed, if any.
        legacy_id: Legacy id that could not be resolved, if any.
    """

    source_key: Any
    reason: str
    lookup_name: str | None = None
    legacy_id: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "source_key": self.source_key,
            "reason": self.reason,
            "lookup_name": self.lookup_name,
            "legacy_id": self.legacy_id,
        }


@dataclass(frozen=True)
class RowError:
    """
    A single row that failed.

    Attributes:
        source_key: Value of the source ordering key for the row.
        stage: 'transform' or 'write'.
        error: Error message.
    """

    source_key: Any
    stage: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"source_key": self.source_key, "stage": self.stage, "error": self.error}


@dataclass(frozen=True)
class BatchFailure:
    """
    A batch whose insert the target store rejected.

    Attributes:
        batch_number: One-based batch ordinal within the run.
        record_count: Records the batch tried to insert.
        first_key: Source key of the first record in the batch.
        last_key: Source key of the last record in the batch.
        error: Error message from the store.
        first_record_shape: Column -> type name of the first record.
    """

    batch_number: int
    record_count: int
    first_key: Any
    last_key: Any
    error: str
    first_record_shape: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "batch_number": self.batch_number,
            "record_count": self.record_count,
            "first_key": self.first_key,
            "last_key": self.last_key,
            "error": self.error,
            "first_record_shape": dict(self.first_record_shape),
        }


@dataclass(frozen=True)
class BatchProgress:
    """
    Running totals reported after every batch.

    Attributes:
        migration_name: Name of the migration.
        batch_number: One-based ordinal of the batch just finished.
        rows_in_batch: Source rows read in this batch.
        processed: Rows considered so far.
        inserted: Rows inserted so far.
        already_migrated: Rows found already present so far.
        skipped: Rows skipped so far.
        errored: Rows errored so far.
        last_source_key: Source key of the last row read.
        rows_per_second: Processing rate since the run started.
    """

    migration_name: str
    batch_number: int
    rows_in_batch: int
    processed: int
    inserted: int
    already_migrated: int
    skipped: int
    errored: int
    last_source_key: Any
    rows_per_second: float


@dataclass(frozen=True)
class MigrationReport:
    """
    Final, immutable outcome of one migration run.

    Every processed row lands in exactly one bucket:
    ``inserted + already_migrated + skipped + errored == processed``.

    Attributes:
        migration_name: Name of the migration.
        processed: Source rows considered, including skipped and errored ones.
        inserted: Rows written to the target by this run.
        already_migrated: Rows whose conflict key already existed in the target.
        skipped: Rows excluded because a required reference was unresolved.
        errored: Rows that failed to transform, or belonged to a failed batch.
        duration_seconds: Wall-clock duration of the run.
        batches: Number of source batches read.
        last_source_key: Source key of the last row read (None if no rows).
        skipped_rows: Per-row skip details.
        row_errors: Per-row error details (transform failures, row fallback).
        batch_failures: Per-batch write failure details.
    """

    migration_name: str
    processed: int = 0
    inserted: int = 0
    already_migrated: int = 0
    skipped: int = 0
    errored: int = 0
    duration_seconds: float = 0.0
    batches: int = 0
    last_source_key: Any = None
    skipped_rows: tuple[SkippedRow, ...] = ()
    row_errors: tuple[RowError, ...] = ()
    batch_failures: tuple[BatchFailure, ...] = ()

    @property
    def success_rate_percent(self) -> float:
        """
        Inserted rows as a percentage of processed rows, rounded to two decimals.

        Returns:
            0.0 when nothing was processed.
        """
        if self.processed == 0:
            return 0.0
        return round(self.inserted / self.processed * 100, 2)

    @property
    def migrated_percent(self) -> float:
        """
        Rows present in the target after the run (inserted now or earlier)
        as a percentage of processed rows, rounded to two decimals.
        """
        if self.processed == 0:
            return 0.0
        return round((self.inserted + self.already_migrated) / self.processed * 100, 2)

    @property
    def is_conserved(self) -> bool:
        """Check that every processed row is accounted for exactly once."""
        return (
            self.inserted + self.already_migrated + self.skipped + self.errored
            == self.processed
        )

    def is_healthy(self, threshold: float = 90.0) -> bool:
        """
        Judge the run the way operators do after the fact.

        Args:
            threshold: Minimum ``migrated_percent`` considered healthy.

        Returns:
            True when nothing was processed or enough rows reached the target.
        """
        if self.processed == 0:
            return True
        return self.migrated_percent >= threshold

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for machine-readable output.

        Returns:
            Dictionary representation suitable for JSON serialization.
        """
        return {
            "migration_name": self.migration_name,
            "processed": self.processed,
            "inserted": self.inserted,
            "already_migrated": self.already_migrated,
            "skipped": self.skipped,
            "errored": self.errored,
            "success_rate_percent": self.success_rate_percent,
            "migrated_percent": self.migrated_percent,
            "duration_seconds": self.duration_seconds,
            "batches": self.batches,
            "last_source_key": self.last_source_key,
            "skipped_rows": [row.to_dict() for row in self.skipped_rows],
            "row_errors": [error.to_dict() for error in self.row_errors],
            "batch_failures": [failure.to_dict() for failure in self.batch_failures],
        }


__all__ = [
    "PaginationMode",
    "RecordOutcome",
    "LookupSpec",
    "SourceRow",
    "TransformedRecord",
    "Skip",
    "TransformFunc",
    "MigrationConfig",
    "SkippedRow",
    "RowError",
    "BatchFailure",
    "BatchProgress",
    "MigrationReport",
]
