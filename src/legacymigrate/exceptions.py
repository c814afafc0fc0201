"""
Exceptions raised by the legacy migration engine.

Exception Hierarchy:
    MigrationError (base)
    +-- ConfigurationError
    +-- StoreConnectionError
    +-- LookupBuildError
    +-- SourceReadError
    +-- CheckpointError
    +-- UnresolvedReferenceError
    +-- BatchWriteError

Fatal errors (``fatal = True``) abort a run and propagate to the caller.
``UnresolvedReferenceError`` and ``BatchWriteError`` are non-fatal: the
engine catches them, records the affected rows in the MigrationReport and
keeps going.
"""

from __future__ import annotations

from typing import Any


class MigrationError(Exception):
    """
    Base exception for all migration errors.

    Attributes:
        message: Human-readable error description.
        migration_name: Name of the migration that raised the error, if known.
        suggested_action: What an operator should do about it.
    """

    fatal: bool = True

    def __init__(
        self,
        message: str,
        *,
        migration_name: str | None = None,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.migration_name = migration_name
        self.suggested_action = suggested_action
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for logging and reporting.

        Returns:
            Dictionary with the error type, message and context.
        """
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "migration_name": self.migration_name,
            "fatal": self.fatal,
            "suggested_action": self.suggested_action,
        }


class ConfigurationError(MigrationError):
    """
    Raised when environment configuration is missing or invalid.

    Attributes:
        missing: Names of required variables that were not set.
    """

    def __init__(self, message: str, *, missing: list[str] | None = None) -> None:
        self.missing = list(missing or [])
        super().__init__(
            message,
            suggested_action="Set the listed variables in the environment or a .env file",
        )


class StoreConnectionError(MigrationError):
    """
    Raised when the source or target store is unreachable at startup.

    Attributes:
        store: Which store failed ('source' or 'target').
        original_error: The underlying error message.
    """

    def __init__(self, store: str, error: str) -> None:
        self.store = store
        self.original_error = error
        super().__init__(
            f"Cannot connect to {store} database: {error}",
            suggested_action=f"Check {store.upper()}_DB_* settings and network access",
        )


class LookupBuildError(MigrationError):
    """
    Raised when a lookup table (or the already-migrated key scan) cannot be built.

    All transforms depend on complete lookup tables, so the run is aborted
    before any write happens.

    Attributes:
        lookup_name: Name of the lookup that failed.
        table: Target table that was queried.
        original_error: The underlying error message.
    """

    def __init__(
        self,
        lookup_name: str,
        table: str,
        error: str,
        *,
        migration_name: str | None = None,
    ) -> None:
        self.lookup_name = lookup_name
        self.table = table
        self.original_error = error
        super().__init__(
            f"Failed to build lookup '{lookup_name}' from table '{table}': {error}",
            migration_name=migration_name,
            suggested_action="Verify the table and column names exist in the target schema",
        )


class SourceReadError(MigrationError):
    """
    Raised when reading a batch from the source store fails mid-run.

    Attributes:
        batch_number: One-based number of the batch being read.
        original_error: The underlying error message.
    """

    def __init__(
        self,
        batch_number: int,
        error: str,
        *,
        migration_name: str | None = None,
    ) -> None:
        self.batch_number = batch_number
        self.original_error = error
        super().__init__(
            f"Failed to read source batch {batch_number}: {error}",
            migration_name=migration_name,
            suggested_action="Re-run the migration; rows already written are skipped",
        )


class CheckpointError(MigrationError):
    """
    Raised when a resume cursor cannot be loaded or saved.

    Attributes:
        operation: 'load' or 'save'.
        original_error: The underlying error message.
    """

    def __init__(
        self,
        operation: str,
        error: str,
        *,
        migration_name: str | None = None,
    ) -> None:
        self.operation = operation
        self.original_error = error
        super().__init__(
            f"Checkpoint {operation} failed: {error}",
            migration_name=migration_name,
            suggested_action="Check the migration_checkpoints table or run without resume",
        )


class UnresolvedReferenceError(MigrationError):
    """
    Raised when a required legacy id has no mapping in a lookup table.

    Transforms raise it through ``LookupTables.require``; the engine turns it
    into a SKIPPED outcome carrying the lookup name and the legacy id.

    Attributes:
        lookup_name: Name of the lookup that was consulted.
        legacy_id: The legacy id that could not be resolved (None if the
            source row had no reference at all).
    """

    fatal = False

    def __init__(self, lookup_name: str, legacy_id: Any) -> None:
        self.lookup_name = lookup_name
        self.legacy_id = legacy_id
        if legacy_id is None:
            message = f"Missing required reference for lookup '{lookup_name}'"
        else:
            message = f"No '{lookup_name}' mapping for legacy id {legacy_id}"
        super().__init__(message)


class BatchWriteError(MigrationError):
    """
    Raised when the target store rejects a batch insert.

    Attributes:
        table: Target table of the insert.
        batch_size: Number of records in the rejected batch.
        original_error: The underlying error message.
        first_record_shape: Column -> Python type name of the first record,
            for diagnosing the failure after the fact.
    """

    fatal = False

    def __init__(
        self,
        table: str,
        batch_size: int,
        error: str,
        *,
        first_record_shape: dict[str, str] | None = None,
        migration_name: str | None = None,
    ) -> None:
        self.table = table
        self.batch_size = batch_size
        self.original_error = error
        self.first_record_shape = dict(first_record_shape or {})
        super().__init__(
            f"Insert of {batch_size} rows into '{table}' failed: {error}",
            migration_name=migration_name,
            suggested_action="Fix the offending data or mapping and re-run the migration",
        )


__all__ = [
    "MigrationError",
    "ConfigurationError",
    "StoreConnectionError",
    "LookupBuildError",
    "SourceReadError",
    "CheckpointError",
    "UnresolvedReferenceError",
    "BatchWriteError",
]
