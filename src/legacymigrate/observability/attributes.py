"""
Standard span and metric attributes for legacymigrate.

Attribute constants shared by every component so spans and metrics carry
consistent labels. Database attributes follow OpenTelemetry semantic
conventions.

Example:
    >>> from legacymigrate.observability.attributes import (
    ...     ATTR_MIGRATION_NAME,
    ...     ATTR_TARGET_TABLE,
    ... )
    >>>
    >>> with tracer.span(
    ...     "legacymigrate.writer.write_batch",
    ...     {ATTR_MIGRATION_NAME: "patients", ATTR_TARGET_TABLE: "patients"},
    ... ):
    ...     pass
"""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_MIGRATION_NAME = "legacymigrate.migration.name"
"""Name of the configured migration (e.g., 'patients')."""

ATTR_SOURCE_KEY = "legacymigrate.source.key"
"""Ordering key column of the source query."""

ATTR_TARGET_TABLE = "legacymigrate.target.table"
"""Target table receiving migrated rows."""

ATTR_CONFLICT_KEY = "legacymigrate.target.conflict_key"
"""Target column used in the ON CONFLICT clause."""

# =============================================================================
# Batch Attributes
# =============================================================================

ATTR_BATCH_NUMBER = "legacymigrate.batch.number"
"""One-based ordinal of the batch within a run (integer)."""

ATTR_BATCH_SIZE = "legacymigrate.batch.size"
"""Number of rows in a batch (integer)."""

ATTR_CURSOR = "legacymigrate.batch.cursor"
"""Last source key seen before the batch (keyset pagination)."""

ATTR_OFFSET = "legacymigrate.batch.offset"
"""Row offset of the batch (offset pagination)."""

# =============================================================================
# Lookup Attributes
# =============================================================================

ATTR_LOOKUP_NAME = "legacymigrate.lookup.name"
"""Name of a lookup table (e.g., 'profiles')."""

ATTR_LOOKUP_TABLE = "legacymigrate.lookup.table"
"""Target table a lookup table is built from."""

ATTR_LOOKUP_SIZE = "legacymigrate.lookup.size"
"""Number of entries loaded into a lookup table (integer)."""

# =============================================================================
# Outcome Attributes
# =============================================================================

ATTR_ROWS_PROCESSED = "legacymigrate.rows.processed"
"""Rows considered (integer)."""

ATTR_ROWS_INSERTED = "legacymigrate.rows.inserted"
"""Rows written to the target (integer)."""

ATTR_ROWS_SKIPPED = "legacymigrate.rows.skipped"
"""Rows skipped because of unresolved references (integer)."""

ATTR_ROWS_ERRORED = "legacymigrate.rows.errored"
"""Rows that failed transform or write (integer)."""

ATTR_ERROR_TYPE = "error.type"
"""Exception class name of a failure."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system (e.g., 'postgresql', 'sqlite')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation (e.g., 'SELECT', 'INSERT')."""
