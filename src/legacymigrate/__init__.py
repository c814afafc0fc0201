"""
legacymigrate - Batched, idempotent migration of a legacy relational schema.

This library provides:
- Legacy-id lookup tables built from the target store
- A generic migration engine: keyset-paged reads, per-row transforms,
  multi-row INSERT ... ON CONFLICT DO NOTHING writes
- Count-based reports with per-row skip and per-batch failure details
- Optional resume checkpoints, coverage checks and dependency-ordered plans
- Entity migrations for offices, profiles, doctors, patients and comments
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("legacymigrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from legacymigrate.checkpoints import (
    CheckpointStore,
    InMemoryCheckpointStore,
    MigrationCheckpoint,
    SQLCheckpointStore,
)
from legacymigrate.connections import Stores, open_stores, open_stores_from_settings
from legacymigrate.coverage import CoverageChecker, CoverageResult
from legacymigrate.engine import MigrationEngine
from legacymigrate.exceptions import (
    BatchWriteError,
    CheckpointError,
    ConfigurationError,
    LookupBuildError,
    MigrationError,
    SourceReadError,
    StoreConnectionError,
    UnresolvedReferenceError,
)
from legacymigrate.lookups import LegacyLookupTable, LookupTableBuilder, LookupTables
from legacymigrate.models import (
    BatchFailure,
    BatchProgress,
    LookupSpec,
    MigrationConfig,
    MigrationReport,
    PaginationMode,
    RecordOutcome,
    RowError,
    Skip,
    SkippedRow,
    SourceRow,
    TransformedRecord,
)
from legacymigrate.plan import MigrationPlan, PlanResult
from legacymigrate.reader import SourceReader
from legacymigrate.run import MigrationRun, log_report
from legacymigrate.settings import DatabaseSettings, MigrationSettings
from legacymigrate.writer import BatchWriter

__all__ = [
    "__version__",
    # Engine
    "MigrationEngine",
    "MigrationRun",
    "log_report",
    # Models
    "LookupSpec",
    "MigrationConfig",
    "PaginationMode",
    "RecordOutcome",
    "SourceRow",
    "TransformedRecord",
    "Skip",
    "SkippedRow",
    "RowError",
    "BatchFailure",
    "BatchProgress",
    "MigrationReport",
    # Lookups
    "LegacyLookupTable",
    "LookupTables",
    "LookupTableBuilder",
    # Reading and writing
    "SourceReader",
    "BatchWriter",
    # Checkpoints
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SQLCheckpointStore",
    "MigrationCheckpoint",
    # Coverage and plans
    "CoverageChecker",
    "CoverageResult",
    "MigrationPlan",
    "PlanResult",
    # Configuration and connections
    "DatabaseSettings",
    "MigrationSettings",
    "Stores",
    "open_stores",
    "open_stores_from_settings",
    # Exceptions
    "MigrationError",
    "ConfigurationError",
    "StoreConnectionError",
    "LookupBuildError",
    "SourceReadError",
    "CheckpointError",
    "UnresolvedReferenceError",
    "BatchWriteError",
]
