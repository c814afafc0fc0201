"""
Tracing, span attributes and metrics for legacymigrate.

OpenTelemetry is optional (``pip install legacymigrate[telemetry]``); every
utility here degrades to a no-op without it.
"""

from legacymigrate.observability.attributes import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_CONFLICT_KEY,
    ATTR_CURSOR,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_LOOKUP_NAME,
    ATTR_LOOKUP_SIZE,
    ATTR_LOOKUP_TABLE,
    ATTR_MIGRATION_NAME,
    ATTR_OFFSET,
    ATTR_ROWS_ERRORED,
    ATTR_ROWS_INSERTED,
    ATTR_ROWS_PROCESSED,
    ATTR_ROWS_SKIPPED,
    ATTR_SOURCE_KEY,
    ATTR_TARGET_TABLE,
)
from legacymigrate.observability.metrics import (
    OTEL_METRICS_AVAILABLE,
    OUTCOMES,
    MigrationMetrics,
    reset_meter,
)
from legacymigrate.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    RecordedSpan,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracing
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "RecordedSpan",
    "create_tracer",
    # Metrics
    "OTEL_METRICS_AVAILABLE",
    "OUTCOMES",
    "MigrationMetrics",
    "reset_meter",
    # Attributes
    "ATTR_MIGRATION_NAME",
    "ATTR_SOURCE_KEY",
    "ATTR_TARGET_TABLE",
    "ATTR_CONFLICT_KEY",
    "ATTR_BATCH_NUMBER",
    "ATTR_BATCH_SIZE",
    "ATTR_CURSOR",
    "ATTR_OFFSET",
    "ATTR_LOOKUP_NAME",
    "ATTR_LOOKUP_TABLE",
    "ATTR_LOOKUP_SIZE",
    "ATTR_ROWS_PROCESSED",
    "ATTR_ROWS_INSERTED",
    "ATTR_ROWS_SKIPPED",
    "ATTR_ROWS_ERRORED",
    "ATTR_ERROR_TYPE",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
]
