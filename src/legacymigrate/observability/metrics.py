"""
OpenTelemetry metrics for migration runs.

One counter per row outcome plus a batch duration histogram, labelled with
the migration name. Without OpenTelemetry (or with ``enable_metrics=False``)
the instruments are no-ops, while :meth:`MigrationMetrics.snapshot` keeps
reporting what was recorded.

Example:
    >>> metrics = MigrationMetrics("patients")
    >>> metrics.record_batch(processed=500, inserted=480, skipped=20)
    >>> metrics.record_batch_duration(1.25)

Metrics Exposed:
    - legacymigrate.rows.processed (Counter)
    - legacymigrate.rows.inserted (Counter)
    - legacymigrate.rows.already_migrated (Counter)
    - legacymigrate.rows.skipped (Counter)
    - legacymigrate.rows.errored (Counter)
    - legacymigrate.batch.duration (Histogram, seconds)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

try:
    from opentelemetry import metrics

    OTEL_METRICS_AVAILABLE = True
except ImportError:
    OTEL_METRICS_AVAILABLE = False
    metrics = None  # type: ignore[assignment]

OUTCOMES: dict[str, str] = {
    "processed": "Source rows considered by a migration run",
    "inserted": "Rows written to the target table",
    "already_migrated": "Rows whose conflict key was already present in the target",
    "skipped": "Rows skipped because a required legacy reference was unresolved",
    "errored": "Rows that failed to transform or to be written",
}

_meter: Any = None


def _get_meter() -> Any:
    global _meter
    if _meter is None and OTEL_METRICS_AVAILABLE:
        _meter = metrics.get_meter("legacymigrate")
    return _meter


def reset_meter() -> None:
    """Forget the cached meter so the next MigrationMetrics picks up a new provider."""
    global _meter
    _meter = None


class _NoOpInstrument:
    """Stands in for both counters and histograms."""

    def add(self, amount: int | float, attributes: dict[str, Any] | None = None) -> None:
        pass

    def record(self, value: float, attributes: dict[str, Any] | None = None) -> None:
        pass


@dataclass
class MigrationMetrics:
    """
    Metric instruments for one migration run.

    Attributes:
        migration_name: Value of the ``migration`` attribute on every data point
        enable_metrics: Record to OpenTelemetry when it is installed (default True)
    """

    migration_name: str
    enable_metrics: bool = True

    _counters: dict[str, Any] = field(default_factory=dict, init=False, repr=False)
    _duration: Any = field(default=None, init=False, repr=False)
    _totals: dict[str, int] = field(default_factory=dict, init=False, repr=False)
    _batch_durations: list[float] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self._totals = dict.fromkeys(OUTCOMES, 0)
        meter = _get_meter() if self.enable_metrics else None
        if meter is None:
            noop = _NoOpInstrument()
            self._counters = dict.fromkeys(OUTCOMES, noop)
            self._duration = noop
            return

        self._counters = {
            outcome: meter.create_counter(
                name=f"legacymigrate.rows.{outcome}",
                unit="rows",
                description=description,
            )
            for outcome, description in OUTCOMES.items()
        }
        self._duration = meter.create_histogram(
            name="legacymigrate.batch.duration",
            unit="s",
            description="Time spent reading, transforming and writing one batch",
        )

    @property
    def _attributes(self) -> dict[str, str]:
        return {"migration": self.migration_name}

    def record_batch(self, **counts: int) -> None:
        """
        Record the outcome counts of one batch.

        Args:
            **counts: Rows per outcome, keyed by one of ``OUTCOMES``
                (e.g. ``processed=500, inserted=480, skipped=20``)

        Raises:
            ValueError: If an unknown outcome is given
        """
        unknown = set(counts) - set(OUTCOMES)
        if unknown:
            raise ValueError(f"Unknown outcomes: {', '.join(sorted(unknown))}")
        for outcome, count in counts.items():
            self._counters[outcome].add(count, self._attributes)
            self._totals[outcome] += count

    def record_batch_duration(self, duration_seconds: float) -> None:
        self._duration.record(duration_seconds, self._attributes)
        self._batch_durations.append(duration_seconds)

    def snapshot(self) -> dict[str, Any]:
        """Totals per outcome recorded so far, plus every batch duration."""
        return {**self._totals, "batch_durations": list(self._batch_durations)}


__all__ = [
    "OTEL_METRICS_AVAILABLE",
    "OUTCOMES",
    "MigrationMetrics",
    "reset_meter",
]
