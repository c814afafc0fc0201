"""
Tracers injected into the reader, writer, lookup builder and engine.

Components never import OpenTelemetry themselves. They take an optional
``tracer`` and fall back to :func:`create_tracer`:

    self._tracer = tracer or create_tracer(__name__, enable_tracing)
    self._enable_tracing = self._tracer.enabled

and wrap database round trips in ``with self._tracer.span(name, attrs) as span``.
The yielded span is None for the NullTracer, so outcome attributes are set
behind ``if span:``.
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]


@runtime_checkable
class Tracer(Protocol):
    """Anything that opens spans: NullTracer, OpenTelemetryTracer or MockTracer."""

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Any]:
        """Open a span named ``name`` (e.g. 'legacymigrate.writer.write_batch')."""
        ...

    @property
    def enabled(self) -> bool:
        """True when spans are actually recorded somewhere."""
        ...


class NullTracer:
    """Tracer used when tracing is off or OpenTelemetry is not installed."""

    @contextlib.contextmanager
    def span(self, name: str, attributes: dict[str, Any] | None = None) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Adapter from the OpenTelemetry tracer API to :class:`Tracer`.

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        if trace is None:
            raise ImportError("OpenTelemetryTracer requires the 'telemetry' extra")
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


@dataclass
class RecordedSpan:
    """
    A span captured by MockTracer.

    ``attributes`` holds the attributes the span was opened with plus any
    set afterwards through :meth:`set_attribute`.
    """

    name: str
    attributes: dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value


class MockTracer:
    """
    Tracer for tests that keeps every span in memory.

    Example:
        >>> tracer = MockTracer()
        >>> writer = BatchWriter(target, tracer=tracer)
        >>> await writer.write_batch("offices", "legacy_office_id", records)
        >>> tracer.span_names
        ['legacymigrate.writer.write_batch']
        >>> tracer.spans[0].attributes["legacymigrate.rows.inserted"]
        3
    """

    def __init__(self) -> None:
        self.spans: list[RecordedSpan] = []

    @contextlib.contextmanager
    def span(self, name: str, attributes: dict[str, Any] | None = None) -> Iterator[RecordedSpan]:
        recorded = RecordedSpan(name, dict(attributes or {}))
        self.spans.append(recorded)
        yield recorded

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [recorded.name for recorded in self.spans]

    def find(self, name: str) -> list[RecordedSpan]:
        """All recorded spans called ``name``, in opening order."""
        return [recorded for recorded in self.spans if recorded.name == name]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Pick the tracer for a component.

    Args:
        name: Tracer name, normally the component's ``__name__``
        enable_tracing: Component-level switch

    Returns:
        OpenTelemetryTracer when enabled and OpenTelemetry is importable,
        NullTracer otherwise
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "MockTracer",
    "create_tracer",
]
