"""
Span tracing for the migration components.

Extractor, target store, checkpoint manager, validator and orchestrator each
take a ``tracer`` argument and open one span per public operation, named
``eventmigrate.<component>.<operation>``. Nothing reaches for a global
OpenTelemetry handle, so a run can be traced, silenced or recorded in tests
by swapping the object passed in.

OpenTelemetry is optional (``pip install eventmigrate-py[telemetry]``). This
module is the only place that probes for it.

Example:
    >>> from eventmigrate.observability import MockTracer
    >>>
    >>> tracer = MockTracer()
    >>> async with RecordExtractor("bilan.db", tracer=tracer) as extractor:
    ...     async for batch in extractor.batches():
    ...         ...
    >>> tracer.attributes_for("eventmigrate.extractor.next_batch")
    [{'db.system': 'sqlite', ...}]
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]

SpanAttributes = Mapping[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """Anything that can open a named span around a block of work."""

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Any]:
        """
        Open a span.

        Args:
            name: Span name, e.g. "eventmigrate.target.insert_batch"
            attributes: Span attributes (optional)
        """
        ...


def span_attributes(attributes: SpanAttributes | None) -> dict[str, str | int | float | bool]:
    """
    Coerce attributes to the value types OpenTelemetry accepts.

    Paths are recorded as strings and None values are dropped; store paths
    and optional counts are passed around as such by the components.
    """
    if not attributes:
        return {}
    coerced: dict[str, str | int | float | bool] = {}
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, Path):
            value = str(value)
        coerced[key] = value
    return coerced


class NullTracer:
    """Tracer used when tracing is disabled or OpenTelemetry is absent."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        yield None


class OpenTelemetryTracer:
    """
    Tracer backed by an OpenTelemetry tracer.

    Spans become the current span while open, so nested component calls
    (a batch insert inside the orchestrator's batch span) are parented
    correctly. An exception leaving the block is recorded on the span and
    re-raised.

    Args:
        tracer_name: Instrumentation scope name (typically __name__)

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        if trace is None:
            raise ImportError(
                "OpenTelemetry is not installed; install eventmigrate-py[telemetry]"
            )
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Any]:
        return self._tracer.start_as_current_span(
            name, attributes=span_attributes(attributes)
        )


class MockTracer:
    """
    Tracer that records spans for assertions.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("eventmigrate.target.initialize", {"db.system": "sqlite"}):
        ...     pass
        >>> tracer.span_names
        ['eventmigrate.target.initialize']
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []
        self.failed: list[str] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        self.spans.append((name, dict(attributes) if attributes is not None else None))
        try:
            yield None
        except Exception:
            self.failed.append(name)
            raise

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def attributes_for(self, name: str) -> list[dict[str, Any]]:
        """Attributes of every recorded span with the given name, in order."""
        return [attrs or {} for span_name, attrs in self.spans if span_name == name]

    def clear(self) -> None:
        self.spans.clear()
        self.failed.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Pick the tracer for a component.

    Args:
        name: Instrumentation scope name (typically __name__)
        enable_tracing: The component's enable_tracing setting

    Returns:
        OpenTelemetryTracer when enabled and installed, NullTracer otherwise
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "OTEL_AVAILABLE",
    "SpanAttributes",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "span_attributes",
]
