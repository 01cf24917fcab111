"""
Unit tests for the tracer implementations.

Tests cover:
- Attribute coercion for OpenTelemetry
- NullTracer, OpenTelemetryTracer and MockTracer behaviour
- Spans recorded by a real component
- create_tracer() selection
"""

from __future__ import annotations

from pathlib import Path

import pytest

from eventmigrate.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_CHECKPOINT_PATH,
    ATTR_DB_SYSTEM,
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
    span_attributes,
)
from eventmigrate.target import TargetStore


class TestSpanAttributes:
    def test_paths_become_strings(self):
        attrs = span_attributes({ATTR_CHECKPOINT_PATH: Path("/data/bilan.db.checkpoint")})
        assert attrs == {ATTR_CHECKPOINT_PATH: "/data/bilan.db.checkpoint"}

    def test_none_values_are_dropped(self):
        attrs = span_attributes({ATTR_DB_SYSTEM: "sqlite", ATTR_BATCH_NUMBER: None})
        assert attrs == {ATTR_DB_SYSTEM: "sqlite"}

    def test_missing_attributes_give_empty_dict(self):
        assert span_attributes(None) == {}
        assert span_attributes({}) == {}


class TestNullTracer:
    def test_is_a_tracer(self):
        assert isinstance(NullTracer(), Tracer)

    def test_span_yields_none(self):
        with NullTracer().span("eventmigrate.target.initialize") as span:
            assert span is None

    def test_exceptions_pass_through(self):
        with pytest.raises(ValueError, match="bad batch"):
            with NullTracer().span("eventmigrate.target.insert_batch"):
                raise ValueError("bad batch")


@pytest.mark.skipif(not OTEL_AVAILABLE, reason="OTEL not installed")
class TestOpenTelemetryTracer:
    def test_is_a_tracer(self):
        assert isinstance(OpenTelemetryTracer(__name__), Tracer)

    def test_span_becomes_current(self):
        from opentelemetry import trace

        tracer = OpenTelemetryTracer(__name__)
        with tracer.span(
            "eventmigrate.orchestrator.process_batch",
            {ATTR_BATCH_NUMBER: 1, ATTR_CHECKPOINT_PATH: Path("x.checkpoint")},
        ) as span:
            assert trace.get_current_span() is span

    def test_exceptions_pass_through(self):
        tracer = OpenTelemetryTracer(__name__)
        with pytest.raises(ValueError, match="bad batch"):
            with tracer.span("eventmigrate.target.insert_batch"):
                raise ValueError("bad batch")


class TestOpenTelemetryTracerWithoutOtel:
    def test_raises_import_error(self, monkeypatch):
        monkeypatch.setattr("eventmigrate.observability.tracer.trace", None)
        with pytest.raises(ImportError, match="telemetry"):
            OpenTelemetryTracer(__name__)


class TestMockTracer:
    def test_is_a_tracer(self):
        assert isinstance(MockTracer(), Tracer)

    async def test_records_component_spans_in_order(self, target_path: Path):
        tracer = MockTracer()
        async with TargetStore(target_path, tracer=tracer) as store:
            await store.initialize()
            await store.get_statistics()

        assert tracer.span_names == [
            "eventmigrate.target.initialize",
            "eventmigrate.target.get_statistics",
        ]
        [attrs] = tracer.attributes_for("eventmigrate.target.initialize")
        assert attrs[ATTR_DB_SYSTEM] == "sqlite"
        assert tracer.failed == []

    def test_attributes_are_copied(self):
        tracer = MockTracer()
        attrs = {ATTR_BATCH_NUMBER: 1}
        with tracer.span("eventmigrate.orchestrator.process_batch", attrs):
            attrs[ATTR_BATCH_NUMBER] = 2

        assert tracer.attributes_for("eventmigrate.orchestrator.process_batch") == [
            {ATTR_BATCH_NUMBER: 1}
        ]

    def test_span_without_attributes(self):
        tracer = MockTracer()
        with tracer.span("eventmigrate.checkpoint.cleanup"):
            pass
        assert tracer.spans == [("eventmigrate.checkpoint.cleanup", None)]
        assert tracer.attributes_for("eventmigrate.checkpoint.cleanup") == [{}]

    def test_failed_spans_are_recorded(self):
        tracer = MockTracer()
        with pytest.raises(RuntimeError):
            with tracer.span("eventmigrate.orchestrator.migrate"):
                with tracer.span("eventmigrate.target.insert_batch"):
                    raise RuntimeError("disk full")

        assert tracer.failed == [
            "eventmigrate.target.insert_batch",
            "eventmigrate.orchestrator.migrate",
        ]

    def test_clear(self):
        tracer = MockTracer()
        with pytest.raises(RuntimeError):
            with tracer.span("eventmigrate.validator.post_migration"):
                raise RuntimeError("boom")
        tracer.clear()
        assert tracer.spans == []
        assert tracer.failed == []


class TestCreateTracer:
    def test_disabled_gives_null_tracer(self):
        assert isinstance(create_tracer(__name__, enable_tracing=False), NullTracer)

    @pytest.mark.skipif(not OTEL_AVAILABLE, reason="OTEL not installed")
    def test_enabled_gives_otel_tracer(self):
        assert isinstance(create_tracer(__name__), OpenTelemetryTracer)

    def test_falls_back_without_otel(self, monkeypatch):
        monkeypatch.setattr("eventmigrate.observability.tracer.OTEL_AVAILABLE", False)
        assert isinstance(create_tracer(__name__), NullTracer)
