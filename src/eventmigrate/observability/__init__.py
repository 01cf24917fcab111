"""
Observability utilities for eventmigrate.

This module provides tracing, metrics, and standard attribute definitions
for consistent observability across all migration components.

Note:
    OpenTelemetry is an optional dependency. All utilities in this module
    gracefully handle the case where OpenTelemetry is not installed.
"""

from eventmigrate.observability.attributes import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_CHECKPOINT_PATH,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_EVENT_COUNT,
    ATTR_EVENTS_LOADED,
    ATTR_MIGRATION_DRY_RUN,
    ATTR_MIGRATION_PHASE,
    ATTR_MIGRATION_SOURCE_STORE,
    ATTR_MIGRATION_TARGET_STORE,
    ATTR_RECORD_ID,
    ATTR_RECORDS_EXCLUDED,
    ATTR_RECORDS_EXTRACTED,
)
from eventmigrate.observability.metrics import (
    OTEL_METRICS_AVAILABLE,
    MigrationMetrics,
    MigrationMetricSnapshot,
)
from eventmigrate.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanAttributes,
    Tracer,
    create_tracer,
    span_attributes,
)

__all__ = [
    # Tracing
    "OTEL_AVAILABLE",
    "SpanAttributes",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "span_attributes",
    # Metrics
    "OTEL_METRICS_AVAILABLE",
    "MigrationMetrics",
    "MigrationMetricSnapshot",
    # Attributes
    "ATTR_DB_SYSTEM",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
    "ATTR_RECORD_ID",
    "ATTR_EVENT_COUNT",
    "ATTR_BATCH_SIZE",
    "ATTR_BATCH_NUMBER",
    "ATTR_RECORDS_EXTRACTED",
    "ATTR_EVENTS_LOADED",
    "ATTR_RECORDS_EXCLUDED",
    "ATTR_MIGRATION_PHASE",
    "ATTR_MIGRATION_SOURCE_STORE",
    "ATTR_MIGRATION_TARGET_STORE",
    "ATTR_MIGRATION_DRY_RUN",
    "ATTR_CHECKPOINT_PATH",
]
