"""
Standard span and metric attributes for eventmigrate.

Attribute constants used across all migration components for consistent
span naming and metrics labeling. Database attributes follow OpenTelemetry
semantic conventions.

Example:
    >>> from eventmigrate.observability.attributes import ATTR_BATCH_NUMBER
    >>>
    >>> with tracer.span(
    ...     "eventmigrate.orchestrator.process_batch",
    ...     {ATTR_BATCH_NUMBER: 3},
    ... ):
    ...     pass
"""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite')."""

ATTR_DB_NAME = "db.name"
"""Database name or file path."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'SELECT', 'INSERT')."""

# =============================================================================
# Record / Event Attributes
# =============================================================================

ATTR_RECORD_ID = "eventmigrate.record.id"
"""Identifier of a legacy source record."""

ATTR_EVENT_COUNT = "eventmigrate.event.count"
"""Number of events in an operation (integer)."""

# =============================================================================
# Batch Attributes
# =============================================================================

ATTR_BATCH_SIZE = "eventmigrate.batch.size"
"""Configured batch size (integer)."""

ATTR_BATCH_NUMBER = "eventmigrate.batch.number"
"""One-based batch sequence number within a run (integer)."""

ATTR_RECORDS_EXTRACTED = "eventmigrate.batch.records_extracted"
"""Records pulled from the source in a batch (integer)."""

ATTR_EVENTS_LOADED = "eventmigrate.batch.events_loaded"
"""Valid events committed to the target in a batch (integer)."""

ATTR_RECORDS_EXCLUDED = "eventmigrate.batch.records_excluded"
"""Records dropped by per-event validation in a batch (integer)."""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_MIGRATION_PHASE = "eventmigrate.migration.phase"
"""Current migration phase (e.g., 'extraction', 'complete')."""

ATTR_MIGRATION_SOURCE_STORE = "eventmigrate.migration.source_store"
"""Path of the legacy source store."""

ATTR_MIGRATION_TARGET_STORE = "eventmigrate.migration.target_store"
"""Path of the canonical target store."""

ATTR_MIGRATION_DRY_RUN = "eventmigrate.migration.dry_run"
"""Whether the run writes nothing (boolean)."""

ATTR_CHECKPOINT_PATH = "eventmigrate.checkpoint.path"
"""Path of the checkpoint artifact."""


__all__ = [
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
