"""
eventmigrate - Batch migration of a legacy vote store into an analytics event store.

This library provides:
- Record extraction from the legacy SQLite vote store (read-only)
- Conversion of vote records into canonical vote_cast events
- A canonical event store with batch-per-transaction loading
- Checkpoint, restore and full rollback of the source store
- Pre- and post-migration validation with quality scores
- An orchestrator with dry run, preview, progress reporting and cancellation
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("eventmigrate-py")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from eventmigrate.checkpoint import CheckpointManager, CheckpointMetadata
from eventmigrate.converter import Conversion, EventConverter, merge_properties
from eventmigrate.exceptions import (
    BatchInsertError,
    CheckpointError,
    CheckpointNotFoundError,
    ErrorClassification,
    ErrorRecoverability,
    ErrorSeverity,
    InsufficientPermissionsError,
    IntegrityCheckError,
    MigrationAbortedError,
    MigrationError,
    PreMigrationValidationError,
    RollbackError,
    SourceSchemaError,
    SourceUnavailableError,
    TargetStoreError,
)
from eventmigrate.extractor import ExtractionProgress, RecordExtractor
from eventmigrate.models import (
    VOTE_CAST,
    CanonicalEvent,
    ConversionStats,
    LegacyRecord,
    MigrationConfig,
    MigrationProgress,
    MigrationStatistics,
    SourceStatistics,
    TargetStatistics,
    derive_event_id,
)
from eventmigrate.orchestrator import MigrationOrchestrator, ProgressCallback
from eventmigrate.reports import (
    CheckpointInfo,
    CheckpointState,
    ConversionPreview,
    DryRunSample,
    DryRunSummary,
    IntegrityFlags,
    IntegrityReport,
    MigrationResult,
    PreMigrationReport,
    QualityScores,
    ReadinessChecks,
    ReportStatus,
    RollbackVerification,
    ValidationResult,
    ValidationSummary,
)
from eventmigrate.target import TargetStore
from eventmigrate.validator import MigrationValidator

__all__ = [
    "__version__",
    # Components
    "RecordExtractor",
    "ExtractionProgress",
    "EventConverter",
    "Conversion",
    "merge_properties",
    "TargetStore",
    "CheckpointManager",
    "CheckpointMetadata",
    "MigrationValidator",
    "MigrationOrchestrator",
    "ProgressCallback",
    # Models
    "VOTE_CAST",
    "derive_event_id",
    "LegacyRecord",
    "CanonicalEvent",
    "MigrationConfig",
    "SourceStatistics",
    "TargetStatistics",
    "ConversionStats",
    "MigrationStatistics",
    "MigrationProgress",
    # Reports
    "ValidationResult",
    "ReadinessChecks",
    "PreMigrationReport",
    "IntegrityFlags",
    "QualityScores",
    "IntegrityReport",
    "ConversionPreview",
    "DryRunSample",
    "DryRunSummary",
    "MigrationResult",
    "CheckpointState",
    "CheckpointInfo",
    "RollbackVerification",
    "ReportStatus",
    "ValidationSummary",
    # Exceptions
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "MigrationError",
    "SourceUnavailableError",
    "SourceSchemaError",
    "PreMigrationValidationError",
    "InsufficientPermissionsError",
    "TargetStoreError",
    "BatchInsertError",
    "IntegrityCheckError",
    "CheckpointError",
    "CheckpointNotFoundError",
    "RollbackError",
    "MigrationAbortedError",
]
