"""
Report types produced by validation, checkpointing and migration runs.

All reports are derived and read-only: they are recomputed on each call
and never written back to a store. Each exposes ``to_dict()`` for callers
that render or persist them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from eventmigrate.models import (
    ConversionStats,
    MigrationStatistics,
    SourceStatistics,
    TargetStatistics,
)


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of a structural validation pass over one store.

    Attributes:
        valid: True when no errors were found.
        errors: Hard failures.
        warnings: Advisory findings.
        schema_valid: False when the table or required columns are missing.
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    schema_valid: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "schema_valid": self.schema_valid,
        }


@dataclass(frozen=True)
class ReadinessChecks:
    """
    Itemized readiness flags of a pre-migration check.

    Attributes:
        source_schema_ok: The legacy table and required columns exist.
        source_valid: Source schema and data passed validation.
        disk_space_ok: Enough free space for target and checkpoint.
        permissions_ok: Source readable and target location writable.
        checkpoint_ok: Checkpoint probe result; None when not probed.
    """

    source_schema_ok: bool = False
    source_valid: bool = False
    disk_space_ok: bool = False
    permissions_ok: bool = False
    checkpoint_ok: bool | None = None

    @property
    def environment_ok(self) -> bool:
        """Readiness that no per-record handling can make up for."""
        return self.source_schema_ok and self.disk_space_ok and self.permissions_ok

    def to_dict(self) -> dict[str, bool | None]:
        return {
            "source_schema_ok": self.source_schema_ok,
            "source_valid": self.source_valid,
            "disk_space_ok": self.disk_space_ok,
            "permissions_ok": self.permissions_ok,
            "checkpoint_ok": self.checkpoint_ok,
        }


@dataclass(frozen=True)
class PreMigrationReport:
    """
    Readiness report produced before any store is touched.

    Attributes:
        valid: True when every readiness check passed.
        errors: Reasons the run must not proceed.
        warnings: Advisory findings.
        recommendations: Sizing and staleness suggestions.
        checks: Itemized readiness flags.
        source_validation: The extractor's validation of the source.
        source_statistics: Source statistics, None if the source was unreadable.
        required_bytes: Estimated disk headroom needed.
        available_bytes: Free space at the target location.
    """

    valid: bool
    errors: list[str]
    warnings: list[str]
    recommendations: list[str]
    checks: ReadinessChecks
    source_validation: ValidationResult | None = None
    source_statistics: SourceStatistics | None = None
    required_bytes: int = 0
    available_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
            "checks": self.checks.to_dict(),
            "source_validation": (
                self.source_validation.to_dict() if self.source_validation else None
            ),
            "source_statistics": (
                self.source_statistics.to_dict() if self.source_statistics else None
            ),
            "required_bytes": self.required_bytes,
            "available_bytes": self.available_bytes,
        }


@dataclass(frozen=True)
class IntegrityFlags:
    """
    Itemized integrity findings of a post-migration comparison.

    Only event_count_match, user_count_match and event_types_match (and the
    target's own structural validity) decide the report's validity.
    """

    event_count_match: bool = False
    user_count_match: bool = False
    timestamp_range_match: bool = False
    event_types_match: bool = False
    target_schema_valid: bool = False
    rollback_possible: bool = False

    @property
    def data_integrity(self) -> bool:
        return (
            self.event_count_match
            and self.user_count_match
            and self.event_types_match
            and self.target_schema_valid
        )

    def to_dict(self) -> dict[str, bool]:
        return {
            "data_integrity": self.data_integrity,
            "event_count_match": self.event_count_match,
            "user_count_match": self.user_count_match,
            "timestamp_range_match": self.timestamp_range_match,
            "event_types_match": self.event_types_match,
            "target_schema_valid": self.target_schema_valid,
            "rollback_possible": self.rollback_possible,
        }


@dataclass(frozen=True)
class QualityScores:
    """
    Numeric quality scores, each in [0, 1].

    Attributes:
        accuracy: Mean capped target/source ratio of event and user counts.
        preservation: Mean of the two accuracy ratios and the time-range score.
        time_range: Time-range preservation, decaying linearly with drift.
        query_performance: Sample-read latency score.
        index_efficiency: Share of representative queries served by an index.
        storage_efficiency: Storage heuristic.
        performance: Mean of the three performance components.
        query_time_ms: Measured sample-read latency.
    """

    accuracy: float = 0.0
    preservation: float = 0.0
    time_range: float = 0.0
    query_performance: float = 0.0
    index_efficiency: float = 0.0
    storage_efficiency: float = 0.0
    performance: float = 0.0
    query_time_ms: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "accuracy": self.accuracy,
            "preservation": self.preservation,
            "time_range": self.time_range,
            "query_performance": self.query_performance,
            "index_efficiency": self.index_efficiency,
            "storage_efficiency": self.storage_efficiency,
            "performance": self.performance,
            "query_time_ms": self.query_time_ms,
        }


@dataclass(frozen=True)
class IntegrityReport:
    """
    Post-migration comparison of source and target.

    Attributes:
        valid: False only on integrity failures (counts, event types, target schema).
        errors: Integrity failures.
        warnings: Advisory findings such as drift or low scores.
        flags: Itemized integrity findings.
        scores: Numeric quality scores.
        source_statistics: Statistics of the source.
        target_statistics: Statistics of the target.
        target_validation: The target store's own structural validation.
    """

    valid: bool
    errors: list[str]
    warnings: list[str]
    flags: IntegrityFlags
    scores: QualityScores
    source_statistics: SourceStatistics
    target_statistics: TargetStatistics
    target_validation: ValidationResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "flags": self.flags.to_dict(),
            "scores": self.scores.to_dict(),
            "source_statistics": self.source_statistics.to_dict(),
            "target_statistics": self.target_statistics.to_dict(),
            "target_validation": (
                self.target_validation.to_dict() if self.target_validation else None
            ),
        }


@dataclass(frozen=True)
class ConversionPreview:
    """
    Side-by-side view of one legacy record and its would-be event.

    Attributes:
        original: Shape of the legacy record.
        converted: Shape of the converted event.
        violations: Per-event validation violations of the converted event.
        malformed_metadata: Whether the record's metadata could not be parsed.
    """

    original: dict[str, Any]
    converted: dict[str, Any]
    violations: list[str] = field(default_factory=list)
    malformed_metadata: bool = False

    @property
    def valid(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict[str, Any]:
        return {
            "original": dict(self.original),
            "converted": dict(self.converted),
            "violations": list(self.violations),
            "malformed_metadata": self.malformed_metadata,
            "valid": self.valid,
        }


@dataclass(frozen=True)
class DryRunSample:
    """Compact description of one event converted during a dry run."""

    original_id: str | None
    new_event_id: str
    event_type: str
    properties_count: int
    has_content: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_id": self.original_id,
            "new_event_id": self.new_event_id,
            "event_type": self.event_type,
            "properties_count": self.properties_count,
            "has_content": self.has_content,
        }


@dataclass(frozen=True)
class DryRunSummary:
    """
    What a dry run observed on the bounded prefix it processed.

    Attributes:
        batches_processed: Batches handled before the cap.
        records_processed: Records extracted.
        valid_events: Events that passed per-event validation.
        samples: First converted events of the first batch.
        estimated_output_bytes: Average serialized size times total source records.
    """

    batches_processed: int
    records_processed: int
    valid_events: int
    samples: list[DryRunSample]
    estimated_output_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "batches_processed": self.batches_processed,
            "records_processed": self.records_processed,
            "valid_events": self.valid_events,
            "samples": [s.to_dict() for s in self.samples],
            "estimated_output_bytes": self.estimated_output_bytes,
        }


@dataclass(frozen=True)
class MigrationResult:
    """
    Aggregate report of a run.

    A failed run carries the partial statistics accumulated up to the failure.

    Attributes:
        success: True if the run completed and its checks passed.
        dry_run: True if nothing was written.
        statistics: Running statistics.
        conversion: Conversion summary over every processed batch.
        source_statistics: Source statistics gathered at the start.
        target_statistics: Target statistics after loading, None on dry runs.
        pre_migration: Pre-migration report, when one was produced.
        integrity: Post-migration integrity report, when one was produced.
        dry_run_summary: Samples and extrapolation of a dry run.
        checkpoint_path: Checkpoint created for this run.
        warnings: Advisory findings gathered across phases.
    """

    success: bool
    dry_run: bool
    statistics: MigrationStatistics
    conversion: ConversionStats
    source_statistics: SourceStatistics | None = None
    target_statistics: TargetStatistics | None = None
    pre_migration: PreMigrationReport | None = None
    integrity: IntegrityReport | None = None
    dry_run_summary: DryRunSummary | None = None
    checkpoint_path: Path | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "statistics": self.statistics.to_dict(),
            "conversion": self.conversion.to_dict(),
            "source_statistics": (
                self.source_statistics.to_dict() if self.source_statistics else None
            ),
            "target_statistics": (
                self.target_statistics.to_dict() if self.target_statistics else None
            ),
            "pre_migration": self.pre_migration.to_dict() if self.pre_migration else None,
            "integrity": self.integrity.to_dict() if self.integrity else None,
            "dry_run_summary": (
                self.dry_run_summary.to_dict() if self.dry_run_summary else None
            ),
            "checkpoint_path": str(self.checkpoint_path) if self.checkpoint_path else None,
            "warnings": list(self.warnings),
        }


class CheckpointState(Enum):
    """Lifecycle state of a checkpoint artifact."""

    NONE = "none"
    """No checkpoint has been created."""

    VALID = "valid"
    """Checkpoint and sidecar present and usable."""

    STALE = "stale"
    """A checkpoint existed but was cleaned up or damaged."""


@dataclass(frozen=True)
class CheckpointInfo:
    """
    Description of the checkpoint artifact.

    Attributes:
        exists: Whether the checkpoint file is present.
        path: Checkpoint file path.
        created_at: Creation time from the sidecar, None if unknown.
        size_bytes: Size of the checkpoint file.
        metadata: Raw sidecar contents.
    """

    exists: bool
    path: Path
    created_at: datetime | None = None
    size_bytes: int = 0
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "exists": self.exists,
            "path": str(self.path),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "size_bytes": self.size_bytes,
            "metadata": dict(self.metadata) if self.metadata else None,
        }


@dataclass(frozen=True)
class RollbackVerification:
    """
    Exact comparison of checkpoint and restored source.

    Attributes:
        success: True when event and distinct-user counts are equal.
        checkpoint_events: Rows in the checkpoint copy.
        restored_events: Rows in the restored source.
        checkpoint_users: Distinct users in the checkpoint copy.
        restored_users: Distinct users in the restored source.
        errors: Mismatch descriptions.
    """

    success: bool
    checkpoint_events: int
    restored_events: int
    checkpoint_users: int
    restored_users: int
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "checkpoint_events": self.checkpoint_events,
            "restored_events": self.restored_events,
            "checkpoint_users": self.checkpoint_users,
            "restored_users": self.restored_users,
            "errors": list(self.errors),
        }


class ReportStatus(Enum):
    """Overall status of a combined validation report."""

    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ValidationSummary:
    """
    Combined pre/post/checkpoint report.

    Attributes:
        status: ERROR if any part failed, WARNING if any warned, else SUCCESS.
        pre_migration: Pre-migration report, if available.
        integrity: Post-migration report, if available.
        checkpoint: Checkpoint validation, if available.
        recommendations: Collected recommendations.
        generated_at: When the report was produced.
    """

    status: ReportStatus
    pre_migration: PreMigrationReport | None
    integrity: IntegrityReport | None
    checkpoint: ValidationResult | None
    recommendations: list[str]
    generated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "pre_migration": self.pre_migration.to_dict() if self.pre_migration else None,
            "integrity": self.integrity.to_dict() if self.integrity else None,
            "checkpoint": self.checkpoint.to_dict() if self.checkpoint else None,
            "recommendations": list(self.recommendations),
            "generated_at": self.generated_at.isoformat(),
        }


__all__ = [
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
]
