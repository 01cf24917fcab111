"""
Exceptions raised by the eventmigrate migration engine.

Only fatal conditions are raised. Record-level problems (malformed metadata,
per-event validation failures, out-of-domain vote values) are returned as
violation lists and tallied by the orchestrator instead.

Exception Hierarchy:
    MigrationError (base)
    +-- SourceUnavailableError
    +-- SourceSchemaError
    +-- PreMigrationValidationError
    +-- InsufficientPermissionsError
    +-- TargetStoreError
    |   +-- BatchInsertError
    +-- IntegrityCheckError
    +-- CheckpointError
    |   +-- CheckpointNotFoundError
    +-- RollbackError
    +-- MigrationAbortedError

Every class carries an ErrorClassification describing its severity,
recoverability and the action an operator should take.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from eventmigrate.reports import (
        IntegrityReport,
        MigrationResult,
        PreMigrationReport,
    )


class ErrorSeverity(Enum):
    """
    Severity level of migration errors.

    Attributes:
        CRITICAL: Data may be inconsistent; an operator must act.
        ERROR: The run failed but stores are in a well-defined state.
        WARNING: Worth surfacing, not a failure on its own.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for migration errors.

    Attributes:
        RECOVERABLE: Fix the cause and re-run; committed batches are
            duplicate-detectable so a re-run is safe after clearing the target.
        ROLLBACK: Restore the source from its checkpoint before retrying.
        FATAL: Nothing can be done automatically.
    """

    RECOVERABLE = "recoverable"
    ROLLBACK = "rollback"
    FATAL = "fatal"

    @property
    def requires_rollback(self) -> bool:
        """True when the standard recovery path is a checkpoint rollback."""
        return self == ErrorRecoverability.ROLLBACK


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata describing how an error should be handled.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str

    def to_dict(self) -> dict[str, Any]:
        """Convert classification to dictionary for serialization."""
        return {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }


class MigrationError(Exception):
    """
    Base exception for all migration errors.

    Attributes:
        message: Human-readable error description.
        path: Store or artifact path involved, if any.
        details: Extra structured context for reports.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MIGRATION_ERROR",
        category="general",
        suggested_action="Review migration logs for the underlying cause",
    )

    def __init__(
        self,
        message: str,
        *,
        path: str | Path | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.path = str(path) if path is not None else None
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error string with context."""
        if self.path:
            return f"{self.message} path={self.path}"
        return self.message

    @property
    def classification(self) -> ErrorClassification:
        """Classification for this error type."""
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def recoverability(self) -> ErrorRecoverability:
        return self.classification.recoverability

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for serialization.

        Returns:
            Dictionary representation of the error.
        """
        result: dict[str, Any] = {
            "type": type(self).__name__,
            "message": self.message,
            "path": self.path,
            "error_code": self.error_code,
            "classification": self.classification.to_dict(),
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.__cause__ is not None:
            result["cause"] = f"{type(self.__cause__).__name__}: {self.__cause__}"
        return result


class SourceUnavailableError(MigrationError):
    """Raised when the legacy store file is missing or cannot be opened."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="SOURCE_UNAVAILABLE",
        category="source",
        suggested_action="Check the source path and that the file is a SQLite database",
    )


class SourceSchemaError(MigrationError):
    """
    Raised when the legacy store does not have the expected schema.

    Attributes:
        errors: The schema or data errors reported by source validation.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="SOURCE_SCHEMA_INVALID",
        category="source",
        suggested_action=(
            "The source is not a legacy vote store. Verify the file and its "
            "'events' table columns before retrying."
        ),
    )

    def __init__(self, errors: list[str], *, path: str | Path | None = None) -> None:
        self.errors = list(errors)
        summary = "; ".join(self.errors) if self.errors else "unknown schema error"
        super().__init__(
            f"Source schema validation failed: {summary}",
            path=path,
            details={"errors": self.errors},
        )


class PreMigrationValidationError(MigrationError):
    """
    Raised in strict mode when the pre-migration check does not pass.

    Attributes:
        report: The failing PreMigrationReport.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="PRE_MIGRATION_FAILED",
        category="validation",
        suggested_action="Resolve the listed readiness errors and run again",
    )

    def __init__(self, report: PreMigrationReport) -> None:
        self.report = report
        super().__init__(
            "Pre-migration validation failed: " + "; ".join(report.errors),
            details={"errors": list(report.errors)},
        )


class InsufficientPermissionsError(MigrationError):
    """Raised when the source or target location is not readable/writable."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="INSUFFICIENT_PERMISSIONS",
        category="filesystem",
        suggested_action="Grant read access to the source and write access to its directory",
    )


class TargetStoreError(MigrationError):
    """Raised when the canonical store cannot be created or written."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="TARGET_STORE_ERROR",
        category="target",
        suggested_action="Roll back to the checkpoint, fix the target location and re-run",
    )


class BatchInsertError(TargetStoreError):
    """
    Raised when one batch transaction fails and is rolled back.

    Batches committed before this one remain in the target.

    Attributes:
        batch_number: One-based number of the failed batch.
        batch_size: Number of events the batch tried to insert.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="BATCH_INSERT_FAILED",
        category="target",
        suggested_action=(
            "Earlier batches are committed. Roll back, or clear the target "
            "and re-run; event ids are deterministic so duplicates are detected."
        ),
    )

    def __init__(
        self,
        batch_number: int,
        batch_size: int,
        error: str,
        *,
        path: str | Path | None = None,
    ) -> None:
        self.batch_number = batch_number
        self.batch_size = batch_size
        self.original_error = error
        super().__init__(
            f"Batch {batch_number} ({batch_size} events) failed: {error}",
            path=path,
            details={"batch_number": batch_number, "batch_size": batch_size},
        )


class IntegrityCheckError(MigrationError):
    """
    Raised when the post-run integrity check fails.

    Rows were written, so the target is left in place for inspection.

    Attributes:
        report: The IntegrityReport describing the failure.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="INTEGRITY_CHECK_FAILED",
        category="consistency",
        suggested_action=(
            "Source and target disagree. Inspect the integrity report, then "
            "roll back to the checkpoint before retrying."
        ),
    )

    def __init__(self, report: IntegrityReport) -> None:
        self.report = report
        super().__init__(
            "Post-migration integrity check failed: " + "; ".join(report.errors),
            details={"errors": list(report.errors)},
        )


class CheckpointError(MigrationError):
    """Raised when a checkpoint cannot be created, validated or restored."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="CHECKPOINT_ERROR",
        category="checkpoint",
        suggested_action="Check free disk space and permissions next to the source store",
    )


class CheckpointNotFoundError(CheckpointError):
    """Raised when a restore is requested but no checkpoint exists."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="CHECKPOINT_NOT_FOUND",
        category="checkpoint",
        suggested_action="No checkpoint to restore from; the source was never snapshotted",
    )

    def __init__(self, path: str | Path) -> None:
        super().__init__(f"Checkpoint not found: {path}", path=path)


class RollbackError(MigrationError):
    """
    Raised when a full rollback fails part way.

    The checkpoint is left intact so the restore can be retried.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="ROLLBACK_FAILED",
        category="checkpoint",
        suggested_action=(
            "The checkpoint is intact. Fix the underlying cause and restore "
            "it again; target backups are kept next to the target path."
        ),
    )


class MigrationAbortedError(MigrationError):
    """
    Raised when a fatal error unwinds a run after extraction started.

    The underlying error is chained as ``__cause__``.

    Attributes:
        result: Partial MigrationResult accumulated up to the failure.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="MIGRATION_ABORTED",
        category="general",
        suggested_action="See the chained cause; rollback is the standard recovery",
    )

    def __init__(self, message: str, result: MigrationResult) -> None:
        self.result = result
        super().__init__(message, details={"statistics": result.statistics.to_dict()})

    @property
    def classification(self) -> ErrorClassification:
        """Inherit the cause's classification when it has one."""
        cause = self.__cause__
        if isinstance(cause, MigrationError):
            return cause.classification
        return self._default_classification


__all__ = [
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
