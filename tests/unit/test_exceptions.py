"""
Unit tests for the exception hierarchy and error classification.
"""

from __future__ import annotations

import logging

import pytest

from eventmigrate.exceptions import (
    BatchInsertError,
    CheckpointError,
    CheckpointNotFoundError,
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
from eventmigrate.models import (
    ConversionStats,
    MigrationStatistics,
    SourceStatistics,
    TargetStatistics,
)
from eventmigrate.reports import (
    IntegrityFlags,
    IntegrityReport,
    MigrationResult,
    PreMigrationReport,
    QualityScores,
    ReadinessChecks,
)


def _partial_result() -> MigrationResult:
    stats = MigrationStatistics(processed_records=4, events_created=3, batches_processed=2)
    return MigrationResult(
        success=False, dry_run=False, statistics=stats, conversion=ConversionStats()
    )


class TestHierarchy:
    """Every error derives from MigrationError."""

    @pytest.mark.parametrize(
        "cls",
        [
            SourceUnavailableError,
            SourceSchemaError,
            PreMigrationValidationError,
            InsufficientPermissionsError,
            TargetStoreError,
            BatchInsertError,
            IntegrityCheckError,
            CheckpointError,
            CheckpointNotFoundError,
            RollbackError,
            MigrationAbortedError,
        ],
    )
    def test_is_migration_error(self, cls: type[Exception]) -> None:
        assert issubclass(cls, MigrationError)

    def test_batch_insert_error_is_target_store_error(self) -> None:
        assert issubclass(BatchInsertError, TargetStoreError)

    def test_checkpoint_not_found_is_checkpoint_error(self) -> None:
        assert issubclass(CheckpointNotFoundError, CheckpointError)


class TestMigrationError:
    """Tests for the base error."""

    def test_str_includes_path(self) -> None:
        error = MigrationError("boom", path="/data/x.db")
        assert str(error) == "boom path=/data/x.db"

    def test_str_without_path(self) -> None:
        assert str(MigrationError("boom")) == "boom"

    def test_to_dict(self) -> None:
        error = TargetStoreError("cannot write", path="/t.db", details={"k": 1})

        data = error.to_dict()

        assert data["type"] == "TargetStoreError"
        assert data["message"] == "cannot write"
        assert data["path"] == "/t.db"
        assert data["error_code"] == "TARGET_STORE_ERROR"
        assert data["classification"]["recoverability"] == "rollback"
        assert data["details"] == {"k": 1}

    def test_to_dict_includes_cause(self) -> None:
        try:
            try:
                raise OSError("disk full")
            except OSError as e:
                raise CheckpointError("copy failed") from e
        except CheckpointError as error:
            assert error.to_dict()["cause"] == "OSError: disk full"


class TestClassification:
    """Tests for severity and recoverability."""

    def test_severity_log_levels(self) -> None:
        assert ErrorSeverity.CRITICAL.log_level == logging.CRITICAL
        assert ErrorSeverity.ERROR.log_level == logging.ERROR
        assert ErrorSeverity.WARNING.log_level == logging.WARNING

    def test_requires_rollback(self) -> None:
        assert ErrorRecoverability.ROLLBACK.requires_rollback
        assert not ErrorRecoverability.RECOVERABLE.requires_rollback

    def test_integrity_error_is_critical_and_needs_rollback(self) -> None:
        error = IntegrityCheckError(
            IntegrityReport(
                valid=False,
                errors=["Event count mismatch"],
                warnings=[],
                flags=IntegrityFlags(),
                scores=QualityScores(),
                source_statistics=SourceStatistics(),
                target_statistics=TargetStatistics(),
            )
        )
        assert error.severity is ErrorSeverity.CRITICAL
        assert error.recoverability.requires_rollback
        assert "Event count mismatch" in error.message

    def test_source_errors_are_recoverable(self) -> None:
        assert SourceSchemaError(["x"]).recoverability is ErrorRecoverability.RECOVERABLE
        assert SourceUnavailableError("x").recoverability is ErrorRecoverability.RECOVERABLE


class TestSpecificErrors:
    def test_source_schema_error_lists_errors(self) -> None:
        error = SourceSchemaError(["Missing required columns: value"], path="s.db")
        assert error.errors == ["Missing required columns: value"]
        assert "Missing required columns: value" in error.message
        assert error.details == {"errors": ["Missing required columns: value"]}

    def test_pre_migration_error_carries_report(self) -> None:
        report = PreMigrationReport(
            valid=False,
            errors=["Insufficient disk space: required 10 bytes, available 1 bytes"],
            warnings=[],
            recommendations=[],
            checks=ReadinessChecks(),
        )
        error = PreMigrationValidationError(report)
        assert error.report is report
        assert "Insufficient disk space" in str(error)

    def test_batch_insert_error(self) -> None:
        error = BatchInsertError(3, 100, "UNIQUE constraint failed", path="t.db")
        assert error.batch_number == 3
        assert error.batch_size == 100
        assert error.original_error == "UNIQUE constraint failed"
        assert error.message == "Batch 3 (100 events) failed: UNIQUE constraint failed"

    def test_checkpoint_not_found(self) -> None:
        error = CheckpointNotFoundError("/data/x.checkpoint")
        assert error.path == "/data/x.checkpoint"
        assert error.error_code == "CHECKPOINT_NOT_FOUND"


class TestMigrationAbortedError:
    """Tests for MigrationAbortedError."""

    def test_carries_partial_result(self) -> None:
        result = _partial_result()
        error = MigrationAbortedError("aborted", result)
        assert error.result is result
        assert error.details["statistics"]["events_created"] == 3

    def test_takes_classification_from_cause(self) -> None:
        try:
            try:
                raise BatchInsertError(2, 10, "disk I/O error")
            except BatchInsertError as e:
                raise MigrationAbortedError("aborted", _partial_result()) from e
        except MigrationAbortedError as error:
            assert error.error_code == "BATCH_INSERT_FAILED"

    def test_default_classification_without_cause(self) -> None:
        error = MigrationAbortedError("aborted", _partial_result())
        assert error.error_code == "MIGRATION_ABORTED"
        assert error.recoverability is ErrorRecoverability.ROLLBACK
