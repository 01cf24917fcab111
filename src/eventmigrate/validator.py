"""
Pre- and post-migration validation.

MigrationValidator answers two questions:

- Before a run: is the environment ready? (source schema and data, disk
  headroom, file permissions, a live checkpoint probe)
- After a run: does the target hold what the source says it should?
  (exact event and user counts, event-type set, timestamp range within a
  tolerance, plus accuracy, preservation and performance scores)

Integrity failures (counts, event types, target schema) are the only hard
failures after a run. Low scores, timestamp drift and a missing checkpoint
are reported as warnings.

Usage:
    >>> from eventmigrate.validator import MigrationValidator
    >>>
    >>> validator = MigrationValidator(config)
    >>> pre = await validator.validate_pre_migration()
    >>> if not pre.valid:
    ...     for error in pre.errors:
    ...         print(error)
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from eventmigrate.checkpoint import CheckpointManager
from eventmigrate.exceptions import CheckpointError, MigrationError
from eventmigrate.extractor import RecordExtractor
from eventmigrate.models import (
    EXPECTED_EVENT_TYPES,
    VOTE_CAST,
    MigrationConfig,
    SourceStatistics,
    TargetStatistics,
)
from eventmigrate.observability import (
    ATTR_MIGRATION_PHASE,
    ATTR_MIGRATION_SOURCE_STORE,
    ATTR_MIGRATION_TARGET_STORE,
    Tracer,
    create_tracer,
)
from eventmigrate.reports import (
    IntegrityFlags,
    IntegrityReport,
    PreMigrationReport,
    QualityScores,
    ReadinessChecks,
    ReportStatus,
    ValidationResult,
    ValidationSummary,
)
from eventmigrate.target import TargetStore

logger = logging.getLogger(__name__)

TARGET_SIZE_FACTOR = 1.5
"""Expected target size relative to the source."""

DISK_SAFETY_MARGIN = 1.2
"""Headroom multiplier applied to the disk estimate."""

PERFORMANCE_THRESHOLD = 0.7
"""Performance scores below this are reported as warnings."""

OPTIMIZATION_THRESHOLD = 0.8
"""Performance scores below this produce an optimization recommendation."""

LARGE_DATASET = 100_000
VERBOSE_DATASET = 10_000
STALE_DATA_DAYS = 30
PERFORMANCE_SAMPLE_SIZE = 100
SLOW_QUERY_MS = 2000.0

TIME_RANGE_DECAY_MS = 10_000
"""Drift at which the time-range score reaches zero."""

MS_PER_DAY = 24 * 60 * 60 * 1000

# Representative read patterns the target indexes are meant to serve.
REPRESENTATIVE_QUERIES: tuple[tuple[str, tuple[object, ...]], ...] = (
    ("SELECT event_id FROM events WHERE user_id = ? ORDER BY timestamp", ("u",)),
    ("SELECT event_id FROM events WHERE event_type = ? AND timestamp > ?", (VOTE_CAST, 0)),
    ("SELECT event_id FROM events WHERE timestamp BETWEEN ? AND ?", (0, 1)),
    ("SELECT event_id FROM events WHERE json_extract(properties, '$.prompt_id') = ?", ("p",)),
    ("SELECT COUNT(*) FROM events WHERE json_extract(properties, '$.value') = ?", (1,)),
)


def required_disk_bytes(source_size: int) -> int:
    """Source, target and checkpoint copies plus the safety margin."""
    total = source_size + source_size * TARGET_SIZE_FACTOR + source_size
    return int(total * DISK_SAFETY_MARGIN)


def _ratio(actual: int, expected: int) -> float:
    if expected == 0:
        return 1.0
    return min(actual / expected, 1.0)


def _drift_score(expected: int | None, actual: int | None, tolerance_ms: int) -> float:
    if expected is None and actual is None:
        return 1.0
    if expected is None or actual is None:
        return 0.0
    diff = abs(expected - actual)
    if diff <= tolerance_ms:
        return 1.0
    return max(0.0, 1 - diff / TIME_RANGE_DECAY_MS)


def time_range_score(
    source: SourceStatistics, target: TargetStatistics, tolerance_ms: int = 1000
) -> float:
    """Mean of start and end drift scores; 1 within tolerance, decaying linearly."""
    start = _drift_score(source.earliest_timestamp, target.earliest_timestamp, tolerance_ms)
    end = _drift_score(source.latest_timestamp, target.latest_timestamp, tolerance_ms)
    return (start + end) / 2


def accuracy_score(source: SourceStatistics, target: TargetStatistics) -> float:
    """Mean capped target/source ratio over event and user counts."""
    return (
        _ratio(target.total_events, source.total_records)
        + _ratio(target.unique_users, source.unique_users)
    ) / 2


def preservation_score(
    source: SourceStatistics, target: TargetStatistics, tolerance_ms: int = 1000
) -> float:
    """Mean of the event ratio, the user ratio and the time-range score."""
    return (
        _ratio(target.total_events, source.total_records)
        + _ratio(target.unique_users, source.unique_users)
        + time_range_score(source, target, tolerance_ms)
    ) / 3


def query_time_score(query_time_ms: float) -> float:
    if query_time_ms < 1000:
        return 1.0
    return max(0.0, 1 - query_time_ms / 5000)


def _existing_ancestor(path: Path) -> Path:
    current = path.resolve()
    while not current.exists() and current != current.parent:
        current = current.parent
    return current


def _default_disk_free(path: Path) -> int:
    return shutil.disk_usage(_existing_ancestor(path)).free


def _now_ms() -> int:
    return int(time.time() * 1000)


class MigrationValidator:
    """
    Readiness and integrity checks for one migration configuration.

    Each check opens the stores it needs and closes them before returning,
    so the validator can be used before, after, or instead of a run.

    Args:
        config: The run configuration
        disk_free: Returns free bytes at a path; defaults to shutil.disk_usage
        clock: Returns ms since epoch; used for data-age recommendations
        tracer: Optional custom Tracer instance
        enable_tracing: If True and OpenTelemetry is available, emit traces
    """

    def __init__(
        self,
        config: MigrationConfig,
        *,
        disk_free: Callable[[Path], int] | None = None,
        clock: Callable[[], int] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._config = config
        self._disk_free = disk_free or _default_disk_free
        self._clock = clock or _now_ms
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._checkpoints = CheckpointManager(
            config.source_path,
            target_path=config.target_path,
            checkpoint_path=config.resolved_checkpoint_path,
            tracer=self._tracer,
        )

    def _extractor(self) -> RecordExtractor:
        return RecordExtractor(
            self._config.source_path,
            batch_size=self._config.batch_size,
            tracer=self._tracer,
        )

    # ------------------------------------------------------------------
    # Pre-migration
    # ------------------------------------------------------------------

    def check_disk_space(self) -> tuple[bool, int, int]:
        """
        Compare the estimated headroom with the free space at the target.

        Returns:
            Tuple of (sufficient, required_bytes, available_bytes)
        """
        source_size = self._config.source_path.stat().st_size
        required = required_disk_bytes(source_size)
        available = self._disk_free(self._config.target_path.parent)
        return available >= required, required, available

    def check_permissions(self) -> tuple[bool, bool]:
        """
        Check the source is readable and the target location writable.

        Returns:
            Tuple of (can_read, can_write)
        """
        can_read = os.access(self._config.source_path, os.R_OK)
        target = self._config.target_path
        if target.exists():
            can_write = os.access(target, os.W_OK)
        else:
            can_write = os.access(_existing_ancestor(target.parent), os.W_OK)
        return can_read, can_write

    async def validate_pre_migration(self, probe_checkpoint: bool = True) -> PreMigrationReport:
        """
        Check that a run can start.

        Args:
            probe_checkpoint: Create and validate the checkpoint as a live
                probe. Disable when nothing may be written.

        Returns:
            PreMigrationReport; valid only when every check passed
        """
        with self._tracer.span(
            "eventmigrate.validator.pre_migration",
            {
                ATTR_MIGRATION_PHASE: "validation",
                ATTR_MIGRATION_SOURCE_STORE: str(self._config.source_path),
                ATTR_MIGRATION_TARGET_STORE: str(self._config.target_path),
            },
        ):
            report = await self._do_validate_pre_migration(probe_checkpoint)

        if report.valid:
            logger.info("Pre-migration validation passed")
        else:
            logger.warning(
                "Pre-migration validation failed with %d errors", len(report.errors)
            )
        return report

    async def _do_validate_pre_migration(self, probe_checkpoint: bool) -> PreMigrationReport:
        errors: list[str] = []
        warnings: list[str] = []
        recommendations: list[str] = []

        source_validation: ValidationResult | None = None
        source_stats: SourceStatistics | None = None
        try:
            async with self._extractor() as extractor:
                source_validation = await extractor.validate()
                if source_validation.schema_valid:
                    source_stats = await extractor.get_statistics()
        except MigrationError as e:
            errors.append(e.message)

        if source_validation is not None:
            errors.extend(source_validation.errors)
            warnings.extend(source_validation.warnings)

        source_exists = self._config.source_path.is_file()
        disk_ok, required, available = False, 0, 0
        if source_exists:
            disk_ok, required, available = self.check_disk_space()
            if not disk_ok:
                errors.append(
                    f"Insufficient disk space: required {required} bytes, "
                    f"available {available} bytes"
                )

        can_read, can_write = self.check_permissions()
        if not can_read:
            errors.append("Cannot read source database file")
        if not can_write:
            errors.append("Cannot write to target database location")

        checkpoint_ok: bool | None = None
        if probe_checkpoint and source_exists:
            checkpoint_ok = True
            try:
                await self._checkpoints.create()
                probe = await self._checkpoints.validate()
            except CheckpointError as e:
                checkpoint_ok = False
                errors.append(f"Checkpoint creation failed: {e.message}")
            else:
                warnings.extend(probe.warnings)
                if not probe.valid:
                    checkpoint_ok = False
                    errors.extend(probe.errors)

        if source_stats is not None:
            recommendations.extend(self._recommendations(source_stats))
        if source_validation is not None and source_validation.warnings:
            recommendations.append(
                "Review validation warnings and consider data cleanup before migration"
            )

        checks = ReadinessChecks(
            source_schema_ok=source_validation is not None and source_validation.schema_valid,
            source_valid=source_validation is not None and source_validation.valid,
            disk_space_ok=disk_ok,
            permissions_ok=can_read and can_write,
            checkpoint_ok=checkpoint_ok,
        )
        return PreMigrationReport(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            recommendations=recommendations,
            checks=checks,
            source_validation=source_validation,
            source_statistics=source_stats,
            required_bytes=required,
            available_bytes=available,
        )

    def _recommendations(self, stats: SourceStatistics) -> list[str]:
        recommendations: list[str] = []
        if stats.total_records > LARGE_DATASET:
            recommendations.append(
                "Large dataset detected. Consider using smaller batch sizes (batch_size=500)"
            )
        if stats.total_records > VERBOSE_DATASET:
            recommendations.append("Enable verbose mode for better progress tracking")
        if stats.latest_timestamp is not None:
            age_days = (self._clock() - stats.latest_timestamp) // MS_PER_DAY
            if age_days > STALE_DATA_DAYS:
                recommendations.append(
                    f"Data is {age_days} days old. Consider validating business "
                    "requirements before migration"
                )
        return recommendations

    # ------------------------------------------------------------------
    # Post-migration
    # ------------------------------------------------------------------

    async def validate_post_migration(self) -> IntegrityReport:
        """
        Compare the target with the source after a run.

        The target must hold exactly the source records that pass per-event
        validation: equal event count, equal distinct-user count and only
        the vote_cast event type. Accuracy and preservation scores are
        computed against the full source, so excluded records lower them.

        Returns:
            IntegrityReport; invalid only on integrity failures
        """
        with self._tracer.span(
            "eventmigrate.validator.post_migration",
            {
                ATTR_MIGRATION_PHASE: "verification",
                ATTR_MIGRATION_SOURCE_STORE: str(self._config.source_path),
                ATTR_MIGRATION_TARGET_STORE: str(self._config.target_path),
            },
        ):
            report = await self._do_validate_post_migration()

        if report.valid:
            logger.info(
                "Post-migration validation passed (accuracy=%.3f, performance=%.3f)",
                report.scores.accuracy,
                report.scores.performance,
            )
        else:
            logger.error("Post-migration validation failed: %s", "; ".join(report.errors))
        return report

    async def _do_validate_post_migration(self) -> IntegrityReport:
        errors: list[str] = []
        warnings: list[str] = []
        tolerance = self._config.timestamp_tolerance_ms

        async with self._extractor() as extractor:
            source_stats = await extractor.get_statistics()
            expected = await extractor.get_eligible_statistics()

        excluded = source_stats.total_records - expected.total_records
        if excluded:
            warnings.append(f"{excluded} source records were excluded as invalid")

        if not self._config.target_path.is_file():
            errors.append("Target store does not exist")
            return IntegrityReport(
                valid=False,
                errors=errors,
                warnings=warnings,
                flags=IntegrityFlags(),
                scores=QualityScores(),
                source_statistics=source_stats,
                target_statistics=TargetStatistics(),
            )

        async with TargetStore(self._config.target_path, tracer=self._tracer) as target:
            target_validation = await target.validate()
            if target_validation.schema_valid:
                target_stats = await target.get_statistics()
                scores_perf = await self._measure_performance(target, target_stats, warnings)
            else:
                target_stats = TargetStatistics()
                scores_perf = (0.0, 0.0, 0.0, 0.0)

        errors.extend(target_validation.errors)
        warnings.extend(target_validation.warnings)

        event_count_match = target_stats.total_events == expected.total_records
        if not event_count_match:
            errors.append(
                f"Event count mismatch: expected {expected.total_records} "
                f"(source {source_stats.total_records}), target {target_stats.total_events}"
            )

        user_count_match = target_stats.unique_users == expected.unique_users
        if not user_count_match:
            errors.append(
                f"User count mismatch: expected {expected.unique_users} "
                f"(source {source_stats.unique_users}), target {target_stats.unique_users}"
            )

        expected_types = EXPECTED_EVENT_TYPES if expected.total_records else frozenset()
        actual_types = target_stats.event_types
        for missing in sorted(expected_types - actual_types):
            errors.append(f"Missing expected event type: {missing}")
        for unexpected in sorted(actual_types - expected_types):
            errors.append(f"Unexpected event type found: {unexpected}")
        event_types_match = actual_types == expected_types

        timestamp_range_match = True
        for label, want, got in (
            ("Start", expected.earliest_timestamp, target_stats.earliest_timestamp),
            ("End", expected.latest_timestamp, target_stats.latest_timestamp),
        ):
            if want is None and got is None:
                continue
            if want is None or got is None or abs(want - got) > tolerance:
                timestamp_range_match = False
                warnings.append(f"{label} time mismatch: source={want}, target={got}")

        checkpoint = await self._checkpoints.validate()
        if not checkpoint.valid:
            warnings.append("Rollback not possible: checkpoint validation failed")
            warnings.extend(checkpoint.errors)

        query_ms, query_score, index_score, storage_score = scores_perf
        performance = (query_score + index_score + storage_score) / 3
        if target_validation.schema_valid and performance < PERFORMANCE_THRESHOLD:
            warnings.append(f"Performance score below threshold: {performance:.2f}")

        scores = QualityScores(
            accuracy=accuracy_score(source_stats, target_stats),
            preservation=preservation_score(source_stats, target_stats, tolerance),
            time_range=time_range_score(source_stats, target_stats, tolerance),
            query_performance=query_score,
            index_efficiency=index_score,
            storage_efficiency=storage_score,
            performance=performance,
            query_time_ms=query_ms,
        )
        flags = IntegrityFlags(
            event_count_match=event_count_match,
            user_count_match=user_count_match,
            timestamp_range_match=timestamp_range_match,
            event_types_match=event_types_match,
            target_schema_valid=target_validation.valid,
            rollback_possible=checkpoint.valid,
        )
        return IntegrityReport(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            flags=flags,
            scores=scores,
            source_statistics=source_stats,
            target_statistics=target_stats,
            target_validation=target_validation,
        )

    async def _measure_performance(
        self,
        target: TargetStore,
        stats: TargetStatistics,
        warnings: list[str],
    ) -> tuple[float, float, float, float]:
        """Return (query_time_ms, query score, index efficiency, storage efficiency)."""
        started = time.perf_counter()
        await target.get_sample_events(PERFORMANCE_SAMPLE_SIZE)
        query_ms = (time.perf_counter() - started) * 1000
        if query_ms > SLOW_QUERY_MS:
            warnings.append(f"Slow query performance: {query_ms:.0f}ms")

        indexed = 0
        for sql, params in REPRESENTATIVE_QUERIES:
            plan = await target.explain_query_plan(sql, params)
            if any("USING" in line and "INDEX" in line for line in plan):
                indexed += 1
            else:
                logger.debug("Query not served by an index: %s -> %s", sql, plan)
        index_score = indexed / len(REPRESENTATIVE_QUERIES)

        # Heuristic: an empty store gives no evidence either way
        storage_score = 0.9 if stats.total_events > 0 else 0.5

        return query_ms, query_time_score(query_ms), index_score, storage_score

    # ------------------------------------------------------------------
    # Combined report
    # ------------------------------------------------------------------

    async def generate_report(self) -> ValidationSummary:
        """
        Combine readiness, integrity and checkpoint status into one report.

        The checkpoint is inspected, not recreated.

        Returns:
            ValidationSummary with status ERROR if any part failed, WARNING if
            any part warned, SUCCESS otherwise
        """
        pre = await self.validate_pre_migration(probe_checkpoint=False)
        post = await self.validate_post_migration()
        checkpoint = await self._checkpoints.validate()

        if not pre.valid or not post.valid:
            status = ReportStatus.ERROR
        elif pre.warnings or post.warnings or checkpoint.warnings or not checkpoint.valid:
            status = ReportStatus.WARNING
        else:
            status = ReportStatus.SUCCESS

        recommendations = list(pre.recommendations)
        if status is ReportStatus.ERROR:
            recommendations.append("Fix validation errors before proceeding")
        if post.scores.performance < OPTIMIZATION_THRESHOLD:
            recommendations.append("Consider database optimization for better performance")
        if not checkpoint.valid:
            recommendations.append("Ensure checkpoint exists before migration")

        return ValidationSummary(
            status=status,
            pre_migration=pre,
            integrity=post,
            checkpoint=checkpoint,
            recommendations=recommendations,
            generated_at=datetime.now(UTC),
        )


__all__ = [
    "REPRESENTATIVE_QUERIES",
    "required_disk_bytes",
    "accuracy_score",
    "preservation_score",
    "time_range_score",
    "query_time_score",
    "MigrationValidator",
]
