"""
Migration orchestrator.

Sequences one run:

    pre-migration check -> checkpoint -> for each batch:
        extract -> convert -> per-event validate -> load valid events
    -> post-migration check -> MigrationResult

Batches are strictly sequential: the next batch is not read until the
previous one is committed. Invalid records are excluded and counted, never
fatal. Fatal errors raised once extraction has begun unwind as
MigrationAbortedError carrying the partial result, with the original error
chained.

Example:
    >>> from eventmigrate import MigrationConfig, MigrationOrchestrator
    >>>
    >>> config = MigrationConfig(source_path="bilan.db", target_path="events.db")
    >>> orchestrator = MigrationOrchestrator(config)
    >>> result = await orchestrator.migrate()
    >>> result.statistics.events_created
    9
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack, aclosing

import aiosqlite

from eventmigrate.checkpoint import CheckpointManager
from eventmigrate.converter import Conversion, EventConverter, merge_stats
from eventmigrate.exceptions import (
    CheckpointError,
    InsufficientPermissionsError,
    IntegrityCheckError,
    MigrationAbortedError,
    MigrationError,
    PreMigrationValidationError,
    SourceSchemaError,
    SourceUnavailableError,
)
from eventmigrate.extractor import RecordExtractor
from eventmigrate.models import (
    ConversionStats,
    LegacyRecord,
    MigrationConfig,
    MigrationProgress,
    MigrationStatistics,
    SourceStatistics,
    TargetStatistics,
)
from eventmigrate.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_EVENTS_LOADED,
    ATTR_MIGRATION_DRY_RUN,
    ATTR_MIGRATION_SOURCE_STORE,
    ATTR_MIGRATION_TARGET_STORE,
    ATTR_RECORD_ID,
    ATTR_RECORDS_EXCLUDED,
    ATTR_RECORDS_EXTRACTED,
    MigrationMetrics,
    Tracer,
    create_tracer,
)
from eventmigrate.reports import (
    ConversionPreview,
    DryRunSample,
    DryRunSummary,
    IntegrityReport,
    MigrationResult,
    PreMigrationReport,
    RollbackVerification,
)
from eventmigrate.serialization import json_dumps
from eventmigrate.target import TargetStore
from eventmigrate.validator import MigrationValidator

logger = logging.getLogger(__name__)

DRY_RUN_SAMPLE_SIZE = 5

ProgressCallback = Callable[[MigrationProgress], Awaitable[None] | None]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _describe_exclusion(conversion: Conversion) -> str:
    return f"Record {conversion.record.id}: {'; '.join(conversion.violations)}"


class MigrationOrchestrator:
    """
    Runs a migration described by a MigrationConfig.

    Collaborators can be injected for testing; by default each is built
    from the config and shares the orchestrator's tracer.

    Args:
        config: Run configuration
        converter: Record converter
        validator: Pre/post validator
        checkpoints: Checkpoint manager for the source
        metrics: Metrics for this run
        progress_callback: Called after each batch with a MigrationProgress;
            may be a coroutine function
        clock: Returns ms since epoch; used for run timestamps
        tracer: Optional custom Tracer instance
        enable_tracing: If True and OpenTelemetry is available, emit traces
    """

    def __init__(
        self,
        config: MigrationConfig,
        *,
        converter: EventConverter | None = None,
        validator: MigrationValidator | None = None,
        checkpoints: CheckpointManager | None = None,
        metrics: MigrationMetrics | None = None,
        progress_callback: ProgressCallback | None = None,
        clock: Callable[[], int] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._config = config
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._clock = clock or _now_ms
        self._converter = converter or EventConverter(clock=self._clock)
        self._validator = validator or MigrationValidator(config, tracer=self._tracer)
        self._checkpoints = checkpoints or CheckpointManager(
            config.source_path,
            target_path=config.target_path,
            checkpoint_path=config.resolved_checkpoint_path,
            tracer=self._tracer,
        )
        self._metrics = metrics or MigrationMetrics(run_id=config.source_path.stem)
        self._progress_callback = progress_callback
        self._cancel_requested = False
        self._progress_mark = 0
        self._batch_log_level = logging.INFO if config.verbose else logging.DEBUG

    @property
    def config(self) -> MigrationConfig:
        return self._config

    @property
    def metrics(self) -> MigrationMetrics:
        return self._metrics

    @property
    def checkpoints(self) -> CheckpointManager:
        return self._checkpoints

    def cancel(self) -> None:
        """
        Request the run to stop.

        Honoured at the next batch boundary; the batch in flight is
        committed first.
        """
        self._cancel_requested = True
        logger.info("Cancellation requested")

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def _extractor(self) -> RecordExtractor:
        return RecordExtractor(
            self._config.source_path,
            batch_size=self._config.batch_size,
            tracer=self._tracer,
        )

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    async def _preflight(self, *, dry_run: bool) -> PreMigrationReport:
        """
        Run the pre-migration check and apply the gates for this mode.

        The source schema gate always applies. Strict mode also requires
        the whole report to pass. A real run additionally requires
        permissions and disk headroom.
        """
        with self._metrics.time_phase("validation"):
            report = await self._validator.validate_pre_migration(probe_checkpoint=False)

        for warning in report.warnings:
            logger.warning("Pre-migration: %s", warning)
        for recommendation in report.recommendations:
            logger.info("Recommendation: %s", recommendation)

        if not self._config.source_path.is_file():
            raise SourceUnavailableError(
                "Source store does not exist", path=self._config.source_path
            )
        if not report.checks.source_schema_ok:
            errors = report.source_validation.errors if report.source_validation else report.errors
            raise SourceSchemaError(errors, path=self._config.source_path)
        if self._config.validate and not report.valid:
            raise PreMigrationValidationError(report)
        if not dry_run:
            if not report.checks.permissions_ok:
                raise InsufficientPermissionsError(
                    "; ".join(e for e in report.errors if e.startswith("Cannot")),
                    path=self._config.target_path,
                )
            if not report.checks.disk_space_ok:
                raise PreMigrationValidationError(report)
        return report

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def migrate(self) -> MigrationResult:
        """
        Run the migration.

        Delegates to dry_run() when the config asks for one.

        Returns:
            MigrationResult; success is False only when the run was cancelled

        Raises:
            SourceUnavailableError: Source missing or unreadable
            SourceSchemaError: Source is not a legacy vote store
            InsufficientPermissionsError: Source unreadable or target unwritable
            PreMigrationValidationError: Readiness check failed
            CheckpointError: Checkpoint could not be created
            MigrationAbortedError: A fatal error after extraction began
        """
        if self._config.dry_run:
            return await self.dry_run()

        with self._tracer.span(
            "eventmigrate.orchestrator.migrate",
            {
                ATTR_MIGRATION_SOURCE_STORE: str(self._config.source_path),
                ATTR_MIGRATION_TARGET_STORE: str(self._config.target_path),
                ATTR_MIGRATION_DRY_RUN: False,
            },
        ):
            return await self._do_migrate()

    async def _do_migrate(self) -> MigrationResult:
        logger.info(
            "Starting migration %s -> %s (batch_size=%d, strict=%s)",
            self._config.source_path,
            self._config.target_path,
            self._config.batch_size,
            self._config.validate,
        )
        pre = await self._preflight(dry_run=False)

        with self._metrics.time_phase("checkpoint"):
            await self._checkpoints.create()
            checkpoint_check = await self._checkpoints.validate()
        if not checkpoint_check.valid:
            raise CheckpointError(
                "Checkpoint failed validation: " + "; ".join(checkpoint_check.errors),
                path=self._checkpoints.checkpoint_path,
            )

        stats = MigrationStatistics(start_time=self._clock())
        conversion = ConversionStats()
        source_stats: SourceStatistics | None = pre.source_statistics
        warnings: list[str] = list(pre.warnings) + list(checkpoint_check.warnings)

        def partial(
            target_stats: TargetStatistics | None = None,
            integrity: IntegrityReport | None = None,
        ) -> MigrationResult:
            stats.end_time = self._clock()
            return MigrationResult(
                success=False,
                dry_run=False,
                statistics=stats,
                conversion=conversion,
                source_statistics=source_stats,
                target_statistics=target_stats,
                pre_migration=pre,
                integrity=integrity,
                checkpoint_path=self._checkpoints.checkpoint_path,
                warnings=warnings,
            )

        cancelled = False
        try:
            with self._metrics.time_phase("extraction"):
                async with AsyncExitStack() as resources:
                    extractor = await resources.enter_async_context(self._extractor())
                    target = await resources.enter_async_context(
                        TargetStore(self._config.target_path, tracer=self._tracer)
                    )
                    await target.initialize()

                    source_stats = await extractor.get_statistics()
                    stats.total_records = source_stats.total_records
                    tracker = extractor.create_progress_tracker(stats.total_records)

                    async with aclosing(extractor.batches()) as batches:
                        async for batch in batches:
                            if self._cancel_requested:
                                cancelled = True
                                break
                            batch_stats = await self._process_batch(
                                batch, stats, target=target
                            )
                            conversion = merge_stats(conversion, batch_stats)
                            tracker.update(len(batch))
                            await self._report_progress(
                                stats, tracker.elapsed_seconds, tracker.eta_seconds
                            )
        except (MigrationError, aiosqlite.Error, OSError, ValueError) as e:
            logger.error(
                "Migration aborted after %d batches: %s", stats.batches_processed, e
            )
            raise MigrationAbortedError(f"Migration aborted: {e}", partial()) from e

        if cancelled:
            logger.warning(
                "Migration cancelled after %d batches; %d events committed",
                stats.batches_processed,
                stats.events_created,
            )
            warnings.append(f"Run cancelled after batch {stats.batches_processed}")
            return partial()

        with self._metrics.time_phase("verification"):
            integrity = await self._validator.validate_post_migration()
        warnings.extend(integrity.warnings)
        if not integrity.valid:
            error = IntegrityCheckError(integrity)
            logger.error("%s", error.message)
            raise MigrationAbortedError(
                f"Migration aborted: {error.message}",
                partial(integrity.target_statistics, integrity),
            ) from error

        stats.end_time = self._clock()
        logger.info(
            "Migration complete: %d records, %d events created, %d excluded in %d ms",
            stats.processed_records,
            stats.events_created,
            stats.errors_encountered,
            stats.duration_ms or 0,
        )
        return MigrationResult(
            success=True,
            dry_run=False,
            statistics=stats,
            conversion=conversion,
            source_statistics=source_stats,
            target_statistics=integrity.target_statistics,
            pre_migration=pre,
            integrity=integrity,
            checkpoint_path=self._checkpoints.checkpoint_path,
            warnings=warnings,
        )

    async def _process_batch(
        self,
        batch: list[LegacyRecord],
        stats: MigrationStatistics,
        *,
        target: TargetStore | None,
    ) -> ConversionStats:
        """
        Convert, validate and (unless target is None) load one batch.

        Updates stats in place and returns the batch's conversion summary.
        """
        batch_number = stats.batches_processed + 1
        started = time.perf_counter()
        with self._tracer.span(
            "eventmigrate.orchestrator.process_batch",
            {ATTR_BATCH_NUMBER: batch_number, ATTR_RECORDS_EXTRACTED: len(batch)},
        ) as span:
            conversions = self._converter.convert_batch(batch)
            valid = [c.event for c in conversions if c.valid]
            excluded = [c for c in conversions if not c.valid]

            for conversion in excluded:
                message = _describe_exclusion(conversion)
                logger.warning("Excluded from batch %d: %s", batch_number, message)
                stats.record_error(message)

            loaded = len(valid)
            if target is not None:
                loaded = await target.insert_batch(valid, batch_number=batch_number)
            assert loaded <= len(batch)

            if span is not None:
                span.set_attribute(ATTR_EVENTS_LOADED, loaded)
                span.set_attribute(ATTR_RECORDS_EXCLUDED, len(excluded))

        batch_stats = self._converter.get_conversion_stats(conversions)
        stats.processed_records += len(batch)
        stats.events_created += loaded
        stats.malformed_metadata += batch_stats.malformed_metadata
        stats.batches_processed = batch_number

        self._metrics.record_batch(
            extracted=len(batch),
            loaded=loaded if target is not None else 0,
            excluded=len(excluded),
            duration_seconds=time.perf_counter() - started,
            committed=target is not None and loaded > 0,
        )
        logger.log(
            self._batch_log_level,
            "Batch %d: %d records, %d loaded, %d excluded",
            batch_number,
            len(batch),
            loaded,
            len(excluded),
        )
        return batch_stats

    async def _report_progress(
        self,
        stats: MigrationStatistics,
        elapsed_seconds: float,
        eta_seconds: float | None,
    ) -> None:
        # Log each time processed_records crosses a multiple of the interval
        mark = stats.processed_records // self._config.progress_interval
        if mark > self._progress_mark:
            self._progress_mark = mark
            logger.info(
                "Progress: %d/%d records, %d events, ETA %.1fs",
                stats.processed_records,
                stats.total_records,
                stats.events_created,
                eta_seconds or 0.0,
            )

        if self._progress_callback is None:
            return
        progress = MigrationProgress(
            batch_number=stats.batches_processed,
            processed_records=stats.processed_records,
            total_records=stats.total_records,
            events_created=stats.events_created,
            errors_encountered=stats.errors_encountered,
            elapsed_seconds=elapsed_seconds,
            eta_seconds=eta_seconds,
        )
        outcome = self._progress_callback(progress)
        if inspect.isawaitable(outcome):
            await outcome

    # ------------------------------------------------------------------
    # Dry run and preview
    # ------------------------------------------------------------------

    async def dry_run(self) -> MigrationResult:
        """
        Process a bounded prefix of the source and write nothing.

        Converts and validates up to dry_run_batch_limit batches, keeps the
        first converted events of the first batch as samples, and
        extrapolates the output size from the average serialized event.
        No checkpoint is taken and the target is not opened.

        Returns:
            MigrationResult with dry_run_summary set
        """
        with self._tracer.span(
            "eventmigrate.orchestrator.dry_run",
            {
                ATTR_MIGRATION_SOURCE_STORE: str(self._config.source_path),
                ATTR_MIGRATION_DRY_RUN: True,
            },
        ):
            return await self._do_dry_run()

    async def _do_dry_run(self) -> MigrationResult:
        logger.info(
            "Starting dry run over at most %d batches of %d",
            self._config.dry_run_batch_limit,
            self._config.batch_size,
        )
        pre = await self._preflight(dry_run=True)

        stats = MigrationStatistics(start_time=self._clock())
        conversion = ConversionStats()
        samples: list[DryRunSample] = []
        serialized_bytes = 0

        with self._metrics.time_phase("dry_run"):
            async with self._extractor() as extractor:
                source_stats = await extractor.get_statistics()
                stats.total_records = source_stats.total_records
                async with aclosing(extractor.batches()) as batches:
                    async for batch in batches:
                        if self._cancel_requested:
                            break
                        conversions = self._converter.convert_batch(batch)
                        if stats.batches_processed == 0:
                            samples = [
                                DryRunSample(
                                    original_id=c.record.id,
                                    new_event_id=c.event.event_id,
                                    event_type=c.event.event_type,
                                    properties_count=len(c.event.properties),
                                    has_content=bool(c.event.prompt_text or c.event.ai_response),
                                )
                                for c in conversions[:DRY_RUN_SAMPLE_SIZE]
                            ]
                        serialized_bytes += sum(
                            len(json_dumps(c.event.model_dump()).encode("utf-8"))
                            for c in conversions
                            if c.valid
                        )
                        batch_stats = await self._process_batch(batch, stats, target=None)
                        conversion = merge_stats(conversion, batch_stats)
                        if stats.batches_processed >= self._config.dry_run_batch_limit:
                            break

        estimated = 0
        if stats.processed_records:
            estimated = int(serialized_bytes / stats.processed_records * stats.total_records)

        stats.end_time = self._clock()
        summary = DryRunSummary(
            batches_processed=stats.batches_processed,
            records_processed=stats.processed_records,
            valid_events=stats.events_created,
            samples=samples,
            estimated_output_bytes=estimated,
        )
        logger.info(
            "Dry run complete: %d records sampled, %d valid, estimated output %d bytes",
            summary.records_processed,
            summary.valid_events,
            summary.estimated_output_bytes,
        )
        return MigrationResult(
            success=True,
            dry_run=True,
            statistics=stats,
            conversion=conversion,
            source_statistics=source_stats,
            pre_migration=pre,
            dry_run_summary=summary,
            warnings=list(pre.warnings),
        )

    async def preview_conversion(self, record_id: str) -> ConversionPreview | None:
        """
        Show what one source record would become. Writes nothing.

        Args:
            record_id: Legacy record id

        Returns:
            ConversionPreview, or None if no record has that id
        """
        with self._tracer.span(
            "eventmigrate.orchestrator.preview_conversion",
            {ATTR_RECORD_ID: record_id},
        ):
            async with self._extractor() as extractor:
                record = await extractor.find_record(record_id)
        if record is None:
            logger.info("Preview: record %s not found", record_id)
            return None
        return self._converter.preview(record)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def rollback(self) -> RollbackVerification:
        """
        Remove the target and restore the source from its checkpoint.

        Returns:
            Verification comparing the restored source with the checkpoint

        Raises:
            RollbackError: If the rollback fails part way
        """
        with self._tracer.span(
            "eventmigrate.orchestrator.rollback",
            {
                ATTR_MIGRATION_SOURCE_STORE: str(self._config.source_path),
                ATTR_MIGRATION_TARGET_STORE: str(self._config.target_path),
            },
        ):
            await self._checkpoints.perform_full_rollback()
            verification = await self._checkpoints.verify_rollback()
        if verification.success:
            logger.info("Rollback verified: %d events restored", verification.restored_events)
        else:
            logger.error("Rollback verification failed: %s", "; ".join(verification.errors))
        return verification


__all__ = [
    "DRY_RUN_SAMPLE_SIZE",
    "ProgressCallback",
    "MigrationOrchestrator",
]
