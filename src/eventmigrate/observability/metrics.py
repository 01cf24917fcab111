"""
OpenTelemetry metrics for migration runs.

Tracks records extracted, events loaded, records excluded, committed
batches, batch latency and phase durations for a single run.

The metrics gracefully degrade when OpenTelemetry is not installed -
all operations become no-ops without raising errors. An instance is
created per run and handed to the orchestrator; there is no global
registry of runs.

Example:
    >>> from eventmigrate.observability.metrics import MigrationMetrics
    >>>
    >>> metrics = MigrationMetrics(run_id="bilan-upgrade")
    >>> metrics.record_batch(extracted=1000, loaded=998, excluded=2, duration_seconds=0.4)
    >>> with metrics.time_phase("extraction"):
    ...     await run_batches()

Metrics Exposed:
    - migration.records.extracted (Counter): Legacy records pulled from the source
    - migration.events.loaded (Counter): Canonical events committed to the target
    - migration.records.excluded (Counter): Records dropped by per-event validation
    - migration.batches.committed (Counter): Batches committed to the target
    - migration.batch.duration (Histogram): Extract/convert/load time per batch
    - migration.phase.duration (Histogram): Time spent in each run phase

All metrics carry the 'run_id' attribute for filtering.
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

# Optional OpenTelemetry import - single source of truth
try:
    from opentelemetry import metrics

    OTEL_METRICS_AVAILABLE = True
except ImportError:
    OTEL_METRICS_AVAILABLE = False
    metrics = None  # type: ignore[assignment]


class NoOpCounter:
    """
    No-op counter when OpenTelemetry is not available.

    Provides the same interface as an OpenTelemetry Counter
    but does nothing, allowing code to work without OTel.
    """

    def add(
        self,
        amount: int | float,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """No-op add operation."""
        pass


class NoOpHistogram:
    """
    No-op histogram when OpenTelemetry is not available.

    Provides the same interface as an OpenTelemetry Histogram
    but does nothing, allowing code to work without OTel.
    """

    def record(
        self,
        value: float,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """No-op record operation."""
        pass


@dataclass(frozen=True)
class MigrationMetricSnapshot:
    """
    Snapshot of current metric values for a run.

    Useful for testing and debugging to see what values
    would be reported to OpenTelemetry.

    Attributes:
        records_extracted: Total legacy records pulled from the source
        events_loaded: Total canonical events committed to the target
        records_excluded: Total records dropped by per-event validation
        batches_committed: Number of batches committed
        batch_durations: Per-batch durations in seconds, in order
        phase_durations: Dictionary of phase name to total duration
    """

    records_extracted: int = 0
    events_loaded: int = 0
    records_excluded: int = 0
    batches_committed: int = 0
    batch_durations: list[float] = field(default_factory=list)
    phase_durations: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "records_extracted": self.records_extracted,
            "events_loaded": self.events_loaded,
            "records_excluded": self.records_excluded,
            "batches_committed": self.batches_committed,
            "batch_durations": list(self.batch_durations),
            "phase_durations": dict(self.phase_durations),
        }


@dataclass
class MigrationMetrics:
    """
    Container for migration metrics instruments.

    All methods are safe to call even when OpenTelemetry is not
    installed - they become no-ops while the in-process snapshot
    keeps accumulating.

    Attributes:
        run_id: Identifier of the run, used as a metric label
        enable_metrics: Whether metrics are enabled (default True)
    """

    run_id: str
    enable_metrics: bool = True

    # Internal state
    _meter: Any = field(default=None, init=False, repr=False)
    _records_extracted_counter: Any = field(default=None, init=False, repr=False)
    _events_loaded_counter: Any = field(default=None, init=False, repr=False)
    _records_excluded_counter: Any = field(default=None, init=False, repr=False)
    _batches_committed_counter: Any = field(default=None, init=False, repr=False)
    _batch_duration_histogram: Any = field(default=None, init=False, repr=False)
    _phase_duration_histogram: Any = field(default=None, init=False, repr=False)

    # Internal counters for snapshot
    _records_extracted: int = field(default=0, init=False, repr=False)
    _events_loaded: int = field(default=0, init=False, repr=False)
    _records_excluded: int = field(default=0, init=False, repr=False)
    _batches_committed: int = field(default=0, init=False, repr=False)
    _batch_durations: list[float] = field(default_factory=list, init=False, repr=False)
    _phase_durations: dict[str, float] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        """Initialize metric instruments."""
        if self.enable_metrics and OTEL_METRICS_AVAILABLE:
            self._setup_metrics()
        else:
            self._setup_noop()

    def _setup_metrics(self) -> None:
        """Set up OpenTelemetry metric instruments."""
        self._meter = metrics.get_meter("eventmigrate.migration", version="1.0.0")

        self._records_extracted_counter = self._meter.create_counter(
            name="migration.records.extracted",
            unit="records",
            description="Legacy records pulled from the source store",
        )
        self._events_loaded_counter = self._meter.create_counter(
            name="migration.events.loaded",
            unit="events",
            description="Canonical events committed to the target store",
        )
        self._records_excluded_counter = self._meter.create_counter(
            name="migration.records.excluded",
            unit="records",
            description="Records dropped by per-event validation",
        )
        self._batches_committed_counter = self._meter.create_counter(
            name="migration.batches.committed",
            unit="batches",
            description="Batches committed to the target store",
        )
        self._batch_duration_histogram = self._meter.create_histogram(
            name="migration.batch.duration",
            unit="s",
            description="Extract, convert and load time per batch in seconds",
        )
        self._phase_duration_histogram = self._meter.create_histogram(
            name="migration.phase.duration",
            unit="s",
            description="Time spent in each run phase in seconds",
        )

    def _setup_noop(self) -> None:
        """Set up no-op instruments when OTel not available."""
        self._records_extracted_counter = NoOpCounter()
        self._events_loaded_counter = NoOpCounter()
        self._records_excluded_counter = NoOpCounter()
        self._batches_committed_counter = NoOpCounter()
        self._batch_duration_histogram = NoOpHistogram()
        self._phase_duration_histogram = NoOpHistogram()

    def _base_attributes(self) -> dict[str, str]:
        """Get base attributes for all metrics."""
        return {"run_id": self.run_id}

    def record_batch(
        self,
        extracted: int,
        loaded: int,
        excluded: int,
        duration_seconds: float,
        committed: bool = True,
    ) -> None:
        """
        Record the outcome of one batch.

        Args:
            extracted: Records pulled from the source in the batch
            loaded: Valid events written to the target (0 on dry runs)
            excluded: Records dropped by per-event validation
            duration_seconds: Wall time for the batch
            committed: Whether a target transaction was committed
        """
        attrs = self._base_attributes()
        self._records_extracted_counter.add(extracted, attrs)
        self._events_loaded_counter.add(loaded, attrs)
        if excluded:
            self._records_excluded_counter.add(excluded, attrs)
        if committed:
            self._batches_committed_counter.add(1, attrs)
            self._batches_committed += 1
        self._batch_duration_histogram.record(duration_seconds, attrs)

        self._records_extracted += extracted
        self._events_loaded += loaded
        self._records_excluded += excluded
        self._batch_durations.append(duration_seconds)

    def record_phase_duration(self, phase: str, duration_seconds: float) -> None:
        """
        Record duration for a run phase.

        Args:
            phase: Phase name (e.g., 'validation', 'extraction')
            duration_seconds: Duration in seconds
        """
        attrs = {**self._base_attributes(), "phase": phase}
        self._phase_duration_histogram.record(duration_seconds, attrs)

        if phase not in self._phase_durations:
            self._phase_durations[phase] = 0.0
        self._phase_durations[phase] += duration_seconds

    @contextmanager
    def time_phase(self, phase: str) -> Generator[_PhaseTimer, None, None]:
        """
        Context manager for timing a run phase.

        Automatically records the phase duration when the context exits,
        including when the phase raises.

        Example:
            >>> with metrics.time_phase("extraction"):
            ...     await run_batches()
        """
        timer = _PhaseTimer()
        timer.start()
        try:
            yield timer
        finally:
            timer.stop()
            self.record_phase_duration(phase, timer.duration_seconds)

    def get_snapshot(self) -> MigrationMetricSnapshot:
        """
        Get a snapshot of current metric values.

        Returns:
            MigrationMetricSnapshot with current values
        """
        return MigrationMetricSnapshot(
            records_extracted=self._records_extracted,
            events_loaded=self._events_loaded,
            records_excluded=self._records_excluded,
            batches_committed=self._batches_committed,
            batch_durations=list(self._batch_durations),
            phase_durations=dict(self._phase_durations),
        )

    @property
    def metrics_enabled(self) -> bool:
        """True if metrics are enabled and OTel is available."""
        return self.enable_metrics and OTEL_METRICS_AVAILABLE


class _PhaseTimer:
    """Internal timer used by the time_phase context manager."""

    def __init__(self) -> None:
        self._start: float = 0.0
        self._end: float = 0.0
        self._stopped: bool = False

    def start(self) -> None:
        """Start the timer."""
        self._start = time.perf_counter()
        self._stopped = False

    def stop(self) -> None:
        """Stop the timer."""
        self._end = time.perf_counter()
        self._stopped = True

    @property
    def duration_seconds(self) -> float:
        """Elapsed seconds, measured up to now while still running."""
        end = self._end if self._stopped else time.perf_counter()
        return end - self._start


__all__ = [
    "OTEL_METRICS_AVAILABLE",
    "MigrationMetrics",
    "MigrationMetricSnapshot",
    "NoOpCounter",
    "NoOpHistogram",
]
