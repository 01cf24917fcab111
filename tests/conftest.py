"""
Shared pytest fixtures for the eventmigrate library tests.

This module provides:
- Path fixtures (source_path, target_path) under tmp_path
- Legacy store fixtures (abc_source, ten_record_source)
- Configuration and injection fixtures (make_config, fixed_clock, ample_disk)
- Tracing fixtures (mock_tracer)
- OpenTelemetry metrics fixtures (metric_reader)
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from eventmigrate.models import MigrationConfig
from eventmigrate.observability import MockTracer
from tests.fixtures import create_legacy_store, legacy_row

# ============================================================================
# OpenTelemetry Metrics Availability Check
# ============================================================================

OTEL_METRICS_AVAILABLE = False
try:
    from opentelemetry import metrics as otel_metrics
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import InMemoryMetricReader

    OTEL_METRICS_AVAILABLE = True
except ImportError:
    otel_metrics = None  # type: ignore[assignment]
    MeterProvider = None  # type: ignore[assignment, misc]
    InMemoryMetricReader = None  # type: ignore[assignment, misc]


skip_if_no_otel_metrics = pytest.mark.skipif(
    not OTEL_METRICS_AVAILABLE, reason="opentelemetry-sdk not installed"
)


# =============================================================================
# Injection Fixtures
# =============================================================================

FIXED_NOW_MS = 1_700_000_500_000


@pytest.fixture
def fixed_clock() -> Callable[[], int]:
    """Clock returning a constant ms timestamp shortly after the test data."""
    return lambda: FIXED_NOW_MS


@pytest.fixture
def ample_disk() -> Callable[[Path], int]:
    """Disk probe reporting a terabyte free."""
    return lambda _path: 10**12


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Tracer recording span names and attributes."""
    return MockTracer()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def source_path(tmp_path: Path) -> Path:
    return tmp_path / "bilan.db"


@pytest.fixture
def target_path(tmp_path: Path) -> Path:
    return tmp_path / "out" / "bilan-events.db"


@pytest_asyncio.fixture
async def abc_source(source_path: Path) -> Path:
    """
    Three records A, B, C with values 1, -1, 1; C carries malformed metadata.

    Rows are inserted out of timestamp order to exercise ordering.
    """
    rows = [
        legacy_row("C", offset=300, user_id="user-3", metadata="{not json"),
        legacy_row(
            "A",
            offset=100,
            user_id="user-1",
            metadata='{"source": "web", "session": "s-1"}',
            prompt_text="What is 2+2?",
            ai_output="4",
        ),
        legacy_row("B", offset=200, user_id="user-2", value=-1, comment="wrong"),
    ]
    return await create_legacy_store(source_path, rows)


@pytest_asyncio.fixture
async def ten_record_source(source_path: Path) -> Path:
    """Ten records over four users; record r05 carries the out-of-domain value 2."""
    rows = [
        legacy_row(
            f"r{i:02d}",
            offset=i * 1000,
            user_id=f"user-{i % 4}",
            prompt_id=f"prompt-{i % 3}",
            value=2 if i == 5 else (1 if i % 2 else -1),
        )
        for i in range(10)
    ]
    return await create_legacy_store(source_path, rows)


@pytest.fixture
def make_config(source_path: Path, target_path: Path) -> Callable[..., MigrationConfig]:
    """
    Factory for configs pointing at the standard source and target paths.

    Usage:
        config = make_config(batch_size=2, validate=True)
    """

    def _make(**overrides: Any) -> MigrationConfig:
        values: dict[str, Any] = {"source_path": source_path, "target_path": target_path}
        values.update(overrides)
        return MigrationConfig(**values)

    return _make


# =============================================================================
# OpenTelemetry Fixtures
# =============================================================================


@pytest.fixture
def metric_reader() -> Generator[Any, None, None]:
    """
    Install an in-memory metric reader for the duration of a test.

    Yields:
        InMemoryMetricReader collecting every instrument created meanwhile.
    """
    if not OTEL_METRICS_AVAILABLE:
        pytest.skip("opentelemetry-sdk not installed")

    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    original = otel_metrics._internal._METER_PROVIDER
    otel_metrics._internal._METER_PROVIDER = provider
    try:
        yield reader
    finally:
        otel_metrics._internal._METER_PROVIDER = original
        provider.shutdown()
