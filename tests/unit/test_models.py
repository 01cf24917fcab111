"""
Unit tests for the data models.

Tests cover:
- derive_event_id determinism
- LegacyRecord.from_row defaults and coercion
- CanonicalEvent row mapping and immutability
- MigrationConfig validation, defaults and dict round trip
- MigrationStatistics error capping and duration
- MigrationProgress percentages
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from eventmigrate.models import (
    MAX_ERROR_MESSAGES,
    VOTE_CAST,
    CanonicalEvent,
    LegacyRecord,
    MigrationConfig,
    MigrationProgress,
    MigrationStatistics,
    TargetStatistics,
    derive_event_id,
)


class TestDeriveEventId:
    """Tests for derive_event_id."""

    def test_prefixes_original_id(self) -> None:
        assert derive_event_id("abc") == "migrated_abc"

    def test_is_deterministic(self) -> None:
        assert derive_event_id("abc") == derive_event_id("abc")

    def test_missing_id_gives_bare_prefix(self) -> None:
        assert derive_event_id(None) == "migrated_"


class TestLegacyRecord:
    """Tests for LegacyRecord."""

    def test_from_row_with_minimal_columns(self) -> None:
        """Missing optional columns read as None; metadata defaults to '{}'."""
        record = LegacyRecord.from_row(
            {"id": "A", "user_id": "u", "prompt_id": "p", "value": 1, "timestamp": 5}
        )

        assert record.id == "A"
        assert record.comment is None
        assert record.metadata == "{}"
        assert record.model_used is None

    def test_from_row_null_metadata_reads_as_empty_object(self) -> None:
        record = LegacyRecord.from_row(
            {"id": "A", "user_id": "u", "prompt_id": "p", "value": 1, "timestamp": 5,
             "metadata": None}
        )
        assert record.metadata == "{}"
        assert record.has_metadata is False

    def test_from_row_stringifies_numeric_ids(self) -> None:
        record = LegacyRecord.from_row(
            {"id": 7, "user_id": 42, "prompt_id": 9, "value": -1, "timestamp": 5}
        )
        assert record.id == "7"
        assert record.user_id == "42"
        assert record.prompt_id == "9"

    def test_from_row_keeps_null_user_id(self) -> None:
        record = LegacyRecord.from_row(
            {"id": "A", "user_id": None, "prompt_id": "p", "value": 1, "timestamp": 5}
        )
        assert record.user_id is None

    def test_from_row_keeps_null_id(self) -> None:
        record = LegacyRecord.from_row(
            {"id": None, "user_id": "u", "prompt_id": "p", "value": 1, "timestamp": 5}
        )
        assert record.id is None

    def test_from_row_decodes_blob_text(self) -> None:
        record = LegacyRecord.from_row(
            {"id": "A", "user_id": "u", "prompt_id": "p", "value": 1, "timestamp": 5,
             "comment": b"caf\xc3\xa9", "metadata": b'{"a": 1}'}
        )
        assert record.comment == "caf\u00e9"
        assert record.metadata == '{"a": 1}'

    def test_from_row_keeps_out_of_domain_value(self) -> None:
        record = LegacyRecord.from_row(
            {"id": "A", "user_id": "u", "prompt_id": "p", "value": 2, "timestamp": 5}
        )
        assert record.value == 2

    def test_has_metadata(self) -> None:
        base = {"id": "A", "user_id": "u", "prompt_id": "p", "value": 1, "timestamp": 5}
        assert LegacyRecord.from_row({**base, "metadata": '{"k": 1}'}).has_metadata
        assert not LegacyRecord.from_row({**base, "metadata": "{}"}).has_metadata

    def test_has_content(self) -> None:
        base = {"id": "A", "user_id": "u", "prompt_id": "p", "value": 1, "timestamp": 5}
        assert LegacyRecord.from_row({**base, "ai_output": "x"}).has_content
        assert not LegacyRecord.from_row(base).has_content


class TestCanonicalEvent:
    """Tests for CanonicalEvent."""

    def test_defaults_to_vote_cast(self) -> None:
        event = CanonicalEvent(event_id="migrated_A", user_id="u", timestamp=1)
        assert event.event_type == VOTE_CAST
        assert event.properties == {}

    def test_event_id_required(self) -> None:
        with pytest.raises(ValidationError):
            CanonicalEvent(event_id="", user_id="u", timestamp=1)

    def test_is_frozen(self) -> None:
        event = CanonicalEvent(event_id="migrated_A", user_id="u", timestamp=1)
        with pytest.raises(ValidationError):
            event.user_id = "other"  # type: ignore[misc]

    def test_to_row_serializes_properties(self) -> None:
        event = CanonicalEvent(
            event_id="migrated_A",
            user_id="u",
            timestamp=10,
            properties={"value": 1, "note": "héllo"},
            prompt_text="q",
            ai_response="a",
        )

        row = event.to_row()

        assert row == (
            "migrated_A",
            "u",
            VOTE_CAST,
            10,
            '{"value":1,"note":"héllo"}',
            "q",
            "a",
        )

    def test_from_row_parses_properties(self) -> None:
        row = {
            "event_id": "migrated_A",
            "user_id": "u",
            "event_type": VOTE_CAST,
            "timestamp": 10,
            "properties": '{"value": -1}',
            "prompt_text": None,
            "ai_response": None,
        }

        event = CanonicalEvent.from_row(row)

        assert event.properties == {"value": -1}
        assert event.timestamp == 10


class TestMigrationConfig:
    """Tests for MigrationConfig."""

    def test_defaults(self) -> None:
        config = MigrationConfig(source_path="a.db", target_path="b.db")

        assert config.batch_size == 1000
        assert config.dry_run is False
        assert config.validate is False
        assert config.verbose is False
        assert config.timestamp_tolerance_ms == 1000
        assert config.dry_run_batch_limit == 3
        assert config.progress_interval == 5000

    def test_paths_are_normalized(self) -> None:
        config = MigrationConfig(source_path="a.db", target_path="b.db")
        assert isinstance(config.source_path, Path)
        assert isinstance(config.target_path, Path)

    def test_default_checkpoint_path(self) -> None:
        config = MigrationConfig(source_path="/data/bilan.db", target_path="/data/out.db")
        assert config.resolved_checkpoint_path == Path("/data/bilan.db.checkpoint")

    def test_explicit_checkpoint_path(self) -> None:
        config = MigrationConfig(
            source_path="a.db", target_path="b.db", checkpoint_path="/tmp/cp.db"
        )
        assert config.resolved_checkpoint_path == Path("/tmp/cp.db")

    @pytest.mark.parametrize(
        ("field", "value", "message"),
        [
            ("batch_size", 0, "batch_size must be >= 1"),
            ("timestamp_tolerance_ms", -1, "timestamp_tolerance_ms must be >= 0"),
            ("dry_run_batch_limit", 0, "dry_run_batch_limit must be >= 1"),
            ("progress_interval", 0, "progress_interval must be >= 1"),
        ],
    )
    def test_rejects_invalid_values(self, field: str, value: int, message: str) -> None:
        with pytest.raises(ValueError, match=message):
            MigrationConfig(source_path="a.db", target_path="b.db", **{field: value})

    def test_rejects_same_source_and_target(self) -> None:
        with pytest.raises(ValueError, match="must differ"):
            MigrationConfig(source_path="a.db", target_path="a.db")

    def test_is_frozen(self) -> None:
        config = MigrationConfig(source_path="a.db", target_path="b.db")
        with pytest.raises(AttributeError):
            config.batch_size = 5  # type: ignore[misc]

    def test_from_dict_ignores_unknown_keys(self) -> None:
        config = MigrationConfig.from_dict(
            {"source_path": "a.db", "target_path": "b.db", "batch_size": 50, "color": "red"}
        )
        assert config.batch_size == 50

    def test_to_dict_round_trip(self) -> None:
        config = MigrationConfig(
            source_path="a.db", target_path="b.db", batch_size=7, verbose=True
        )
        assert MigrationConfig.from_dict(config.to_dict()) == config


class TestMigrationStatistics:
    """Tests for MigrationStatistics."""

    def test_record_error_counts_every_error(self) -> None:
        stats = MigrationStatistics()
        for i in range(MAX_ERROR_MESSAGES + 5):
            stats.record_error(f"Record {i}: bad")

        assert stats.errors_encountered == MAX_ERROR_MESSAGES + 5
        assert len(stats.error_messages) == MAX_ERROR_MESSAGES
        assert stats.error_messages[0] == "Record 0: bad"

    def test_duration_none_while_running(self) -> None:
        stats = MigrationStatistics(start_time=1000)
        assert stats.duration_ms is None
        stats.end_time = 1750
        assert stats.duration_ms == 750
        assert stats.to_dict()["duration_ms"] == 750


class TestTargetStatistics:
    def test_event_types(self) -> None:
        stats = TargetStatistics(events_by_type={VOTE_CAST: 3})
        assert stats.event_types == frozenset({VOTE_CAST})


class TestMigrationProgress:
    """Tests for MigrationProgress."""

    def test_percent_complete(self) -> None:
        progress = MigrationProgress(
            batch_number=1,
            processed_records=250,
            total_records=1000,
            events_created=240,
            errors_encountered=10,
            elapsed_seconds=1.0,
        )
        assert progress.percent_complete == 25.0

    def test_percent_complete_empty_source(self) -> None:
        progress = MigrationProgress(
            batch_number=0,
            processed_records=0,
            total_records=0,
            events_created=0,
            errors_encountered=0,
            elapsed_seconds=0.0,
        )
        assert progress.percent_complete == 100.0
