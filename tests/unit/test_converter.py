"""
Unit tests for EventConverter.

Tests cover:
- Property merge order (structural < metadata < provenance)
- Deterministic event ids
- Malformed metadata handling
- Per-event validation
- Batch conversion and statistics
- Single-record preview
"""

from __future__ import annotations

import pytest

from eventmigrate.converter import (
    PROVENANCE_KEYS,
    EventConverter,
    merge_properties,
    merge_stats,
    provenance_properties,
)
from eventmigrate.models import SOURCE_FORMAT_VERSION, VOTE_CAST, CanonicalEvent
from tests.conftest import FIXED_NOW_MS
from tests.fixtures import BASE_TIMESTAMP, make_record


@pytest.fixture
def converter() -> EventConverter:
    return EventConverter(clock=lambda: FIXED_NOW_MS)


class TestMergeProperties:
    """Tests for merge_properties."""

    def test_later_layers_win(self) -> None:
        merged = merge_properties({"a": 1, "b": 1}, {"b": 2, "c": 2}, {"c": 3})
        assert merged == {"a": 1, "b": 2, "c": 3}

    def test_does_not_mutate_layers(self) -> None:
        low = {"a": 1}
        merge_properties(low, {"a": 2})
        assert low == {"a": 1}

    def test_no_layers(self) -> None:
        assert merge_properties() == {}


class TestConvert:
    """Tests for EventConverter.convert."""

    def test_maps_fields(self, converter: EventConverter) -> None:
        record = make_record(
            "A",
            value=-1,
            comment="nope",
            prompt_text="q",
            ai_output="a",
            model_used="m-1",
            response_time=1.5,
        )

        event = converter.convert(record)

        assert event.event_id == "migrated_A"
        assert event.user_id == "user-1"
        assert event.event_type == VOTE_CAST
        assert event.timestamp == BASE_TIMESTAMP
        assert event.prompt_text == "q"
        assert event.ai_response == "a"
        assert event.properties["original_id"] == "A"
        assert event.properties["prompt_id"] == "prompt-1"
        assert event.properties["value"] == -1
        assert event.properties["comment"] == "nope"
        assert event.properties["model_used"] == "m-1"
        assert event.properties["response_time"] == 1.5

    def test_adds_provenance(self, converter: EventConverter) -> None:
        event = converter.convert(make_record())

        assert event.properties["migrated_from"] == SOURCE_FORMAT_VERSION
        assert event.properties["migration_timestamp"] == FIXED_NOW_MS
        assert event.properties["event_source"] == VOTE_CAST

    def test_metadata_keys_are_lifted(self, converter: EventConverter) -> None:
        event = converter.convert(make_record(metadata='{"source": "web", "session": "s"}'))
        assert event.properties["source"] == "web"
        assert event.properties["session"] == "s"

    def test_metadata_overrides_structural_fields(self, converter: EventConverter) -> None:
        event = converter.convert(make_record(comment="column", metadata='{"comment": "meta"}'))
        assert event.properties["comment"] == "meta"

    def test_provenance_is_never_overwritten(self, converter: EventConverter) -> None:
        record = make_record(
            metadata='{"migrated_from": "forged", "event_source": "other", '
            '"migration_timestamp": 1}'
        )

        event = converter.convert(record)

        assert event.properties["migrated_from"] == SOURCE_FORMAT_VERSION
        assert event.properties["event_source"] == VOTE_CAST
        assert event.properties["migration_timestamp"] == FIXED_NOW_MS

    def test_malformed_metadata_still_converts(self, converter: EventConverter) -> None:
        event = converter.convert(make_record(metadata="{not json"))

        assert event.event_id == "migrated_A"
        assert converter.validate_event(event) == []
        assert set(event.properties) == {
            "original_id",
            "prompt_id",
            "value",
            "comment",
            "model_used",
            "response_time",
            *PROVENANCE_KEYS,
        }

    def test_event_id_is_idempotent(self) -> None:
        record = make_record("xyz")
        first = EventConverter(clock=lambda: 1).convert(record)
        second = EventConverter(clock=lambda: 2).convert(record)
        assert first.event_id == second.event_id == "migrated_xyz"


class TestValidateEvent:
    """Tests for per-event validation."""

    def test_valid_event(self, converter: EventConverter) -> None:
        assert converter.validate_event(converter.convert(make_record())) == []

    @pytest.mark.parametrize("value", [2, 0, None])
    def test_out_of_domain_value(self, converter: EventConverter, value: int | None) -> None:
        violations = converter.validate_event(converter.convert(make_record(value=value)))
        assert violations == [f"Invalid vote value: {value}. Must be 1 or -1"]

    def test_boolean_value_is_rejected(self, converter: EventConverter) -> None:
        event = converter.convert(make_record())
        forged = event.model_copy(update={"properties": {**event.properties, "value": True}})
        assert "Invalid vote value: True. Must be 1 or -1" in converter.validate_event(forged)

    def test_missing_user_and_timestamp(self, converter: EventConverter) -> None:
        violations = converter.validate_event(
            converter.convert(make_record(user_id=None, timestamp=None))
        )
        assert "Missing user_id" in violations
        assert "Missing timestamp" in violations

    def test_missing_original_id(self, converter: EventConverter) -> None:
        conversion = converter.convert_record(make_record(record_id=None))

        assert conversion.event.event_id == "migrated_"
        assert conversion.event.properties["original_id"] is None
        assert conversion.violations == ["Missing original_id in properties"]
        assert not conversion.valid

    @pytest.mark.parametrize("timestamp", ["yesterday", 1.5])
    def test_non_integer_timestamp(self, converter: EventConverter, timestamp: object) -> None:
        conversion = converter.convert_record(make_record(timestamp=timestamp))

        assert conversion.event.timestamp is None
        assert conversion.violations == ["Missing timestamp"]

    def test_missing_prompt_id(self, converter: EventConverter) -> None:
        violations = converter.validate_event(converter.convert(make_record(prompt_id=None)))
        assert violations == ["Missing prompt_id in properties"]

    def test_wrong_event_type(self, converter: EventConverter) -> None:
        event = CanonicalEvent(
            event_id="migrated_A",
            user_id="u",
            event_type="page_view",
            timestamp=1,
            properties={
                "original_id": "A",
                "prompt_id": "p",
                "value": 1,
                **provenance_properties(1),
            },
        )
        violations = converter.validate_event(event)
        assert violations == [
            "Invalid event_type: page_view. Expected 'vote_cast' for migrated votes"
        ]

    def test_missing_provenance(self, converter: EventConverter) -> None:
        event = CanonicalEvent(
            event_id="migrated_A",
            user_id="u",
            timestamp=1,
            properties={"original_id": "A", "prompt_id": "p", "value": 1},
        )
        violations = converter.validate_event(event)
        assert violations == [f"Missing {key} in properties" for key in PROVENANCE_KEYS]


class TestConvertBatch:
    """Tests for batch conversion and statistics."""

    def test_preserves_order_and_flags(self, converter: EventConverter) -> None:
        records = [
            make_record("A"),
            make_record("B", value=2),
            make_record("C", metadata="[1]"),
        ]

        conversions = converter.convert_batch(records)

        assert [c.event.event_id for c in conversions] == [
            "migrated_A",
            "migrated_B",
            "migrated_C",
        ]
        assert [c.valid for c in conversions] == [True, False, True]
        assert [c.malformed_metadata for c in conversions] == [False, False, True]

    def test_conversion_stats(self, converter: EventConverter) -> None:
        conversions = converter.convert_batch(
            [
                make_record("A", metadata='{"k": 1}', prompt_text="q"),
                make_record("B", metadata="{}"),
                make_record("C", metadata="{broken", ai_output="a"),
            ]
        )

        stats = converter.get_conversion_stats(conversions)

        assert stats.total_converted == 3
        assert stats.metadata_preserved == 1
        assert stats.content_preserved == 2
        assert stats.malformed_metadata == 1
        assert stats.events_by_type == {VOTE_CAST: 3}

    def test_merge_stats(self, converter: EventConverter) -> None:
        first = converter.get_conversion_stats(converter.convert_batch([make_record("A")]))
        second = converter.get_conversion_stats(
            converter.convert_batch([make_record("B", metadata="x")])
        )

        total = merge_stats(first, second)

        assert total.total_converted == 2
        assert total.malformed_metadata == 1
        assert total.events_by_type == {VOTE_CAST: 2}


class TestPreview:
    """Tests for the single-record preview."""

    def test_preview_shapes(self, converter: EventConverter) -> None:
        record = make_record("A", comment="c", metadata='{"k": 1}', prompt_text="q")

        preview = converter.preview(record)

        assert preview.valid
        assert preview.original == {
            "id": "A",
            "user_id": "user-1",
            "prompt_id": "prompt-1",
            "value": 1,
            "has_comment": True,
            "has_metadata": True,
            "has_prompt_text": True,
            "has_ai_output": False,
        }
        assert preview.converted["event_id"] == "migrated_A"
        assert preview.converted["event_type"] == VOTE_CAST
        assert preview.converted["has_prompt_text"] is True
        assert preview.converted["has_ai_response"] is False
        # six structural fields, one metadata key, three provenance markers
        assert preview.converted["properties_count"] == 10

    def test_preview_reports_violations(self, converter: EventConverter) -> None:
        preview = converter.preview(make_record(value=5))
        assert not preview.valid
        assert preview.to_dict()["violations"] == ["Invalid vote value: 5. Must be 1 or -1"]
