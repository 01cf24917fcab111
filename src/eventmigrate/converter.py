"""
Legacy record to canonical event conversion.

The converter is a pure mapping: one LegacyRecord in, one CanonicalEvent
out, with no shared mutable state between records. The property mapping is
built by merge_properties() from three layers of increasing precedence:

    1. structural fields lifted from the legacy columns
    2. the parsed legacy metadata document
    3. provenance markers added by the migration

Provenance therefore always wins over metadata keys of the same name.

Example:
    >>> from eventmigrate.converter import EventConverter
    >>>
    >>> converter = EventConverter(clock=lambda: 1_700_000_000_000)
    >>> event = converter.convert(record)
    >>> event.event_id
    'migrated_A'
    >>> converter.validate_event(event)
    []
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from eventmigrate.models import (
    SOURCE_FORMAT_VERSION,
    VALID_VOTE_VALUES,
    VOTE_CAST,
    CanonicalEvent,
    ConversionStats,
    LegacyRecord,
    derive_event_id,
)
from eventmigrate.reports import ConversionPreview
from eventmigrate.serialization import parse_metadata

logger = logging.getLogger(__name__)

PROVENANCE_KEYS: tuple[str, ...] = ("migrated_from", "migration_timestamp", "event_source")
"""Property keys written by the migration; never overwritten by metadata."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def merge_properties(*layers: Mapping[str, Any]) -> dict[str, Any]:
    """
    Merge property layers, later layers taking precedence.

    Args:
        *layers: Mappings ordered lowest to highest precedence

    Returns:
        A new dict holding every key; on collision the value of the
        highest-precedence layer is kept
    """
    merged: dict[str, Any] = {}
    for layer in layers:
        merged.update(layer)
    return merged


def structural_properties(record: LegacyRecord) -> dict[str, Any]:
    """Fields lifted from the legacy columns into the property mapping."""
    return {
        "original_id": record.id,
        "prompt_id": record.prompt_id,
        "value": record.value,
        "comment": record.comment,
        "model_used": record.model_used,
        "response_time": record.response_time,
    }


def provenance_properties(migration_timestamp: int) -> dict[str, Any]:
    """Markers recording where and when an event was migrated."""
    return {
        "migrated_from": SOURCE_FORMAT_VERSION,
        "migration_timestamp": migration_timestamp,
        "event_source": VOTE_CAST,
    }


def _is_vote_value(value: Any) -> bool:
    return not isinstance(value, bool) and value in VALID_VOTE_VALUES


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class Conversion:
    """
    Result of converting one record.

    Attributes:
        record: The legacy input.
        event: The converted event.
        malformed_metadata: True if the metadata could not be parsed.
        violations: Per-event validation violations; empty when valid.
    """

    record: LegacyRecord
    event: CanonicalEvent
    malformed_metadata: bool = False
    violations: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations


class EventConverter:
    """
    Converts legacy vote records into canonical vote_cast events.

    Args:
        clock: Returns the current time in ms since the epoch; used for the
            migration_timestamp provenance marker. Defaults to wall time.
    """

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or _now_ms

    def convert(self, record: LegacyRecord) -> CanonicalEvent:
        """
        Convert one legacy record.

        Malformed metadata contributes nothing and never aborts conversion.

        Args:
            record: Legacy record

        Returns:
            The canonical event
        """
        return self._convert(record)[0]

    def _convert(self, record: LegacyRecord) -> tuple[CanonicalEvent, bool]:
        metadata, malformed = parse_metadata(record.metadata)
        if malformed:
            logger.warning("Malformed metadata on record %s, converting without it", record.id)

        properties = merge_properties(
            structural_properties(record),
            metadata,
            provenance_properties(self._clock()),
        )
        event = CanonicalEvent(
            event_id=derive_event_id(record.id),
            user_id=record.user_id,
            event_type=VOTE_CAST,
            # a non-integer timestamp is dropped and reported as missing
            timestamp=record.timestamp if _is_timestamp(record.timestamp) else None,
            properties=properties,
            prompt_text=record.prompt_text,
            ai_response=record.ai_output,
        )
        return event, malformed

    def convert_record(self, record: LegacyRecord) -> Conversion:
        """Convert and validate one record."""
        event, malformed = self._convert(record)
        return Conversion(
            record=record,
            event=event,
            malformed_metadata=malformed,
            violations=self.validate_event(event),
        )

    def convert_batch(self, records: Iterable[LegacyRecord]) -> list[Conversion]:
        """
        Convert and validate a batch, preserving input order.

        Args:
            records: Legacy records of one batch

        Returns:
            One Conversion per record
        """
        return [self.convert_record(record) for record in records]

    def validate_event(self, event: CanonicalEvent) -> list[str]:
        """
        Check one converted event.

        Args:
            event: Event to check

        Returns:
            Violation messages; empty when the event may be loaded
        """
        errors: list[str] = []

        if not event.event_id:
            errors.append("Missing event_id")
        if not event.user_id:
            errors.append("Missing user_id")
        if not event.event_type:
            errors.append("Missing event_type")
        if event.timestamp is None:
            errors.append("Missing timestamp")

        if event.event_type != VOTE_CAST:
            errors.append(
                f"Invalid event_type: {event.event_type}. "
                f"Expected '{VOTE_CAST}' for migrated votes"
            )

        props = event.properties
        if props.get("original_id") in (None, ""):
            errors.append("Missing original_id in properties")
        if props.get("prompt_id") in (None, ""):
            errors.append("Missing prompt_id in properties")
        if not _is_vote_value(props.get("value")):
            errors.append(f"Invalid vote value: {props.get('value')}. Must be 1 or -1")
        for key in PROVENANCE_KEYS:
            if key not in props:
                errors.append(f"Missing {key} in properties")

        return errors

    def get_conversion_stats(self, conversions: Iterable[Conversion]) -> ConversionStats:
        """
        Summarize a converted batch.

        Metadata counts as preserved when the legacy document was a
        non-empty, well-formed object; malformed documents are counted
        separately.
        """
        total = 0
        metadata_preserved = 0
        content_preserved = 0
        malformed = 0
        by_type: Counter[str] = Counter()

        for conversion in conversions:
            total += 1
            by_type[conversion.event.event_type] += 1
            if conversion.malformed_metadata:
                malformed += 1
            elif conversion.record.has_metadata:
                metadata_preserved += 1
            if conversion.event.prompt_text or conversion.event.ai_response:
                content_preserved += 1

        return ConversionStats(
            total_converted=total,
            metadata_preserved=metadata_preserved,
            content_preserved=content_preserved,
            malformed_metadata=malformed,
            events_by_type=dict(by_type),
        )

    def preview(self, record: LegacyRecord) -> ConversionPreview:
        """
        Show what one record would become, without writing anything.

        Args:
            record: Legacy record

        Returns:
            ConversionPreview with original and converted shapes
        """
        conversion = self.convert_record(record)
        event = conversion.event
        return ConversionPreview(
            original={
                "id": record.id,
                "user_id": record.user_id,
                "prompt_id": record.prompt_id,
                "value": record.value,
                "has_comment": bool(record.comment),
                "has_metadata": record.has_metadata,
                "has_prompt_text": bool(record.prompt_text),
                "has_ai_output": bool(record.ai_output),
            },
            converted={
                "event_id": event.event_id,
                "user_id": event.user_id,
                "event_type": event.event_type,
                "timestamp": event.timestamp,
                "properties_count": len(event.properties),
                "has_prompt_text": bool(event.prompt_text),
                "has_ai_response": bool(event.ai_response),
            },
            violations=list(conversion.violations),
            malformed_metadata=conversion.malformed_metadata,
        )


def merge_stats(total: ConversionStats, batch: ConversionStats) -> ConversionStats:
    """Add one batch's conversion statistics to a running total."""
    by_type = Counter(total.events_by_type)
    by_type.update(batch.events_by_type)
    return ConversionStats(
        total_converted=total.total_converted + batch.total_converted,
        metadata_preserved=total.metadata_preserved + batch.metadata_preserved,
        content_preserved=total.content_preserved + batch.content_preserved,
        malformed_metadata=total.malformed_metadata + batch.malformed_metadata,
        events_by_type=dict(by_type),
    )


__all__ = [
    "PROVENANCE_KEYS",
    "merge_properties",
    "structural_properties",
    "provenance_properties",
    "merge_stats",
    "Conversion",
    "EventConverter",
]
