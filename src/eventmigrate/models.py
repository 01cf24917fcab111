"""
Data models for the vote-store migration.

Defines the legacy row shape, the canonical event, the immutable run
configuration, and the statistics accumulated while a run progresses.

Usage:
    >>> from eventmigrate.models import MigrationConfig
    >>>
    >>> config = MigrationConfig(
    ...     source_path="bilan.db",
    ...     target_path="bilan-events.db",
    ...     batch_size=500,
    ... )
    >>> config.resolved_checkpoint_path
    PosixPath('bilan.db.checkpoint')
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from eventmigrate.serialization import json_dumps, json_loads

VOTE_CAST = "vote_cast"
"""The single event-type tag produced by the converter."""

EXPECTED_EVENT_TYPES: frozenset[str] = frozenset({VOTE_CAST})
"""Event-type set the target must hold after a complete run."""

EVENT_ID_PREFIX = "migrated_"
"""Prefix joined to a legacy id to derive the canonical event id."""

VALID_VOTE_VALUES: frozenset[int] = frozenset({1, -1})
"""Vote value domain, enforced on both the source and the target side."""

SOURCE_FORMAT_VERSION = "v0.3.x"
"""Format version tag of the legacy store."""

MAX_ERROR_MESSAGES = 100
"""Record-level error messages kept on the run statistics."""


def derive_event_id(original_id: str | None) -> str:
    """
    Derive the canonical event id for a legacy record id.

    A missing id derives the bare prefix; such records never pass
    per-event validation.
    """
    return f"{EVENT_ID_PREFIX}{original_id or ''}"


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


@dataclass(frozen=True)
class LegacyRecord:
    """
    One row of the legacy vote store.

    Values are kept exactly as stored so that out-of-domain votes and NULL
    identifiers reach validation instead of being coerced away.

    Attributes:
        id: Legacy record id, None if the column was NULL.
        user_id: Voting user, None if the column was NULL.
        prompt_id: Prompt that was voted on.
        value: Vote value; valid values are 1 and -1.
        comment: Optional free-text comment.
        timestamp: Milliseconds since the epoch.
        metadata: Raw metadata document as stored (JSON text).
        prompt_text: Optional prompt text.
        ai_output: Optional model response text.
        model_used: Optional model identifier.
        response_time: Optional response latency.
    """

    id: str | None
    user_id: str | None
    prompt_id: str | None
    value: int | None
    timestamp: int | None
    comment: str | None = None
    metadata: str = "{}"
    prompt_text: str | None = None
    ai_output: str | None = None
    model_used: str | None = None
    response_time: float | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> LegacyRecord:
        """
        Build a record from a source row mapping.

        Missing optional columns read as None; NULL metadata reads as '{}'.
        NULL identifiers stay None so that per-event validation excludes the
        record. Text columns holding numbers or blobs are read as text.
        """
        metadata = _text(row.get("metadata"))
        return cls(
            id=_text(row.get("id")),
            user_id=_text(row.get("user_id")),
            prompt_id=_text(row.get("prompt_id")),
            value=row.get("value"),
            timestamp=row.get("timestamp"),
            comment=_text(row.get("comment")),
            metadata=metadata if metadata is not None else "{}",
            prompt_text=_text(row.get("prompt_text")),
            ai_output=_text(row.get("ai_output")),
            model_used=_text(row.get("model_used")),
            response_time=row.get("response_time"),
        )

    @property
    def has_metadata(self) -> bool:
        """True if the record carries a non-empty metadata document."""
        return bool(self.metadata) and self.metadata.strip() not in ("{}", "")

    @property
    def has_content(self) -> bool:
        """True if prompt text or model output is present."""
        return bool(self.prompt_text) or bool(self.ai_output)


class CanonicalEvent(BaseModel):
    """
    One row of the canonical event store.

    user_id and timestamp are optional at the model level so that a record
    with missing identifiers still converts; per-event validation reports
    the violation and keeps the event out of the target.

    Attributes:
        event_id: Derived id, prefix plus the legacy id.
        user_id: Owning user.
        event_type: Event-type tag.
        timestamp: Milliseconds since the epoch.
        properties: Open property mapping.
        prompt_text: Optional prompt text.
        ai_response: Optional model response text.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., min_length=1, description="Derived event identifier")
    user_id: str | None = Field(default=None, description="Owning user")
    event_type: str = Field(default=VOTE_CAST, description="Event-type tag")
    timestamp: int | None = Field(default=None, description="Milliseconds since epoch")
    properties: dict[str, Any] = Field(
        default_factory=dict,
        description="Structural fields, legacy metadata and provenance markers",
    )
    prompt_text: str | None = Field(default=None, description="Prompt text")
    ai_response: str | None = Field(default=None, description="Model response text")

    def to_row(self) -> tuple[Any, ...]:
        """Row tuple matching the target INSERT column order."""
        return (
            self.event_id,
            self.user_id,
            self.event_type,
            self.timestamp,
            json_dumps(self.properties),
            self.prompt_text,
            self.ai_response,
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CanonicalEvent:
        """Build an event from a target row mapping."""
        raw = row["properties"]
        return cls(
            event_id=row["event_id"],
            user_id=row["user_id"],
            event_type=row["event_type"],
            timestamp=row["timestamp"],
            properties=json_loads(raw) if raw else {},
            prompt_text=row["prompt_text"],
            ai_response=row["ai_response"],
        )


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for one migration run.

    Immutable for the lifetime of the run.

    Attributes:
        source_path: Legacy store file.
        target_path: Canonical store file, created if absent.
        batch_size: Records per extract/convert/load unit (default 1000).
        dry_run: Process a bounded prefix and write nothing.
        validate: Strict mode; pre and post checks must pass.
        verbose: Log per-batch progress at INFO instead of DEBUG.
        checkpoint_path: Checkpoint file; defaults to '<source>.checkpoint'.
        timestamp_tolerance_ms: Allowed drift of the timestamp range (default 1000).
        dry_run_batch_limit: Batches a dry run processes (default 3).
        progress_interval: Events between ETA log lines (default 5000).

    Example:
        >>> MigrationConfig(source_path="a.db", target_path="b.db", batch_size=0)
        Traceback (most recent call last):
        ...
        ValueError: batch_size must be >= 1, got 0
    """

    source_path: Path
    target_path: Path
    batch_size: int = 1000
    dry_run: bool = False
    validate: bool = False
    verbose: bool = False
    checkpoint_path: Path | None = None
    timestamp_tolerance_ms: int = 1000
    dry_run_batch_limit: int = 3
    progress_interval: int = 5000

    def __post_init__(self) -> None:
        """Normalize paths and validate configuration values."""
        object.__setattr__(self, "source_path", Path(self.source_path))
        object.__setattr__(self, "target_path", Path(self.target_path))
        if self.checkpoint_path is not None:
            object.__setattr__(self, "checkpoint_path", Path(self.checkpoint_path))

        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")

        if self.timestamp_tolerance_ms < 0:
            raise ValueError(
                f"timestamp_tolerance_ms must be >= 0, got {self.timestamp_tolerance_ms}"
            )

        if self.dry_run_batch_limit < 1:
            raise ValueError(
                f"dry_run_batch_limit must be >= 1, got {self.dry_run_batch_limit}"
            )

        if self.progress_interval < 1:
            raise ValueError(f"progress_interval must be >= 1, got {self.progress_interval}")

        if self.source_path == self.target_path:
            raise ValueError("source_path and target_path must differ")

    @property
    def resolved_checkpoint_path(self) -> Path:
        """Checkpoint location, defaulting to a sibling of the source."""
        if self.checkpoint_path is not None:
            return self.checkpoint_path
        return self.source_path.with_name(self.source_path.name + ".checkpoint")

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for JSON storage.

        Returns:
            Dictionary representation of the config.
        """
        return {
            "source_path": str(self.source_path),
            "target_path": str(self.target_path),
            "batch_size": self.batch_size,
            "dry_run": self.dry_run,
            "validate": self.validate,
            "verbose": self.verbose,
            "checkpoint_path": str(self.checkpoint_path) if self.checkpoint_path else None,
            "timestamp_tolerance_ms": self.timestamp_tolerance_ms,
            "dry_run_batch_limit": self.dry_run_batch_limit,
            "progress_interval": self.progress_interval,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MigrationConfig:
        """
        Create from a mapping supplied by an external caller.

        Unknown keys are ignored.
        """
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class SourceStatistics:
    """
    Summary statistics of the legacy store.

    Attributes:
        total_records: Rows in the events table.
        unique_users: Distinct user ids.
        unique_prompts: Distinct prompt ids.
        earliest_timestamp: Smallest timestamp, None for an empty store.
        latest_timestamp: Largest timestamp, None for an empty store.
    """

    total_records: int = 0
    unique_users: int = 0
    unique_prompts: int = 0
    earliest_timestamp: int | None = None
    latest_timestamp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "unique_users": self.unique_users,
            "unique_prompts": self.unique_prompts,
            "earliest_timestamp": self.earliest_timestamp,
            "latest_timestamp": self.latest_timestamp,
        }


@dataclass(frozen=True)
class TargetStatistics:
    """
    Summary statistics of the canonical store.

    Attributes:
        total_events: Rows in the events table.
        unique_users: Distinct user ids.
        events_by_type: Row count per event type.
        earliest_timestamp: Smallest timestamp, None for an empty store.
        latest_timestamp: Largest timestamp, None for an empty store.
    """

    total_events: int = 0
    unique_users: int = 0
    events_by_type: dict[str, int] = field(default_factory=dict)
    earliest_timestamp: int | None = None
    latest_timestamp: int | None = None

    @property
    def event_types(self) -> frozenset[str]:
        """Set of event types present in the store."""
        return frozenset(self.events_by_type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_events": self.total_events,
            "unique_users": self.unique_users,
            "events_by_type": dict(self.events_by_type),
            "earliest_timestamp": self.earliest_timestamp,
            "latest_timestamp": self.latest_timestamp,
        }


@dataclass(frozen=True)
class ConversionStats:
    """
    Summary of one converted batch.

    Attributes:
        total_converted: Events produced.
        metadata_preserved: Records whose legacy metadata was non-empty.
        content_preserved: Records carrying prompt or response text.
        malformed_metadata: Records whose metadata could not be parsed.
        events_by_type: Event count per event type.
    """

    total_converted: int = 0
    metadata_preserved: int = 0
    content_preserved: int = 0
    malformed_metadata: int = 0
    events_by_type: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_converted": self.total_converted,
            "metadata_preserved": self.metadata_preserved,
            "content_preserved": self.content_preserved,
            "malformed_metadata": self.malformed_metadata,
            "events_by_type": dict(self.events_by_type),
        }


@dataclass
class MigrationStatistics:
    """
    Running statistics of a migration run.

    Mutated only by the orchestrator, one batch at a time.

    Attributes:
        total_records: Source row count at the start of the run.
        processed_records: Records extracted so far.
        events_created: Valid events loaded (or, on a dry run, that would be).
        errors_encountered: Records excluded by per-event validation.
        malformed_metadata: Records converted with unparsable metadata.
        batches_processed: Batches fully handled.
        start_time: Wall-clock start, ms since epoch.
        end_time: Wall-clock end, ms since epoch.
        error_messages: First record-level error messages.
    """

    total_records: int = 0
    processed_records: int = 0
    events_created: int = 0
    errors_encountered: int = 0
    malformed_metadata: int = 0
    batches_processed: int = 0
    start_time: int = 0
    end_time: int | None = None
    error_messages: list[str] = field(default_factory=list)

    def record_error(self, message: str) -> None:
        """Count one excluded record and keep its message if under the cap."""
        self.errors_encountered += 1
        if len(self.error_messages) < MAX_ERROR_MESSAGES:
            self.error_messages.append(message)

    @property
    def duration_ms(self) -> int | None:
        """Run duration, None while running."""
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "processed_records": self.processed_records,
            "events_created": self.events_created,
            "errors_encountered": self.errors_encountered,
            "malformed_metadata": self.malformed_metadata,
            "batches_processed": self.batches_processed,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "error_messages": list(self.error_messages),
        }


@dataclass(frozen=True)
class MigrationProgress:
    """
    Progress snapshot handed to a progress callback after each batch.

    Attributes:
        batch_number: One-based number of the batch just handled.
        processed_records: Records extracted so far.
        total_records: Source row count.
        events_created: Valid events so far.
        errors_encountered: Excluded records so far.
        elapsed_seconds: Time since extraction started.
        eta_seconds: Projected remaining time, None before any progress.
    """

    batch_number: int
    processed_records: int
    total_records: int
    events_created: int
    errors_encountered: int
    elapsed_seconds: float
    eta_seconds: float | None = None

    @property
    def percent_complete(self) -> float:
        """Share of source records processed, 100 for an empty source."""
        if self.total_records == 0:
            return 100.0
        return min(100.0, self.processed_records / self.total_records * 100)


__all__ = [
    "VOTE_CAST",
    "EXPECTED_EVENT_TYPES",
    "EVENT_ID_PREFIX",
    "VALID_VOTE_VALUES",
    "SOURCE_FORMAT_VERSION",
    "MAX_ERROR_MESSAGES",
    "derive_event_id",
    "LegacyRecord",
    "CanonicalEvent",
    "MigrationConfig",
    "SourceStatistics",
    "TargetStatistics",
    "ConversionStats",
    "MigrationStatistics",
    "MigrationProgress",
]
