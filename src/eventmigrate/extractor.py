"""
Record extractor for the legacy vote store.

Reads the legacy 'events' table through a read-only connection and yields
LegacyRecord batches in ascending timestamp order. The extractor never
writes to the source.

Usage:
    >>> from eventmigrate.extractor import RecordExtractor
    >>>
    >>> async with RecordExtractor("bilan.db", batch_size=500) as extractor:
    ...     result = await extractor.validate()
    ...     async for batch in extractor.batches():
    ...         handle(batch)
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import aiosqlite

from eventmigrate.exceptions import SourceSchemaError, SourceUnavailableError
from eventmigrate.models import LegacyRecord, SourceStatistics
from eventmigrate.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_RECORD_ID,
    ATTR_RECORDS_EXTRACTED,
    Tracer,
    create_tracer,
)
from eventmigrate.reports import ValidationResult

logger = logging.getLogger(__name__)

SOURCE_TABLE = "events"

REQUIRED_COLUMNS: tuple[str, ...] = ("id", "user_id", "prompt_id", "value", "timestamp")
"""Columns without which the source is not a legacy vote store."""

OPTIONAL_COLUMNS: tuple[str, ...] = (
    "comment",
    "metadata",
    "prompt_text",
    "ai_output",
    "model_used",
    "response_time",
)
"""Columns read as NULL when an older file does not have them."""

ELIGIBLE_PREDICATE = (
    "id IS NOT NULL AND id != '' "
    "AND user_id IS NOT NULL AND user_id != '' "
    "AND prompt_id IS NOT NULL AND prompt_id != '' "
    "AND value IN (1, -1) "
    "AND typeof(timestamp) = 'integer'"
)
"""SQL form of the converter's per-event checks on a legacy row."""


class ExtractionProgress:
    """
    Tracks how far extraction has advanced and projects remaining time.

    The projection uses elapsed time per processed record.

    Example:
        >>> tracker = extractor.create_progress_tracker(total=10_000)
        >>> tracker.update(1000)
        >>> tracker.percent_complete
        10.0
    """

    def __init__(self, total: int) -> None:
        self.total = total
        self.processed = 0
        self._started = time.monotonic()

    def update(self, count: int) -> None:
        """Add count newly processed records."""
        self.processed += count

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self._started

    @property
    def percent_complete(self) -> float:
        if self.total == 0:
            return 100.0
        return min(100.0, self.processed / self.total * 100)

    @property
    def eta_seconds(self) -> float | None:
        """Remaining time projected from elapsed time per record."""
        if self.processed == 0:
            return None
        per_record = self.elapsed_seconds / self.processed
        return max(0, self.total - self.processed) * per_record


class RecordExtractor:
    """
    Reads legacy vote records from a SQLite file.

    The file is opened with ``mode=ro`` so the extractor cannot mutate it.
    Batches are produced lazily, one per iteration step; a batch generator
    is finite and a new call to batches() starts again from the first row.

    Attributes:
        _source_path: Path of the legacy store
        _batch_size: Records per batch
        _connection: The aiosqlite connection (set after connect)
    """

    def __init__(
        self,
        source_path: str | Path,
        *,
        batch_size: int = 1000,
        busy_timeout: int = 5000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the extractor.

        Args:
            source_path: Path to the legacy SQLite file
            batch_size: Records per batch (default 1000)
            busy_timeout: Milliseconds to wait when the file is locked
            tracer: Optional custom Tracer instance
            enable_tracing: If True and OpenTelemetry is available, emit traces
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._source_path = Path(source_path)
        self._batch_size = batch_size
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None
        self._columns: set[str] | None = None

        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def __aenter__(self) -> RecordExtractor:
        await self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _connect(self) -> None:
        """
        Open a read-only connection to the source.

        Raises:
            SourceUnavailableError: If the file is missing or cannot be opened
        """
        if self._connection is not None:
            return

        if not self._source_path.is_file():
            raise SourceUnavailableError(
                "Source store does not exist", path=self._source_path
            )

        uri = f"{self._source_path.resolve().as_uri()}?mode=ro"
        try:
            self._connection = await aiosqlite.connect(uri, uri=True)
            await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
            # Touch the schema so a non-database file fails here
            await self._connection.execute("SELECT name FROM sqlite_master LIMIT 1")
        except aiosqlite.Error as e:
            await self.close()
            raise SourceUnavailableError(
                f"Cannot open source store: {e}", path=self._source_path
            ) from e

        self._connection.row_factory = aiosqlite.Row
        logger.debug("Opened source store read-only: %s", self._source_path)

    async def close(self) -> None:
        """Close the connection. Safe to call multiple times."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._columns = None
            logger.debug("Closed source store: %s", self._source_path)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Source not open. Use 'async with extractor:' before reading."
            )
        return self._connection

    @property
    def source_path(self) -> Path:
        return self._source_path

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def _scalar(self, sql: str, params: tuple[Any, ...] = ()) -> Any:
        conn = self._ensure_connected()
        cursor = await conn.execute(sql, params)
        row = await cursor.fetchone()
        await cursor.close()
        return row[0] if row else None

    async def table_exists(self) -> bool:
        """Check whether the legacy events table exists."""
        count = await self._scalar(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?",
            (SOURCE_TABLE,),
        )
        return bool(count)

    async def get_columns(self) -> set[str]:
        """Column names of the legacy events table (empty if it is missing)."""
        if self._columns is None:
            conn = self._ensure_connected()
            cursor = await conn.execute(f"PRAGMA table_info({SOURCE_TABLE})")
            rows = await cursor.fetchall()
            await cursor.close()
            self._columns = {row["name"] for row in rows}
        return self._columns

    async def _select_list(self) -> str:
        columns = await self.get_columns()
        missing = [c for c in REQUIRED_COLUMNS if c not in columns]
        if missing:
            raise SourceSchemaError(
                [f"Missing required columns: {', '.join(missing)}"],
                path=self._source_path,
            )
        parts = list(REQUIRED_COLUMNS)
        for name in OPTIONAL_COLUMNS:
            parts.append(name if name in columns else f"NULL AS {name}")
        return ", ".join(parts)

    async def batches(self) -> AsyncIterator[list[LegacyRecord]]:
        """
        Yield batches of legacy records in ascending timestamp order.

        Ties on timestamp are broken by id so pagination is stable.

        Yields:
            Lists of at most batch_size records; the last may be shorter

        Raises:
            SourceSchemaError: If required columns are missing
        """
        conn = self._ensure_connected()
        select_list = await self._select_list()
        sql = (
            f"SELECT {select_list} FROM {SOURCE_TABLE} "
            "ORDER BY timestamp ASC, id ASC LIMIT ? OFFSET ?"
        )

        offset = 0
        batch_number = 0
        while True:
            batch_number += 1
            with self._tracer.span(
                "eventmigrate.extractor.next_batch",
                {
                    ATTR_DB_SYSTEM: "sqlite",
                    ATTR_DB_NAME: str(self._source_path),
                    ATTR_DB_OPERATION: "SELECT",
                    ATTR_BATCH_NUMBER: batch_number,
                    ATTR_BATCH_SIZE: self._batch_size,
                },
            ):
                cursor = await conn.execute(sql, (self._batch_size, offset))
                rows = await cursor.fetchall()
                await cursor.close()

            if not rows:
                return

            batch = [LegacyRecord.from_row(dict(row)) for row in rows]
            logger.debug(
                "Extracted batch %d: %d records (offset %d)",
                batch_number,
                len(batch),
                offset,
            )
            yield batch

            if len(rows) < self._batch_size:
                return
            offset += len(rows)

    async def find_record(self, record_id: str) -> LegacyRecord | None:
        """
        Locate one legacy record by id.

        Args:
            record_id: Legacy record id

        Returns:
            The record, or None if no row has that id
        """
        conn = self._ensure_connected()
        select_list = await self._select_list()
        with self._tracer.span(
            "eventmigrate.extractor.find_record",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_RECORD_ID: record_id},
        ):
            cursor = await conn.execute(
                f"SELECT {select_list} FROM {SOURCE_TABLE} WHERE id = ? LIMIT 1",
                (record_id,),
            )
            row = await cursor.fetchone()
            await cursor.close()
        if row is None:
            return None
        return LegacyRecord.from_row(dict(row))

    async def get_total_count(self) -> int:
        return int(await self._scalar(f"SELECT COUNT(*) FROM {SOURCE_TABLE}") or 0)

    async def get_unique_user_count(self) -> int:
        return int(
            await self._scalar(f"SELECT COUNT(DISTINCT user_id) FROM {SOURCE_TABLE}") or 0
        )

    async def get_unique_prompt_count(self) -> int:
        return int(
            await self._scalar(f"SELECT COUNT(DISTINCT prompt_id) FROM {SOURCE_TABLE}") or 0
        )

    async def get_timestamp_range(self) -> tuple[int | None, int | None]:
        """
        Smallest and largest timestamp, (None, None) for an empty store.

        Only integer timestamps count; SQLite orders text above every number.
        """
        conn = self._ensure_connected()
        cursor = await conn.execute(
            f"SELECT MIN(timestamp), MAX(timestamp) FROM {SOURCE_TABLE} "
            "WHERE typeof(timestamp) = 'integer'"
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None, None
        return row[0], row[1]

    async def get_statistics(self) -> SourceStatistics:
        """
        Collect summary statistics of the source.

        Returns:
            SourceStatistics with counts and timestamp range
        """
        with self._tracer.span(
            "eventmigrate.extractor.get_statistics",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_NAME: str(self._source_path)},
        ) as span:
            earliest, latest = await self.get_timestamp_range()
            stats = SourceStatistics(
                total_records=await self.get_total_count(),
                unique_users=await self.get_unique_user_count(),
                unique_prompts=await self.get_unique_prompt_count(),
                earliest_timestamp=earliest,
                latest_timestamp=latest,
            )
            if span is not None:
                span.set_attribute(ATTR_RECORDS_EXTRACTED, stats.total_records)
        return stats

    async def get_eligible_statistics(self) -> SourceStatistics:
        """
        Statistics over the records that pass per-event validation.

        These are the rows a complete run loads, so the target must match
        them exactly.
        """
        conn = self._ensure_connected()
        with self._tracer.span(
            "eventmigrate.extractor.get_eligible_statistics",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_NAME: str(self._source_path)},
        ):
            cursor = await conn.execute(
                "SELECT COUNT(*), COUNT(DISTINCT user_id), COUNT(DISTINCT prompt_id), "
                f"MIN(timestamp), MAX(timestamp) FROM {SOURCE_TABLE} "
                f"WHERE {ELIGIBLE_PREDICATE}"
            )
            row = await cursor.fetchone()
            await cursor.close()
        if row is None:
            return SourceStatistics()
        return SourceStatistics(
            total_records=int(row[0]),
            unique_users=int(row[1]),
            unique_prompts=int(row[2]),
            earliest_timestamp=row[3],
            latest_timestamp=row[4],
        )

    async def validate(self) -> ValidationResult:
        """
        Validate the source schema and data.

        Missing table or required columns, NULL user or prompt ids and vote
        values outside {1, -1} are errors. Malformed metadata, NULL
        timestamps and an empty store are warnings.

        Returns:
            ValidationResult; schema_valid is False when the table or
            required columns are missing
        """
        with self._tracer.span(
            "eventmigrate.extractor.validate",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_NAME: str(self._source_path)},
        ):
            return await self._do_validate()

    async def _do_validate(self) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        if not await self.table_exists():
            errors.append(f"Source table '{SOURCE_TABLE}' does not exist")
            return ValidationResult(valid=False, errors=errors, schema_valid=False)

        columns = await self.get_columns()
        missing = [c for c in REQUIRED_COLUMNS if c not in columns]
        if missing:
            errors.append(f"Missing required columns: {', '.join(missing)}")
            return ValidationResult(valid=False, errors=errors, schema_valid=False)

        null_users = await self._scalar(
            f"SELECT COUNT(*) FROM {SOURCE_TABLE} WHERE user_id IS NULL"
        )
        if null_users:
            errors.append(f"{null_users} records have NULL user_id")

        null_prompts = await self._scalar(
            f"SELECT COUNT(*) FROM {SOURCE_TABLE} WHERE prompt_id IS NULL"
        )
        if null_prompts:
            errors.append(f"{null_prompts} records have NULL prompt_id")

        invalid_values = await self._scalar(
            f"SELECT COUNT(*) FROM {SOURCE_TABLE} "
            "WHERE value IS NULL OR value NOT IN (1, -1)"
        )
        if invalid_values:
            errors.append(
                f"{invalid_values} records have invalid vote values (must be 1 or -1)"
            )

        null_timestamps = await self._scalar(
            f"SELECT COUNT(*) FROM {SOURCE_TABLE} WHERE timestamp IS NULL"
        )
        if null_timestamps:
            warnings.append(f"{null_timestamps} records have NULL timestamp")

        if "metadata" in columns:
            malformed = await self._scalar(
                f"SELECT COUNT(*) FROM {SOURCE_TABLE} "
                "WHERE metadata IS NOT NULL AND metadata != '' AND "
                "CASE WHEN json_valid(metadata) "
                "THEN json_type(metadata) != 'object' ELSE 1 END"
            )
            if malformed:
                warnings.append(f"{malformed} records have malformed metadata JSON")

        missing_optional = [c for c in OPTIONAL_COLUMNS if c not in columns]
        if missing_optional:
            warnings.append(
                f"Optional columns absent, read as NULL: {', '.join(missing_optional)}"
            )

        if await self.get_total_count() == 0:
            warnings.append("Source store contains no records")

        for message in warnings:
            logger.warning("Source validation: %s", message)
        for message in errors:
            logger.error("Source validation: %s", message)

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def create_progress_tracker(self, total: int) -> ExtractionProgress:
        """Create a tracker for a run over total records."""
        return ExtractionProgress(total)


__all__ = [
    "SOURCE_TABLE",
    "REQUIRED_COLUMNS",
    "OPTIONAL_COLUMNS",
    "ELIGIBLE_PREDICATE",
    "ExtractionProgress",
    "RecordExtractor",
]
