"""
Canonical event store.

Owns the canonical schema and loads converted events one batch per
transaction. A failing batch is rolled back as a whole; batches committed
before it stay in place.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import aiosqlite

from eventmigrate.exceptions import BatchInsertError, TargetStoreError
from eventmigrate.models import CanonicalEvent, TargetStatistics
from eventmigrate.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_EVENT_COUNT,
    Tracer,
    create_tracer,
)
from eventmigrate.reports import ValidationResult

logger = logging.getLogger(__name__)

TARGET_TABLE = "events"

REQUIRED_COLUMNS: tuple[str, ...] = (
    "event_id",
    "user_id",
    "event_type",
    "timestamp",
    "properties",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    event_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    properties TEXT NOT NULL DEFAULT '{}',
    prompt_text TEXT,
    ai_response TEXT,
    created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER) * 1000),
    updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER) * 1000)
);

CREATE INDEX IF NOT EXISTS idx_events_user_id ON events(user_id);
CREATE INDEX IF NOT EXISTS idx_events_event_type ON events(event_type);
CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp);
CREATE INDEX IF NOT EXISTS idx_events_user_timestamp ON events(user_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_events_type_timestamp ON events(event_type, timestamp);
CREATE INDEX IF NOT EXISTS idx_events_prompt_id
    ON events(json_extract(properties, '$.prompt_id'));
CREATE INDEX IF NOT EXISTS idx_events_vote_value
    ON events(json_extract(properties, '$.value'));
"""

INSERT_SQL = """
INSERT INTO events (
    event_id, user_id, event_type, timestamp, properties, prompt_text, ai_response
)
VALUES (?, ?, ?, ?, ?, ?, ?)
"""


class TargetStore:
    """
    SQLite store holding canonical events.

    Example:
        >>> async with TargetStore("bilan-events.db") as store:
        ...     await store.initialize()
        ...     await store.insert_batch(events, batch_number=1)
        ...     stats = await store.get_statistics()

    Attributes:
        _target_path: Path of the store file
        _connection: The aiosqlite connection (set after connect)
    """

    def __init__(
        self,
        target_path: str | Path,
        *,
        busy_timeout: int = 5000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._target_path = Path(target_path)
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None

        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def __aenter__(self) -> TargetStore:
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
        Open the store, creating the file if absent.

        Raises:
            TargetStoreError: If the file cannot be opened
        """
        if self._connection is not None:
            return

        try:
            self._target_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self._target_path)
            await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        except (OSError, aiosqlite.Error) as e:
            await self.close()
            raise TargetStoreError(
                f"Cannot open target store: {e}", path=self._target_path
            ) from e

        self._connection.row_factory = aiosqlite.Row
        logger.debug("Opened target store: %s", self._target_path)

    async def close(self) -> None:
        """Close the connection. Safe to call multiple times."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed target store: %s", self._target_path)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Target not open. Use 'async with store:' before reading or writing."
            )
        return self._connection

    @property
    def target_path(self) -> Path:
        return self._target_path

    async def initialize(self) -> None:
        """
        Create the canonical table and indexes.

        Idempotent; safe to call on an existing store.

        Raises:
            TargetStoreError: If the schema cannot be created
        """
        conn = self._ensure_connected()
        with self._tracer.span(
            "eventmigrate.target.initialize",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_NAME: str(self._target_path)},
        ):
            try:
                await conn.executescript(SCHEMA)
                await conn.commit()
            except aiosqlite.Error as e:
                raise TargetStoreError(
                    f"Cannot create target schema: {e}", path=self._target_path
                ) from e
        logger.info("Initialized target schema: %s", self._target_path)

    async def insert_batch(self, events: Sequence[CanonicalEvent], batch_number: int = 0) -> int:
        """
        Insert events in one transaction.

        Args:
            events: Validated events of one batch
            batch_number: One-based batch number, for errors and traces

        Returns:
            Number of events inserted

        Raises:
            BatchInsertError: If any insert fails; nothing of the batch is kept
        """
        if not events:
            return 0

        conn = self._ensure_connected()
        with self._tracer.span(
            "eventmigrate.target.insert_batch",
            {
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_NAME: str(self._target_path),
                ATTR_DB_OPERATION: "INSERT",
                ATTR_BATCH_NUMBER: batch_number,
                ATTR_EVENT_COUNT: len(events),
            },
        ):
            try:
                await conn.executemany(INSERT_SQL, [event.to_row() for event in events])
                await conn.commit()
            except (aiosqlite.Error, ValueError) as e:
                await conn.rollback()
                logger.error(
                    "Batch %d rolled back (%d events): %s", batch_number, len(events), e
                )
                raise BatchInsertError(
                    batch_number, len(events), str(e), path=self._target_path
                ) from e

        logger.debug("Committed batch %d: %d events", batch_number, len(events))
        return len(events)

    async def _scalar(self, sql: str, params: tuple[Any, ...] = ()) -> Any:
        conn = self._ensure_connected()
        cursor = await conn.execute(sql, params)
        row = await cursor.fetchone()
        await cursor.close()
        return row[0] if row else None

    async def table_exists(self) -> bool:
        count = await self._scalar(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?",
            (TARGET_TABLE,),
        )
        return bool(count)

    async def get_event_counts_by_type(self) -> dict[str, int]:
        conn = self._ensure_connected()
        cursor = await conn.execute(
            f"SELECT event_type, COUNT(*) AS n FROM {TARGET_TABLE} "
            "GROUP BY event_type ORDER BY event_type"
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return {row["event_type"]: row["n"] for row in rows}

    async def get_total_count(self) -> int:
        return int(await self._scalar(f"SELECT COUNT(*) FROM {TARGET_TABLE}") or 0)

    async def get_unique_user_count(self) -> int:
        return int(
            await self._scalar(f"SELECT COUNT(DISTINCT user_id) FROM {TARGET_TABLE}") or 0
        )

    async def get_timestamp_range(self) -> tuple[int | None, int | None]:
        conn = self._ensure_connected()
        cursor = await conn.execute(
            f"SELECT MIN(timestamp), MAX(timestamp) FROM {TARGET_TABLE}"
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None, None
        return row[0], row[1]

    async def get_statistics(self) -> TargetStatistics:
        """Collect summary statistics of the target."""
        with self._tracer.span(
            "eventmigrate.target.get_statistics",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_NAME: str(self._target_path)},
        ):
            earliest, latest = await self.get_timestamp_range()
            return TargetStatistics(
                total_events=await self.get_total_count(),
                unique_users=await self.get_unique_user_count(),
                events_by_type=await self.get_event_counts_by_type(),
                earliest_timestamp=earliest,
                latest_timestamp=latest,
            )

    async def get_sample_events(self, limit: int = 5) -> list[CanonicalEvent]:
        """
        Return the most recent events, newest first.

        Args:
            limit: Maximum number of events
        """
        conn = self._ensure_connected()
        with self._tracer.span(
            "eventmigrate.target.get_sample_events",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_OPERATION: "SELECT", ATTR_EVENT_COUNT: limit},
        ):
            cursor = await conn.execute(
                f"SELECT event_id, user_id, event_type, timestamp, properties, "
                f"prompt_text, ai_response FROM {TARGET_TABLE} "
                "ORDER BY timestamp DESC, event_id DESC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return [CanonicalEvent.from_row(row) for row in rows]

    async def explain_query_plan(self, sql: str, params: tuple[Any, ...] = ()) -> list[str]:
        """
        Return the detail lines of SQLite's plan for a query.

        Used to judge whether representative queries are served by an index.
        """
        conn = self._ensure_connected()
        cursor = await conn.execute(f"EXPLAIN QUERY PLAN {sql}", params)
        rows = await cursor.fetchall()
        await cursor.close()
        return [str(row[-1]) for row in rows]

    async def clear_all_events(self) -> int:
        """
        Delete every event. Destructive; used by rollback and tests.

        Returns:
            Number of rows deleted
        """
        conn = self._ensure_connected()
        with self._tracer.span(
            "eventmigrate.target.clear_all_events",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_OPERATION: "DELETE"},
        ):
            cursor = await conn.execute(f"DELETE FROM {TARGET_TABLE}")
            deleted = cursor.rowcount
            await cursor.close()
            await conn.commit()
        logger.warning("Cleared %d events from target store %s", deleted, self._target_path)
        return deleted

    async def validate(self) -> ValidationResult:
        """
        Check the target schema and content.

        Missing table or columns, NULL user ids or event types, invalid JSON
        payloads and out-of-domain vote values are errors. Events without the
        migrated_from marker are a warning.
        """
        with self._tracer.span(
            "eventmigrate.target.validate",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_NAME: str(self._target_path)},
        ):
            return await self._do_validate()

    async def _do_validate(self) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        if not await self.table_exists():
            errors.append(f"Target table '{TARGET_TABLE}' does not exist")
            return ValidationResult(valid=False, errors=errors, schema_valid=False)

        conn = self._ensure_connected()
        cursor = await conn.execute(f"PRAGMA table_info({TARGET_TABLE})")
        columns = {row["name"] for row in await cursor.fetchall()}
        await cursor.close()
        missing = [c for c in REQUIRED_COLUMNS if c not in columns]
        if missing:
            errors.append(f"Missing required columns: {', '.join(missing)}")
            return ValidationResult(valid=False, errors=errors, schema_valid=False)

        null_users = await self._scalar(
            f"SELECT COUNT(*) FROM {TARGET_TABLE} WHERE user_id IS NULL"
        )
        if null_users:
            errors.append(f"{null_users} events have NULL user_id")

        null_types = await self._scalar(
            f"SELECT COUNT(*) FROM {TARGET_TABLE} WHERE event_type IS NULL"
        )
        if null_types:
            errors.append(f"{null_types} events have NULL event_type")

        invalid_json = await self._scalar(
            f"SELECT COUNT(*) FROM {TARGET_TABLE} "
            "WHERE properties IS NOT NULL AND json_valid(properties) = 0"
        )
        if invalid_json:
            errors.append(f"{invalid_json} events have invalid JSON properties")

        invalid_votes = await self._scalar(
            f"SELECT COUNT(*) FROM {TARGET_TABLE} "
            "WHERE event_type = 'vote_cast' AND "
            "CASE WHEN json_valid(properties) "
            "THEN coalesce(json_extract(properties, '$.value') NOT IN (1, -1), 1) "
            "ELSE 0 END"
        )
        if invalid_votes:
            errors.append(f"{invalid_votes} vote_cast events have invalid vote values")

        unmarked = await self._scalar(
            f"SELECT COUNT(*) FROM {TARGET_TABLE} "
            "WHERE CASE WHEN json_valid(properties) "
            "THEN json_extract(properties, '$.migrated_from') IS NULL ELSE 0 END"
        )
        if unmarked:
            warnings.append(f"{unmarked} events lack the migrated_from marker")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


__all__ = [
    "TARGET_TABLE",
    "REQUIRED_COLUMNS",
    "SCHEMA",
    "TargetStore",
]
