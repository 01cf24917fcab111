"""
Checkpoint and rollback management for the legacy store.

A checkpoint is a byte-identical copy of the source file next to a JSON
sidecar ('<checkpoint>.meta') recording when and from where it was taken.
Restoring never destroys data: whatever occupies the source path is first
copied to '<source>.backup.<ms>'.

States:
    NONE  -> VALID   create()
    VALID -> STALE   cleanup(), or the files disappear
    any   -> VALID   create() again (last writer wins)

Full rollback is two explicit steps: back up and delete the target, then
restore the checkpoint onto the source. If the second step fails the
target is already gone; the checkpoint and the target backup remain, and
the restore can be retried.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from eventmigrate.exceptions import (
    CheckpointError,
    CheckpointNotFoundError,
    RollbackError,
    TargetStoreError,
)
from eventmigrate.models import SOURCE_FORMAT_VERSION
from eventmigrate.observability import (
    ATTR_CHECKPOINT_PATH,
    ATTR_MIGRATION_SOURCE_STORE,
    ATTR_MIGRATION_TARGET_STORE,
    Tracer,
    create_tracer,
)
from eventmigrate.reports import (
    CheckpointInfo,
    CheckpointState,
    RollbackVerification,
    ValidationResult,
)

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta"


class CheckpointMetadata(BaseModel):
    """
    Contents of the checkpoint sidecar file.

    Attributes:
        created_at: When the checkpoint was taken (UTC)
        original_path: Source store that was copied
        checkpoint_path: Location of the copy
        version: Format version of the copied store
    """

    model_config = ConfigDict(frozen=True)

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    original_path: str = Field(..., min_length=1)
    checkpoint_path: str = Field(..., min_length=1)
    version: str = Field(default=SOURCE_FORMAT_VERSION, min_length=1)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _sibling(path: Path, suffix: str) -> Path:
    return path.with_name(path.name + suffix)


async def _count_events_and_users(path: Path) -> tuple[int, int]:
    """Open a store read-only and count rows and distinct users."""
    uri = f"{path.resolve().as_uri()}?mode=ro"
    async with aiosqlite.connect(uri, uri=True) as conn:
        cursor = await conn.execute("SELECT COUNT(*), COUNT(DISTINCT user_id) FROM events")
        row = await cursor.fetchone()
        await cursor.close()
    if row is None:
        return 0, 0
    return int(row[0]), int(row[1])


class CheckpointManager:
    """
    Creates, validates and restores source checkpoints.

    Example:
        >>> manager = CheckpointManager("bilan.db", target_path="bilan-events.db")
        >>> await manager.create()
        >>> ...
        >>> await manager.perform_full_rollback()
        >>> verification = await manager.verify_rollback()
        >>> assert verification.success
    """

    def __init__(
        self,
        source_path: str | Path,
        *,
        target_path: str | Path | None = None,
        checkpoint_path: str | Path | None = None,
        clock: Callable[[], int] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the manager.

        Args:
            source_path: Legacy store to snapshot and restore
            target_path: Canonical store removed by a full rollback
            checkpoint_path: Checkpoint file; defaults to '<source>.checkpoint'
            clock: Returns ms since epoch; used for backup file names
            tracer: Optional custom Tracer instance
            enable_tracing: If True and OpenTelemetry is available, emit traces
        """
        self._source_path = Path(source_path)
        self._target_path = Path(target_path) if target_path is not None else None
        self._checkpoint_path = (
            Path(checkpoint_path)
            if checkpoint_path is not None
            else _sibling(self._source_path, ".checkpoint")
        )
        self._clock = clock or _now_ms
        self._seen_checkpoint = False

        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def checkpoint_path(self) -> Path:
        return self._checkpoint_path

    @property
    def metadata_path(self) -> Path:
        return _sibling(self._checkpoint_path, META_SUFFIX)

    @property
    def state(self) -> CheckpointState:
        """Current lifecycle state, derived from the files on disk."""
        if self._checkpoint_path.is_file() and self.metadata_path.is_file():
            self._seen_checkpoint = True
            return CheckpointState.VALID
        if self._seen_checkpoint:
            return CheckpointState.STALE
        return CheckpointState.NONE

    def _backup_path(self, path: Path) -> Path:
        return _sibling(path, f".backup.{self._clock()}")

    async def create(self) -> CheckpointMetadata:
        """
        Copy the source store and write the sidecar.

        Replaces any previous checkpoint at the same path.

        Returns:
            The metadata written to the sidecar

        Raises:
            CheckpointError: If the source is missing or the copy fails
        """
        with self._tracer.span(
            "eventmigrate.checkpoint.create",
            {
                ATTR_MIGRATION_SOURCE_STORE: str(self._source_path),
                ATTR_CHECKPOINT_PATH: str(self._checkpoint_path),
            },
        ):
            if not self._source_path.is_file():
                raise CheckpointError(
                    "Failed to create checkpoint: source store not found",
                    path=self._source_path,
                )

            metadata = CheckpointMetadata(
                original_path=str(self._source_path),
                checkpoint_path=str(self._checkpoint_path),
            )
            try:
                self._checkpoint_path.parent.mkdir(parents=True, exist_ok=True)
                await asyncio.to_thread(shutil.copy2, self._source_path, self._checkpoint_path)
                await asyncio.to_thread(
                    self.metadata_path.write_text,
                    metadata.model_dump_json(indent=2),
                    "utf-8",
                )
            except OSError as e:
                raise CheckpointError(
                    f"Failed to create checkpoint: {e}", path=self._checkpoint_path
                ) from e

        self._seen_checkpoint = True
        logger.info("Checkpoint created: %s", self._checkpoint_path)
        return metadata

    async def read_metadata(self) -> CheckpointMetadata:
        """
        Load and validate the sidecar.

        Raises:
            CheckpointError: If the sidecar is missing or malformed
        """
        if not self.metadata_path.is_file():
            raise CheckpointError(
                "Checkpoint metadata not found", path=self.metadata_path
            )
        try:
            raw = await asyncio.to_thread(self.metadata_path.read_text, "utf-8")
            return CheckpointMetadata.model_validate_json(raw)
        except (OSError, ValidationError) as e:
            raise CheckpointError(
                f"Invalid checkpoint metadata: {e}", path=self.metadata_path
            ) from e

    async def restore(self) -> Path | None:
        """
        Copy the checkpoint back onto the source path.

        The file currently at the source path, if any, is first copied to
        '<source>.backup.<ms>'.

        Returns:
            Path of that backup, or None if the source path was empty

        Raises:
            CheckpointNotFoundError: If there is no checkpoint file
            CheckpointError: If the sidecar is invalid or a copy fails
        """
        with self._tracer.span(
            "eventmigrate.checkpoint.restore",
            {
                ATTR_MIGRATION_SOURCE_STORE: str(self._source_path),
                ATTR_CHECKPOINT_PATH: str(self._checkpoint_path),
            },
        ):
            if not self._checkpoint_path.is_file():
                raise CheckpointNotFoundError(self._checkpoint_path)
            metadata = await self.read_metadata()

            backup: Path | None = None
            try:
                if self._source_path.exists():
                    backup = self._backup_path(self._source_path)
                    await asyncio.to_thread(shutil.copy2, self._source_path, backup)
                    logger.info("Current source backed up to %s", backup)
                await asyncio.to_thread(shutil.copy2, self._checkpoint_path, self._source_path)
            except OSError as e:
                raise CheckpointError(
                    f"Failed to restore from checkpoint: {e}", path=self._source_path
                ) from e

        logger.info(
            "Source restored from checkpoint taken at %s", metadata.created_at.isoformat()
        )
        return backup

    async def validate(self) -> ValidationResult:
        """
        Check that the checkpoint can be restored from.

        Requires the file and sidecar, the sidecar fields, and a readable
        'events' table in the copy. An empty copy is a warning.
        """
        with self._tracer.span(
            "eventmigrate.checkpoint.validate",
            {ATTR_CHECKPOINT_PATH: str(self._checkpoint_path)},
        ):
            return await self._do_validate()

    async def _do_validate(self) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        if not self._checkpoint_path.is_file():
            return ValidationResult(valid=False, errors=["Checkpoint file does not exist"])
        if not self.metadata_path.is_file():
            return ValidationResult(
                valid=False, errors=["Checkpoint metadata file does not exist"]
            )

        try:
            await self.read_metadata()
        except CheckpointError as e:
            errors.append(e.message)

        uri = f"{self._checkpoint_path.resolve().as_uri()}?mode=ro"
        try:
            async with aiosqlite.connect(uri, uri=True) as conn:
                cursor = await conn.execute(
                    "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = 'events'"
                )
                row = await cursor.fetchone()
                await cursor.close()
                if not row or not row[0]:
                    errors.append("Checkpoint database is missing events table")
                else:
                    cursor = await conn.execute("SELECT COUNT(*) FROM events")
                    row = await cursor.fetchone()
                    await cursor.close()
                    if row is not None and row[0] == 0:
                        warnings.append("Checkpoint database contains no events")
        except aiosqlite.Error as e:
            errors.append(f"Checkpoint database validation failed: {e}")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    async def cleanup(self) -> None:
        """Delete the checkpoint and its sidecar."""
        with self._tracer.span(
            "eventmigrate.checkpoint.cleanup",
            {ATTR_CHECKPOINT_PATH: str(self._checkpoint_path)},
        ):
            try:
                self._checkpoint_path.unlink(missing_ok=True)
                self.metadata_path.unlink(missing_ok=True)
            except OSError as e:
                raise CheckpointError(
                    f"Failed to clean up checkpoint: {e}", path=self._checkpoint_path
                ) from e
        logger.info("Checkpoint files removed: %s", self._checkpoint_path)

    async def get_info(self) -> CheckpointInfo:
        """Describe the checkpoint; an unreadable sidecar is reported as missing metadata."""
        if not self._checkpoint_path.is_file():
            return CheckpointInfo(exists=False, path=self._checkpoint_path)

        size = self._checkpoint_path.stat().st_size
        metadata: dict[str, Any] | None = None
        created_at: datetime | None = None
        try:
            parsed = await self.read_metadata()
        except CheckpointError as e:
            logger.warning("Checkpoint metadata unreadable: %s", e)
        else:
            metadata = parsed.model_dump(mode="json")
            created_at = parsed.created_at

        return CheckpointInfo(
            exists=True,
            path=self._checkpoint_path,
            created_at=created_at,
            size_bytes=size,
            metadata=metadata,
        )

    async def backup_target(self) -> Path:
        """
        Copy the canonical store to '<target>.backup.<ms>'.

        Raises:
            TargetStoreError: If no target is configured or it does not exist
        """
        if self._target_path is None or not self._target_path.is_file():
            raise TargetStoreError("Target store not found", path=self._target_path)
        backup = self._backup_path(self._target_path)
        try:
            await asyncio.to_thread(shutil.copy2, self._target_path, backup)
        except OSError as e:
            raise TargetStoreError(
                f"Failed to back up target store: {e}", path=self._target_path
            ) from e
        logger.info("Target store backed up to %s", backup)
        return backup

    async def perform_full_rollback(self) -> Path | None:
        """
        Remove the canonical store and restore the source from the checkpoint.

        The checkpoint is validated before anything is deleted. The target
        is backed up, then deleted, then the checkpoint is restored. A failure
        after the deletion leaves no target and an unrestored source; the
        checkpoint and the target backup are kept so the restore can be run
        again.

        Returns:
            Path of the target backup, or None if there was no target

        Raises:
            RollbackError: If any step fails; the cause is chained
        """
        with self._tracer.span(
            "eventmigrate.checkpoint.full_rollback",
            {
                ATTR_MIGRATION_SOURCE_STORE: str(self._source_path),
                ATTR_MIGRATION_TARGET_STORE: str(self._target_path),
                ATTR_CHECKPOINT_PATH: str(self._checkpoint_path),
            },
        ):
            validation = await self.validate()
            if not validation.valid:
                raise RollbackError(
                    "Checkpoint failed validation, nothing was changed: "
                    + "; ".join(validation.errors),
                    path=self._checkpoint_path,
                    details={"errors": list(validation.errors)},
                )

            target_backup: Path | None = None
            target_deleted = False
            try:
                if self._target_path is not None and self._target_path.is_file():
                    target_backup = await self.backup_target()
                    self._target_path.unlink()
                    for suffix in ("-journal", "-wal", "-shm"):
                        _sibling(self._target_path, suffix).unlink(missing_ok=True)
                    target_deleted = True
                    logger.warning("Target store removed: %s", self._target_path)

                await self.restore()
            except (OSError, CheckpointError, TargetStoreError) as e:
                logger.error(
                    "Full rollback failed (target_deleted=%s): %s", target_deleted, e
                )
                raise RollbackError(
                    f"Full rollback failed: {e}",
                    path=self._source_path,
                    details={
                        "target_deleted": target_deleted,
                        "target_backup": str(target_backup) if target_backup else None,
                        "checkpoint_path": str(self._checkpoint_path),
                    },
                ) from e

        logger.info("Full rollback completed; source restored from %s", self._checkpoint_path)
        return target_backup

    async def verify_rollback(self) -> RollbackVerification:
        """
        Compare the restored source with the checkpoint.

        Event count and distinct-user count must match exactly.
        """
        errors: list[str] = []
        if not self._source_path.is_file():
            errors.append("Restored database does not exist")
        if not self._checkpoint_path.is_file():
            errors.append("Checkpoint does not exist for comparison")
        if errors:
            return RollbackVerification(
                success=False,
                checkpoint_events=0,
                restored_events=0,
                checkpoint_users=0,
                restored_users=0,
                errors=errors,
            )

        with self._tracer.span(
            "eventmigrate.checkpoint.verify_rollback",
            {
                ATTR_MIGRATION_SOURCE_STORE: str(self._source_path),
                ATTR_CHECKPOINT_PATH: str(self._checkpoint_path),
            },
        ):
            try:
                cp_events, cp_users = await _count_events_and_users(self._checkpoint_path)
                src_events, src_users = await _count_events_and_users(self._source_path)
            except aiosqlite.Error as e:
                return RollbackVerification(
                    success=False,
                    checkpoint_events=0,
                    restored_events=0,
                    checkpoint_users=0,
                    restored_users=0,
                    errors=[f"Rollback verification failed: {e}"],
                )

        if cp_events != src_events:
            errors.append(f"Event count mismatch: checkpoint={cp_events}, restored={src_events}")
        if cp_users != src_users:
            errors.append(f"User count mismatch: checkpoint={cp_users}, restored={src_users}")

        return RollbackVerification(
            success=not errors,
            checkpoint_events=cp_events,
            restored_events=src_events,
            checkpoint_users=cp_users,
            restored_users=src_users,
            errors=errors,
        )


__all__ = [
    "META_SUFFIX",
    "CheckpointMetadata",
    "CheckpointManager",
]
