"""
Shared test fixtures for the eventmigrate library.

This module provides reusable helpers for building legacy vote stores:
- LEGACY_SCHEMA / MINIMAL_LEGACY_SCHEMA: DDL of the legacy 'events' table
- legacy_row: Row dict with sensible defaults
- create_legacy_store: Write rows into a new legacy SQLite file
- make_record: In-memory LegacyRecord with sensible defaults

Usage:
    from tests.fixtures import create_legacy_store, legacy_row, make_record
"""

from tests.fixtures.legacy import (
    BASE_TIMESTAMP,
    LEGACY_SCHEMA,
    MINIMAL_LEGACY_SCHEMA,
    count_rows,
    create_legacy_store,
    legacy_row,
    make_record,
)

__all__ = [
    "BASE_TIMESTAMP",
    "LEGACY_SCHEMA",
    "MINIMAL_LEGACY_SCHEMA",
    "count_rows",
    "create_legacy_store",
    "legacy_row",
    "make_record",
]
