"""
JSON helpers for property payloads and legacy metadata documents.

Example:
    >>> from eventmigrate.serialization import json_dumps, parse_metadata
    >>>
    >>> parse_metadata('{"source": "web"}')
    ({'source': 'web'}, False)
    >>> parse_metadata("not json")
    ({}, True)
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID


class MigrationJSONEncoder(json.JSONEncoder):
    """
    JSON encoder for values that may appear in property payloads.

    Handles UUID, datetime and Path objects that callers may place in
    metadata or reports.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """
    Serialize object to a compact JSON string.

    Output is strict JSON: NaN and infinities are rejected, since SQLite's
    JSON functions refuse them.

    Args:
        obj: Object to serialize

    Returns:
        JSON string representation

    Raises:
        TypeError: If obj holds a value the encoder does not handle
        ValueError: If obj holds NaN or an infinity
    """
    return json.dumps(
        obj,
        cls=MigrationJSONEncoder,
        ensure_ascii=False,
        allow_nan=False,
        separators=(",", ":"),
    )


def json_loads(s: str) -> Any:
    """Deserialize a JSON string."""
    return json.loads(s)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {name}")


def parse_metadata(raw: str | None) -> tuple[dict[str, Any], bool]:
    """
    Parse a legacy metadata document.

    A document is malformed, and contributes nothing, when it is not strict
    JSON (NaN and Infinity included), when it parses to something other than
    a JSON object, or when it cannot be written back as UTF-8 text (lone
    surrogate escapes such as "\\ud800"). NULL and the empty string are
    treated as an empty object and are not malformed.

    Args:
        raw: The raw metadata column value

    Returns:
        Tuple of (parsed mapping, malformed flag)
    """
    if raw is None or raw == "":
        return {}, False
    try:
        parsed = json.loads(raw, parse_constant=_reject_constant)
    except (TypeError, ValueError):
        return {}, True
    if not isinstance(parsed, dict):
        return {}, True
    try:
        json_dumps(parsed).encode("utf-8")
    except (TypeError, ValueError):
        return {}, True
    return parsed, False


__all__ = [
    "MigrationJSONEncoder",
    "json_dumps",
    "json_loads",
    "parse_metadata",
]
