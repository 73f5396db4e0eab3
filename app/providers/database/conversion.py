"""
Recursive value conversion shared by the database adapters.

Payloads are walked through dicts, lists and tuples so that dates nested
at any depth are converted on every write and read path. Application
code only ever sees aware ``datetime`` objects.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable

from .interface import FieldValue


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def map_leaves(value: Any, fn: Callable[[Any], Any]) -> Any:
    """
    Apply ``fn`` to every leaf of a nested structure.

    Dict keys are preserved, tuples come back as lists (neither backend
    stores tuples), and FieldValue markers are left for the adapter.
    """
    if isinstance(value, dict):
        return {k: map_leaves(v, fn) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [map_leaves(v, fn) for v in value]
    if isinstance(value, FieldValue):
        return value
    return fn(value)


def dates_to_native(value: Any, to_native: Callable[[datetime], Any]) -> Any:
    """Convert every datetime in ``value`` with ``to_native``."""
    return map_leaves(
        value,
        lambda leaf: to_native(leaf) if isinstance(leaf, datetime) else leaf,
    )


def dates_from_native(value: Any, from_native: Callable[[Any], datetime | None],
                      is_native: Callable[[Any], bool]) -> Any:
    """Convert every native timestamp in ``value`` back to a datetime."""
    return map_leaves(
        value,
        lambda leaf: from_native(leaf) if is_native(leaf) else leaf,
    )


# =============================================================================
# ISO-8601 strings (relational backend)
# =============================================================================

ISO_TIMESTAMP = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d{1,9})?(?:Z|[+-]\d{2}(?::?\d{2})?)?$"
)


def is_iso_timestamp(value: Any) -> bool:
    return isinstance(value, str) and ISO_TIMESTAMP.match(value) is not None


def parse_iso_timestamp(value: str) -> datetime:
    """
    Parse a Postgres / ISO-8601 timestamp string into an aware datetime.

    Fractions beyond microseconds are truncated, ``Z`` and ``+HH`` offsets
    are accepted.
    """
    text = value.replace(" ", "T", 1)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    match = re.match(r"^(.*\.\d{6})\d+(.*)$", text)
    if match:
        text = match.group(1) + match.group(2)
    if re.search(r"[+-]\d{2}$", text):
        text += ":00"
    return ensure_aware(datetime.fromisoformat(text))


def format_iso_timestamp(value: datetime) -> str:
    """Format a datetime as an ISO-8601 string in UTC."""
    return ensure_aware(value).astimezone(timezone.utc).isoformat()
