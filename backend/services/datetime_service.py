"""Datetime helpers: timestamps are stored as ISO 8601 text in UTC."""

from __future__ import annotations

from datetime import UTC, datetime


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for storage and JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.isoformat()


def now_iso() -> str:
    """Return the current UTC time formatted for storage."""
    return format_iso(now_utc())


def parse_iso(value: str) -> datetime | None:
    """Parse a stored ISO 8601 timestamp, or None if it is malformed.

    Naive values are treated as UTC.
    """
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
