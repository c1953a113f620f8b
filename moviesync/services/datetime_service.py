"""Datetime helpers: lax input -> strict timezone-aware UTC output."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pendulum


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts ISO 8601 variants (``T`` or space separator, with or without
    fractional seconds and offset) and plain dates. Missing timezone defaults
    to ``default_tz``; missing time components default to zeros.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def days_ago(days: int, *, now: datetime | None = None) -> datetime:
    """Return the UTC instant ``days`` days before ``now`` (default: the current time)."""
    return (now or now_utc()) - timedelta(days=days)


def as_utc(dt: datetime) -> datetime:
    """Normalize to UTC; naive values are taken to already be UTC.

    SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns,
    so every value that crosses the storage boundary goes through here.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for JSON serialization."""
    return as_utc(dt).isoformat()
