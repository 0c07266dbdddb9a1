"""UTC timestamps stored as ISO 8601 text."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for storage and JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def iso_in(seconds: int) -> str:
    """Return the ISO timestamp ``seconds`` from now."""
    return format_iso(now_utc() + timedelta(seconds=seconds))


def iso_ago(seconds: int) -> str:
    """Return the ISO timestamp ``seconds`` before now."""
    return format_iso(now_utc() - timedelta(seconds=seconds))
