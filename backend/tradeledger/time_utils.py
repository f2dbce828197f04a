# Overview: UTC timestamp helpers shared by models, services and routes.

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the form every column stores)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_days(start: datetime, days: int) -> datetime:
    """Offset used for due dates (credit terms, quotation conversion)."""
    return start + timedelta(days=int(days))


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse client-supplied ISO-8601 text into a naive UTC datetime.

    Empty input returns None. A bare date means midnight; text without an
    offset is taken as UTC already; "Z" and "+HH:MM" offsets are converted.
    Raises ValueError on anything else.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render a stored datetime as second-precision ISO-8601 with a Z suffix."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
