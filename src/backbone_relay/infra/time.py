"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_millis(moment: datetime | None = None) -> int:
    """Milliseconds since the Unix epoch for `moment` (default: now)."""
    return int((moment or utc_now()).timestamp() * 1000)


def coerce_utc(value: Any) -> datetime | None:
    """Best-effort conversion of a stored timestamp to an aware UTC datetime.

    Heartbeats are written by an external process, so the stored value may be
    a datetime (naive values are assumed UTC), an ISO-8601 string, or epoch
    milliseconds. Anything unparseable yields None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return coerce_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None
