"""Time utilities with timezone-aware defaults.

SQLite hands back naive datetimes even for timezone=True columns; every
stored value is UTC, so naive values are read as UTC.
"""

from datetime import datetime, timezone


def utc_now():
    """Return current UTC time with tzinfo."""
    return datetime.now(timezone.utc)


def as_utc(dt):
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def from_epoch(ts):
    """Convert provider epoch seconds to an aware UTC datetime (None passes through)."""
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def isoformat(dt):
    """ISO-8601 string in UTC, or None."""
    dt = as_utc(dt)
    return dt.isoformat() if dt else None


def parse_iso(value):
    """Parse an ISO-8601 string into an aware UTC datetime.

    Raises ValueError on malformed input.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))
