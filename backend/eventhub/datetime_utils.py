"""UTC datetime helpers.

Storage standard: BSON datetimes, always UTC. The Motor client is created with
``tz_aware=True`` so values read back are aware; the in-memory test database
and legacy records may still hand us naive datetimes or ISO strings, which are
normalized here before any comparison.
"""
from __future__ import annotations
import datetime as _dt
from typing import Any

_PARSE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
)


def now_utc() -> _dt.datetime:
    """Current time as an aware UTC datetime."""
    return _dt.datetime.now(_dt.timezone.utc)


def parse_iso(s: str | None) -> _dt.datetime | None:
    """Parse an ISO8601 string (``Z`` suffix accepted) into an aware UTC datetime.

    Returns None for falsy input, raises ValueError for unparsable strings.
    """
    if not s:
        return None
    value = s.strip()
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    for fmt in _PARSE_FORMATS:
        try:
            parsed = _dt.datetime.strptime(value, fmt)
        except ValueError:
            continue
        return ensure_utc(parsed)
    raise ValueError(f"Unrecognized datetime string format: {s!r}")


def ensure_utc(value: Any) -> _dt.datetime | None:
    """Coerce datetime/date/ISO string to an aware UTC datetime (naive is assumed UTC)."""
    if value is None or value == "":
        return None
    if isinstance(value, _dt.datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=_dt.timezone.utc)
        return value.astimezone(_dt.timezone.utc)
    if isinstance(value, _dt.date):
        return _dt.datetime(value.year, value.month, value.day, tzinfo=_dt.timezone.utc)
    if isinstance(value, str):
        return parse_iso(value)
    raise ValueError(f"Unsupported datetime value type: {type(value)}")


__all__ = ["now_utc", "parse_iso", "ensure_utc"]
