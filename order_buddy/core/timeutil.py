"""Timestamp helpers shared by the derivation and analytics code.

Rows store ISO-8601 strings. Naive values (e.g. a bare "2025-03-01" order
date from a form) are read as being in the caller's zone, UTC by default.
"""

from datetime import datetime, timezone

from dateutil import parser as _dtparser


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value, tz=None):
    """Parse an ISO string (or pass through a datetime) into an aware datetime.

    Returns None for empty values. Raises ValueError on garbage.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = _dtparser.isoparse(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz or timezone.utc)
    return dt


def to_iso(dt: datetime) -> str:
    return dt.isoformat()
