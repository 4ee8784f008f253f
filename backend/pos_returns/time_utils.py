# Overview: UTC helpers; every timestamp column stores naive UTC.

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: datetime | None) -> str | None:
    """ISO-8601 to the second with a trailing 'Z'. Naive values are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
