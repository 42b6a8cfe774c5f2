from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(dt: Optional[datetime]) -> datetime:
    """
    Canonical form for comparisons against stored timestamps.

    None -> utcnow(); aware datetimes are converted to UTC and stripped;
    naive ones are taken to already be UTC.
    """
    if dt is None:
        return utcnow()
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def cooldown_ends_at(last_at: datetime, hours: int) -> datetime:
    """First instant a new request is allowed after one made at last_at."""
    return as_utc_naive(last_at) + timedelta(hours=hours)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with trailing 'Z', whole seconds. Naive input is UTC."""
    if dt is None:
        return None
    stamp = as_utc_naive(dt).replace(microsecond=0)
    return stamp.isoformat() + "Z"
