from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

# Every stored timestamp (ledger entries, decisions, alert bookkeeping) is a
# naive datetime in UTC. Conversion happens only at the API edge.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_datetime(value: datetime) -> datetime:
    """Aware -> UTC-naive; naive values are already UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Query-string / payload datetimes ("as_of", "since").

    Blank means "not given". A trailing Z or an explicit offset is honoured,
    anything without one is read as UTC.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    return normalize_datetime(datetime.fromisoformat(text))


def window_start(days: int, end: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """(start, end) of a trailing window of `days` ending at `end` (default now)."""
    end = end or utcnow()
    return end - timedelta(days=days), end


def next_allowed_at(last: Optional[datetime], interval_seconds: int) -> Optional[datetime]:
    """When a rate-limited action may run again; None if it never ran."""
    if last is None:
        return None
    return last + timedelta(seconds=interval_seconds)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a Z suffix, as returned by every to_dict()."""
    if dt is None:
        return None
    return normalize_datetime(dt).replace(microsecond=0).isoformat() + "Z"
