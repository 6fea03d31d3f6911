"""Datetime utilities with consistent UTC timezone handling.

Every timestamp that reaches a Task record, a queued operation or the wire
goes through these helpers so comparisons between local and server copies
are always made between timezone-aware UTC values.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union


def now_utc() -> datetime:
    """Return current datetime in UTC timezone."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime is timezone-aware, assuming UTC if naive.
    
    Args:
        dt: Datetime to check/convert, or None
        
    Returns:
        Timezone-aware datetime in UTC, or None if input was None
    """
    if dt is None:
        return None
    
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    
    return dt.astimezone(timezone.utc)


def min_utc() -> datetime:
    """Return datetime.min with UTC timezone for comparison fallbacks."""
    return datetime.min.replace(tzinfo=timezone.utc)


def max_utc() -> datetime:
    """Return datetime.max with UTC timezone for comparison fallbacks."""
    return datetime.max.replace(tzinfo=timezone.utc)


def parse_iso(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as sent by the server.
    
    Accepts the trailing ``Z`` form the server emits as well as explicit
    offsets. Unparseable values yield None rather than raising.
    
    Args:
        value: ISO string, datetime or None
        
    Returns:
        Timezone-aware datetime in UTC, or None
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_aware(datetime.fromisoformat(text))
    except ValueError:
        return None


def to_iso_string(dt: Optional[datetime]) -> Optional[str]:
    """Convert datetime to an ISO string in UTC, or None."""
    if dt is None:
        return None
    
    return ensure_aware(dt).isoformat()


def bump_timestamp(previous: Optional[datetime]) -> datetime:
    """Return a fresh modification timestamp strictly after ``previous``.
    
    Local edits must keep updated-at monotonic per record even when the
    clock is coarse or has stepped backwards.
    """
    current = now_utc()
    if previous is None:
        return current
    
    floor = ensure_aware(previous) + timedelta(microseconds=1)
    return current if current > floor else floor
