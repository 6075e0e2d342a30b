"""Freshness policy: is cached data young enough to skip a network call?"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def age_of(timestamp: datetime | None, now: datetime | None = None) -> timedelta | None:
    """Elapsed time since ``timestamp``; None when there is no timestamp."""
    if timestamp is None:
        return None
    now = _as_utc(now) if now is not None else utcnow()
    return now - _as_utc(timestamp)


def is_fresh(
    timestamp: datetime | None,
    max_age: timedelta,
    now: datetime | None = None,
) -> bool:
    """True when the record is strictly younger than ``max_age``.

    An age exactly equal to ``max_age`` is stale. A missing timestamp is
    never fresh. Naive datetimes are read as UTC.
    """
    age = age_of(timestamp, now)
    if age is None:
        return False
    return age < max_age


def format_age(age: timedelta | None) -> str:
    """Human-readable age: "just now", "5m ago", "2h ago", "3d ago" or "never"."""
    if age is None:
        return "never"
    seconds = max(0, int(age.total_seconds()))
    days, rem = divmod(seconds, 86_400)
    hours, rem = divmod(rem, 3_600)
    minutes = rem // 60

    if days > 0:
        return f"{days}d ago"
    if hours > 0:
        return f"{hours}h ago"
    if minutes > 0:
        return f"{minutes}m ago"
    return "just now"
