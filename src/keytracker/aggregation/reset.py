"""Weekly reset calendar.

Resets happen every Tuesday at 08:00 Pacific time, PST or PDT alike, so the
UTC instant shifts by an hour across daylight saving changes.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

RESET_TZ = ZoneInfo("America/Los_Angeles")
RESET_WEEKDAY = 1  # Tuesday (Monday == 0)
RESET_TIME = time(8, 0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def last_weekly_reset(now: datetime | None = None) -> datetime:
    """Most recent reset at or before ``now``, as an aware UTC datetime."""
    local = _as_aware(now or _utcnow()).astimezone(RESET_TZ)
    days_back = (local.weekday() - RESET_WEEKDAY) % 7
    reset_date = local.date() - timedelta(days=days_back)
    reset = datetime.combine(reset_date, RESET_TIME, tzinfo=RESET_TZ)
    if reset > local:
        reset = datetime.combine(reset_date - timedelta(days=7), RESET_TIME, tzinfo=RESET_TZ)
    return reset.astimezone(timezone.utc)


def next_weekly_reset(now: datetime | None = None) -> datetime:
    """First reset strictly after ``now``.

    Computed on the local wall clock so a DST change during the week keeps
    the reset at 08:00 local.
    """
    last_local = last_weekly_reset(now).astimezone(RESET_TZ)
    next_date = last_local.date() + timedelta(days=7)
    return datetime.combine(next_date, RESET_TIME, tzinfo=RESET_TZ).astimezone(timezone.utc)


def is_after_weekly_reset(dt: datetime, now: datetime | None = None) -> bool:
    """True if ``dt`` falls in the current reset week."""
    return _as_aware(dt) >= last_weekly_reset(now)


def time_until_next_reset(now: datetime | None = None) -> timedelta:
    now = _as_aware(now or _utcnow())
    return max(next_weekly_reset(now) - now, timedelta(0))
