"""Date and time helpers shared by the progress engine.

All calendar-day logic runs in UTC: a "day" is [00:00, 24:00) UTC.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple


def now_utc() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(moment: Optional[datetime]) -> datetime:
    """Return moment as aware UTC, defaulting to now. Naive values are taken as UTC."""
    if moment is None:
        return now_utc()
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Half-open [start, end) UTC range covering a calendar day"""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def days_between(earlier: date, later: date) -> int:
    """Whole calendar days from earlier to later (negative if reversed)"""
    return (later - earlier).days


def iso_week_key(day: date) -> str:
    """ISO week identifier, e.g. '2026-W42'"""
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"
