"""Calendar helpers for reporting periods.

All dates are calendar days in the reporting timezone. A period is closed
once its last day is strictly before today.
"""
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


def today_in(tzinfo: ZoneInfo, now: Optional[datetime] = None) -> date:
    """Current calendar day in the reporting timezone."""
    if now is None:
        return datetime.now(tzinfo).date()
    return now.astimezone(tzinfo).date()


def week_bounds(day: date) -> tuple[date, date]:
    """ISO week (Monday..Sunday) containing day."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def month_bounds(day: date) -> tuple[date, date]:
    """Calendar month containing day."""
    first = day.replace(day=1)
    if first.month == 12:
        next_first = first.replace(year=first.year + 1, month=1)
    else:
        next_first = first.replace(month=first.month + 1)
    return first, next_first - timedelta(days=1)


def last_completed_week(today: date) -> tuple[date, date]:
    this_monday, _ = week_bounds(today)
    return week_bounds(this_monday - timedelta(days=1))


def last_completed_month(today: date) -> tuple[date, date]:
    return month_bounds(today.replace(day=1) - timedelta(days=1))


def trailing_sync_window(today: date, days: int) -> tuple[date, date]:
    """Re-sync window: the last `days` days up to and including today."""
    return today - timedelta(days=days), today


def is_period_closed(period_end: date, today: date) -> bool:
    return period_end < today
