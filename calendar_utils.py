from datetime import date, datetime
from zoneinfo import ZoneInfo

from config import get_settings


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def resolve_day_of_month(year: int, month: int, day: int) -> date:
    """Return ``day`` of the given month, clamped to the month's last day.

    Day 31 in April resolves to April 30, day 29 in February of a common
    year resolves to February 28. Every day-of-month recurrence and every
    credit-card due day goes through here.
    """
    if day < 1:
        raise ValueError(f"Day of month must be >= 1, got {day}")
    dim = days_in_month(year, month)
    return date(year, month, min(day, dim))


def month_start(value: date) -> date:
    return value.replace(day=1)


def month_index(value: date) -> int:
    return value.year * 12 + (value.month - 1)


def add_months(base: date, months: int) -> date:
    """First day of the month ``months`` away from ``base``'s month."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, 1)


def months_between(start: date, end: date) -> int:
    return month_index(end) - month_index(start)


def has_crossed_month_boundary(last_checked: datetime, now: datetime) -> bool:
    # Both values are expected in the same local calendar.
    return (last_checked.year, last_checked.month) != (now.year, now.month)


def iter_months(start: date, end: date):
    """Yield ``(year, month)`` for every month touched by ``[start, end]``."""
    current = month_start(start)
    while current <= end:
        yield current.year, current.month
        current = add_months(current, 1)
