from __future__ import annotations

from datetime import date, timedelta

SATURDAY = 5
SUNDAY = 6


def is_weekend(day: date) -> bool:
    return day.weekday() in (SATURDAY, SUNDAY)


def collection_target_date(today: date) -> date:
    """Collections never fall on a Sunday; they move back to the Saturday before."""
    if today.weekday() == SUNDAY:
        return today - timedelta(days=1)
    return today


def next_business_day(day: date) -> date:
    candidate = day + timedelta(days=1)
    while is_weekend(candidate):
        candidate += timedelta(days=1)
    return candidate


def days_between(start: date, end: date) -> int:
    return (end - start).days
