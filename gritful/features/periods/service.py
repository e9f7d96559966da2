"""
Period buckets for weekly and monthly tasks.

Weekly periods run Monday..Sunday (ISO weeks); monthly periods run from the
1st to the last day of the calendar month. A periodic task may be completed
once per bucket, keyed by the bucket's start date.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Literal, Union

from gritful.core.dates import to_date
from gritful.core.errors import ValidationError

PeriodStatus = Literal["ended", "due_today", "due_soon", "upcoming"]


@dataclass(frozen=True)
class Period:
    start: date
    end: date
    label: str  # "Week of Jan 20" or "January 2025"

    @property
    def key(self) -> str:
        """period_start as stored in the database."""
        return self.start.isoformat()

    def to_dict(self) -> dict:
        return {
            "period_start": self.start.isoformat(),
            "period_end": self.end.isoformat(),
            "label": self.label,
            "key": self.key,
        }


def get_current_week(reference: Union[str, date]) -> Period:
    day = to_date(reference)
    start = day - timedelta(days=day.weekday())
    end = start + timedelta(days=6)
    return Period(start=start, end=end, label=f"Week of {start.strftime('%b')} {start.day}")


def get_current_month(reference: Union[str, date]) -> Period:
    day = to_date(reference)
    start = day.replace(day=1)
    end = day.replace(day=calendar.monthrange(day.year, day.month)[1])
    return Period(start=start, end=end, label=start.strftime("%B %Y"))


def get_period_for_date(frequency: str, reference_date: Union[str, date]) -> Period:
    """Bucket containing ``reference_date`` for a weekly or monthly task."""
    if frequency == "weekly":
        return get_current_week(reference_date)
    if frequency == "monthly":
        return get_current_month(reference_date)
    raise ValidationError(f"Periods exist only for weekly or monthly tasks, not {frequency!r}")


def is_date_in_period(day: Union[str, date], period: Period) -> bool:
    return period.start <= to_date(day) <= period.end


def days_remaining(period: Period, today: Union[str, date]) -> int:
    """Days left including today; 0 once the period has ended."""
    current = to_date(today)
    if current > period.end:
        return 0
    return (period.end - current).days + 1


def is_period_ended(period: Period, today: Union[str, date]) -> bool:
    return to_date(today) > period.end


def get_period_status(period: Period, today: Union[str, date]) -> dict:
    """Human-readable status for a period badge."""
    current = to_date(today)
    if is_period_ended(period, current):
        return {"status": "ended", "text": "Period ended"}
    if current == period.end:
        return {"status": "due_today", "text": "Due today"}

    days_left = (period.end - current).days
    if days_left <= 2:
        return {
            "status": "due_soon",
            "text": "Due tomorrow" if days_left == 1 else f"{days_left} days left",
        }

    if period.end.weekday() == 6:
        return {"status": "upcoming", "text": "Due Sunday"}
    return {"status": "upcoming", "text": f"Due {period.end.strftime('%b')} {period.end.day}"}
