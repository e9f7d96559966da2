"""Deadline presets and status for one-time tasks."""
from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Any, Iterable, List, Literal, Optional, Union

from gritful.core.dates import to_date
from gritful.core.errors import ValidationError

DeadlinePreset = Literal["none", "today", "end_of_week", "one_week", "end_of_month", "one_month", "custom"]
DeadlineStatus = Literal["overdue", "due_today", "due_soon", "upcoming", "no_deadline"]

DEADLINE_PRESETS = [
    {"value": "none", "label": "No deadline"},
    {"value": "today", "label": "Today"},
    {"value": "end_of_week", "label": "End of this week"},
    {"value": "one_week", "label": "1 week from now"},
    {"value": "end_of_month", "label": "End of this month"},
    {"value": "one_month", "label": "1 month from now"},
    {"value": "custom", "label": "Custom date..."},
]


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def calculate_deadline(preset: str, reference: Union[str, date]) -> Optional[date]:
    """Deadline day for a preset; None for 'none' and 'custom' (picked separately)."""
    day = to_date(reference)
    if preset == "today":
        return day
    if preset == "end_of_week":
        return day + timedelta(days=6 - day.weekday())
    if preset == "one_week":
        return day + timedelta(weeks=1)
    if preset == "end_of_month":
        return day.replace(day=calendar.monthrange(day.year, day.month)[1])
    if preset == "one_month":
        return _add_months(day, 1)
    if preset in ("none", "custom"):
        return None
    raise ValidationError(f"Unknown deadline preset: {preset}")


def get_deadline_status(deadline: Optional[Union[str, date]], today: Union[str, date]) -> DeadlineStatus:
    if not deadline:
        return "no_deadline"
    due = to_date(deadline)
    current = to_date(today)
    if due < current:
        return "overdue"
    if due == current:
        return "due_today"
    if (due - current).days <= 2:
        return "due_soon"
    return "upcoming"


def is_deadline_passed(deadline: Optional[Union[str, date]], today: Union[str, date]) -> bool:
    return get_deadline_status(deadline, today) == "overdue"


def get_deadline_text(deadline: Optional[Union[str, date]], today: Union[str, date]) -> str:
    if not deadline:
        return ""
    due = to_date(deadline)
    current = to_date(today)
    status = get_deadline_status(due, current)
    if status == "overdue":
        overdue = (current - due).days
        return "Overdue by 1 day" if overdue == 1 else f"Overdue by {overdue} days"
    if status == "due_today":
        return "Due today"
    days_until = (due - current).days
    if days_until == 1:
        return "Due tomorrow"
    if days_until <= 7:
        return f"Due in {days_until} days"
    return f"Due {due.strftime('%b')} {due.day}"


def clamp_deadline_to_challenge(deadline: Union[str, date], challenge_end: Optional[Union[str, date]]) -> date:
    """A task deadline never outlives its challenge."""
    due = to_date(deadline)
    if challenge_end is None:
        return due
    return min(due, to_date(challenge_end))


def sort_by_deadline(tasks: Iterable[Any], today: Union[str, date]) -> List[Any]:
    """Overdue first, then by deadline date; tasks without a deadline last."""

    def _deadline(task):
        return task.get("deadline") if isinstance(task, dict) else getattr(task, "deadline", None)

    def _key(task):
        deadline = _deadline(task)
        if not deadline:
            return (2, date.max)
        due = to_date(deadline)
        return (0 if get_deadline_status(due, today) == "overdue" else 1, due)

    return sorted(tasks, key=_key)
