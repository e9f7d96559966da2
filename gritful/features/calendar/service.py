"""
Calendar day status for the progress view.

Daily tasks dominate: when a challenge has any, the day's status comes from
the daily entry. Challenges with only weekly/monthly tasks show the status of
the periods that contain the day.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Iterable, List, Literal, Optional, Union

from gritful.core.dates import to_date
from gritful.features.periods.service import get_period_for_date, is_period_ended
from gritful.features.scoring.engine import is_late_entry

DayStatus = Literal[
    "outside",
    "all_complete",
    "completed",
    "partial",
    "late",
    "period_pending",
    "today",
    "missed",
]


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _tasks_with_frequency(metrics: Iterable[Any], frequency: str) -> List[Any]:
    return [m for m in metrics or () if (_get(m, "frequency") or "daily") == frequency]


def _period_done(day: date, frequency: str, tasks: List[Any], completions: List[Any]) -> bool:
    """Every task of ``frequency`` has a completion in the period containing ``day``."""
    if not tasks:
        return True
    key = get_period_for_date(frequency, day).key
    done = {
        _get(c, "task_id")
        for c in completions
        if _get(c, "frequency") == frequency and str(_get(c, "period_start"))[:10] == key
    }
    return all(_get(task, "id") in done for task in tasks)


def get_day_status(
    day: Union[str, date],
    today: Union[str, date],
    challenge_start: Union[str, date],
    challenge_end: Optional[Union[str, date]],
    daily_entry: Optional[Any],
    periodic_completions: Iterable[Any],
    metrics: Iterable[Any],
    tz: str = "UTC",
) -> DayStatus:
    current_day = to_date(day)
    current = to_date(today)
    start = to_date(challenge_start)
    end = to_date(challenge_end) if challenge_end else None

    # Future days are never selectable
    max_day = end if end is not None and end < current else current
    if current_day < start or current_day > max_day:
        return "outside"

    metrics = list(metrics or ())
    completions = list(periodic_completions or ())
    daily = _tasks_with_frequency(metrics, "daily")
    weekly = _tasks_with_frequency(metrics, "weekly")
    monthly = _tasks_with_frequency(metrics, "monthly")

    weekly_done = _period_done(current_day, "weekly", weekly, completions)
    monthly_done = _period_done(current_day, "monthly", monthly, completions)

    if daily:
        if daily_entry is not None and _get(daily_entry, "is_completed"):
            submitted_at = _get(daily_entry, "submitted_at")
            if submitted_at and is_late_entry(_get(daily_entry, "entry_date") or current_day, submitted_at, tz):
                return "late"
            return "all_complete" if weekly_done and monthly_done else "completed"
        if daily_entry is not None:
            return "partial"
        if current_day == current:
            return "today"
        return "missed"

    # Only frequencies the challenge actually uses count toward "done"
    done_flags = [flag for tasks, flag in ((weekly, weekly_done), (monthly, monthly_done)) if tasks]
    has_periodic = bool(done_flags)
    if has_periodic and all(done_flags):
        return "all_complete"
    if any(done_flags):
        return "completed"

    weekly_missed = bool(weekly) and not weekly_done and is_period_ended(get_period_for_date("weekly", current_day), current)
    monthly_missed = bool(monthly) and not monthly_done and is_period_ended(get_period_for_date("monthly", current_day), current)
    if weekly_missed or monthly_missed:
        return "missed"

    if has_periodic:
        return "period_pending"
    return "outside"


def build_calendar(
    range_start: Union[str, date],
    range_end: Union[str, date],
    today: Union[str, date],
    challenge: Any,
    challenge_end: Optional[Union[str, date]],
    daily_entries: Iterable[Any],
    periodic_completions: Iterable[Any],
    tz: str = "UTC",
) -> List[dict]:
    """Status for every day in ``[range_start, range_end]``."""
    first = to_date(range_start)
    last = to_date(range_end)
    entries_by_day = {str(_get(e, "entry_date"))[:10]: e for e in daily_entries or ()}
    completions = list(periodic_completions or ())
    metrics = _get(challenge, "metrics") or []

    days = []
    cursor = first
    while cursor <= last:
        key = cursor.isoformat()
        days.append({
            "date": key,
            "status": get_day_status(
                cursor,
                today,
                _get(challenge, "starts_at"),
                challenge_end,
                entries_by_day.get(key),
                completions,
                metrics,
                tz,
            ),
        })
        cursor += timedelta(days=1)
    return days
