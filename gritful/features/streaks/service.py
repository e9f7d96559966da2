from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Iterable, Optional, Set, Union

from gritful.core.config import settings
from gritful.core.dates import to_date
from gritful.core.errors import ValidationError


def _entry_field(entry: Any, name: str) -> Any:
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name, None)


def completed_dates(entries: Iterable[Any]) -> Set[date]:
    """Civil dates with a completed entry. Rows with unusable dates are skipped."""
    days: Set[date] = set()
    for entry in entries or ():
        if not _entry_field(entry, "is_completed"):
            continue
        try:
            days.add(to_date(_entry_field(entry, "entry_date")))
        except (ValidationError, ValueError, TypeError):
            continue
    return days


def calculate_display_streak(
    entries: Iterable[Any],
    today: Union[str, date],
    *,
    safety_cap: Optional[int] = None,
) -> int:
    """
    Count consecutive completed days ending at ``today``.

    ``today`` is a civil date already resolved in the participant's timezone.
    Always recompute instead of trusting a stored counter: a stored streak goes
    stale the day a participant stops logging.
    """
    done = completed_dates(entries)
    if not done:
        return 0
    try:
        cursor = to_date(today)
    except (ValidationError, ValueError, TypeError):
        return 0

    cap = safety_cap if safety_cap is not None else settings.STREAK_SAFETY_CAP
    streak = 0
    while cursor in done and streak < cap:
        streak += 1
        if cursor == date.min:
            break
        cursor -= timedelta(days=1)
    return streak


def calculate_longest_streak(entries: Iterable[Any]) -> int:
    """Longest run of consecutive completed days anywhere in the history."""
    done = completed_dates(entries)
    longest = 0
    for day in done:
        if day > date.min and day - timedelta(days=1) in done:
            continue  # not the start of a run
        run = 1
        while (date.max - day).days >= run and day + timedelta(days=run) in done:
            run += 1
        longest = max(longest, run)
    return longest
