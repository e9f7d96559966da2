from datetime import date

import pytest

from gritful.core.errors import ValidationError
from gritful.features.calendar.service import build_calendar, get_day_status
from gritful.features.periods.deadlines import (
    calculate_deadline,
    clamp_deadline_to_challenge,
    get_deadline_status,
    get_deadline_text,
    is_deadline_passed,
    sort_by_deadline,
)

# 2025-01-22 is a Wednesday
TODAY = "2025-01-22"


def test_deadline_presets():
    assert calculate_deadline("today", TODAY) == date(2025, 1, 22)
    assert calculate_deadline("end_of_week", TODAY) == date(2025, 1, 26)
    assert calculate_deadline("one_week", TODAY) == date(2025, 1, 29)
    assert calculate_deadline("end_of_month", TODAY) == date(2025, 1, 31)
    assert calculate_deadline("one_month", "2025-01-31") == date(2025, 2, 28)
    assert calculate_deadline("none", TODAY) is None
    with pytest.raises(ValidationError):
        calculate_deadline("someday", TODAY)


def test_deadline_status_and_text():
    assert get_deadline_status(None, TODAY) == "no_deadline"
    assert get_deadline_status("2025-01-21", TODAY) == "overdue"
    assert get_deadline_status("2025-01-22", TODAY) == "due_today"
    assert get_deadline_status("2025-01-24", TODAY) == "due_soon"
    assert get_deadline_status("2025-01-30", TODAY) == "upcoming"

    assert get_deadline_text("2025-01-21", TODAY) == "Overdue by 1 day"
    assert get_deadline_text("2025-01-23", TODAY) == "Due tomorrow"
    assert get_deadline_text("2025-01-27", TODAY) == "Due in 5 days"
    assert get_deadline_text("2025-02-14", TODAY) == "Due Feb 14"


def test_deadline_passes_only_after_the_day():
    assert not is_deadline_passed("2025-01-22", TODAY)
    assert is_deadline_passed("2025-01-21", TODAY)


def test_deadline_never_outlives_challenge():
    assert clamp_deadline_to_challenge("2025-03-01", "2025-02-15") == date(2025, 2, 15)
    assert clamp_deadline_to_challenge("2025-02-01", "2025-02-15") == date(2025, 2, 1)
    assert clamp_deadline_to_challenge("2025-03-01", None) == date(2025, 3, 1)


def test_sort_puts_overdue_first_and_undated_last():
    tasks = [
        {"id": "later", "deadline": "2025-02-01"},
        {"id": "none"},
        {"id": "overdue", "deadline": "2025-01-10"},
        {"id": "soon", "deadline": "2025-01-23"},
    ]
    assert [t["id"] for t in sort_by_deadline(tasks, TODAY)] == ["overdue", "soon", "later", "none"]


DAILY = [{"id": "run", "name": "Run", "frequency": "daily"}]
WEEKLY = [{"id": "review", "name": "Review", "frequency": "weekly"}]


def _status(day, metrics, entry=None, completions=(), start="2025-01-01", end=None):
    return get_day_status(day, TODAY, start, end, entry, list(completions), metrics, "UTC")


def test_outside_before_start_and_after_today():
    assert _status("2024-12-31", DAILY) == "outside"
    assert _status("2025-01-23", DAILY) == "outside"
    assert _status("2025-01-21", DAILY, end="2025-01-20") == "outside"


def test_daily_statuses():
    done = {"entry_date": "2025-01-21", "is_completed": True, "submitted_at": "2025-01-21T20:00:00+00:00"}
    late = {"entry_date": "2025-01-20", "is_completed": True, "submitted_at": "2025-01-21T09:00:00+00:00"}
    partial = {"entry_date": "2025-01-21", "is_completed": False}

    assert _status("2025-01-21", DAILY, done) == "all_complete"
    assert _status("2025-01-20", DAILY, late) == "late"
    assert _status("2025-01-21", DAILY, partial) == "partial"
    assert _status(TODAY, DAILY) == "today"
    assert _status("2025-01-19", DAILY) == "missed"


def test_daily_done_but_weekly_open_is_completed():
    done = {"entry_date": "2025-01-21", "is_completed": True}
    assert _status("2025-01-21", DAILY + WEEKLY, done) == "completed"
    completion = {"task_id": "review", "frequency": "weekly", "period_start": "2025-01-20"}
    assert _status("2025-01-21", DAILY + WEEKLY, done, [completion]) == "all_complete"


def test_period_only_challenges():
    completion = {"task_id": "review", "frequency": "weekly", "period_start": "2025-01-13"}
    assert _status("2025-01-15", WEEKLY, completions=[completion]) == "all_complete"
    # Week of Jan 6 ended without a completion
    assert _status("2025-01-08", WEEKLY) == "missed"
    # Current week still open
    assert _status("2025-01-21", WEEKLY) == "period_pending"


def test_build_calendar_covers_every_day():
    challenge = {"starts_at": "2025-01-20", "metrics": DAILY}
    entries = [{"entry_date": "2025-01-20", "is_completed": True}]
    days = build_calendar("2025-01-19", "2025-01-23", TODAY, challenge, None, entries, [], "UTC")
    assert [d["status"] for d in days] == ["outside", "all_complete", "missed", "today", "outside"]
