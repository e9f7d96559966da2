from datetime import datetime, timezone

import pytest

from gritful.features.scoring.engine import (
    calculate_entry_score,
    calculate_metric_points,
    calculate_total_points,
    is_late_entry,
)
from gritful.models.challenge import Task, Tier


def _task(**overrides):
    base = {"id": "t1", "name": "Task", "type": "number", "points": 10}
    base.update(overrides)
    return base


@pytest.mark.parametrize("value,expected", [(15, 5), (25, 10), (5, 0), (10, 5), (20, 10)])
def test_tiered_min_picks_highest_satisfied_tier(value, expected):
    task = _task(scoring_mode="tiered", tiers=[{"threshold": 10, "points": 5}, {"threshold": 20, "points": 10}])
    assert calculate_metric_points(task, value) == expected


def test_tiered_accepts_model_instances():
    task = Task(
        id="t1",
        name="Pages",
        type="number",
        scoring_mode="tiered",
        tiers=[Tier(threshold=20, points=10), Tier(threshold=10, points=5)],
    )
    assert calculate_metric_points(task, 15) == 5


def test_tiered_max_rewards_smallest_value():
    # Screen time: under 60 minutes is best
    task = _task(
        type="duration",
        scoring_mode="tiered",
        threshold_type="max",
        tiers=[{"threshold": 120, "points": 2}, {"threshold": 60, "points": 5}],
    )
    assert calculate_metric_points(task, 45) == 5
    assert calculate_metric_points(task, 90) == 2
    assert calculate_metric_points(task, 180) == 0


def test_binary_threshold():
    task = _task(threshold=8)
    assert calculate_metric_points(task, 8) == 10
    assert calculate_metric_points(task, 7.9) == 0
    assert calculate_metric_points(_task(threshold=8, threshold_type="max"), 7) == 10


def test_scaled_is_floored_and_capped():
    task = _task(scoring_mode="scaled", threshold=8)
    assert calculate_metric_points(task, 4) == 5
    assert calculate_metric_points(task, 3) == 3
    assert calculate_metric_points(task, 16) == 10


def test_scaled_max_shrinks_above_threshold():
    task = _task(scoring_mode="scaled", threshold=60, threshold_type="max")
    assert calculate_metric_points(task, 30) == 10
    assert calculate_metric_points(task, 120) == 5


def test_boolean_and_free_form_tasks():
    assert calculate_metric_points(_task(type="boolean"), True) == 10
    assert calculate_metric_points(_task(type="boolean"), False) == 0
    assert calculate_metric_points(_task(type="boolean"), "true") == 10
    assert calculate_metric_points(_task(type="text"), "felt great") == 10
    assert calculate_metric_points(_task(type="text"), "   ") == 0
    assert calculate_metric_points(_task(type="choice"), "option-a") == 10


@pytest.mark.parametrize("value", [None, "abc", [], True])
def test_non_numeric_values_earn_nothing(value):
    assert calculate_metric_points(_task(threshold=1), value) == 0


def test_duration_dict_is_read_as_minutes():
    task = _task(type="duration", threshold=90)
    assert calculate_metric_points(task, {"hours": 1, "minutes": 30}) == 10
    assert calculate_metric_points(task, {"hours": 1, "minutes": 29}) == 0


def _challenge(**overrides):
    base = {
        "enable_streak_bonus": True,
        "streak_bonus_points": 5,
        "enable_perfect_day_bonus": True,
        "perfect_day_bonus_points": 10,
    }
    base.update(overrides)
    return base


METRICS = [
    {"id": "run", "name": "Run", "type": "boolean", "points": 3},
    {"id": "read", "name": "Read", "type": "number", "points": 2, "threshold": 10},
    {"id": "journal", "name": "Journal", "type": "text", "points": 1, "required": False},
    {"id": "long-run", "name": "Long run", "type": "boolean", "points": 20, "frequency": "weekly"},
]


def test_entry_score_counts_daily_tasks_only():
    score = calculate_entry_score(METRICS, {"run": True, "read": 12, "long-run": True}, _challenge(enable_perfect_day_bonus=False, enable_streak_bonus=False))
    assert score.base_points == 5
    assert score.bonus_points == 0
    assert score.total == 5


def test_perfect_day_bonus_needs_every_required_task():
    perfect = calculate_entry_score(METRICS, {"run": True, "read": 12}, _challenge(enable_streak_bonus=False))
    assert perfect.is_perfect_day
    assert perfect.bonus_points == 10

    partial = calculate_entry_score(METRICS, {"run": True, "read": 3, "journal": "hi"}, _challenge(enable_streak_bonus=False))
    assert not partial.is_perfect_day
    assert partial.bonus_points == 0


def test_streak_bonus_needs_a_live_streak():
    challenge = _challenge(enable_perfect_day_bonus=False)
    assert calculate_entry_score(METRICS, {"run": True}, challenge, prior_streak=0).bonus_points == 0
    assert calculate_entry_score(METRICS, {"run": True}, challenge, prior_streak=4).bonus_points == 5


def test_incomplete_entry_earns_no_bonus():
    score = calculate_entry_score(METRICS, {"run": True, "read": 12}, _challenge(), prior_streak=3, is_completed=False)
    assert score.base_points == 5
    assert score.bonus_points == 0


def test_total_points_sums_all_sources():
    daily = [{"points_earned": 5, "bonus_points": 10}, {"points_earned": 3, "bonus_points": 0}]
    onetime = [{"points_earned": 20}]
    periodic = [{"points_earned": 7}, {"points_earned": 1}]
    assert calculate_total_points(daily, onetime, periodic) == 46
    assert calculate_total_points([], [], []) == 0


def test_total_points_is_order_independent():
    periodic = [{"points_earned": 7}, {"points_earned": 1}, {"points_earned": 4}]
    assert calculate_total_points([], [], periodic) == calculate_total_points([], [], list(reversed(periodic)))


def test_late_entry_is_judged_in_the_participants_zone():
    submitted = datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc)
    # Still the 14th in Los Angeles: on time
    assert is_late_entry("2025-01-14", submitted, "America/Los_Angeles") is False
    # Already the 15th in UTC: late
    assert is_late_entry("2025-01-14", submitted, "UTC") is True
    assert is_late_entry("2025-01-14", None, "UTC") is False
