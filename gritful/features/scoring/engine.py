"""Deterministic scoring engine. No external calls, no persistence."""
from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from gritful.core.dates import to_civil_date, to_date
from gritful.models.entries import EntryScore

TRUE_STRINGS = {"true", "yes", "y", "1", "on", "done"}


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def _to_number(value: Any) -> Optional[float]:
    """Numeric reading of a submitted value; None when it has none."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    if isinstance(value, dict) and ("hours" in value or "minutes" in value):
        # Duration inputs arrive as {"hours": h, "minutes": m}
        hours = _to_number(value.get("hours") or 0) or 0.0
        minutes = _to_number(value.get("minutes") or 0) or 0.0
        return hours * 60 + minutes
    return None


def _is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return False


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, dict, tuple)):
        return len(value) > 0 if not isinstance(value, str) else bool(value.strip())
    return True


def _meets_threshold(value: float, threshold: float, threshold_type: str) -> bool:
    if threshold_type == "max":
        return value <= threshold
    return value >= threshold


def _scaled_points(points: int, value: float, threshold: float, threshold_type: str) -> int:
    """Linear in value, capped at ``points``, floored to whole points."""
    if threshold_type == "max":
        if value <= threshold:
            return points
        if threshold <= 0:
            return 0
        return math.floor(points * threshold / value)

    if threshold <= 0:
        return points if value >= threshold else 0
    if value <= 0:
        return 0
    return math.floor(points * min(value / threshold, 1.0))


def _tiered_points(value: float, tiers: Iterable[Any], threshold_type: str) -> int:
    ladder = [(float(_get(t, "threshold", 0)), int(_get(t, "points", 0))) for t in tiers or ()]
    if threshold_type == "max":
        ladder.sort(key=lambda tier: tier[0])
    else:
        ladder.sort(key=lambda tier: tier[0], reverse=True)
    for threshold, tier_points in ladder:
        if _meets_threshold(value, threshold, threshold_type):
            return max(0, tier_points)
    return 0


def calculate_metric_points(task: Any, value: Any) -> int:
    """
    Points earned by one submitted value for one task.

    - boolean tasks: full points when checked
    - number/duration tasks: binary (default), scaled or tiered against the threshold
    - choice/text/file tasks: full points for any non-empty answer
    """
    points = max(0, int(_get(task, "points", 1)))
    task_type = _get(task, "type", "boolean")

    if task_type == "boolean":
        return points if _is_truthy(value) else 0

    if task_type in ("choice", "text", "file"):
        return points if _has_value(value) else 0

    number = _to_number(value)
    if number is None:
        return 0

    mode = _get(task, "scoring_mode", "binary")
    threshold = float(_get(task, "threshold", 0))
    threshold_type = _get(task, "threshold_type", "min")

    if mode == "tiered":
        return _tiered_points(number, _get(task, "tiers", []), threshold_type)
    if mode == "scaled":
        return _scaled_points(points, number, threshold, threshold_type)
    return points if _meets_threshold(number, threshold, threshold_type) else 0


def daily_tasks(metrics: Iterable[Any]) -> List[Any]:
    return [m for m in metrics or () if _get(m, "frequency", "daily") == "daily"]


def calculate_entry_score(
    metrics: Iterable[Any],
    metric_data: Dict[str, Any],
    challenge: Any,
    *,
    prior_streak: int = 0,
    is_completed: bool = True,
) -> EntryScore:
    """
    Score one daily submission.

    Base points cover daily tasks only; periodic and one-time tasks are scored
    when they are completed. Bonuses need a completed entry:
    - perfect day: every required daily task earned its points
    - streak: the entry extends a streak that was alive yesterday (``prior_streak`` >= 1)
    """
    data = metric_data or {}
    base = 0
    satisfied: List[bool] = []
    for task in daily_tasks(metrics):
        value = data.get(_get(task, "id"))
        earned = calculate_metric_points(task, value)
        base += earned
        if _get(task, "required", True):
            if int(_get(task, "points", 1)) > 0:
                satisfied.append(earned > 0)
            else:
                satisfied.append(_has_value(value))

    is_perfect = bool(satisfied) and all(satisfied)

    bonus = 0
    if is_completed:
        if is_perfect and _get(challenge, "enable_perfect_day_bonus", False):
            bonus += int(_get(challenge, "perfect_day_bonus_points", 10))
        if prior_streak >= 1 and _get(challenge, "enable_streak_bonus", False):
            bonus += int(_get(challenge, "streak_bonus_points", 5))

    return EntryScore(base_points=base, bonus_points=bonus, is_perfect_day=is_perfect)


def calculate_total_points(
    daily_entries: Iterable[Any],
    onetime_completions: Iterable[Any] = (),
    periodic_completions: Iterable[Any] = (),
) -> int:
    """
    Participant total, always recomputed from rows rather than incremented.

    sum(daily.points_earned + daily.bonus_points) + sum(onetime.points_earned)
    + sum(periodic.points_earned)
    """
    daily = sum(int(_get(e, "points_earned", 0)) + int(_get(e, "bonus_points", 0)) for e in daily_entries or ())
    onetime = sum(int(_get(c, "points_earned", 0)) for c in onetime_completions or ())
    periodic = sum(int(_get(c, "points_earned", 0)) for c in periodic_completions or ())
    return daily + onetime + periodic


def is_late_entry(
    entry_date: Union[str, date],
    submitted_at: Optional[Union[str, datetime]],
    tz: str,
) -> bool:
    """Submitted on a later civil day than it was logged for. Display only, never scored."""
    if not submitted_at:
        return False
    return to_date(to_civil_date(submitted_at, tz)) > to_date(entry_date)
