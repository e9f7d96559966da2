"""
Achievement catalog, requirement checks and awarding.

Stats are derived from the participant's recomputed totals and entry rows.
Time-of-day triggers (early/late entries) use the participant's timezone,
never the server clock.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Optional

from sqlalchemy import insert, select

from gritful.core.dates import resolve_timezone, to_date, utc_now
from gritful.core.database import activity_feed, participant_achievements
from gritful.core.logging import log_event
from gritful.features.scoring.engine import calculate_entry_score

TriggerType = Literal[
    "streak_days",
    "total_points",
    "entries_logged",
    "perfect_days",
    "completion_rate",
    "challenge_complete",
    "early_entries",
    "late_entries",
]

EARLY_ENTRY_BEFORE_HOUR = 9
LATE_ENTRY_FROM_HOUR = 21


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    description: str
    icon: str
    category: str  # streak | points | completion | consistency
    trigger_type: TriggerType
    trigger_value: int
    display_order: int = 0


@dataclass
class ParticipantStats:
    current_streak: int = 0
    longest_streak: int = 0
    total_points: int = 0
    entries_count: int = 0
    perfect_days: int = 0
    completion_rate: int = 0
    early_entries: int = 0
    late_entries: int = 0
    challenge_complete: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_ACHIEVEMENTS: List[Achievement] = [
    Achievement("first_entry", "First Step", "Log your first entry", "🎯", "completion", "entries_logged", 1, 1),
    Achievement("streak_3", "On Fire", "Reach a 3-day streak", "🔥", "streak", "streak_days", 3, 2),
    Achievement("streak_7", "Week Warrior", "Reach a 7-day streak", "💪", "streak", "streak_days", 7, 3),
    Achievement("streak_30", "Unstoppable", "Reach a 30-day streak", "🚀", "streak", "streak_days", 30, 4),
    Achievement("points_100", "Century", "Earn 100 points", "⭐", "points", "total_points", 100, 5),
    Achievement("points_500", "High Scorer", "Earn 500 points", "🌟", "points", "total_points", 500, 6),
    Achievement("entries_10", "Regular", "Log 10 entries", "📚", "consistency", "entries_logged", 10, 7),
    Achievement("perfect_day", "Perfectionist", "Complete every required task in a day", "💯", "completion", "perfect_days", 1, 8),
    Achievement("completion_80", "Dedicated", "Keep an 80% completion rate", "🎖️", "consistency", "completion_rate", 80, 9),
    Achievement("finisher", "Finisher", "Complete a challenge", "🏆", "completion", "challenge_complete", 1, 10),
    Achievement("early_bird", "Early Bird", "Log 5 entries before 9am", "🌅", "consistency", "early_entries", 5, 11),
    Achievement("night_owl", "Night Owl", "Log 5 entries after 9pm", "🦉", "consistency", "late_entries", 5, 12),
]


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def _local_hour(submitted_at: Any, tz: str) -> Optional[int]:
    if not submitted_at:
        return None
    if isinstance(submitted_at, str):
        submitted_at = datetime.fromisoformat(submitted_at.replace("Z", "+00:00"))
    if submitted_at.tzinfo is None:
        submitted_at = submitted_at.replace(tzinfo=timezone.utc)
    return submitted_at.astimezone(resolve_timezone(tz)).hour


def build_participant_stats(
    participant: Any,
    entries: Iterable[Any],
    challenge: Any,
    today: date,
    tz: str,
    effective_end: Optional[date] = None,
) -> ParticipantStats:
    """Achievement stats for one participant, computed from their entry rows."""
    rows = list(entries or ())
    metrics = _get(challenge, "metrics", [])

    perfect_days = 0
    early = 0
    late = 0
    for row in rows:
        if _get(row, "is_completed", False):
            score = calculate_entry_score(metrics, _get(row, "metric_data", {}), challenge, is_completed=True)
            if score.is_perfect_day:
                perfect_days += 1
        hour = _local_hour(_get(row, "submitted_at"), tz)
        if hour is None:
            continue
        if hour < EARLY_ENTRY_BEFORE_HOUR:
            early += 1
        elif hour >= LATE_ENTRY_FROM_HOUR:
            late += 1

    start = to_date(_get(challenge, "starts_at"))
    last_day = effective_end if effective_end is not None and effective_end < today else today
    total_days = max(1, (last_day - start).days + 1)
    completed = sum(1 for row in rows if _get(row, "is_completed", False))

    return ParticipantStats(
        current_streak=int(_get(participant, "current_streak", 0)),
        longest_streak=int(_get(participant, "longest_streak", 0)),
        total_points=int(_get(participant, "total_points", 0)),
        entries_count=len(rows),
        perfect_days=perfect_days,
        completion_rate=round(completed / total_days * 100),
        early_entries=early,
        late_entries=late,
        challenge_complete=_get(participant, "status") == "completed",
    )


_STAT_FOR_TRIGGER = {
    "total_points": "total_points",
    "entries_logged": "entries_count",
    "perfect_days": "perfect_days",
    "completion_rate": "completion_rate",
    "early_entries": "early_entries",
    "late_entries": "late_entries",
}


def calculate_progress(achievement: Achievement, stats: ParticipantStats) -> Dict[str, int]:
    """Progress toward an achievement as {"current", "target"}."""
    if achievement.trigger_type == "streak_days":
        return {"current": max(stats.current_streak, stats.longest_streak), "target": achievement.trigger_value}
    if achievement.trigger_type == "challenge_complete":
        return {"current": 1 if stats.challenge_complete else 0, "target": 1}
    attr = _STAT_FOR_TRIGGER.get(achievement.trigger_type)
    current = getattr(stats, attr) if attr else 0
    return {"current": current, "target": achievement.trigger_value}


def meets_requirement(achievement: Achievement, stats: ParticipantStats) -> bool:
    progress = calculate_progress(achievement, stats)
    return progress["current"] >= progress["target"]


def award_achievements(
    session,
    participant: Any,
    stats: ParticipantStats,
    catalog: Optional[List[Achievement]] = None,
) -> List[dict]:
    """
    Insert newly met achievements and post them to the activity feed.

    Runs inside the caller's session; a concurrent award of the same
    achievement fails the whole session on the unique constraint, so callers
    keep this out of the transaction that saved the entry.
    """
    participant_id = _get(participant, "id")
    earned_ids = {
        row.achievement_id
        for row in session.execute(
            select(participant_achievements.c.achievement_id).where(
                participant_achievements.c.participant_id == participant_id
            )
        ).all()
    }

    newly_earned: List[dict] = []
    now = utc_now()
    for achievement in catalog or DEFAULT_ACHIEVEMENTS:
        if achievement.id in earned_ids or not meets_requirement(achievement, stats):
            continue
        session.execute(
            insert(participant_achievements).values(
                participant_id=participant_id,
                achievement_id=achievement.id,
                earned_at=now,
            )
        )
        session.execute(
            insert(activity_feed).values(
                challenge_id=_get(participant, "challenge_id"),
                user_id=_get(participant, "user_id"),
                activity_type="achievement_earned",
                message=f'earned the "{achievement.name}" achievement!',
                metadata={
                    "achievement_id": achievement.id,
                    "achievement_name": achievement.name,
                    "achievement_icon": achievement.icon,
                    "achievement_category": achievement.category,
                },
                created_at=now,
            )
        )
        newly_earned.append({
            "achievement_id": achievement.id,
            "name": achievement.name,
            "description": achievement.description,
            "icon": achievement.icon,
            "category": achievement.category,
            "earned_at": now.isoformat(),
        })
        log_event(
            "info",
            "achievement.earned",
            user_id=_get(participant, "user_id"),
            challenge_id=_get(participant, "challenge_id"),
            participant_id=participant_id,
            event_type="achievement_earned",
            extra={"achievement_id": achievement.id},
        )

    return newly_earned
