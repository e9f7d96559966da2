"""
gritful/features/entries/service.py

Entry and task-completion persistence plus participant aggregation.

Every mutation ends with recompute_participant(), which rebuilds
current_streak, longest_streak and total_points from the stored rows.
Stored counters on challenge_participants are display copies only.
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, insert, update, delete, and_
from sqlalchemy.exc import IntegrityError

from gritful.core.database import (
    get_db_session,
    challenges,
    challenge_participants,
    daily_entries,
    periodic_task_completions,
    onetime_task_completions,
)
from gritful.core.dates import resolve_timezone, to_date, today as civil_today, utc_now
from gritful.core.errors import (
    ChallengeEndedError,
    ChallengeNotStartedError,
    DeadlinePassedError,
    DuplicateCompletionError,
    EntryLockedError,
    NotFoundError,
    PermissionError,
    ValidationError,
)
from gritful.core.logging import log_event
from gritful.features.achievements.engine import award_achievements, build_participant_stats
from gritful.features.calendar.service import build_calendar
from gritful.features.challenges.state import effective_end_date, get_challenge_state
from gritful.features.periods.deadlines import (
    get_deadline_status,
    get_deadline_text,
    is_deadline_passed,
    sort_by_deadline,
)
from gritful.features.periods.service import days_remaining, get_period_for_date, get_period_status
from gritful.features.scoring.engine import (
    calculate_entry_score,
    calculate_metric_points,
    calculate_total_points,
    is_late_entry,
)
from gritful.features.streaks.service import calculate_display_streak, calculate_longest_streak
from gritful.models.entries import ParticipantTotals

logger = logging.getLogger("gritful")


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------

def _load_participant(session, participant_id: str):
    row = session.execute(
        select(challenge_participants).where(challenge_participants.c.id == participant_id)
    ).first()
    if not row:
        raise NotFoundError("Participation not found")
    return row


def _load_owned_participant(session, participant_id: str, user_id: str):
    row = _load_participant(session, participant_id)
    if row.user_id != user_id:
        raise PermissionError("You can only modify your own entries")
    return row


def _load_challenge(session, challenge_id: str):
    row = session.execute(select(challenges).where(challenges.c.id == challenge_id)).first()
    if not row:
        raise NotFoundError("Challenge not found")
    return row


def _find_task(challenge, task_id: str) -> Dict[str, Any]:
    for task in challenge.metrics or []:
        if task.get("id") == task_id:
            return task
    raise NotFoundError("Task not found in challenge")


def _resolve_today(tz: str, now: Optional[datetime]) -> date:
    resolve_timezone(tz)
    return to_date(civil_today(tz, now=now))


def _ensure_accepting_entries(challenge, today_day: date, tz: str) -> None:
    """Raise unless the challenge accepts entries on ``today_day``."""
    state = get_challenge_state(challenge, today_day, tz)
    # Ongoing challenges also refuse entries before their start date
    if state.state == "upcoming" or (state.state == "ongoing" and not state.is_entry_allowed):
        raise ChallengeNotStartedError("Challenge has not started yet")
    if not state.is_entry_allowed:
        raise ChallengeEndedError("Challenge has ended")


def _entry_dict(row) -> dict:
    return {
        "id": row.id,
        "participant_id": row.participant_id,
        "entry_date": to_date(row.entry_date).isoformat(),
        "metric_data": row.metric_data or {},
        "is_completed": bool(row.is_completed),
        "notes": row.notes,
        "is_locked": bool(row.is_locked),
        "points_earned": row.points_earned,
        "bonus_points": row.bonus_points,
        "submitted_at": row.submitted_at.isoformat() if row.submitted_at else None,
    }


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def recompute_participant(session, participant_id: str, today_day: Union[str, date]) -> ParticipantTotals:
    """
    Rebuild streaks and total points from stored rows and persist the copies.

    Order-independent: the result depends only on the final set of rows.
    """
    entries = session.execute(
        select(daily_entries).where(daily_entries.c.participant_id == participant_id)
    ).all()
    onetime = session.execute(
        select(onetime_task_completions.c.points_earned).where(
            onetime_task_completions.c.participant_id == participant_id
        )
    ).all()
    periodic = session.execute(
        select(periodic_task_completions.c.points_earned).where(
            periodic_task_completions.c.participant_id == participant_id
        )
    ).all()

    current_streak = calculate_display_streak(entries, today_day)
    longest_streak = max(current_streak, calculate_longest_streak(entries))
    total_points = calculate_total_points(entries, onetime, periodic)

    session.execute(
        update(challenge_participants)
        .where(challenge_participants.c.id == participant_id)
        .values(
            current_streak=current_streak,
            longest_streak=longest_streak,
            total_points=total_points,
        )
    )

    log_event(
        "info",
        "participant.recomputed",
        participant_id=participant_id,
        event_type="totals_recomputed",
        extra={"current_streak": current_streak, "total_points": total_points},
    )
    return ParticipantTotals(
        participant_id=participant_id,
        current_streak=current_streak,
        longest_streak=longest_streak,
        total_points=total_points,
        new_achievements=[],
    )


def check_achievements(participant_id: str, tz: str, today_day: date) -> List[dict]:
    """
    Award achievements after a mutation has committed.

    Failures are logged and never undo the mutation that triggered them.
    """
    try:
        with get_db_session() as session:
            participant = _load_participant(session, participant_id)
            challenge = _load_challenge(session, participant.challenge_id)
            entries = session.execute(
                select(daily_entries).where(daily_entries.c.participant_id == participant_id)
            ).all()
            stats = build_participant_stats(
                participant,
                entries,
                challenge,
                today_day,
                tz,
                effective_end=effective_end_date(challenge, tz),
            )
            return award_achievements(session, participant, stats)
    except Exception as exc:
        logger.warning(
            "achievements.check_failed",
            exc_info=True,
            extra={"participant_id": participant_id, "error_message": str(exc)},
        )
        return []


# ---------------------------------------------------------------------------
# Daily entries
# ---------------------------------------------------------------------------

def save_daily_entry(
    participant_id: str,
    user_id: str,
    metric_data: Dict[str, Any],
    is_completed: bool,
    *,
    notes: Optional[str] = None,
    target_date: Optional[Union[str, date]] = None,
    tz: str = "UTC",
    now: Optional[datetime] = None,
) -> dict:
    """
    Create or update the participant's entry for one civil date.

    ``target_date`` defaults to today in ``tz``. Future dates, dates outside
    the challenge window and locked entries are rejected.
    """
    moment = now or utc_now()
    today_day = _resolve_today(tz, moment)
    target = to_date(target_date) if target_date else today_day
    if target > today_day:
        raise ValidationError("Cannot log entries for future dates")

    with get_db_session() as session:
        participant = _load_owned_participant(session, participant_id, user_id)
        challenge = _load_challenge(session, participant.challenge_id)

        _ensure_accepting_entries(challenge, today_day, tz)
        if target < to_date(challenge.starts_at):
            raise ValidationError("Date is before the challenge start")
        end = effective_end_date(challenge, tz)
        if end is not None and target > end:
            raise ChallengeEndedError("Date is after the challenge end")

        entries = session.execute(
            select(daily_entries).where(daily_entries.c.participant_id == participant_id)
        ).all()
        existing = next((e for e in entries if to_date(e.entry_date) == target), None)
        if existing is not None and existing.is_locked:
            raise EntryLockedError("Entry is locked and cannot be modified")

        # Bonus eligibility looks at the streak that ended the day before
        others = [e for e in entries if existing is None or e.id != existing.id]
        prior_streak = calculate_display_streak(others, target - timedelta(days=1))
        score = calculate_entry_score(
            challenge.metrics,
            metric_data,
            challenge,
            prior_streak=prior_streak,
            is_completed=is_completed,
        )

        values = {
            "metric_data": metric_data or {},
            "is_completed": is_completed,
            "notes": notes,
            "is_locked": bool(challenge.lock_entries_after_day),
            "points_earned": score.base_points,
            "bonus_points": score.bonus_points,
            "submitted_at": moment,
        }
        if existing is not None:
            entry_id = existing.id
            session.execute(update(daily_entries).where(daily_entries.c.id == entry_id).values(**values))
        else:
            entry_id = str(uuid.uuid4())
            session.execute(
                insert(daily_entries).values(
                    id=entry_id,
                    participant_id=participant_id,
                    entry_date=target,
                    created_at=moment,
                    **values,
                )
            )

        totals = recompute_participant(session, participant_id, today_day)
        saved = session.execute(select(daily_entries).where(daily_entries.c.id == entry_id)).first()
        entry = _entry_dict(saved)
        challenge_id = participant.challenge_id

    totals.new_achievements = check_achievements(participant_id, tz, today_day)
    entry["is_late"] = is_late_entry(entry["entry_date"], moment, tz)

    log_event(
        "info",
        "entry.saved",
        user_id=user_id,
        challenge_id=challenge_id,
        participant_id=participant_id,
        event_type="entry_saved",
        extra={"entry_date": entry["entry_date"], "points": score.total, "late": entry["is_late"]},
    )
    return {"entry": entry, "score": score.total, "totals": totals.to_dict()}


def delete_daily_entry(entry_id: str, user_id: str, *, tz: str = "UTC", now: Optional[datetime] = None) -> dict:
    today_day = _resolve_today(tz, now)
    with get_db_session() as session:
        entry = session.execute(select(daily_entries).where(daily_entries.c.id == entry_id)).first()
        if not entry:
            raise NotFoundError("Entry not found")
        participant = _load_owned_participant(session, entry.participant_id, user_id)
        if entry.is_locked:
            raise EntryLockedError("Cannot delete a locked entry")

        session.execute(delete(daily_entries).where(daily_entries.c.id == entry_id))
        totals = recompute_participant(session, participant.id, today_day)

    log_event(
        "info",
        "entry.deleted",
        user_id=user_id,
        participant_id=participant.id,
        event_type="entry_deleted",
        extra={"entry_id": entry_id},
    )
    return {"deleted": True, "totals": totals.to_dict()}


# ---------------------------------------------------------------------------
# Periodic (weekly / monthly) completions
# ---------------------------------------------------------------------------

def save_periodic_completion(
    participant_id: str,
    user_id: str,
    task_id: str,
    value: Any = None,
    *,
    tz: str = "UTC",
    now: Optional[datetime] = None,
) -> dict:
    """Complete a weekly/monthly task for the period containing today."""
    moment = now or utc_now()
    today_day = _resolve_today(tz, moment)

    try:
        with get_db_session() as session:
            participant = _load_owned_participant(session, participant_id, user_id)
            challenge = _load_challenge(session, participant.challenge_id)
            task = _find_task(challenge, task_id)
            frequency = task.get("frequency") or "daily"
            if frequency not in ("weekly", "monthly"):
                raise ValidationError("Task is not a weekly or monthly task")

            _ensure_accepting_entries(challenge, today_day, tz)
            period = get_period_for_date(frequency, today_day)
            end = effective_end_date(challenge, tz)
            # Grace days after the end may only close out the last period of the challenge
            if end is not None and period.start > end:
                raise ChallengeEndedError("Challenge has ended")

            existing = session.execute(
                select(periodic_task_completions.c.id).where(
                    and_(
                        periodic_task_completions.c.participant_id == participant_id,
                        periodic_task_completions.c.task_id == task_id,
                        periodic_task_completions.c.period_start == period.start,
                    )
                )
            ).first()
            if existing:
                raise DuplicateCompletionError(f"Task already completed for {period.label}")

            points = calculate_metric_points(task, value)
            session.execute(
                insert(periodic_task_completions).values(
                    participant_id=participant_id,
                    task_id=task_id,
                    frequency=frequency,
                    period_start=period.start,
                    period_end=period.end,
                    value=value,
                    points_earned=points,
                    completed_at=moment,
                )
            )
            totals = recompute_participant(session, participant_id, today_day)
    except IntegrityError as exc:
        # Lost a race with a concurrent completion for the same period
        raise DuplicateCompletionError("Task already completed for this period") from exc

    log_event(
        "info",
        "periodic.completed",
        user_id=user_id,
        participant_id=participant_id,
        event_type="periodic_completed",
        extra={"task_id": task_id, "period_start": period.key, "points": points},
    )
    return {"points": points, "period": period.to_dict(), "totals": totals.to_dict()}


def delete_periodic_completion(
    participant_id: str,
    user_id: str,
    task_id: str,
    *,
    period_start: Optional[Union[str, date]] = None,
    tz: str = "UTC",
    now: Optional[datetime] = None,
) -> dict:
    """Undo a periodic completion (current period unless ``period_start`` is given)."""
    today_day = _resolve_today(tz, now)
    with get_db_session() as session:
        participant = _load_owned_participant(session, participant_id, user_id)
        if period_start is not None:
            start = to_date(period_start)
        else:
            task = _find_task(_load_challenge(session, participant.challenge_id), task_id)
            frequency = task.get("frequency") or "daily"
            if frequency not in ("weekly", "monthly"):
                raise ValidationError("Task is not a weekly or monthly task")
            start = get_period_for_date(frequency, today_day).start

        result = session.execute(
            delete(periodic_task_completions).where(
                and_(
                    periodic_task_completions.c.participant_id == participant_id,
                    periodic_task_completions.c.task_id == task_id,
                    periodic_task_completions.c.period_start == start,
                )
            )
        )
        totals = recompute_participant(session, participant_id, today_day)

    return {"deleted": result.rowcount > 0, "totals": totals.to_dict()}


# ---------------------------------------------------------------------------
# One-time completions
# ---------------------------------------------------------------------------

def save_onetime_completion(
    participant_id: str,
    user_id: str,
    task_id: str,
    value: Any = None,
    *,
    tz: str = "UTC",
    now: Optional[datetime] = None,
) -> dict:
    """Complete a one-time task. Allowed once ever, before the deadline and the challenge end."""
    moment = now or utc_now()
    today_day = _resolve_today(tz, moment)

    try:
        with get_db_session() as session:
            participant = _load_owned_participant(session, participant_id, user_id)
            challenge = _load_challenge(session, participant.challenge_id)
            task = _find_task(challenge, task_id)
            if task.get("frequency") != "onetime":
                raise ValidationError("Task is not a one-time task")

            end = effective_end_date(challenge, tz)
            if end is not None and today_day > end:
                raise ChallengeEndedError("Challenge has ended")
            if today_day < to_date(challenge.starts_at):
                raise ChallengeNotStartedError("Challenge has not started yet")
            if is_deadline_passed(task.get("deadline"), today_day):
                raise DeadlinePassedError("The deadline for this task has passed")

            existing = session.execute(
                select(onetime_task_completions.c.id).where(
                    and_(
                        onetime_task_completions.c.participant_id == participant_id,
                        onetime_task_completions.c.task_id == task_id,
                    )
                )
            ).first()
            if existing:
                raise DuplicateCompletionError("Task already completed")

            points = calculate_metric_points(task, value)
            session.execute(
                insert(onetime_task_completions).values(
                    participant_id=participant_id,
                    task_id=task_id,
                    value=value,
                    points_earned=points,
                    completed_at=moment,
                )
            )
            totals = recompute_participant(session, participant_id, today_day)
    except IntegrityError as exc:
        raise DuplicateCompletionError("Task already completed") from exc

    log_event(
        "info",
        "onetime.completed",
        user_id=user_id,
        participant_id=participant_id,
        event_type="onetime_completed",
        extra={"task_id": task_id, "points": points},
    )
    return {"points": points, "totals": totals.to_dict()}


def delete_onetime_completion(
    participant_id: str,
    user_id: str,
    task_id: str,
    *,
    tz: str = "UTC",
    now: Optional[datetime] = None,
) -> dict:
    today_day = _resolve_today(tz, now)
    with get_db_session() as session:
        _load_owned_participant(session, participant_id, user_id)
        result = session.execute(
            delete(onetime_task_completions).where(
                and_(
                    onetime_task_completions.c.participant_id == participant_id,
                    onetime_task_completions.c.task_id == task_id,
                )
            )
        )
        totals = recompute_participant(session, participant_id, today_day)

    return {"deleted": result.rowcount > 0, "totals": totals.to_dict()}


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------

def get_participant_summary(participant_id: str, *, tz: str = "UTC", now: Optional[datetime] = None) -> dict:
    """
    Participant dashboard: recomputed totals, challenge state and task status.

    Totals are computed at read time; stored counters are ignored.
    """
    moment = now or utc_now()
    today_day = _resolve_today(tz, moment)

    with get_db_session() as session:
        participant = _load_participant(session, participant_id)
        challenge = _load_challenge(session, participant.challenge_id)
        entries = session.execute(
            select(daily_entries)
            .where(daily_entries.c.participant_id == participant_id)
            .order_by(daily_entries.c.entry_date)
        ).all()
        periodic = session.execute(
            select(periodic_task_completions).where(periodic_task_completions.c.participant_id == participant_id)
        ).all()
        onetime = session.execute(
            select(onetime_task_completions).where(onetime_task_completions.c.participant_id == participant_id)
        ).all()

    state = get_challenge_state(challenge, today_day, tz)
    current_streak = calculate_display_streak(entries, today_day)
    completed_onetime = {row.task_id for row in onetime}

    periodic_tasks = []
    onetime_tasks = []
    for task in challenge.metrics or []:
        frequency = task.get("frequency") or "daily"
        if frequency in ("weekly", "monthly"):
            period = get_period_for_date(frequency, today_day)
            done = any(
                row.task_id == task.get("id") and to_date(row.period_start) == period.start for row in periodic
            )
            periodic_tasks.append({
                "task_id": task.get("id"),
                "name": task.get("name"),
                "period": period.to_dict(),
                "completed": done,
                "days_remaining": days_remaining(period, today_day),
                "status": get_period_status(period, today_day),
            })
        elif frequency == "onetime":
            onetime_tasks.append({
                "task_id": task.get("id"),
                "name": task.get("name"),
                "deadline": task.get("deadline"),
                "completed": task.get("id") in completed_onetime,
                "deadline_status": get_deadline_status(task.get("deadline"), today_day),
                "deadline_text": get_deadline_text(task.get("deadline"), today_day),
            })

    onetime_tasks = sort_by_deadline(onetime_tasks, today_day)

    return {
        "participant_id": participant_id,
        "challenge_id": participant.challenge_id,
        "today": today_day.isoformat(),
        "state": state.to_dict(),
        "current_streak": current_streak,
        "longest_streak": max(current_streak, calculate_longest_streak(entries)),
        "total_points": calculate_total_points(entries, onetime, periodic),
        "entries": [
            dict(_entry_dict(e), is_late=is_late_entry(e.entry_date, e.submitted_at, tz)) for e in entries
        ],
        "periodic_tasks": periodic_tasks,
        "onetime_tasks": onetime_tasks,
    }


def get_participant_calendar(
    participant_id: str,
    start: Union[str, date],
    end: Union[str, date],
    *,
    tz: str = "UTC",
    now: Optional[datetime] = None,
) -> List[dict]:
    """Day statuses for the requested range, limited to days the challenge has actually run."""
    today_day = _resolve_today(tz, now)
    if to_date(end) < to_date(start):
        raise ValidationError("Calendar end must not be before its start")

    with get_db_session() as session:
        participant = _load_participant(session, participant_id)
        challenge = _load_challenge(session, participant.challenge_id)
        challenge_end = effective_end_date(challenge, tz)
        first = max(to_date(start), to_date(challenge.starts_at))
        last = min(to_date(end), today_day if challenge_end is None else min(challenge_end, today_day))
        if last < first:
            return []
        entries = session.execute(
            select(daily_entries).where(daily_entries.c.participant_id == participant_id)
        ).all()
        periodic = session.execute(
            select(periodic_task_completions).where(periodic_task_completions.c.participant_id == participant_id)
        ).all()

    return build_calendar(
        first,
        last,
        today_day,
        challenge,
        challenge_end,
        [_entry_dict(e) for e in entries],
        [
            {"task_id": p.task_id, "frequency": p.frequency, "period_start": to_date(p.period_start).isoformat()}
            for p in periodic
        ],
        tz,
    )
