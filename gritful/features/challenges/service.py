from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, insert, update, delete

from gritful.core.database import (
    get_db_session,
    activity_feed,
    challenges,
    challenge_participants,
    daily_entries,
    onetime_task_completions,
    participant_achievements,
    periodic_task_completions,
)
from gritful.core.dates import resolve_timezone, to_date, today as civil_today, utc_now
from gritful.core.errors import (
    ChallengeEndedError,
    ChallengeNotStartedError,
    ConflictError,
    NotFoundError,
    PermissionError,
    ValidationError,
)
from gritful.core.logging import log_event
from gritful.features.challenges.state import (
    compute_ends_at,
    effective_end_date,
    get_challenge_state,
    is_active_challenge,
    is_history_challenge,
)
from gritful.features.entries.service import recompute_participant
from gritful.features.periods.deadlines import clamp_deadline_to_challenge
from gritful.models.challenge import ChallengeCreate, ChallengeSettingsUpdate, Task, TaskCreate, TaskFields

# Columns that accept an explicit null in a settings update
NULLABLE_SETTINGS = ("description",)


def _challenge_dict(row, *, tz: str, today_day: date) -> dict:
    state = get_challenge_state(row, today_day, tz)
    return {
        "id": row.id,
        "creator_id": row.creator_id,
        "name": row.name,
        "description": row.description,
        "starts_at": to_date(row.starts_at).isoformat(),
        "ends_at": to_date(row.ends_at).isoformat() if row.ends_at else None,
        "ended_at": row.ended_at.isoformat() if row.ended_at else None,
        "duration_days": row.duration_days,
        "grace_period_days": row.grace_period_days,
        "metrics": row.metrics or [],
        "is_public": bool(row.is_public),
        "lock_entries_after_day": bool(row.lock_entries_after_day),
        "enable_streak_bonus": bool(row.enable_streak_bonus),
        "streak_bonus_points": row.streak_bonus_points,
        "enable_perfect_day_bonus": bool(row.enable_perfect_day_bonus),
        "perfect_day_bonus_points": row.perfect_day_bonus_points,
        "state": state.to_dict(),
    }


def _participant_dict(row) -> dict:
    return {
        "id": row.id,
        "challenge_id": row.challenge_id,
        "user_id": row.user_id,
        "display_name": row.display_name,
        "current_streak": row.current_streak,
        "longest_streak": row.longest_streak,
        "total_points": row.total_points,
        "status": row.status,
    }


def _stored_task(
    task: TaskFields,
    *,
    order: int,
    created_at: datetime,
    ends_at: Optional[date],
    existing: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    payload = task.model_dump(mode="json", exclude={"id"})
    if task.deadline:
        payload["deadline"] = clamp_deadline_to_challenge(task.deadline, ends_at).isoformat()
    if existing is not None:
        stored = Task(id=existing["id"], order=order, created_at=existing.get("created_at"), **payload)
    else:
        stored = Task(id=str(uuid.uuid4()), order=order, created_at=created_at.isoformat(), **payload)
    return stored.model_dump(mode="json")


def _delete_participant_rows(session, participant_ids: List[str]) -> None:
    """Delete participations and everything recorded under them."""
    if not participant_ids:
        return
    # SQLite only honours ON DELETE CASCADE with foreign_keys enabled
    for table in (daily_entries, periodic_task_completions, onetime_task_completions, participant_achievements):
        session.execute(delete(table).where(table.c.participant_id.in_(participant_ids)))
    session.execute(delete(challenge_participants).where(challenge_participants.c.id.in_(participant_ids)))


class ChallengeService:
    """Challenge creation, membership and lifecycle, backed by the challenges tables."""

    def _load(self, session, challenge_id: str):
        row = session.execute(select(challenges).where(challenges.c.id == challenge_id)).first()
        if not row:
            raise NotFoundError("Challenge not found")
        return row

    def create_challenge(
        self,
        *,
        creator_id: str,
        data: ChallengeCreate,
        tz: str = "UTC",
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Create a challenge and join its creator as the first participant."""
        moment = now or utc_now()
        resolve_timezone(tz)
        today_day = to_date(civil_today(tz, now=moment))
        if data.starts_at < today_day:
            raise ValidationError("Start date cannot be in the past")

        ends_at = compute_ends_at(data.starts_at, data.duration_days)
        metrics = [
            _stored_task(task, order=index, created_at=moment, ends_at=ends_at)
            for index, task in enumerate(data.metrics)
        ]
        challenge_id = str(uuid.uuid4())

        with get_db_session() as session:
            session.execute(
                insert(challenges).values(
                    id=challenge_id,
                    creator_id=creator_id,
                    name=data.name,
                    description=data.description,
                    starts_at=data.starts_at,
                    ends_at=ends_at,
                    duration_days=data.duration_days,
                    grace_period_days=data.grace_period_days,
                    metrics=metrics,
                    is_public=data.is_public,
                    lock_entries_after_day=data.lock_entries_after_day,
                    enable_streak_bonus=data.enable_streak_bonus,
                    streak_bonus_points=data.streak_bonus_points,
                    enable_perfect_day_bonus=data.enable_perfect_day_bonus,
                    perfect_day_bonus_points=data.perfect_day_bonus_points,
                    created_at=moment,
                )
            )
            session.execute(
                insert(challenge_participants).values(
                    id=str(uuid.uuid4()),
                    challenge_id=challenge_id,
                    user_id=creator_id,
                    email=email,
                    display_name=display_name,
                    status="active",
                    joined_at=moment,
                )
            )
            row = self._load(session, challenge_id)
            result = _challenge_dict(row, tz=tz, today_day=today_day)

        log_event(
            "info",
            "challenge.created",
            user_id=creator_id,
            challenge_id=challenge_id,
            event_type="challenge_created",
            extra={"ongoing": ends_at is None, "tasks": len(metrics)},
        )
        return result

    def get_challenge(self, *, challenge_id: str, tz: str = "UTC", now: Optional[datetime] = None) -> dict:
        resolve_timezone(tz)
        today_day = to_date(civil_today(tz, now=now))
        with get_db_session() as session:
            return _challenge_dict(self._load(session, challenge_id), tz=tz, today_day=today_day)

    def get_state(self, *, challenge_id: str, tz: str = "UTC", now: Optional[datetime] = None) -> dict:
        resolve_timezone(tz)
        today_day = to_date(civil_today(tz, now=now))
        with get_db_session() as session:
            row = self._load(session, challenge_id)
        return dict(get_challenge_state(row, today_day, tz).to_dict(), today=today_day.isoformat())

    def join_challenge(
        self,
        *,
        challenge_id: str,
        user_id: str,
        tz: str = "UTC",
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Join a challenge. Joining twice returns the existing participation."""
        moment = now or utc_now()
        resolve_timezone(tz)
        today_day = to_date(civil_today(tz, now=moment))

        with get_db_session() as session:
            row = self._load(session, challenge_id)
            existing = session.execute(
                select(challenge_participants).where(
                    challenge_participants.c.challenge_id == challenge_id,
                    challenge_participants.c.user_id == user_id,
                )
            ).first()
            if existing:
                return _participant_dict(existing)

            if is_history_challenge(row, today_day, tz):
                raise ChallengeEndedError("Challenge has ended")

            participant_id = str(uuid.uuid4())
            session.execute(
                insert(challenge_participants).values(
                    id=participant_id,
                    challenge_id=challenge_id,
                    user_id=user_id,
                    email=email,
                    display_name=display_name,
                    status="active",
                    joined_at=moment,
                )
            )
            participant = session.execute(
                select(challenge_participants).where(challenge_participants.c.id == participant_id)
            ).first()
            result = _participant_dict(participant)

        log_event("info", "challenge.joined", user_id=user_id, challenge_id=challenge_id, event_type="challenge_joined")
        return result

    def end_challenge(
        self,
        *,
        challenge_id: str,
        user_id: str,
        tz: str = "UTC",
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Manually end an ongoing challenge.

        Sets ends_at to today in ``tz`` and ended_at to the current instant, so
        the challenge then runs through its grace period like any other.
        """
        moment = now or utc_now()
        resolve_timezone(tz)
        today_day = to_date(civil_today(tz, now=moment))

        with get_db_session() as session:
            row = self._load(session, challenge_id)
            if row.creator_id != user_id:
                raise PermissionError("Only the creator can end this challenge")
            if row.ends_at is not None or row.ended_at is not None:
                raise ConflictError("Only ongoing challenges can be ended", code="challenge_not_ongoing")
            if today_day < to_date(row.starts_at):
                raise ChallengeNotStartedError("A challenge cannot end before it starts")

            session.execute(
                update(challenges)
                .where(challenges.c.id == challenge_id)
                .values(ends_at=today_day, ended_at=moment)
            )
            result = _challenge_dict(self._load(session, challenge_id), tz=tz, today_day=today_day)

        log_event("info", "challenge.ended", user_id=user_id, challenge_id=challenge_id, event_type="challenge_ended")
        return result

    def add_task(
        self,
        *,
        challenge_id: str,
        user_id: str,
        task: TaskCreate,
        tz: str = "UTC",
        now: Optional[datetime] = None,
    ) -> dict:
        """Append a task to a challenge. One-time deadlines are clamped to the challenge end."""
        return self.batch_add_tasks(challenge_id=challenge_id, user_id=user_id, tasks=[task], tz=tz, now=now)[0]

    def batch_add_tasks(
        self,
        *,
        challenge_id: str,
        user_id: str,
        tasks: List[TaskCreate],
        tz: str = "UTC",
        now: Optional[datetime] = None,
    ) -> List[dict]:
        """Append several tasks in one write, keeping their order."""
        if not tasks:
            raise ValidationError("At least one task is required")
        moment = now or utc_now()
        resolve_timezone(tz)

        with get_db_session() as session:
            row = self._load(session, challenge_id)
            if row.creator_id != user_id:
                raise PermissionError("Only the creator can add tasks")

            metrics = list(row.metrics or [])
            ends_at = effective_end_date(row, tz)
            added = []
            for task in tasks:
                added.append(_stored_task(task, order=len(metrics), created_at=moment, ends_at=ends_at))
                metrics.append(added[-1])
            session.execute(update(challenges).where(challenges.c.id == challenge_id).values(metrics=metrics))

        for stored in added:
            log_event(
                "info",
                "challenge.task_added",
                user_id=user_id,
                challenge_id=challenge_id,
                event_type="task_added",
                extra={"task_id": stored["id"], "frequency": stored["frequency"]},
            )
        return added

    def update_challenge_settings(
        self,
        *,
        challenge_id: str,
        user_id: str,
        changes: ChallengeSettingsUpdate,
        tz: str = "UTC",
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Apply creator edits and recompute every participant's totals.

        A ``metrics`` list replaces the task list: tasks carrying a known id keep
        that id, the rest are new, and completions of dropped tasks are removed.
        """
        moment = now or utc_now()
        resolve_timezone(tz)
        today_day = to_date(civil_today(tz, now=moment))
        values = {
            key: value
            for key, value in changes.model_dump(exclude_unset=True, exclude={"metrics"}).items()
            if value is not None or key in NULLABLE_SETTINGS
        }

        with get_db_session() as session:
            row = self._load(session, challenge_id)
            if row.creator_id != user_id:
                raise PermissionError("Only the challenge creator can update settings")

            participant_ids = list(
                session.execute(
                    select(challenge_participants.c.id).where(challenge_participants.c.challenge_id == challenge_id)
                ).scalars()
            )

            removed = []
            if changes.metrics is not None:
                current = {task["id"]: task for task in row.metrics or []}
                ends_at = effective_end_date(row, tz)
                metrics = [
                    _stored_task(task, order=index, created_at=moment, ends_at=ends_at, existing=current.get(task.id))
                    for index, task in enumerate(changes.metrics)
                ]
                removed = sorted(set(current) - {task["id"] for task in metrics})
                values["metrics"] = metrics
                if removed and participant_ids:
                    for table in (periodic_task_completions, onetime_task_completions):
                        session.execute(
                            delete(table).where(
                                table.c.participant_id.in_(participant_ids),
                                table.c.task_id.in_(removed),
                            )
                        )

            if values:
                session.execute(update(challenges).where(challenges.c.id == challenge_id).values(**values))
            for participant_id in participant_ids:
                recompute_participant(session, participant_id, today_day)
            result = _challenge_dict(self._load(session, challenge_id), tz=tz, today_day=today_day)

        log_event(
            "info",
            "challenge.settings_updated",
            user_id=user_id,
            challenge_id=challenge_id,
            event_type="settings_updated",
            extra={"fields": sorted(values), "removed_tasks": removed, "participants": len(participant_ids)},
        )
        return result

    def leave_challenge(self, *, challenge_id: str, user_id: str) -> dict:
        """Withdraw from a challenge. The participation and its entries are deleted."""
        with get_db_session() as session:
            self._load(session, challenge_id)
            participant = session.execute(
                select(challenge_participants).where(
                    challenge_participants.c.challenge_id == challenge_id,
                    challenge_participants.c.user_id == user_id,
                )
            ).first()
            if not participant:
                raise NotFoundError("You are not participating in this challenge")
            _delete_participant_rows(session, [participant.id])

        log_event(
            "info",
            "challenge.left",
            user_id=user_id,
            challenge_id=challenge_id,
            participant_id=participant.id,
            event_type="challenge_left",
        )
        return {"left": True, "participant_id": participant.id}

    def delete_challenge(self, *, challenge_id: str, user_id: str) -> dict:
        """Delete a challenge with all participations and feed items. Creator only."""
        with get_db_session() as session:
            row = self._load(session, challenge_id)
            if row.creator_id != user_id:
                raise PermissionError("You can only delete challenges you created")

            participant_ids = list(
                session.execute(
                    select(challenge_participants.c.id).where(challenge_participants.c.challenge_id == challenge_id)
                ).scalars()
            )
            _delete_participant_rows(session, participant_ids)
            session.execute(delete(activity_feed).where(activity_feed.c.challenge_id == challenge_id))
            session.execute(delete(challenges).where(challenges.c.id == challenge_id))

        log_event(
            "info",
            "challenge.deleted",
            user_id=user_id,
            challenge_id=challenge_id,
            event_type="challenge_deleted",
            extra={"participants": len(participant_ids)},
        )
        return {"deleted": True, "challenge_id": challenge_id}

    def list_for_user(
        self,
        *,
        user_id: str,
        view: str = "active",
        tz: str = "UTC",
        now: Optional[datetime] = None,
    ) -> List[dict]:
        """Challenges the user participates in, filtered to the Active or History view."""
        if view not in ("active", "history"):
            raise ValidationError("view must be 'active' or 'history'")
        resolve_timezone(tz)
        today_day = to_date(civil_today(tz, now=now))
        belongs = is_active_challenge if view == "active" else is_history_challenge

        with get_db_session() as session:
            rows = session.execute(
                select(challenges)
                .join(challenge_participants, challenge_participants.c.challenge_id == challenges.c.id)
                .where(challenge_participants.c.user_id == user_id)
                .order_by(challenges.c.starts_at.desc())
            ).all()

        # Upcoming challenges appear in neither view
        return [_challenge_dict(row, tz=tz, today_day=today_day) for row in rows if belongs(row, today_day, tz)]

    def list_participants(self, *, challenge_id: str) -> List[dict]:
        with get_db_session() as session:
            self._load(session, challenge_id)
            rows = session.execute(
                select(challenge_participants)
                .where(challenge_participants.c.challenge_id == challenge_id)
                .order_by(challenge_participants.c.total_points.desc())
            ).all()
        return [_participant_dict(row) for row in rows]


challenge_service = ChallengeService()
