from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from gritful.core.auth import get_current_user_id
from gritful.core.dates import today as civil_today
from gritful.features.challenges.service import challenge_service
from gritful.features.email.queue import send_challenge_update
from gritful.features.periods.deadlines import DeadlinePreset, calculate_deadline
from gritful.models.challenge import ChallengeCreate, ChallengeSettingsUpdate, ChallengeUpdateMessage, TaskCreate

router = APIRouter()


class CreateChallengeRequest(ChallengeCreate):
    tz: str = Field(default="UTC", description="IANA timezone of the creator")
    email: Optional[str] = None
    display_name: Optional[str] = None


class JoinRequest(BaseModel):
    tz: str = "UTC"
    email: Optional[str] = None
    display_name: Optional[str] = None


class EndRequest(BaseModel):
    tz: str = "UTC"


class AddTaskRequest(TaskCreate):
    tz: str = "UTC"
    deadline_preset: Optional[DeadlinePreset] = Field(default=None, description="Overrides deadline unless 'custom'")


class BatchTaskItem(TaskCreate):
    deadline_preset: Optional[DeadlinePreset] = None


class BatchTasksRequest(BaseModel):
    tz: str = "UTC"
    tasks: list[BatchTaskItem] = Field(min_length=1)


class SettingsRequest(ChallengeSettingsUpdate):
    tz: str = "UTC"


class UpdateRequest(ChallengeUpdateMessage):
    recipient_user_ids: Optional[list[str]] = None


def _task_from_request(item: TaskCreate, preset: Optional[str], tz: str) -> TaskCreate:
    payload = item.model_dump(exclude={"tz", "deadline_preset"})
    if item.frequency == "onetime" and preset and preset != "custom":
        deadline = calculate_deadline(preset, civil_today(tz))
        payload["deadline"] = deadline.isoformat() if deadline else None
    return TaskCreate.model_validate(payload)


@router.post("/v1/challenges", status_code=201)
def create_challenge(body: CreateChallengeRequest, user_id: str = Depends(get_current_user_id)):
    data = ChallengeCreate.model_validate(body.model_dump(exclude={"tz", "email", "display_name"}))
    return challenge_service.create_challenge(
        creator_id=user_id,
        data=data,
        tz=body.tz,
        email=body.email,
        display_name=body.display_name,
    )


@router.get("/v1/challenges")
def list_challenges(
    view: Literal["active", "history"] = Query("active"),
    tz: str = Query("UTC"),
    user_id: str = Depends(get_current_user_id),
):
    """The caller's challenges for the Active or History view."""
    return {"view": view, "challenges": challenge_service.list_for_user(user_id=user_id, view=view, tz=tz)}


@router.get("/v1/challenges/{challenge_id}")
def get_challenge(challenge_id: str, tz: str = Query("UTC")):
    return challenge_service.get_challenge(challenge_id=challenge_id, tz=tz)


@router.get("/v1/challenges/{challenge_id}/state")
def get_challenge_state(challenge_id: str, tz: str = Query("UTC")):
    return challenge_service.get_state(challenge_id=challenge_id, tz=tz)


@router.get("/v1/challenges/{challenge_id}/participants")
def list_participants(challenge_id: str):
    return {"participants": challenge_service.list_participants(challenge_id=challenge_id)}


@router.post("/v1/challenges/{challenge_id}/join")
def join_challenge(challenge_id: str, body: Optional[JoinRequest] = None, user_id: str = Depends(get_current_user_id)):
    body = body or JoinRequest()
    return challenge_service.join_challenge(
        challenge_id=challenge_id,
        user_id=user_id,
        tz=body.tz,
        email=body.email,
        display_name=body.display_name,
    )


@router.post("/v1/challenges/{challenge_id}/end")
def end_challenge(challenge_id: str, body: Optional[EndRequest] = None, user_id: str = Depends(get_current_user_id)):
    body = body or EndRequest()
    return challenge_service.end_challenge(challenge_id=challenge_id, user_id=user_id, tz=body.tz)


@router.post("/v1/challenges/{challenge_id}/tasks", status_code=201)
def add_task(challenge_id: str, body: AddTaskRequest, user_id: str = Depends(get_current_user_id)):
    task = _task_from_request(body, body.deadline_preset, body.tz)
    return challenge_service.add_task(challenge_id=challenge_id, user_id=user_id, task=task, tz=body.tz)


@router.post("/v1/challenges/{challenge_id}/updates", status_code=202)
def post_update(challenge_id: str, body: UpdateRequest, user_id: str = Depends(get_current_user_id)):
    """Queue an update e-mail to the other participants."""
    count = send_challenge_update(
        challenge_id=challenge_id,
        sender_user_id=user_id,
        subject=body.subject,
        message=body.message,
        recipient_user_ids=body.recipient_user_ids,
    )
    return {"queued": count}


@router.post("/v1/challenges/{challenge_id}/tasks/batch", status_code=201)
def batch_add_tasks(challenge_id: str, body: BatchTasksRequest, user_id: str = Depends(get_current_user_id)):
    tasks = [_task_from_request(item, item.deadline_preset, body.tz) for item in body.tasks]
    added = challenge_service.batch_add_tasks(challenge_id=challenge_id, user_id=user_id, tasks=tasks, tz=body.tz)
    return {"tasks": added}


@router.patch("/v1/challenges/{challenge_id}")
def update_challenge_settings(challenge_id: str, body: SettingsRequest, user_id: str = Depends(get_current_user_id)):
    """Creator edits; participant totals are recomputed afterwards."""
    changes = ChallengeSettingsUpdate.model_validate(body.model_dump(exclude_unset=True, exclude={"tz"}))
    return challenge_service.update_challenge_settings(
        challenge_id=challenge_id, user_id=user_id, changes=changes, tz=body.tz
    )


@router.post("/v1/challenges/{challenge_id}/leave")
def leave_challenge(challenge_id: str, user_id: str = Depends(get_current_user_id)):
    return challenge_service.leave_challenge(challenge_id=challenge_id, user_id=user_id)


@router.delete("/v1/challenges/{challenge_id}")
def delete_challenge(challenge_id: str, user_id: str = Depends(get_current_user_id)):
    return challenge_service.delete_challenge(challenge_id=challenge_id, user_id=user_id)
