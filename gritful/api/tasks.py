from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from gritful.core.auth import get_current_user_id
from gritful.features.entries.service import (
    delete_onetime_completion,
    delete_periodic_completion,
    save_onetime_completion,
    save_periodic_completion,
)
from gritful.models.entries import TaskCompletionRequest

router = APIRouter()


@router.post("/v1/participants/{participant_id}/periodic/{task_id}", status_code=201)
def complete_periodic_task(
    participant_id: str,
    task_id: str,
    body: TaskCompletionRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Complete a weekly/monthly task for the current period."""
    return save_periodic_completion(participant_id, user_id, task_id, body.value, tz=body.tz)


@router.delete("/v1/participants/{participant_id}/periodic/{task_id}")
def undo_periodic_task(
    participant_id: str,
    task_id: str,
    period_start: Optional[date] = Query(None),
    tz: str = Query("UTC"),
    user_id: str = Depends(get_current_user_id),
):
    return delete_periodic_completion(participant_id, user_id, task_id, period_start=period_start, tz=tz)


@router.post("/v1/participants/{participant_id}/onetime/{task_id}", status_code=201)
def complete_onetime_task(
    participant_id: str,
    task_id: str,
    body: TaskCompletionRequest,
    user_id: str = Depends(get_current_user_id),
):
    return save_onetime_completion(participant_id, user_id, task_id, body.value, tz=body.tz)


@router.delete("/v1/participants/{participant_id}/onetime/{task_id}")
def undo_onetime_task(
    participant_id: str,
    task_id: str,
    tz: str = Query("UTC"),
    user_id: str = Depends(get_current_user_id),
):
    return delete_onetime_completion(participant_id, user_id, task_id, tz=tz)
