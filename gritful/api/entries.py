from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from gritful.core.auth import get_current_user_id
from gritful.features.entries.service import (
    delete_daily_entry,
    get_participant_calendar,
    get_participant_summary,
    save_daily_entry,
)
from gritful.models.entries import DailyEntryRequest

router = APIRouter()


@router.post("/v1/participants/{participant_id}/entries")
def post_daily_entry(
    participant_id: str,
    body: DailyEntryRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Create or update the caller's entry for one day (today in ``tz`` by default)."""
    return save_daily_entry(
        participant_id,
        user_id,
        body.metric_data,
        body.is_completed,
        notes=body.notes,
        target_date=body.target_date,
        tz=body.tz,
    )


@router.delete("/v1/entries/{entry_id}")
def remove_daily_entry(entry_id: str, tz: str = Query("UTC"), user_id: str = Depends(get_current_user_id)):
    return delete_daily_entry(entry_id, user_id, tz=tz)


@router.get("/v1/participants/{participant_id}/summary")
def participant_summary(participant_id: str, tz: str = Query("UTC")):
    return get_participant_summary(participant_id, tz=tz)


@router.get("/v1/participants/{participant_id}/calendar")
def participant_calendar(
    participant_id: str,
    start: date = Query(...),
    end: date = Query(...),
    tz: str = Query("UTC"),
):
    return {"days": get_participant_calendar(participant_id, start, end, tz=tz)}
