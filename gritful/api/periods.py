from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Query

from gritful.core.dates import to_date, today as civil_today
from gritful.features.periods.service import days_remaining, get_period_for_date, get_period_status

router = APIRouter()


@router.get("/v1/periods")
def get_period(
    frequency: Literal["weekly", "monthly"] = Query(...),
    date_: Optional[date] = Query(None, alias="date"),
    tz: str = Query("UTC"),
):
    """Period bucket containing ``date`` (today in ``tz`` by default)."""
    current = to_date(civil_today(tz))
    reference = date_ or current
    period = get_period_for_date(frequency, reference)
    return {
        **period.to_dict(),
        "frequency": frequency,
        "days_remaining": days_remaining(period, current),
        "status": get_period_status(period, current),
    }
