"""
Challenge lifecycle state.

Pure, total function of (challenge, reference date, timezone):

    upcoming -> active -> grace_period -> archived
    ongoing (no end date and never manually ended)

Malformed input never raises; it fails closed to ``archived`` with entries
disallowed so read paths stay available.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Optional, Union

from gritful.core.config import settings
from gritful.core.dates import to_date, today as civil_today
from gritful.core.errors import ValidationError
from gritful.models.challenge import ChallengeStateResult

logger = logging.getLogger("gritful")

ACTIVE_VIEW_STATES = ("active", "grace_period", "ongoing")


def _field(challenge: Any, name: str) -> Any:
    if isinstance(challenge, dict):
        return challenge.get(name)
    return getattr(challenge, name, None)


def _archived() -> ChallengeStateResult:
    return ChallengeStateResult(state="archived", is_entry_allowed=False)


def _grace_days(challenge: Any) -> int:
    raw = _field(challenge, "grace_period_days")
    if raw is None:
        return settings.DEFAULT_GRACE_PERIOD_DAYS
    return max(0, int(raw))


def compute_ends_at(starts_at: Union[str, date], duration_days: Optional[int]) -> Optional[date]:
    """Last active day of a fixed-length challenge; None for ongoing ones."""
    if duration_days is None:
        return None
    return to_date(starts_at) + timedelta(days=duration_days - 1)


def effective_end_date(challenge: Any, tz: str) -> Optional[date]:
    """Manual ``ended_at`` (as a civil date in ``tz``) if set, else ``ends_at``."""
    ended_at = _field(challenge, "ended_at")
    if ended_at:
        return to_date(ended_at, tz)
    ends_at = _field(challenge, "ends_at")
    if ends_at:
        return to_date(ends_at, tz)
    return None


def get_challenge_state(
    challenge: Any,
    reference_date: Optional[Union[str, date, datetime]] = None,
    tz: Optional[str] = None,
) -> ChallengeStateResult:
    """
    Determine the lifecycle state of a challenge.

    Args:
        challenge: mapping or object with starts_at, ends_at, ended_at, grace_period_days
        reference_date: civil date (or timestamp, resolved in ``tz``); defaults to today in ``tz``
        tz: IANA timezone; defaults to the configured DEFAULT_TIMEZONE

    Returns:
        ChallengeStateResult
    """
    zone = tz or settings.DEFAULT_TIMEZONE
    try:
        ref = to_date(reference_date if reference_date is not None else civil_today(zone), zone)
        start = to_date(_field(challenge, "starts_at"), zone)
        grace_days = _grace_days(challenge)

        if not _field(challenge, "ends_at") and not _field(challenge, "ended_at"):
            return ChallengeStateResult(state="ongoing", is_entry_allowed=ref >= start)

        end = effective_end_date(challenge, zone)
        # Clamp so grace arithmetic at the far end of the calendar stays in range
        grace_end = end + timedelta(days=min(grace_days, (date.max - end).days))
    except (ValidationError, ValueError, TypeError, OverflowError) as exc:
        logger.warning("challenge.state.malformed", extra={"error_message": str(exc)})
        return _archived()

    if ref < start:
        return ChallengeStateResult(state="upcoming", is_entry_allowed=False)

    if ref <= end:
        return ChallengeStateResult(
            state="active",
            is_entry_allowed=True,
            grace_period_ends_at=grace_end if grace_days > 0 else None,
        )

    if grace_days > 0 and ref <= grace_end:
        return ChallengeStateResult(
            state="grace_period",
            is_entry_allowed=True,
            days_in_grace_period=(ref - end).days,
            grace_period_ends_at=grace_end,
            # The final grace day still counts as one day left
            days_remaining_in_grace=max(1, (grace_end - ref).days),
        )

    return _archived()


def is_active_challenge(challenge: Any, reference_date=None, tz: Optional[str] = None) -> bool:
    """Belongs in the Active view (active, grace_period or ongoing)."""
    return get_challenge_state(challenge, reference_date, tz).state in ACTIVE_VIEW_STATES


def is_history_challenge(challenge: Any, reference_date=None, tz: Optional[str] = None) -> bool:
    """Belongs in the History view (archived only)."""
    return get_challenge_state(challenge, reference_date, tz).state == "archived"
