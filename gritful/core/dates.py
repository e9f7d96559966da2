"""
Civil-date helpers.

Every calendar-day decision in Gritful (which day an entry belongs to, whether a
challenge is still open, how long a streak is) goes through these functions.
A civil date is a ``YYYY-MM-DD`` string as understood in one specific IANA
timezone; it is never derived by truncating a UTC timestamp.

Callers pass the timezone explicitly. ``"UTC"`` is a valid, explicit choice;
the server's local zone is never consulted.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from gritful.core.errors import InvalidTimezoneError, ValidationError

DateString = str
DateLike = Union[str, date, datetime]

CIVIL_DATE_FORMAT = "%Y-%m-%d"


@lru_cache(maxsize=128)
def resolve_timezone(tz: str) -> ZoneInfo:
    """Return the ZoneInfo for an IANA name, raising InvalidTimezoneError if unknown."""
    if not tz or not isinstance(tz, str):
        raise InvalidTimezoneError("Timezone is required")
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(f"Unknown timezone: {tz}") from exc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def today(tz: str, *, now: Optional[datetime] = None) -> DateString:
    """Civil date of "now" in ``tz``."""
    return to_civil_date(now or utc_now(), tz)


def to_civil_date(timestamp: Union[str, datetime, date], tz: str) -> DateString:
    """
    Convert a timestamp to the civil date it falls on in ``tz``.

    ISO-8601 strings and datetimes are accepted; naive values are taken as UTC.
    A bare ``YYYY-MM-DD`` (or a ``date``) is already a civil date and is
    returned unchanged apart from normalization.
    """
    zone = resolve_timezone(tz)

    if isinstance(timestamp, datetime):
        moment = timestamp
    elif isinstance(timestamp, date):
        return timestamp.isoformat()
    elif isinstance(timestamp, str):
        raw = timestamp.strip()
        if len(raw) == 10:
            return parse_civil_date(raw).date().isoformat()
        try:
            moment = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp: {timestamp!r}") from exc
    else:
        raise ValidationError(f"Invalid timestamp: {timestamp!r}")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(zone).date().isoformat()


def parse_civil_date(value: DateString) -> datetime:
    """
    Parse ``YYYY-MM-DD`` into a timezone-naive midnight.

    The result is only meant for date arithmetic and comparisons; it carries
    no zone and is never reinterpreted through UTC.
    """
    if not isinstance(value, str):
        raise ValidationError(f"Invalid civil date: {value!r}")
    try:
        return datetime.strptime(value.strip()[:10], CIVIL_DATE_FORMAT)
    except ValueError as exc:
        raise ValidationError(f"Invalid civil date: {value!r}") from exc


def to_date(value: DateLike, tz: Optional[str] = None) -> date:
    """
    Coerce a civil-date-ish value to ``date``.

    Full timestamps (datetime or ISO string with a time part) need ``tz`` to be
    resolved to a civil date; date-only inputs do not.
    """
    if isinstance(value, datetime):
        if tz is None:
            raise ValidationError("Timezone is required to resolve a timestamp to a date")
        return date.fromisoformat(to_civil_date(value, tz))
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value.strip()) > 10:
        if tz is None:
            raise ValidationError("Timezone is required to resolve a timestamp to a date")
        return date.fromisoformat(to_civil_date(value, tz))
    return parse_civil_date(value).date()


def days_between(a: DateLike, b: DateLike) -> int:
    """Calendar days from ``a`` to ``b`` (positive when ``b`` is later)."""
    return (to_date(b) - to_date(a)).days


def add_days(value: DateLike, days: int) -> DateString:
    return (to_date(value) + timedelta(days=days)).isoformat()
