"""Civil-date conversion: explicit timezones, no UTC truncation."""
from datetime import date, datetime, timezone

import pytest

from gritful.core.dates import (
    add_days,
    days_between,
    parse_civil_date,
    resolve_timezone,
    to_civil_date,
    to_date,
    today,
)
from gritful.core.errors import InvalidTimezoneError, ValidationError


def test_late_evening_in_new_york_stays_on_the_local_day():
    # 2025-01-15 03:30 UTC is still the 14th in New York
    assert to_civil_date("2025-01-15T03:30:00Z", "America/New_York") == "2025-01-14"
    assert to_civil_date("2025-01-15T03:30:00Z", "UTC") == "2025-01-15"


def test_naive_datetime_is_taken_as_utc():
    moment = datetime(2025, 1, 15, 23, 30)
    assert to_civil_date(moment, "Asia/Tokyo") == "2025-01-16"


@pytest.mark.parametrize("tz", ["Pacific/Kiritimati", "Etc/GMT-14", "Etc/GMT+12", "Pacific/Pago_Pago"])
def test_round_trip_at_extreme_offsets(tz):
    """A civil date produced for a zone converts back to itself, even at +-14h."""
    zone = resolve_timezone(tz)
    for hour in (0, 6, 12, 18, 23):
        local = datetime(2025, 3, 10, hour, 15, tzinfo=zone)
        civil = to_civil_date(local.astimezone(timezone.utc), tz)
        assert civil == "2025-03-10"
        assert to_civil_date(civil, tz) == civil


def test_date_only_string_is_returned_normalized():
    assert to_civil_date("2025-02-01", "America/Los_Angeles") == "2025-02-01"
    assert to_civil_date(date(2025, 2, 1), "Asia/Tokyo") == "2025-02-01"


def test_today_uses_the_given_zone():
    now = datetime(2025, 6, 30, 22, 0, tzinfo=timezone.utc)
    assert today("UTC", now=now) == "2025-06-30"
    assert today("Australia/Sydney", now=now) == "2025-07-01"


def test_parse_civil_date_is_naive_midnight():
    parsed = parse_civil_date("2025-01-20")
    assert parsed == datetime(2025, 1, 20)
    assert parsed.tzinfo is None


@pytest.mark.parametrize("bad", ["2025-13-01", "not-a-date", "", "2025/01/01"])
def test_parse_civil_date_rejects_garbage(bad):
    with pytest.raises(ValidationError):
        parse_civil_date(bad)


def test_unknown_timezone_raises_typed_error():
    with pytest.raises(InvalidTimezoneError) as exc:
        to_civil_date("2025-01-15T03:30:00Z", "Mars/Olympus_Mons")
    assert exc.value.code == "invalid_timezone"
    assert exc.value.status_code == 400


def test_timestamps_need_a_zone_to_become_dates():
    with pytest.raises(ValidationError):
        to_date("2025-01-15T03:30:00Z")
    assert to_date("2025-01-15T03:30:00Z", "America/New_York") == date(2025, 1, 14)


def test_day_arithmetic():
    assert days_between("2025-01-10", "2025-01-14") == 4
    assert days_between("2025-01-14", "2025-01-10") == -4
    assert add_days("2025-01-31", 1) == "2025-02-01"
    assert add_days("2024-03-01", -1) == "2024-02-29"
