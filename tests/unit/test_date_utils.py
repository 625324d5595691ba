"""Unit tests for date helpers"""

import pytest
from datetime import date, datetime, timedelta, timezone
from emandate_gateway.utils.date_utils import add_months, schedule_dates, to_naive_utc, utcnow


START = datetime(2026, 1, 31, 10, 0)


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None


def test_to_naive_utc_converts_aware_values():
    aware = datetime(2026, 1, 1, 5, 30, tzinfo=timezone(timedelta(hours=5, minutes=30)))

    assert to_naive_utc(aware) == datetime(2026, 1, 1, 0, 0)
    assert to_naive_utc(START) is START
    assert to_naive_utc(None) is None


def test_add_months_clamps_to_month_end():
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert add_months(date(2028, 1, 31), 1) == date(2028, 2, 29)
    assert add_months(date(2026, 3, 15), 12) == date(2027, 3, 15)


@pytest.mark.parametrize(
    "frequency,duration,end",
    [
        ("DAIL", 10, datetime(2026, 2, 10, 10, 0)),
        ("WEEK", 2, datetime(2026, 2, 14, 10, 0)),
        ("MNTH", 1, datetime(2026, 2, 28, 10, 0)),
        ("BIMN", 1, datetime(2026, 3, 31, 10, 0)),
        ("QURT", 1, datetime(2026, 4, 30, 10, 0)),
        ("MIAN", 1, datetime(2026, 7, 31, 10, 0)),
        ("YEAR", 2, datetime(2028, 1, 31, 10, 0)),
        ("mnth", 3, datetime(2026, 4, 30, 10, 0)),
    ],
)
def test_schedule_dates_by_frequency(frequency, duration, end):
    assert schedule_dates(START, frequency, duration) == (START, end)


def test_schedule_dates_falls_back_to_expiry():
    expiry = datetime(2026, 12, 31)

    assert schedule_dates(START, None, 12, expiry) == (START, expiry)
    assert schedule_dates(START, "MNTH", None, expiry) == (START, expiry)
    assert schedule_dates(START, "MNTH", None) == (START, None)
