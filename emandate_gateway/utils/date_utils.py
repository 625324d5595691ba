"""Date manipulation utilities"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple

from dateutil.relativedelta import relativedelta


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise an aware datetime to naive UTC; naive values are assumed UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def add_months(start: date, months: int) -> date:
    """Calendar month addition, clamped to the last day of the target month"""
    return start + relativedelta(months=months)


def schedule_dates(
    start: datetime,
    frequency: Optional[str],
    duration: Optional[int],
    expiry_date: Optional[datetime] = None,
) -> Tuple[datetime, Optional[datetime]]:
    """
    Start and end of a mandate running `duration` periods of `frequency`.

    Falls back to the slab expiry date when frequency or duration is missing.
    """
    if not (frequency and duration):
        return start, expiry_date

    code = frequency.upper()
    if code == "DAIL":
        end = start + timedelta(days=duration)
    elif code == "WEEK":
        end = start + timedelta(weeks=duration)
    elif code == "BIMN":
        end = start + relativedelta(months=duration * 2)
    elif code == "QURT":
        end = start + relativedelta(months=duration * 3)
    elif code == "MIAN":
        end = start + relativedelta(months=duration * 6)
    elif code == "YEAR":
        end = start + relativedelta(years=duration)
    else:
        end = start + relativedelta(months=duration)

    return start, end
