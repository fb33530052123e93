"""
UTC time helpers.

All timestamps are stored as naive UTC datetimes so values read back from
SQLite compare cleanly with values computed in Python.
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Current time as a naive UTC datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utc_day_bounds(moment: datetime = None):
    """Return (midnight, next midnight) of the UTC day containing ``moment``"""
    moment = moment or utc_now()
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)
