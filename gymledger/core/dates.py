from __future__ import annotations

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta


def add_duration(start: datetime, value: int, unit: str) -> datetime:
    """Return ``start`` shifted by ``value`` plan units.

    MONTH and YEAR are calendar-aware: Jan 31 + 1 month is the last day of
    February, Feb 29 + 1 year is Feb 28.
    """
    if value <= 0:
        raise ValueError(f"duration value must be positive, got {value}")

    if unit == "DAY":
        return start + timedelta(days=value)
    if unit == "WEEK":
        return start + timedelta(weeks=value)
    if unit == "MONTH":
        return start + relativedelta(months=value)
    if unit == "YEAR":
        return start + relativedelta(years=value)
    raise ValueError(f"Unsupported duration unit: {unit}")
