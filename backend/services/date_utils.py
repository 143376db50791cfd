"""Calendar helpers for subscription windows and transaction ranges."""

from datetime import date, datetime
from typing import Tuple, TypeVar

from dateutil.relativedelta import relativedelta

D = TypeVar("D", date, datetime)


def add_months(value: D, months: int) -> D:
    """
    Shift a date or datetime by whole calendar months.

    The day is clamped to the length of the target month, so
    add_months(date(2024, 1, 31), 1) == date(2024, 2, 29).
    """
    return value + relativedelta(months=months)


def month_bounds(value: date) -> Tuple[date, date]:
    """Return the first and last day of the month containing `value`."""
    first = value.replace(day=1)
    last = first + relativedelta(months=1, days=-1)
    return first, last
