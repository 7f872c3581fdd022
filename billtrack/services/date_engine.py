from __future__ import annotations

import calendar
from collections.abc import Callable, Iterable
from datetime import date, timedelta
from typing import TypeVar

T = TypeVar("T")


def _check_month(month: int) -> None:
    if not 1 <= month <= 12:
        raise ValueError(f"month must be within 1..12, got {month}")


def to_date_key(value: date) -> str:
    return value.isoformat()


def parse_date_key(value: str) -> date:
    return date.fromisoformat(value.strip())


def last_day_of_month(year: int, month: int) -> int:
    _check_month(month)
    return calendar.monthrange(year, month)[1]


def clamp_day_of_month(year: int, month: int, day: int) -> int:
    if day < 1:
        raise ValueError(f"day must be positive, got {day}")
    return min(day, last_day_of_month(year, month))


def shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    _check_month(month)
    zero_based = (year * 12 + (month - 1)) + offset
    return zero_based // 12, (zero_based % 12) + 1


def end_of_month(value: date) -> date:
    return value.replace(day=last_day_of_month(value.year, value.month))


def add_units(value: date, unit: str, n: int) -> date:
    if unit == "weeks":
        return value + timedelta(weeks=n)
    if unit == "months":
        year, month = shift_month(value.year, value.month, n)
        return date(year, month, clamp_day_of_month(year, month, value.day))
    if unit == "years":
        year = value.year + n
        return date(year, value.month, clamp_day_of_month(year, value.month, value.day))
    raise ValueError(f"Unsupported time unit: {unit}")


def is_strictly_after(a: date, b: date) -> bool:
    return a > b


def days_between(a: date, b: date) -> int:
    """Signed whole days from ``a`` to ``b`` (positive when ``b`` is later)."""
    return (b - a).days


def is_overdue(due_date: date, is_paid: bool, *, today: date) -> bool:
    if is_paid:
        return False
    return is_strictly_after(today, due_date)


def is_due_soon(due_date: date, is_paid: bool, *, today: date, threshold_days: int) -> bool:
    if is_paid:
        return False
    diff = days_between(today, due_date)
    return 0 <= diff <= threshold_days


def payment_status(due_date: date, is_paid: bool, *, today: date, threshold_days: int) -> str:
    if is_paid:
        return "paid"
    if is_overdue(due_date, is_paid, today=today):
        return "overdue"
    if is_due_soon(due_date, is_paid, today=today, threshold_days=threshold_days):
        return "due_soon"
    return "unpaid"


def to_month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_key(value: str) -> date:
    """First day of the ``YYYY-MM`` month."""
    year_text, sep, month_text = value.strip().partition("-")
    if not sep or len(year_text) != 4 or len(month_text) != 2:
        raise ValueError(f"month key must look like YYYY-MM, got {value!r}")
    month = int(month_text)
    _check_month(month)
    return date(int(year_text), month, 1)


def group_by_month(items: Iterable[T], *, key: Callable[[T], date] | None = None) -> dict[str, list[T]]:
    """Bucket items by the month of their date, keeping input order."""
    grouped: dict[str, list[T]] = {}
    for item in items:
        value = item if key is None else key(item)
        grouped.setdefault(to_month_key(value), []).append(item)
    return grouped
