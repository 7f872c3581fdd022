from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from billtrack.models.accounts import Account


class InvalidRecurrenceRuleError(ValueError):
    pass


class RecurrenceKind(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


def _check_range(name: str, value: int | None, low: int, high: int) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise InvalidRecurrenceRuleError(f"{name} must be within {low}..{high}, got {value!r}")


def _check_window(anchor_date: date, end_date: date | None) -> None:
    if end_date is not None and end_date < anchor_date:
        raise InvalidRecurrenceRuleError(
            f"end_date {end_date.isoformat()} is before anchor_date {anchor_date.isoformat()}"
        )


@dataclass(frozen=True)
class WeeklyRule:
    anchor_date: date
    end_date: date | None = None
    day_of_week: int | None = None  # 0=Sunday..6=Saturday

    kind = RecurrenceKind.WEEKLY

    def __post_init__(self) -> None:
        _check_window(self.anchor_date, self.end_date)
        _check_range("day_of_week", self.day_of_week, 0, 6)


@dataclass(frozen=True)
class MonthlyRule:
    anchor_date: date
    end_date: date | None = None
    day_of_month: int | None = None

    kind = RecurrenceKind.MONTHLY

    def __post_init__(self) -> None:
        _check_window(self.anchor_date, self.end_date)
        _check_range("day_of_month", self.day_of_month, 1, 31)


@dataclass(frozen=True)
class YearlyRule:
    anchor_date: date
    end_date: date | None = None
    month_of_year: int | None = None
    day_of_month: int | None = None

    kind = RecurrenceKind.YEARLY

    def __post_init__(self) -> None:
        _check_window(self.anchor_date, self.end_date)
        _check_range("month_of_year", self.month_of_year, 1, 12)
        _check_range("day_of_month", self.day_of_month, 1, 31)


@dataclass(frozen=True)
class CustomRule:
    """Spaced one calendar month apart, same as ``MonthlyRule``."""

    anchor_date: date
    end_date: date | None = None
    day_of_month: int | None = None

    kind = RecurrenceKind.CUSTOM

    def __post_init__(self) -> None:
        _check_window(self.anchor_date, self.end_date)
        _check_range("day_of_month", self.day_of_month, 1, 31)


RecurrenceRule = WeeklyRule | MonthlyRule | YearlyRule | CustomRule


def parse_kind(value: str | RecurrenceKind) -> RecurrenceKind:
    try:
        return RecurrenceKind(value)
    except ValueError as exc:
        raise InvalidRecurrenceRuleError(f"Unsupported recurrence kind: {value}") from exc


def build_rule(
    kind: str | RecurrenceKind,
    anchor_date: date,
    *,
    end_date: date | None = None,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    month_of_year: int | None = None,
) -> RecurrenceRule:
    resolved = parse_kind(kind)
    if resolved is RecurrenceKind.WEEKLY:
        return WeeklyRule(anchor_date=anchor_date, end_date=end_date, day_of_week=day_of_week)
    if resolved is RecurrenceKind.MONTHLY:
        return MonthlyRule(anchor_date=anchor_date, end_date=end_date, day_of_month=day_of_month)
    if resolved is RecurrenceKind.YEARLY:
        return YearlyRule(
            anchor_date=anchor_date,
            end_date=end_date,
            month_of_year=month_of_year,
            day_of_month=day_of_month,
        )
    return CustomRule(anchor_date=anchor_date, end_date=end_date, day_of_month=day_of_month)


def rule_for_account(account: Account) -> RecurrenceRule:
    return build_rule(
        account.repeats,
        account.start_date,
        end_date=account.end_date,
        day_of_week=account.day_of_week,
        day_of_month=account.day_of_month,
        month_of_year=account.month_of_year,
    )
