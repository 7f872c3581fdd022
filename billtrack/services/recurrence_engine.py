from __future__ import annotations

from datetime import date, timedelta

from billtrack.services.date_engine import clamp_day_of_month, is_strictly_after, shift_month
from billtrack.services.recurrence_rules import (
    CustomRule,
    MonthlyRule,
    RecurrenceRule,
    WeeklyRule,
    YearlyRule,
)


def _sunday_based_weekday(value: date) -> int:
    return (value.weekday() + 1) % 7


def _weekly_occurrence(rule: WeeklyRule, iteration: int) -> date:
    anchor = rule.anchor_date
    anchor_dow = _sunday_based_weekday(anchor)
    target_dow = anchor_dow if rule.day_of_week is None else rule.day_of_week
    candidate = anchor + timedelta(days=target_dow - anchor_dow)
    if not is_strictly_after(candidate, anchor):
        candidate += timedelta(weeks=1)
    return candidate + timedelta(weeks=iteration - 1)


def _monthly_occurrence(anchor: date, day_of_month: int | None, iteration: int) -> date:
    desired_dom = anchor.day if day_of_month is None else day_of_month
    candidate = date(anchor.year, anchor.month, clamp_day_of_month(anchor.year, anchor.month, desired_dom))
    month_offset = 0 if is_strictly_after(candidate, anchor) else 1
    year, month = shift_month(anchor.year, anchor.month, month_offset + iteration - 1)
    return date(year, month, clamp_day_of_month(year, month, desired_dom))


def _yearly_occurrence(rule: YearlyRule, iteration: int) -> date:
    anchor = rule.anchor_date
    month = anchor.month if rule.month_of_year is None else rule.month_of_year
    desired_dom = anchor.day if rule.day_of_month is None else rule.day_of_month
    candidate = date(anchor.year, month, clamp_day_of_month(anchor.year, month, desired_dom))
    year_offset = 0 if is_strictly_after(candidate, anchor) else 1
    year = anchor.year + year_offset + iteration - 1
    return date(year, month, clamp_day_of_month(year, month, desired_dom))


def occurrence_at(rule: RecurrenceRule, iteration: int) -> date:
    """Return the ``iteration``-th repeat after ``rule.anchor_date`` (1-based).

    The anchor itself is never an occurrence. Month and year steps are always
    computed from the anchor, so a day clamped in a short month springs back
    in the following ones (Jan 31 -> Feb 28 -> Mar 31).
    """
    if isinstance(iteration, bool) or not isinstance(iteration, int) or iteration <= 0:
        raise ValueError(f"iteration must be a positive integer, got {iteration!r}")

    if isinstance(rule, WeeklyRule):
        return _weekly_occurrence(rule, iteration)
    if isinstance(rule, (MonthlyRule, CustomRule)):
        return _monthly_occurrence(rule.anchor_date, rule.day_of_month, iteration)
    if isinstance(rule, YearlyRule):
        return _yearly_occurrence(rule, iteration)

    raise ValueError(f"Unsupported recurrence rule: {rule!r}")
