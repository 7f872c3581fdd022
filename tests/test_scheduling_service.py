from __future__ import annotations

from datetime import date
from decimal import Decimal
import logging
import types

import pytest

from billtrack.models.accounts import Account
from billtrack.services.recurrence_rules import MonthlyRule, WeeklyRule, YearlyRule
from billtrack.services.scheduling_service import (
    build_schedule_spec,
    generate_due_dates,
    iter_due_dates,
    window_end,
)


def test_monthly_anchor_day_through_end_of_horizon_month() -> None:
    rule = MonthlyRule(anchor_date=date(2025, 1, 15))

    assert generate_due_dates(rule, today=date(2025, 1, 20), horizon_months=3) == [
        date(2025, 2, 15),
        date(2025, 3, 15),
        date(2025, 4, 15),
    ]


def test_month_end_anchor_with_short_horizon() -> None:
    rule = MonthlyRule(anchor_date=date(2025, 1, 31), day_of_month=31)

    assert generate_due_dates(rule, today=date(2025, 1, 31), horizon_months=2) == [
        date(2025, 2, 28),
        date(2025, 3, 31),
    ]


def test_window_end_is_last_day_of_target_month() -> None:
    assert window_end(today=date(2025, 1, 20), horizon_months=3) == date(2025, 4, 30)
    assert window_end(today=date(2025, 1, 31), horizon_months=1) == date(2025, 2, 28)
    assert window_end(today=date(2024, 1, 31), horizon_months=1) == date(2024, 2, 29)
    assert window_end(today=date(2025, 11, 5), horizon_months=2) == date(2026, 1, 31)
    assert window_end(today=date(2025, 6, 1), horizon_months=0) == date(2025, 6, 30)

    with pytest.raises(ValueError):
        window_end(today=date(2025, 6, 1), horizon_months=-1)


def test_past_anchor_replays_backlog() -> None:
    rule = MonthlyRule(anchor_date=date(2024, 10, 5))

    assert generate_due_dates(rule, today=date(2025, 1, 20), horizon_months=1) == [
        date(2024, 11, 5),
        date(2024, 12, 5),
        date(2025, 1, 5),
        date(2025, 2, 5),
    ]


def test_weekly_uses_month_granular_window() -> None:
    rule = WeeklyRule(anchor_date=date(2025, 1, 1))

    assert generate_due_dates(rule, today=date(2025, 1, 1), horizon_months=0) == [
        date(2025, 1, 8),
        date(2025, 1, 15),
        date(2025, 1, 22),
        date(2025, 1, 29),
    ]


def test_end_date_is_inclusive() -> None:
    anchor = date(2025, 1, 15)
    today = date(2025, 1, 20)

    inclusive = MonthlyRule(anchor_date=anchor, end_date=date(2025, 3, 15))
    assert generate_due_dates(inclusive, today=today, horizon_months=6) == [date(2025, 2, 15), date(2025, 3, 15)]

    exclusive = MonthlyRule(anchor_date=anchor, end_date=date(2025, 3, 14))
    assert generate_due_dates(exclusive, today=today, horizon_months=6) == [date(2025, 2, 15)]

    same_day = MonthlyRule(anchor_date=anchor, end_date=anchor)
    assert generate_due_dates(same_day, today=today, horizon_months=6) == []


def test_anchor_beyond_window_yields_nothing() -> None:
    rule = MonthlyRule(anchor_date=date(2026, 1, 1))

    assert generate_due_dates(rule, today=date(2025, 1, 20), horizon_months=3) == []


def test_iteration_ceiling_truncates_and_warns(caplog) -> None:
    rule = WeeklyRule(anchor_date=date(2025, 1, 1))

    with caplog.at_level(logging.WARNING, logger="billtrack.services.scheduling_service"):
        dates = generate_due_dates(rule, today=date(2025, 6, 1), horizon_months=0, max_iterations=5)

    assert len(dates) == 5
    assert dates[-1] == date(2025, 2, 5)
    assert "iteration ceiling" in caplog.text


def test_iteration_ceiling_not_reported_when_exactly_exhausted(caplog) -> None:
    rule = WeeklyRule(anchor_date=date(2025, 1, 1))

    with caplog.at_level(logging.WARNING, logger="billtrack.services.scheduling_service"):
        dates = generate_due_dates(rule, today=date(2025, 1, 1), horizon_months=0, max_iterations=4)

    assert len(dates) == 4
    assert "iteration ceiling" not in caplog.text


def test_iter_due_dates_is_lazy_and_restartable() -> None:
    rule = MonthlyRule(anchor_date=date(2025, 1, 15))

    iterator = iter_due_dates(rule, today=date(2025, 1, 20), horizon_months=120)
    assert next(iterator) == date(2025, 2, 15)
    assert next(iterator) == date(2025, 3, 15)

    again = iter_due_dates(rule, today=date(2025, 1, 20), horizon_months=120)
    assert next(again) == date(2025, 2, 15)


def test_yearly_leap_anchor_backlog() -> None:
    rule = YearlyRule(anchor_date=date(2024, 2, 29))

    assert generate_due_dates(rule, today=date(2027, 1, 10), horizon_months=2) == [
        date(2025, 2, 28),
        date(2026, 2, 28),
        date(2027, 2, 28),
    ]


def test_build_schedule_spec_defaults_missing_amount_to_zero() -> None:
    account = Account(
        id=9,
        name="Water",
        category="Utilities",
        repeats="monthly",
        start_date=date(2025, 1, 15),
        amount=None,
    )

    spec = build_schedule_spec(account)

    assert spec.account_id == 9
    assert spec.amount == Decimal("0")
    assert spec.rule == MonthlyRule(anchor_date=date(2025, 1, 15))


def test_build_schedule_spec_normalizes_amount_to_decimal() -> None:
    account = types.SimpleNamespace(
        id=3,
        amount=12.5,
        repeats="weekly",
        start_date=date(2025, 1, 1),
        end_date=None,
        day_of_week=2,
        day_of_month=None,
        month_of_year=None,
    )

    spec = build_schedule_spec(account)

    assert spec.amount == Decimal("12.5")
    assert spec.rule == WeeklyRule(anchor_date=date(2025, 1, 1), day_of_week=2)


def test_generation_crosses_into_four_digit_years() -> None:
    rule = MonthlyRule(anchor_date=date(999, 11, 15))

    assert generate_due_dates(rule, today=date(999, 11, 20), horizon_months=2) == [
        date(999, 12, 15),
        date(1000, 1, 15),
    ]
