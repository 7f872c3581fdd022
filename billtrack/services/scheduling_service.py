from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from itertools import count
import logging
from typing import TYPE_CHECKING

from billtrack.services.date_engine import add_units, end_of_month, is_strictly_after
from billtrack.services.recurrence_engine import occurrence_at
from billtrack.services.recurrence_rules import RecurrenceRule, rule_for_account

if TYPE_CHECKING:
    from billtrack.models.accounts import Account

logger = logging.getLogger(__name__)


DEFAULT_HORIZON_MONTHS = 3
DEFAULT_MAX_ITERATIONS = 1000


@dataclass(frozen=True)
class AccountScheduleSpec:
    account_id: int
    amount: Decimal
    rule: RecurrenceRule


def build_schedule_spec(account: Account) -> AccountScheduleSpec:
    amount = account.amount
    if amount is None:
        amount = Decimal("0")
    elif not isinstance(amount, Decimal):
        amount = Decimal(str(amount))

    return AccountScheduleSpec(
        account_id=account.id,
        amount=amount,
        rule=rule_for_account(account),
    )


def window_end(*, today: date, horizon_months: int) -> date:
    if horizon_months < 0:
        raise ValueError("horizon_months must be non-negative")
    return end_of_month(add_units(today, "months", horizon_months))


def iter_due_dates(
    rule: RecurrenceRule,
    *,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> Iterator[date]:
    """Yield due dates from the first repeat after the anchor up to the window edge.

    The window closes at the end of the month ``horizon_months`` after
    ``today``, so past-anchored rules replay their whole backlog. Stops early
    at ``rule.end_date`` and after ``max_iterations`` occurrences.
    """
    last_day = window_end(today=today, horizon_months=horizon_months)

    for iteration in count(1):
        occurrence = occurrence_at(rule, iteration)
        if is_strictly_after(occurrence, last_day):
            return
        if rule.end_date is not None and is_strictly_after(occurrence, rule.end_date):
            return
        if iteration > max_iterations:
            logger.warning(
                "Due date generation hit iteration ceiling kind=%s anchor_date=%s max_iterations=%s window_end=%s",
                rule.kind.value,
                rule.anchor_date,
                max_iterations,
                last_day,
            )
            return
        yield occurrence


def generate_due_dates(
    rule: RecurrenceRule,
    *,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> list[date]:
    return list(
        iter_due_dates(
            rule,
            today=today,
            horizon_months=horizon_months,
            max_iterations=max_iterations,
        )
    )
