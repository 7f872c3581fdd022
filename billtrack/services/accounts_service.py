from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal
import logging

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from billtrack.models.accounts import Account
from billtrack.models.payments import PaymentInstance
from billtrack.services.audit_service import log_action
from billtrack.services.payment_generation import (
    get_active_account,
    list_active_accounts,
    reconcile_account,
)
from billtrack.services.payment_store import SqlAlchemyPaymentStore
from billtrack.services.reconciliation import ReconcileResult
from billtrack.services.recurrence_rules import build_rule
from billtrack.services.scheduling_service import DEFAULT_HORIZON_MONTHS, DEFAULT_MAX_ITERATIONS

logger = logging.getLogger(__name__)


class AccountValidationError(ValueError):
    pass


@dataclass(frozen=True)
class AccountInput:
    name: str
    category: str
    start_date: date
    repeats: str = "monthly"
    amount: Decimal | None = None
    currency: str = "USD"
    bank_account: str | None = None
    notes: str | None = None
    end_date: date | None = None
    day_of_week: int | None = None
    day_of_month: int | None = None
    month_of_year: int | None = None


@dataclass(frozen=True)
class AccountChangeResult:
    account: Account
    generation_result: ReconcileResult
    updated_unpaid_count: int = 0


def _validate(data: AccountInput) -> None:
    if not data.name.strip():
        raise AccountValidationError("name is required")
    if not data.category.strip():
        raise AccountValidationError("category is required")
    if data.amount is not None and data.amount < 0:
        raise AccountValidationError("amount must be non-negative")
    # Raises InvalidRecurrenceRuleError, itself a ValueError.
    build_rule(
        data.repeats,
        data.start_date,
        end_date=data.end_date,
        day_of_week=data.day_of_week,
        day_of_month=data.day_of_month,
        month_of_year=data.month_of_year,
    )


def _apply(account: Account, data: AccountInput) -> None:
    account.name = data.name.strip()
    account.category = data.category.strip()
    account.bank_account = data.bank_account
    account.notes = data.notes
    account.amount = data.amount
    account.currency = data.currency
    account.repeats = data.repeats
    account.start_date = data.start_date
    account.end_date = data.end_date
    account.day_of_week = data.day_of_week
    account.day_of_month = data.day_of_month
    account.month_of_year = data.month_of_year


def list_accounts(session: Session) -> list[Account]:
    return list_active_accounts(session)


def get_account(session: Session, account_id: int) -> Account:
    return get_active_account(session, account_id)


def count_active_accounts(session: Session) -> int:
    return int(session.scalar(select(func.count()).select_from(Account).where(Account.is_active.is_(True))) or 0)


def search_accounts(session: Session, term: str) -> list[Account]:
    """Active accounts whose name, category or bank account contains ``term``."""
    pattern = f"%{term.strip()}%"
    stmt = (
        select(Account)
        .where(
            Account.is_active.is_(True),
            or_(
                Account.name.ilike(pattern),
                Account.category.ilike(pattern),
                Account.bank_account.ilike(pattern),
            ),
        )
        .order_by(Account.created_at.desc(), Account.id.desc())
    )
    return list(session.scalars(stmt).all())


def list_accounts_by_category(session: Session, category: str) -> list[Account]:
    stmt = (
        select(Account)
        .where(Account.is_active.is_(True), Account.category == category)
        .order_by(Account.created_at.desc(), Account.id.desc())
    )
    return list(session.scalars(stmt).all())


def create_account(
    session: Session,
    data: AccountInput,
    *,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> AccountChangeResult:
    _validate(data)
    account = Account(is_active=True)
    _apply(account, data)
    session.add(account)
    session.commit()
    session.refresh(account)
    log_action(session, "CREATE", "accounts", account.id, asdict(data))

    generation = reconcile_account(
        session,
        account,
        today=today,
        horizon_months=horizon_months,
        max_iterations=max_iterations,
    )
    session.refresh(account)
    logger.info("Account created account_id=%s created_payments=%s", account.id, generation.created_count)
    return AccountChangeResult(account=account, generation_result=generation)


def update_account(
    session: Session,
    *,
    account_id: int,
    data: AccountInput,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> AccountChangeResult:
    """Save account edits, re-price unpaid instances and fill in missing ones.

    Paid instances keep their amount. Instances whose due date no longer fits
    the new rule are left alone; a regenerate is the way to drop them.
    """
    _validate(data)
    account = get_active_account(session, account_id)
    _apply(account, data)

    updated_unpaid = 0
    # A zero or missing amount leaves existing unpaid rows priced as they were.
    if data.amount:
        unpaid_rows = session.scalars(
            select(PaymentInstance).where(
                PaymentInstance.account_id == account.id,
                PaymentInstance.is_paid.is_(False),
            )
        ).all()
        for row in unpaid_rows:
            if Decimal(str(row.amount)) != data.amount:
                row.amount = data.amount
                updated_unpaid += 1

    session.commit()
    session.refresh(account)
    log_action(session, "UPDATE", "accounts", account.id, asdict(data))

    generation = reconcile_account(
        session,
        account,
        today=today,
        horizon_months=horizon_months,
        max_iterations=max_iterations,
    )
    session.refresh(account)
    logger.info(
        "Account updated account_id=%s updated_unpaid=%s created_payments=%s skipped_payments=%s",
        account.id,
        updated_unpaid,
        generation.created_count,
        generation.skipped_count,
    )
    return AccountChangeResult(account=account, generation_result=generation, updated_unpaid_count=updated_unpaid)


def delete_account(session: Session, *, account_id: int) -> int:
    """Soft-delete the account and drop all of its payment instances."""
    account = get_active_account(session, account_id)
    store = SqlAlchemyPaymentStore(session)
    with store.atomic():
        account.is_active = False
        deleted = store.delete_instances_for_account(account.id)
    log_action(session, "DELETE", "accounts", account_id, {"deleted_payments": deleted})
    logger.info("Account deleted account_id=%s deleted_payments=%s", account_id, deleted)
    return deleted
