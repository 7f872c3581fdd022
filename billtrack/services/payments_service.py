from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
import logging

from sqlalchemy import Select, select
from sqlalchemy.orm import Session, contains_eager

from billtrack.models.accounts import Account
from billtrack.models.payments import PaymentInstance
from billtrack.services.audit_service import log_action
from billtrack.services.date_engine import add_units, end_of_month, parse_month_key

logger = logging.getLogger(__name__)


class PaymentActionError(ValueError):
    pass


class PaymentNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class UpdatePaymentInput:
    amount: Decimal
    note: str | None = None


def _get_payment(session: Session, payment_id: int) -> PaymentInstance:
    payment = session.get(PaymentInstance, payment_id)
    if payment is None:
        raise PaymentNotFoundError(f"Payment {payment_id} not found")
    return payment


def _with_account(stmt: Select) -> Select:
    return (
        stmt.join(Account, Account.id == PaymentInstance.account_id)
        .where(Account.is_active.is_(True))
        .options(contains_eager(PaymentInstance.account))
    )


def get_payment(session: Session, payment_id: int) -> PaymentInstance:
    return _get_payment(session, payment_id)


def list_payments_for_account(session: Session, *, account_id: int) -> list[PaymentInstance]:
    return list(
        session.scalars(
            select(PaymentInstance)
            .where(PaymentInstance.account_id == account_id)
            .order_by(PaymentInstance.due_date.desc())
        ).all()
    )


def list_upcoming_payments(session: Session, *, today: date, months: int = 3) -> list[PaymentInstance]:
    range_end = add_units(today, "months", months)
    stmt = _with_account(select(PaymentInstance)).where(
        PaymentInstance.due_date >= today,
        PaymentInstance.due_date <= range_end,
    )
    return list(session.scalars(stmt.order_by(PaymentInstance.due_date.asc(), PaymentInstance.id.asc())).all())


def list_overdue_payments(session: Session, *, today: date) -> list[PaymentInstance]:
    stmt = _with_account(select(PaymentInstance)).where(
        PaymentInstance.due_date < today,
        PaymentInstance.is_paid.is_(False),
    )
    return list(session.scalars(stmt.order_by(PaymentInstance.due_date.asc(), PaymentInstance.id.asc())).all())


def list_due_soon_payments(session: Session, *, today: date, days: int = 3) -> list[PaymentInstance]:
    stmt = _with_account(select(PaymentInstance)).where(
        PaymentInstance.due_date >= today,
        PaymentInstance.due_date <= today + timedelta(days=days),
        PaymentInstance.is_paid.is_(False),
    )
    return list(session.scalars(stmt.order_by(PaymentInstance.due_date.asc(), PaymentInstance.id.asc())).all())


def list_payments_by_month(session: Session, *, month_key: str) -> list[PaymentInstance]:
    try:
        first_day = parse_month_key(month_key)
    except ValueError as exc:
        raise PaymentActionError(str(exc)) from exc
    stmt = _with_account(select(PaymentInstance)).where(
        PaymentInstance.due_date >= first_day,
        PaymentInstance.due_date <= end_of_month(first_day),
    )
    return list(session.scalars(stmt.order_by(PaymentInstance.due_date.asc(), PaymentInstance.id.asc())).all())


def mark_payment_paid(
    session: Session,
    *,
    payment_id: int,
    paid_at: datetime,
    note: str | None = None,
) -> PaymentInstance:
    payment = _get_payment(session, payment_id)
    payment.is_paid = True
    payment.paid_date = paid_at
    if note is not None:
        payment.note = note
    session.commit()
    session.refresh(payment)
    log_action(session, "MARK_PAID", "payments", payment.id, {"paid_date": paid_at, "note": note})
    logger.info("Payment marked paid payment_id=%s account_id=%s", payment.id, payment.account_id)
    return payment


def mark_payment_unpaid(session: Session, *, payment_id: int) -> PaymentInstance:
    payment = _get_payment(session, payment_id)
    payment.is_paid = False
    payment.paid_date = None
    session.commit()
    session.refresh(payment)
    log_action(session, "MARK_UNPAID", "payments", payment.id)
    logger.info("Payment marked unpaid payment_id=%s account_id=%s", payment.id, payment.account_id)
    return payment


def toggle_payment_status(session: Session, *, payment_id: int, now: datetime) -> PaymentInstance:
    payment = _get_payment(session, payment_id)
    if payment.is_paid:
        return mark_payment_unpaid(session, payment_id=payment_id)
    return mark_payment_paid(session, payment_id=payment_id, paid_at=now)


def update_payment(session: Session, *, payment_id: int, data: UpdatePaymentInput) -> PaymentInstance:
    if data.amount < 0:
        raise PaymentActionError("amount must be non-negative")

    payment = _get_payment(session, payment_id)
    payment.amount = data.amount
    payment.note = data.note
    session.commit()
    session.refresh(payment)
    log_action(session, "UPDATE", "payments", payment.id, {"amount": data.amount, "note": data.note})
    return payment


def delete_payment(session: Session, *, payment_id: int) -> None:
    payment = _get_payment(session, payment_id)
    details = {"account_id": payment.account_id, "due_date": payment.due_date, "amount": payment.amount}
    session.delete(payment)
    session.commit()
    log_action(session, "DELETE", "payments", payment_id, details)
    logger.info("Payment deleted payment_id=%s account_id=%s", payment_id, details["account_id"])
