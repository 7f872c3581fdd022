from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billtrack.config import get_settings
from billtrack.db import get_db_session, ping_database
from billtrack.models.accounts import Account
from billtrack.models.payment_methods import PaymentMethod
from billtrack.models.payments import PaymentInstance
from billtrack.services.accounts_service import (
    AccountInput,
    count_active_accounts,
    create_account,
    delete_account,
    get_account,
    list_accounts,
    list_accounts_by_category,
    search_accounts,
    update_account,
)
from billtrack.services.audit_service import (
    ActionLogFilters,
    clear_all_logs,
    decode_details,
    delete_old_logs,
    get_log_statistics,
    list_action_logs,
)
from billtrack.services.date_engine import group_by_month, payment_status, to_date_key
from billtrack.services.payment_generation import (
    AccountNotFoundError,
    BulkGenerationResult,
    generate_payments_for_account,
    generate_payments_for_all_accounts,
    regenerate_payments_for_account,
    regenerate_payments_for_all_accounts,
)
from billtrack.services.payment_methods_service import (
    PaymentMethodInput,
    PaymentMethodNotFoundError,
    count_active_payment_methods,
    create_payment_method,
    delete_payment_method,
    get_payment_method,
    hard_delete_payment_method,
    list_payment_methods,
    update_payment_method,
)
from billtrack.services.payment_store import DuplicatePaymentInstanceError
from billtrack.services.payments_service import (
    PaymentActionError,
    PaymentNotFoundError,
    UpdatePaymentInput,
    delete_payment,
    list_due_soon_payments,
    list_overdue_payments,
    list_payments_by_month,
    list_payments_for_account,
    list_upcoming_payments,
    mark_payment_paid,
    mark_payment_unpaid,
    toggle_payment_status,
    update_payment,
)
from billtrack.services.reconciliation import ReconcileResult
from billtrack.services.recurrence_rules import RecurrenceKind

logger = logging.getLogger(__name__)
settings = get_settings()

api_router = APIRouter(tags=["api"])

GENERATION_FAILED_DETAIL = "failed to generate payments"
CONFIRM_REQUIRED_DETAIL = "Regenerating deletes every existing payment; resend with confirm=true."


class AccountRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: str = Field(min_length=1, max_length=64)
    start_date: date
    repeats: RecurrenceKind = RecurrenceKind.MONTHLY
    amount: Decimal | None = Field(default=None, ge=0)
    currency: str = Field(default=settings.default_currency, min_length=1, max_length=8)
    bank_account: str | None = Field(default=None, max_length=255)
    notes: str | None = None
    end_date: date | None = None
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    month_of_year: int | None = Field(default=None, ge=1, le=12)
    today: date | None = None

    def to_input(self) -> AccountInput:
        return AccountInput(
            name=self.name,
            category=self.category,
            start_date=self.start_date,
            repeats=self.repeats.value,
            amount=self.amount,
            currency=self.currency,
            bank_account=self.bank_account,
            notes=self.notes,
            end_date=self.end_date,
            day_of_week=self.day_of_week,
            day_of_month=self.day_of_month,
            month_of_year=self.month_of_year,
        )


class GenerationRequest(BaseModel):
    today: date | None = None
    horizon_months: int = Field(default=settings.horizon_months, ge=0, le=60)


class RegenerationRequest(GenerationRequest):
    confirm: bool = False


class MarkPaidRequest(BaseModel):
    paid_at: datetime | None = None
    note: str | None = None


class PaymentUpdateRequest(BaseModel):
    amount: Decimal = Field(ge=0)
    note: str | None = None


class PaymentMethodRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: str = Field(min_length=1, max_length=32)


def _serialize_payment_method(method: PaymentMethod) -> dict[str, object]:
    return {
        "id": method.id,
        "name": method.name,
        "type": method.type,
        "is_active": method.is_active,
        "created_at": method.created_at.isoformat() if method.created_at else None,
    }


def _utc_now() -> datetime:
    # Audit timestamps are stored as naive UTC by the database default.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _serialize_account(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "category": account.category,
        "bank_account": account.bank_account,
        "notes": account.notes,
        "amount": None if account.amount is None else str(account.amount),
        "currency": account.currency,
        "repeats": account.repeats,
        "start_date": to_date_key(account.start_date),
        "end_date": None if account.end_date is None else to_date_key(account.end_date),
        "day_of_week": account.day_of_week,
        "day_of_month": account.day_of_month,
        "month_of_year": account.month_of_year,
    }


def _serialize_payment(payment: PaymentInstance, *, today: date) -> dict[str, object]:
    return {
        "id": payment.id,
        "account_id": payment.account_id,
        "due_date": to_date_key(payment.due_date),
        "amount": str(payment.amount),
        "is_paid": payment.is_paid,
        "paid_date": None if payment.paid_date is None else payment.paid_date.isoformat(),
        "note": payment.note,
        "status": payment_status(
            payment.due_date,
            payment.is_paid,
            today=today,
            threshold_days=settings.due_soon_days,
        ),
    }


def _serialize_reconcile_result(result: ReconcileResult) -> dict[str, object]:
    return {
        "account_id": result.account_id,
        "mode": result.mode.value,
        "created_count": result.created_count,
        "skipped_count": result.skipped_count,
        "deleted_count": result.deleted_count,
        "created_dates": [to_date_key(value) for value in result.created_dates],
        "skipped_dates": [to_date_key(value) for value in result.skipped_dates],
    }


def _serialize_bulk_result(result: BulkGenerationResult) -> dict[str, object]:
    return {
        "mode": result.mode.value,
        "accounts_processed": result.accounts_processed,
        "created_count": result.created_count,
        "skipped_count": result.skipped_count,
        "expected_count": result.expected_count,
    }


def _generation_failed() -> HTTPException:
    logger.exception("Payment generation failed")
    return HTTPException(status_code=500, detail=GENERATION_FAILED_DETAIL)


@api_router.get("/health")
def health_check(db: Session = Depends(get_db_session)) -> dict[str, str]:
    try:
        ping_database(db)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail="database unavailable") from exc
    return {"status": "ok"}


@api_router.get("/accounts")
def accounts_list(
    search: str | None = Query(default=None, max_length=255),
    category: str | None = Query(default=None, max_length=64),
    db: Session = Depends(get_db_session),
) -> list[dict[str, object]]:
    if search:
        accounts = search_accounts(db, search)
        if category:
            accounts = [account for account in accounts if account.category == category]
    elif category:
        accounts = list_accounts_by_category(db, category)
    else:
        accounts = list_accounts(db)
    return [_serialize_account(account) for account in accounts]


@api_router.get("/accounts/count")
def accounts_count(db: Session = Depends(get_db_session)) -> dict[str, int]:
    return {"active_count": count_active_accounts(db)}


@api_router.post("/accounts", status_code=201)
def accounts_create(payload: AccountRequest, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        result = create_account(
            db,
            payload.to_input(),
            today=payload.today or date.today(),
            horizon_months=settings.horizon_months,
            max_iterations=settings.generation_max_iterations,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (SQLAlchemyError, DuplicatePaymentInstanceError) as exc:
        raise _generation_failed() from exc
    return {
        "account": _serialize_account(result.account),
        "generation": _serialize_reconcile_result(result.generation_result),
    }


@api_router.get("/accounts/{account_id}")
def accounts_get(account_id: int, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        account = get_account(db, account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize_account(account)


@api_router.put("/accounts/{account_id}")
def accounts_update(
    account_id: int,
    payload: AccountRequest,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    try:
        result = update_account(
            db,
            account_id=account_id,
            data=payload.to_input(),
            today=payload.today or date.today(),
            horizon_months=settings.horizon_months,
            max_iterations=settings.generation_max_iterations,
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (SQLAlchemyError, DuplicatePaymentInstanceError) as exc:
        raise _generation_failed() from exc
    return {
        "account": _serialize_account(result.account),
        "updated_unpaid_count": result.updated_unpaid_count,
        "generation": _serialize_reconcile_result(result.generation_result),
    }


@api_router.delete("/accounts/{account_id}")
def accounts_delete(account_id: int, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        deleted = delete_account(db, account_id=account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"account_id": account_id, "deleted_payments": deleted}


@api_router.get("/accounts/{account_id}/payments")
def account_payments_list(
    account_id: int,
    today: date | None = Query(default=None),
    db: Session = Depends(get_db_session),
) -> list[dict[str, object]]:
    try:
        get_account(db, account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    view_today = today or date.today()
    return [_serialize_payment(row, today=view_today) for row in list_payments_for_account(db, account_id=account_id)]


@api_router.get("/accounts/{account_id}/payments/by-month")
def account_payments_by_month(
    account_id: int,
    today: date | None = Query(default=None),
    db: Session = Depends(get_db_session),
) -> dict[str, list[dict[str, object]]]:
    try:
        get_account(db, account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    view_today = today or date.today()
    grouped = group_by_month(list_payments_for_account(db, account_id=account_id), key=lambda row: row.due_date)
    return {
        month_key: [_serialize_payment(row, today=view_today) for row in rows] for month_key, rows in grouped.items()
    }


@api_router.post("/accounts/{account_id}/generate")
def account_generate(
    account_id: int,
    payload: GenerationRequest,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    try:
        result = generate_payments_for_account(
            db,
            account_id=account_id,
            today=payload.today or date.today(),
            horizon_months=payload.horizon_months,
            max_iterations=settings.generation_max_iterations,
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (SQLAlchemyError, DuplicatePaymentInstanceError, ValueError) as exc:
        raise _generation_failed() from exc
    return _serialize_reconcile_result(result)


@api_router.post("/accounts/{account_id}/regenerate")
def account_regenerate(
    account_id: int,
    payload: RegenerationRequest,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    if not payload.confirm:
        raise HTTPException(status_code=400, detail=CONFIRM_REQUIRED_DETAIL)
    try:
        result = regenerate_payments_for_account(
            db,
            account_id=account_id,
            today=payload.today or date.today(),
            horizon_months=payload.horizon_months,
            max_iterations=settings.generation_max_iterations,
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (SQLAlchemyError, DuplicatePaymentInstanceError, ValueError) as exc:
        raise _generation_failed() from exc
    return _serialize_reconcile_result(result)


@api_router.post("/payments/generate")
def payments_generate_all(payload: GenerationRequest, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        result = generate_payments_for_all_accounts(
            db,
            today=payload.today or date.today(),
            horizon_months=payload.horizon_months,
            max_iterations=settings.generation_max_iterations,
        )
    except (SQLAlchemyError, DuplicatePaymentInstanceError, ValueError) as exc:
        raise _generation_failed() from exc
    return _serialize_bulk_result(result)


@api_router.post("/payments/regenerate")
def payments_regenerate_all(payload: RegenerationRequest, db: Session = Depends(get_db_session)) -> dict[str, object]:
    if not payload.confirm:
        raise HTTPException(status_code=400, detail=CONFIRM_REQUIRED_DETAIL)
    try:
        result = regenerate_payments_for_all_accounts(
            db,
            today=payload.today or date.today(),
            horizon_months=payload.horizon_months,
            max_iterations=settings.generation_max_iterations,
        )
    except (SQLAlchemyError, DuplicatePaymentInstanceError, ValueError) as exc:
        raise _generation_failed() from exc
    return _serialize_bulk_result(result)


@api_router.get("/payments/upcoming")
def payments_upcoming(
    today: date | None = Query(default=None),
    months: int = Query(default=settings.horizon_months, ge=0, le=60),
    db: Session = Depends(get_db_session),
) -> list[dict[str, object]]:
    view_today = today or date.today()
    rows = list_upcoming_payments(db, today=view_today, months=months)
    return [_serialize_payment(row, today=view_today) | {"account_name": row.account.name} for row in rows]


@api_router.get("/payments/overdue")
def payments_overdue(
    today: date | None = Query(default=None),
    db: Session = Depends(get_db_session),
) -> list[dict[str, object]]:
    view_today = today or date.today()
    rows = list_overdue_payments(db, today=view_today)
    return [_serialize_payment(row, today=view_today) | {"account_name": row.account.name} for row in rows]


@api_router.get("/payments/due-soon")
def payments_due_soon(
    today: date | None = Query(default=None),
    days: int = Query(default=settings.due_soon_days, ge=0, le=365),
    db: Session = Depends(get_db_session),
) -> list[dict[str, object]]:
    view_today = today or date.today()
    rows = list_due_soon_payments(db, today=view_today, days=days)
    return [_serialize_payment(row, today=view_today) | {"account_name": row.account.name} for row in rows]


@api_router.get("/payments/by-month/{month_key}")
def payments_by_month(
    month_key: str,
    today: date | None = Query(default=None),
    db: Session = Depends(get_db_session),
) -> list[dict[str, object]]:
    try:
        rows = list_payments_by_month(db, month_key=month_key)
    except PaymentActionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    view_today = today or date.today()
    return [_serialize_payment(row, today=view_today) | {"account_name": row.account.name} for row in rows]


@api_router.post("/payments/{payment_id}/mark-paid")
def payment_mark_paid(
    payment_id: int,
    payload: MarkPaidRequest,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    try:
        payment = mark_payment_paid(
            db,
            payment_id=payment_id,
            paid_at=payload.paid_at or datetime.now(),
            note=payload.note,
        )
    except PaymentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize_payment(payment, today=date.today())


@api_router.post("/payments/{payment_id}/mark-unpaid")
def payment_mark_unpaid(payment_id: int, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        payment = mark_payment_unpaid(db, payment_id=payment_id)
    except PaymentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize_payment(payment, today=date.today())


@api_router.post("/payments/{payment_id}/toggle")
def payment_toggle(payment_id: int, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        payment = toggle_payment_status(db, payment_id=payment_id, now=datetime.now())
    except PaymentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize_payment(payment, today=date.today())


@api_router.put("/payments/{payment_id}")
def payment_update(
    payment_id: int,
    payload: PaymentUpdateRequest,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    try:
        payment = update_payment(
            db,
            payment_id=payment_id,
            data=UpdatePaymentInput(amount=payload.amount, note=payload.note),
        )
    except PaymentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PaymentActionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize_payment(payment, today=date.today())


@api_router.delete("/payments/{payment_id}")
def payment_delete(payment_id: int, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        delete_payment(db, payment_id=payment_id)
    except PaymentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"payment_id": payment_id, "deleted": True}


@api_router.get("/logs")
def logs_list(
    action: str | None = Query(default=None),
    subject_table: str | None = Query(default=None),
    subject_id: int | None = Query(default=None),
    search: str | None = Query(default=None, max_length=255),
    created_from: datetime | None = Query(default=None),
    created_to: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    page = list_action_logs(
        db,
        filters=ActionLogFilters(
            action=action,
            subject_table=subject_table,
            subject_id=subject_id,
            created_from=created_from,
            created_to=created_to,
            search=search,
        ),
        limit=limit,
        offset=offset,
    )
    return {
        "total_count": page.total_count,
        "rows": [
            {
                "id": row.id,
                "action": row.action,
                "subject_table": row.subject_table,
                "subject_id": row.subject_id,
                "details": decode_details(row),
                "created_at": row.created_at.isoformat(),
            }
            for row in page.rows
        ],
    }


@api_router.get("/logs/statistics")
def logs_statistics(
    recent_days: int = Query(default=30, ge=1, le=365),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    stats = get_log_statistics(db, now=_utc_now(), recent_days=recent_days)
    return {
        "total_count": stats.total_count,
        "by_action": [{"action": action, "count": count} for action, count in stats.by_action],
        "by_table": [{"subject_table": table, "count": count} for table, count in stats.by_table],
        "recent_activity": [{"date": day, "count": count} for day, count in stats.recent_activity],
    }


@api_router.delete("/logs")
def logs_delete(
    older_than_days: int = Query(default=90, ge=0),
    all_logs: bool = Query(default=False, alias="all"),
    db: Session = Depends(get_db_session),
) -> dict[str, int]:
    if all_logs:
        return {"deleted_count": clear_all_logs(db)}
    return {"deleted_count": delete_old_logs(db, now=_utc_now(), days=older_than_days)}


@api_router.get("/payment-methods")
def payment_methods_list(db: Session = Depends(get_db_session)) -> list[dict[str, object]]:
    return [_serialize_payment_method(method) for method in list_payment_methods(db)]


@api_router.get("/payment-methods/count")
def payment_methods_count(db: Session = Depends(get_db_session)) -> dict[str, int]:
    return {"active_count": count_active_payment_methods(db)}


@api_router.post("/payment-methods", status_code=201)
def payment_methods_create(payload: PaymentMethodRequest, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        method = create_payment_method(db, PaymentMethodInput(name=payload.name, type=payload.type))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize_payment_method(method)


@api_router.get("/payment-methods/{method_id}")
def payment_methods_get(method_id: int, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        return _serialize_payment_method(get_payment_method(db, method_id))
    except PaymentMethodNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@api_router.put("/payment-methods/{method_id}")
def payment_methods_update(
    method_id: int,
    payload: PaymentMethodRequest,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    try:
        method = update_payment_method(
            db,
            method_id=method_id,
            data=PaymentMethodInput(name=payload.name, type=payload.type),
        )
    except PaymentMethodNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize_payment_method(method)


@api_router.delete("/payment-methods/{method_id}")
def payment_methods_delete(
    method_id: int,
    hard: bool = Query(default=False),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    try:
        if hard:
            hard_delete_payment_method(db, method_id=method_id)
        else:
            delete_payment_method(db, method_id=method_id)
    except PaymentMethodNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"payment_method_id": method_id, "deleted": True, "hard": hard}
