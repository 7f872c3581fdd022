from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import logging

from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billtrack.db import session_scope
from billtrack.models.accounts import Account
from billtrack.models.audit import JobRun
from billtrack.services.audit_service import log_action
from billtrack.services.payment_store import SqlAlchemyPaymentStore
from billtrack.services.reconciliation import ReconcileMode, ReconcileResult, reconcile
from billtrack.services.scheduling_service import (
    DEFAULT_HORIZON_MONTHS,
    DEFAULT_MAX_ITERATIONS,
    build_schedule_spec,
    generate_due_dates,
)

logger = logging.getLogger(__name__)


MISSING_PAYMENTS_JOB_NAME = "generate_missing_payments"


class AccountNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class BulkGenerationResult:
    mode: ReconcileMode
    accounts_processed: int
    created_count: int
    skipped_count: int
    expected_count: int


@dataclass(frozen=True)
class GuardedGenerationRunResult:
    job_name: str
    run_date: date
    ran: bool
    generation_result: BulkGenerationResult | None


def get_active_account(session: Session, account_id: int) -> Account:
    account = session.get(Account, account_id)
    if account is None or not account.is_active:
        raise AccountNotFoundError(f"Account {account_id} not found")
    return account


def list_active_accounts(session: Session) -> list[Account]:
    return list(
        session.scalars(
            select(Account).where(Account.is_active.is_(True)).order_by(Account.created_at.desc(), Account.id.desc())
        ).all()
    )


def reconcile_account(
    session: Session,
    account: Account,
    *,
    today: date,
    mode: ReconcileMode = ReconcileMode.SKIP_EXISTING,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> ReconcileResult:
    spec = build_schedule_spec(account)
    due_dates = generate_due_dates(
        spec.rule,
        today=today,
        horizon_months=horizon_months,
        max_iterations=max_iterations,
    )
    store = SqlAlchemyPaymentStore(session)
    existing_due_dates: list[date] = []
    if mode is ReconcileMode.SKIP_EXISTING:
        existing_due_dates = [row.due_date for row in store.list_instances_for_account(spec.account_id)]

    return reconcile(
        store,
        spec=spec,
        due_dates=due_dates,
        existing_due_dates=existing_due_dates,
        mode=mode,
    )


def _reconcile_all(
    session: Session,
    *,
    today: date,
    mode: ReconcileMode,
    horizon_months: int,
    max_iterations: int,
) -> BulkGenerationResult:
    accounts = list_active_accounts(session)
    created = 0
    skipped = 0
    expected = 0
    for account in accounts:
        result = reconcile_account(
            session,
            account,
            today=today,
            mode=mode,
            horizon_months=horizon_months,
            max_iterations=max_iterations,
        )
        created += result.created_count
        skipped += result.skipped_count
        expected += result.total

    return BulkGenerationResult(
        mode=mode,
        accounts_processed=len(accounts),
        created_count=created,
        skipped_count=skipped,
        expected_count=expected,
    )


def generate_payments_for_account(
    session: Session,
    *,
    account_id: int,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> ReconcileResult:
    account = get_active_account(session, account_id)
    return reconcile_account(
        session,
        account,
        today=today,
        horizon_months=horizon_months,
        max_iterations=max_iterations,
    )


def regenerate_payments_for_account(
    session: Session,
    *,
    account_id: int,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> ReconcileResult:
    account = get_active_account(session, account_id)
    result = reconcile_account(
        session,
        account,
        today=today,
        mode=ReconcileMode.REGENERATE,
        horizon_months=horizon_months,
        max_iterations=max_iterations,
    )
    log_action(
        session,
        "REGENERATE_PAYMENTS",
        "payments",
        account_id,
        {"created": result.created_count, "deleted": result.deleted_count},
    )
    return result


def generate_payments_for_all_accounts(
    session: Session,
    *,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> BulkGenerationResult:
    result = _reconcile_all(
        session,
        today=today,
        mode=ReconcileMode.SKIP_EXISTING,
        horizon_months=horizon_months,
        max_iterations=max_iterations,
    )
    log_action(
        session,
        "GENERATE_PAYMENTS",
        "payments",
        None,
        {
            "accounts_processed": result.accounts_processed,
            "created": result.created_count,
            "skipped": result.skipped_count,
            "expected": result.expected_count,
        },
    )
    logger.info(
        "Payment generation completed today=%s accounts=%s created=%s skipped=%s",
        today,
        result.accounts_processed,
        result.created_count,
        result.skipped_count,
    )
    return result


def regenerate_payments_for_all_accounts(
    session: Session,
    *,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> BulkGenerationResult:
    result = _reconcile_all(
        session,
        today=today,
        mode=ReconcileMode.REGENERATE,
        horizon_months=horizon_months,
        max_iterations=max_iterations,
    )
    log_action(
        session,
        "REGENERATE_ALL_PAYMENTS",
        "payments",
        None,
        {"accounts_processed": result.accounts_processed, "created": result.created_count},
    )
    logger.info(
        "Payment regeneration completed today=%s accounts=%s created=%s",
        today,
        result.accounts_processed,
        result.created_count,
    )
    return result


def check_and_generate_missing_payments(
    session: Session,
    *,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> BulkGenerationResult:
    result = _reconcile_all(
        session,
        today=today,
        mode=ReconcileMode.SKIP_EXISTING,
        horizon_months=horizon_months,
        max_iterations=max_iterations,
    )
    if result.created_count > 0:
        log_action(
            session,
            "AUTO_GENERATE_MISSING",
            "payments",
            None,
            {"accounts_processed": result.accounts_processed, "created": result.created_count},
        )
    logger.info(
        "Missing payments check completed today=%s accounts=%s created=%s",
        today,
        result.accounts_processed,
        result.created_count,
    )
    return result


def try_mark_daily_job_run(session: Session, *, job_name: str, run_date: date) -> bool:
    session.add(JobRun(job_name=job_name, run_date=run_date))
    try:
        session.commit()
        return True
    except IntegrityError:
        session.rollback()
        return False


def run_missing_payments_check_once_per_day(
    session: Session,
    *,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> GuardedGenerationRunResult:
    if not try_mark_daily_job_run(session, job_name=MISSING_PAYMENTS_JOB_NAME, run_date=today):
        logger.info("Missing payments guard skip job=%s run_date=%s", MISSING_PAYMENTS_JOB_NAME, today)
        return GuardedGenerationRunResult(
            job_name=MISSING_PAYMENTS_JOB_NAME,
            run_date=today,
            ran=False,
            generation_result=None,
        )

    generation_result = check_and_generate_missing_payments(
        session,
        today=today,
        horizon_months=horizon_months,
        max_iterations=max_iterations,
    )
    return GuardedGenerationRunResult(
        job_name=MISSING_PAYMENTS_JOB_NAME,
        run_date=today,
        ran=True,
        generation_result=generation_result,
    )


def run_missing_payments_check_once_per_day_if_ready(
    *,
    today: date,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> GuardedGenerationRunResult | None:
    with session_scope() as session:
        tables = set(inspect(session.bind).get_table_names())
        if not {"accounts", "payments", "job_runs"}.issubset(tables):
            logger.debug("Missing payments readiness check failed tables=%s", ",".join(sorted(tables)))
            return None
        return run_missing_payments_check_once_per_day(
            session,
            today=today,
            horizon_months=horizon_months,
            max_iterations=max_iterations,
        )
