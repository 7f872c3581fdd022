from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select, text
from sqlalchemy.orm import Session, sessionmaker

import billtrack.models  # noqa: F401
from billtrack.models.accounts import Account
from billtrack.models.audit import ActionLog, JobRun
from billtrack.models.base import Base
from billtrack.models.payments import PaymentInstance
from billtrack.services import payment_generation
from billtrack.services.audit_service import decode_details
from billtrack.services.payment_generation import (
    MISSING_PAYMENTS_JOB_NAME,
    AccountNotFoundError,
    check_and_generate_missing_payments,
    generate_payments_for_account,
    generate_payments_for_all_accounts,
    regenerate_payments_for_account,
    regenerate_payments_for_all_accounts,
    run_missing_payments_check_once_per_day,
    try_mark_daily_job_run,
)
from billtrack.services.payment_store import NewPaymentInstance, SqlAlchemyPaymentStore

TODAY = date(2025, 1, 20)


def _make_session(tmp_path) -> Session:
    db_path = tmp_path / "generation_test.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    return SessionLocal()


def _add_account(session: Session, **overrides) -> Account:
    values = {
        "name": "Internet",
        "category": "Utilities",
        "amount": Decimal("80.00"),
        "currency": "USD",
        "repeats": "monthly",
        "start_date": date(2025, 1, 15),
        "is_active": True,
    }
    values.update(overrides)
    account = Account(**values)
    session.add(account)
    session.commit()
    return account


def _due_dates(session: Session, account_id: int) -> list[date]:
    return list(
        session.scalars(
            select(PaymentInstance.due_date)
            .where(PaymentInstance.account_id == account_id)
            .order_by(PaymentInstance.due_date.asc())
        ).all()
    )


def _actions(session: Session) -> list[str]:
    return list(session.scalars(select(ActionLog.action).order_by(ActionLog.id.asc())).all())


def test_generate_for_account_creates_window_and_is_idempotent(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _add_account(session)

        first = generate_payments_for_account(session, account_id=account.id, today=TODAY)
        second = generate_payments_for_account(session, account_id=account.id, today=TODAY)

        expected = [date(2025, 2, 15), date(2025, 3, 15), date(2025, 4, 15)]
        assert first.created_dates == expected
        assert second.created_count == 0
        assert second.skipped_dates == expected
        assert _due_dates(session, account.id) == expected
        assert _actions(session) == []
    finally:
        session.close()


def test_generate_keeps_paid_edits_and_fills_new_months(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _add_account(session)
        generate_payments_for_account(session, account_id=account.id, today=TODAY)

        february = session.scalar(select(PaymentInstance).where(PaymentInstance.due_date == date(2025, 2, 15)))
        february.is_paid = True
        february.paid_date = datetime(2025, 2, 14, 8, 0)
        february.amount = Decimal("82.50")
        february.note = "late fee"
        account.amount = Decimal("90.00")
        session.commit()

        result = generate_payments_for_account(session, account_id=account.id, today=date(2025, 2, 20))

        assert result.created_dates == [date(2025, 5, 15)]
        session.refresh(february)
        assert february.is_paid is True
        assert february.amount == Decimal("82.50")
        assert february.note == "late fee"
        may = session.scalar(select(PaymentInstance).where(PaymentInstance.due_date == date(2025, 5, 15)))
        assert may.amount == Decimal("90.00")
    finally:
        session.close()


def test_regenerate_for_account_replaces_rows_and_audits(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _add_account(session)
        generate_payments_for_account(session, account_id=account.id, today=TODAY)
        for row in session.scalars(select(PaymentInstance)).all():
            row.is_paid = True
            row.note = "done"
        account.day_of_month = 1
        session.commit()

        result = regenerate_payments_for_account(session, account_id=account.id, today=TODAY)

        assert result.deleted_count == 3
        assert result.created_dates == [date(2025, 2, 1), date(2025, 3, 1), date(2025, 4, 1)]
        rows = session.scalars(select(PaymentInstance).order_by(PaymentInstance.due_date)).all()
        assert [row.due_date for row in rows] == result.created_dates
        assert all(row.is_paid is False and row.note is None for row in rows)

        log = session.scalar(select(ActionLog).where(ActionLog.action == "REGENERATE_PAYMENTS"))
        assert log.subject_id == account.id
        assert decode_details(log) == {"created": 3, "deleted": 3}
    finally:
        session.close()


def test_regenerate_failure_leaves_previous_schedule(tmp_path, monkeypatch) -> None:
    session = _make_session(tmp_path)
    try:
        account = _add_account(session)
        generate_payments_for_account(session, account_id=account.id, today=TODAY)
        paid = session.scalar(select(PaymentInstance).where(PaymentInstance.due_date == date(2025, 3, 15)))
        paid.is_paid = True
        session.commit()

        class FailingStore(SqlAlchemyPaymentStore):
            def create_instance(self, record: NewPaymentInstance) -> int:
                if record.due_date == date(2025, 4, 15):
                    raise RuntimeError("write failed")
                return super().create_instance(record)

        monkeypatch.setattr(payment_generation, "SqlAlchemyPaymentStore", FailingStore)

        with pytest.raises(RuntimeError, match="write failed"):
            regenerate_payments_for_account(session, account_id=account.id, today=TODAY)

        assert _due_dates(session, account.id) == [date(2025, 2, 15), date(2025, 3, 15), date(2025, 4, 15)]
        still_paid = session.scalar(select(PaymentInstance).where(PaymentInstance.due_date == date(2025, 3, 15)))
        assert still_paid.is_paid is True
        assert "REGENERATE_PAYMENTS" not in _actions(session)
    finally:
        session.close()


def test_bulk_generation_skips_inactive_accounts_and_audits(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        internet = _add_account(session)
        gym = _add_account(session, name="Gym", category="Health", repeats="weekly", start_date=date(2025, 1, 1))
        closed = _add_account(session, name="Old Loan", category="Loans", is_active=False)

        result = generate_payments_for_all_accounts(session, today=TODAY, horizon_months=0)

        assert result.accounts_processed == 2
        assert _due_dates(session, internet.id) == []
        assert _due_dates(session, gym.id) == [date(2025, 1, 8), date(2025, 1, 15), date(2025, 1, 22), date(2025, 1, 29)]
        assert _due_dates(session, closed.id) == []
        assert result.created_count == 4
        assert result.expected_count == 4

        again = generate_payments_for_all_accounts(session, today=TODAY, horizon_months=0)
        assert again.created_count == 0
        assert again.skipped_count == 4

        logs = session.scalars(select(ActionLog).where(ActionLog.action == "GENERATE_PAYMENTS")).all()
        assert len(logs) == 2
        assert decode_details(logs[0]) == {"accounts_processed": 2, "created": 4, "expected": 4, "skipped": 0}
    finally:
        session.close()


def test_regenerate_all_accounts(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        first = _add_account(session)
        second = _add_account(session, name="Rent", category="Housing", start_date=date(2025, 1, 1))
        generate_payments_for_all_accounts(session, today=TODAY)

        result = regenerate_payments_for_all_accounts(session, today=TODAY, horizon_months=1)

        assert result.accounts_processed == 2
        assert _due_dates(session, first.id) == [date(2025, 2, 15)]
        assert _due_dates(session, second.id) == [date(2025, 2, 1)]
        assert "REGENERATE_ALL_PAYMENTS" in _actions(session)
    finally:
        session.close()


def test_missing_payments_check_audits_only_when_something_was_created(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _add_account(session)

        created = check_and_generate_missing_payments(session, today=TODAY)
        nothing = check_and_generate_missing_payments(session, today=TODAY)

        assert created.created_count == 3
        assert nothing.created_count == 0
        assert _actions(session) == ["AUTO_GENERATE_MISSING"]
    finally:
        session.close()


def test_daily_guard_runs_missing_payments_check_once(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _add_account(session)

        first = run_missing_payments_check_once_per_day(session, today=TODAY)
        second = run_missing_payments_check_once_per_day(session, today=TODAY)
        next_day = run_missing_payments_check_once_per_day(session, today=date(2025, 1, 21))

        assert first.ran is True
        assert first.generation_result.created_count == 3
        assert second.ran is False
        assert second.generation_result is None
        assert next_day.ran is True
        assert next_day.generation_result.created_count == 0

        runs = session.scalar(select(func.count()).select_from(JobRun).where(JobRun.job_name == MISSING_PAYMENTS_JOB_NAME))
        assert runs == 2
    finally:
        session.close()


def test_try_mark_daily_job_run_is_unique_per_name_and_day(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        assert try_mark_daily_job_run(session, job_name="a", run_date=TODAY) is True
        assert try_mark_daily_job_run(session, job_name="a", run_date=TODAY) is False
        assert try_mark_daily_job_run(session, job_name="b", run_date=TODAY) is True
    finally:
        session.close()


def test_unknown_or_inactive_account_is_not_found(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        closed = _add_account(session, is_active=False)

        with pytest.raises(AccountNotFoundError):
            generate_payments_for_account(session, account_id=999, today=TODAY)
        with pytest.raises(AccountNotFoundError):
            regenerate_payments_for_account(session, account_id=closed.id, today=TODAY)
    finally:
        session.close()


def test_regenerate_succeeds_when_audit_write_fails(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _add_account(session)
        session.execute(text("DROP TABLE action_logs"))
        session.commit()

        result = regenerate_payments_for_account(session, account_id=account.id, today=TODAY)

        assert result.created_count == 3
        assert _due_dates(session, account.id) == result.created_dates
    finally:
        session.close()


def _scope_for(session_factory):
    @contextmanager
    def scope():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    return scope


def test_startup_check_waits_for_schema(tmp_path, monkeypatch) -> None:
    empty_engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    monkeypatch.setattr(payment_generation, "session_scope", _scope_for(sessionmaker(bind=empty_engine)))

    assert payment_generation.run_missing_payments_check_once_per_day_if_ready(today=TODAY) is None


def test_startup_check_runs_once_when_schema_ready(tmp_path, monkeypatch) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'ready.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    with factory() as session:
        _add_account(session)
    monkeypatch.setattr(payment_generation, "session_scope", _scope_for(factory))

    first = payment_generation.run_missing_payments_check_once_per_day_if_ready(today=TODAY)
    second = payment_generation.run_missing_payments_check_once_per_day_if_ready(today=TODAY)

    assert first is not None and first.ran is True
    assert first.generation_result.created_count == 3
    assert second is not None and second.ran is False
