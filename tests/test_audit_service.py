from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import logging

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

import billtrack.models  # noqa: F401
from billtrack.models.audit import ActionLog
from billtrack.models.base import Base
from billtrack.services.audit_service import (
    ActionLogFilters,
    clear_all_logs,
    decode_details,
    delete_old_logs,
    get_log_statistics,
    list_action_logs,
    log_action,
)


def _make_session(tmp_path) -> Session:
    db_path = tmp_path / "audit_test.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    return SessionLocal()


def test_log_action_serializes_dates_and_decimals(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        assert log_action(session, "UPDATE", "payments", 4, {"amount": Decimal("9.50"), "due": date(2025, 2, 1)})
        assert log_action(session, "GENERATE_PAYMENTS", "payments", None)

        rows = session.scalars(select(ActionLog).order_by(ActionLog.id.asc())).all()
        assert decode_details(rows[0]) == {"amount": "9.50", "due": "2025-02-01"}
        assert rows[1].details is None
        assert decode_details(rows[1]) is None
    finally:
        session.close()


def test_log_action_failure_is_reported_not_raised(tmp_path, caplog) -> None:
    session = _make_session(tmp_path)
    try:
        with caplog.at_level(logging.ERROR, logger="billtrack.services.audit_service"):
            ok = log_action(session, "UPDATE", "payments", 1, {"bad": object()})

        assert ok is False
        assert "Audit log write failed" in caplog.text
        assert session.scalar(select(func.count()).select_from(ActionLog)) == 0
    finally:
        session.close()


def test_list_action_logs_filters_and_pages(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        for subject_id in (1, 2, 2):
            log_action(session, "MARK_PAID", "payments", subject_id)
        log_action(session, "CREATE", "accounts", 2)

        by_subject = list_action_logs(session, filters=ActionLogFilters(subject_table="payments", subject_id=2))
        assert by_subject.total_count == 2
        assert all(row.subject_id == 2 for row in by_subject.rows)

        by_action = list_action_logs(session, filters=ActionLogFilters(action="CREATE"))
        assert [row.subject_table for row in by_action.rows] == ["accounts"]

        page = list_action_logs(session, filters=ActionLogFilters(), limit=2, offset=3)
        assert page.total_count == 4
        assert len(page.rows) == 1
    finally:
        session.close()


def _seed_dated_logs(session: Session) -> None:
    session.add_all(
        [
            ActionLog(action="CREATE", subject_table="accounts", subject_id=1, created_at=datetime(2025, 1, 1, 10)),
            ActionLog(action="MARK_PAID", subject_table="payments", subject_id=3, created_at=datetime(2025, 3, 1, 9)),
            ActionLog(
                action="MARK_PAID",
                subject_table="payments",
                subject_id=4,
                details='{"note": "late fee waived"}',
                created_at=datetime(2025, 3, 1, 18),
            ),
            ActionLog(action="DELETE", subject_table="payments", subject_id=5, created_at=datetime(2025, 3, 9, 12)),
        ]
    )
    session.commit()


def test_list_action_logs_by_date_range_and_search(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _seed_dated_logs(session)

        first_of_march = list_action_logs(
            session,
            filters=ActionLogFilters(created_from=datetime(2025, 3, 1), created_to=datetime(2025, 3, 1, 23, 59, 59)),
        )
        assert first_of_march.total_count == 2
        assert [row.subject_id for row in first_of_march.rows] == [4, 3]

        assert list_action_logs(session, filters=ActionLogFilters(search="late fee")).total_count == 1
        assert list_action_logs(session, filters=ActionLogFilters(search="mark")).total_count == 2
        assert list_action_logs(session, filters=ActionLogFilters(search="accounts")).total_count == 1
    finally:
        session.close()


def test_delete_old_logs_keeps_rows_inside_retention(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _seed_dated_logs(session)

        assert delete_old_logs(session, now=datetime(2025, 3, 10), days=30) == 1
        remaining = session.scalars(select(ActionLog.action).order_by(ActionLog.id.asc())).all()
        assert remaining == ["MARK_PAID", "MARK_PAID", "DELETE"]

        with pytest.raises(ValueError):
            delete_old_logs(session, now=datetime(2025, 3, 10), days=-1)

        assert clear_all_logs(session) == 3
        assert session.scalar(select(func.count()).select_from(ActionLog)) == 0
    finally:
        session.close()


def test_log_statistics_counts_by_action_table_and_recent_day(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _seed_dated_logs(session)

        stats = get_log_statistics(session, now=datetime(2025, 3, 10), recent_days=30)

        assert stats.total_count == 4
        assert stats.by_action == [("MARK_PAID", 2), ("CREATE", 1), ("DELETE", 1)]
        assert stats.by_table == [("payments", 3), ("accounts", 1)]
        assert stats.recent_activity == [("2025-03-09", 1), ("2025-03-01", 2)]
    finally:
        session.close()
