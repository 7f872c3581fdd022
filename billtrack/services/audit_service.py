from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
import json
import logging
from typing import Any

from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billtrack.models.audit import ActionLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionLogFilters:
    action: str | None = None
    subject_table: str | None = None
    subject_id: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    search: str | None = None


@dataclass(frozen=True)
class ActionLogPage:
    rows: list[ActionLog]
    total_count: int


@dataclass(frozen=True)
class LogStatistics:
    total_count: int
    by_action: list[tuple[str, int]]
    by_table: list[tuple[str | None, int]]
    recent_activity: list[tuple[str, int]]


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def log_action(
    session: Session,
    action: str,
    subject_table: str | None,
    subject_id: int | None,
    details: dict[str, Any] | None = None,
) -> bool:
    """Record an audit entry; failures are logged and never raised."""
    try:
        row = ActionLog(
            action=action,
            subject_table=subject_table,
            subject_id=subject_id,
            details=None if details is None else json.dumps(details, default=_json_default, sort_keys=True),
        )
        session.add(row)
        session.commit()
    except (SQLAlchemyError, TypeError, ValueError):
        session.rollback()
        logger.exception(
            "Audit log write failed action=%s subject_table=%s subject_id=%s",
            action,
            subject_table,
            subject_id,
        )
        return False
    return True


def _apply_filters(stmt: Select, filters: ActionLogFilters) -> Select:
    if filters.action:
        stmt = stmt.where(ActionLog.action == filters.action)
    if filters.subject_table:
        stmt = stmt.where(ActionLog.subject_table == filters.subject_table)
    if filters.subject_id is not None:
        stmt = stmt.where(ActionLog.subject_id == filters.subject_id)
    if filters.created_from is not None:
        stmt = stmt.where(ActionLog.created_at >= filters.created_from)
    if filters.created_to is not None:
        stmt = stmt.where(ActionLog.created_at <= filters.created_to)
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        stmt = stmt.where(
            or_(
                ActionLog.action.ilike(pattern),
                ActionLog.subject_table.ilike(pattern),
                ActionLog.details.ilike(pattern),
            )
        )
    return stmt


def list_action_logs(
    session: Session,
    *,
    filters: ActionLogFilters,
    limit: int = 50,
    offset: int = 0,
) -> ActionLogPage:
    stmt = _apply_filters(select(ActionLog), filters).order_by(ActionLog.created_at.desc(), ActionLog.id.desc())
    rows = list(session.scalars(stmt.offset(max(offset, 0)).limit(limit)).all())
    total_count = int(session.scalar(_apply_filters(select(func.count()).select_from(ActionLog), filters)) or 0)
    return ActionLogPage(rows=rows, total_count=total_count)


def decode_details(row: ActionLog) -> dict[str, Any] | None:
    if row.details is None:
        return None
    return json.loads(row.details)


def delete_old_logs(session: Session, *, now: datetime, days: int = 90) -> int:
    """Drop audit rows created more than ``days`` days before ``now``."""
    if days < 0:
        raise ValueError("days must be non-negative")
    cutoff = now - timedelta(days=days)
    result = session.execute(delete(ActionLog).where(ActionLog.created_at < cutoff))
    session.commit()
    deleted = result.rowcount or 0
    logger.info("Old audit logs deleted cutoff=%s deleted=%s", cutoff.isoformat(), deleted)
    return deleted


def clear_all_logs(session: Session) -> int:
    result = session.execute(delete(ActionLog))
    session.commit()
    deleted = result.rowcount or 0
    logger.info("Audit logs cleared deleted=%s", deleted)
    return deleted


def _grouped_counts(session: Session, column, *filters) -> list[tuple]:
    count = func.count(ActionLog.id).label("count")
    stmt = select(column, count).group_by(column)
    if filters:
        stmt = stmt.where(*filters)
    return [(key, int(total)) for key, total in session.execute(stmt.order_by(count.desc(), column.asc())).all()]


def get_log_statistics(session: Session, *, now: datetime, recent_days: int = 30) -> LogStatistics:
    day = func.date(ActionLog.created_at)
    recent = [
        (str(key), total)
        for key, total in _grouped_counts(session, day, ActionLog.created_at >= now - timedelta(days=recent_days))
    ]
    return LogStatistics(
        total_count=int(session.scalar(select(func.count()).select_from(ActionLog)) or 0),
        by_action=_grouped_counts(session, ActionLog.action),
        by_table=_grouped_counts(session, ActionLog.subject_table),
        recent_activity=sorted(recent, reverse=True),
    )
