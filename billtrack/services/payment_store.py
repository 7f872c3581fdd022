from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billtrack.models.payments import PaymentInstance

logger = logging.getLogger(__name__)


class DuplicatePaymentInstanceError(RuntimeError):
    def __init__(self, account_id: int, due_date: date):
        super().__init__(f"Payment already exists account_id={account_id} due_date={due_date.isoformat()}")
        self.account_id = account_id
        self.due_date = due_date


@dataclass(frozen=True)
class NewPaymentInstance:
    account_id: int
    due_date: date
    amount: Decimal
    is_paid: bool = False
    paid_date: datetime | None = None
    note: str | None = None


class PaymentStore(Protocol):
    def create_instance(self, record: NewPaymentInstance) -> int: ...

    def list_instances_for_account(self, account_id: int) -> list[PaymentInstance]: ...

    def instance_exists(self, account_id: int, due_date: date) -> bool: ...

    def delete_instances_for_account(self, account_id: int) -> int: ...

    def atomic(self) -> AbstractContextManager[None]: ...


class SqlAlchemyPaymentStore:
    """Payment instance CRUD over a caller-owned session.

    Writes are flushed immediately and committed when the enclosing
    ``atomic()`` block exits cleanly; any error inside the block rolls the
    session back.
    """

    def __init__(self, session: Session):
        self._session = session

    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            yield
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def create_instance(self, record: NewPaymentInstance) -> int:
        row = PaymentInstance(
            account_id=record.account_id,
            due_date=record.due_date,
            amount=record.amount,
            is_paid=record.is_paid,
            paid_date=record.paid_date,
            note=record.note,
        )
        self._session.add(row)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise DuplicatePaymentInstanceError(record.account_id, record.due_date) from exc
        return row.id

    def list_instances_for_account(self, account_id: int) -> list[PaymentInstance]:
        return list(
            self._session.scalars(
                select(PaymentInstance)
                .where(PaymentInstance.account_id == account_id)
                .order_by(PaymentInstance.due_date.asc())
            ).all()
        )

    def instance_exists(self, account_id: int, due_date: date) -> bool:
        found = self._session.scalar(
            select(PaymentInstance.id).where(
                PaymentInstance.account_id == account_id,
                PaymentInstance.due_date == due_date,
            )
        )
        return found is not None

    def delete_instances_for_account(self, account_id: int) -> int:
        result = self._session.execute(
            delete(PaymentInstance)
            .where(PaymentInstance.account_id == account_id)
            .execution_options(synchronize_session="fetch")
        )
        deleted = result.rowcount or 0
        logger.debug("Payment instances deleted account_id=%s deleted=%s", account_id, deleted)
        return deleted
