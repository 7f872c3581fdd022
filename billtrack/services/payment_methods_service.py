from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from billtrack.models.payment_methods import PAYMENT_METHOD_TYPES, PaymentMethod
from billtrack.services.audit_service import log_action

logger = logging.getLogger(__name__)


class PaymentMethodValidationError(ValueError):
    pass


class PaymentMethodNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class PaymentMethodInput:
    name: str
    type: str


def _validate(data: PaymentMethodInput) -> None:
    if not data.name.strip():
        raise PaymentMethodValidationError("name is required")
    if data.type not in PAYMENT_METHOD_TYPES:
        raise PaymentMethodValidationError(f"Unsupported payment method type: {data.type}")


def _snapshot(method: PaymentMethod) -> dict[str, Any]:
    return {"name": method.name, "type": method.type, "is_active": method.is_active}


def list_payment_methods(session: Session) -> list[PaymentMethod]:
    return list(
        session.scalars(
            select(PaymentMethod).where(PaymentMethod.is_active.is_(True)).order_by(PaymentMethod.name.asc())
        ).all()
    )


def get_payment_method(session: Session, method_id: int) -> PaymentMethod:
    method = session.get(PaymentMethod, method_id)
    if method is None:
        raise PaymentMethodNotFoundError(f"Payment method {method_id} not found")
    return method


def count_active_payment_methods(session: Session) -> int:
    return int(
        session.scalar(
            select(func.count()).select_from(PaymentMethod).where(PaymentMethod.is_active.is_(True))
        )
        or 0
    )


def create_payment_method(session: Session, data: PaymentMethodInput) -> PaymentMethod:
    _validate(data)
    method = PaymentMethod(name=data.name.strip(), type=data.type, is_active=True)
    session.add(method)
    session.commit()
    session.refresh(method)
    log_action(session, "CREATE", "payment_methods", method.id, asdict(data))
    logger.info("Payment method created method_id=%s type=%s", method.id, method.type)
    return method


def update_payment_method(session: Session, *, method_id: int, data: PaymentMethodInput) -> PaymentMethod:
    _validate(data)
    method = get_payment_method(session, method_id)
    method.name = data.name.strip()
    method.type = data.type
    session.commit()
    session.refresh(method)
    log_action(session, "UPDATE", "payment_methods", method.id, asdict(data))
    return method


def delete_payment_method(session: Session, *, method_id: int) -> None:
    """Hide the method from listings; the row stays for history."""
    method = get_payment_method(session, method_id)
    details = _snapshot(method)
    method.is_active = False
    session.commit()
    log_action(session, "DELETE", "payment_methods", method_id, details)
    logger.info("Payment method deactivated method_id=%s", method_id)


def hard_delete_payment_method(session: Session, *, method_id: int) -> None:
    method = get_payment_method(session, method_id)
    details = _snapshot(method)
    session.delete(method)
    session.commit()
    log_action(session, "HARD_DELETE", "payment_methods", method_id, details)
    logger.info("Payment method deleted method_id=%s", method_id)
