from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from billtrack.models.base import Base


PAYMENT_METHOD_TYPES = (
    "bank_transfer",
    "credit_card",
    "debit_card",
    "cash",
    "check",
    "auto_payment",
    "other",
)


class PaymentMethod(Base):
    __tablename__ = "payment_methods"
    __table_args__ = (
        CheckConstraint(
            "type IN (" + ",".join(f"'{kind}'" for kind in PAYMENT_METHOD_TYPES) + ")",
            name="ck_payment_methods_type",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), server_default=func.now(), nullable=False
    )
