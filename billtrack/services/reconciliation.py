from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
import logging

from billtrack.services.date_engine import to_date_key
from billtrack.services.payment_store import DuplicatePaymentInstanceError, NewPaymentInstance, PaymentStore
from billtrack.services.scheduling_service import AccountScheduleSpec

logger = logging.getLogger(__name__)


class ReconcileMode(str, Enum):
    SKIP_EXISTING = "skip_existing"
    REGENERATE = "regenerate"


@dataclass(frozen=True)
class ReconcileResult:
    account_id: int
    mode: ReconcileMode
    created_dates: list[date] = field(default_factory=list)
    skipped_dates: list[date] = field(default_factory=list)
    deleted_count: int = 0

    @property
    def created_count(self) -> int:
        return len(self.created_dates)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_dates)

    @property
    def total(self) -> int:
        return self.created_count + self.skipped_count


def _new_instance(spec: AccountScheduleSpec, due_date: date) -> NewPaymentInstance:
    return NewPaymentInstance(account_id=spec.account_id, due_date=due_date, amount=spec.amount)


def _skip_existing(
    store: PaymentStore,
    *,
    spec: AccountScheduleSpec,
    due_dates: list[date],
    existing_keys: set[str],
) -> ReconcileResult:
    created: list[date] = []
    skipped: list[date] = []
    for due_date in due_dates:
        if to_date_key(due_date) in existing_keys:
            skipped.append(due_date)
            continue
        try:
            with store.atomic():
                store.create_instance(_new_instance(spec, due_date))
        except DuplicatePaymentInstanceError:
            # Inserted by someone else after the snapshot was taken.
            logger.info(
                "Payment create raced with existing row account_id=%s due_date=%s",
                spec.account_id,
                due_date,
            )
            skipped.append(due_date)
            continue
        created.append(due_date)
        existing_keys.add(to_date_key(due_date))

    return ReconcileResult(
        account_id=spec.account_id,
        mode=ReconcileMode.SKIP_EXISTING,
        created_dates=created,
        skipped_dates=skipped,
    )


def _regenerate(store: PaymentStore, *, spec: AccountScheduleSpec, due_dates: list[date]) -> ReconcileResult:
    created: list[date] = []
    with store.atomic():
        deleted_count = store.delete_instances_for_account(spec.account_id)
        seen: set[str] = set()
        for due_date in due_dates:
            key = to_date_key(due_date)
            if key in seen:
                continue
            seen.add(key)
            store.create_instance(_new_instance(spec, due_date))
            created.append(due_date)

    return ReconcileResult(
        account_id=spec.account_id,
        mode=ReconcileMode.REGENERATE,
        created_dates=created,
        deleted_count=deleted_count,
    )


def reconcile(
    store: PaymentStore,
    *,
    spec: AccountScheduleSpec,
    due_dates: Iterable[date],
    existing_due_dates: Iterable[date],
    mode: ReconcileMode = ReconcileMode.SKIP_EXISTING,
) -> ReconcileResult:
    """Diff generated due dates against an account's persisted instances.

    ``SKIP_EXISTING`` creates only dates missing from ``existing_due_dates``
    and never touches existing rows, so paid flags, amounts and notes survive.
    Each create commits on its own; a failure leaves earlier creates in place.

    ``REGENERATE`` deletes every instance of the account and recreates the
    full list inside a single ``store.atomic()`` block: either the whole new
    schedule is committed or the old one is left as it was.

    The store is never read here; ``existing_due_dates`` is the caller's
    snapshot.
    """
    dates = list(due_dates)
    if mode is ReconcileMode.REGENERATE:
        result = _regenerate(store, spec=spec, due_dates=dates)
    else:
        result = _skip_existing(
            store,
            spec=spec,
            due_dates=dates,
            existing_keys={to_date_key(value) for value in existing_due_dates},
        )

    logger.info(
        "Payments reconciled account_id=%s mode=%s created=%s skipped=%s deleted=%s",
        spec.account_id,
        result.mode.value,
        result.created_count,
        result.skipped_count,
        result.deleted_count,
    )
    return result
