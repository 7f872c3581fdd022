from billtrack.models.accounts import Account, RECURRENCE_KINDS
from billtrack.models.audit import ActionLog, JobRun
from billtrack.models.payment_methods import PAYMENT_METHOD_TYPES, PaymentMethod
from billtrack.models.payments import PaymentInstance

__all__ = [
    "Account",
    "ActionLog",
    "JobRun",
    "PAYMENT_METHOD_TYPES",
    "PaymentInstance",
    "PaymentMethod",
    "RECURRENCE_KINDS",
]
