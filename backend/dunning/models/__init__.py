"""Import all models so SQLAlchemy metadata is fully registered."""

from dunning.db.base import Base

from dunning.models.account import Account
from dunning.models.enums import (
    AccountPlan,
    InvoiceStatus,
    LateFeeType,
    ReminderFailureCategory,
    ReminderKind,
    ReminderStatus,
)
from dunning.models.invoice import Invoice, InvoiceAuditLog, InvoicePayment
from dunning.models.reminder import InvoiceReminder

__all__ = [
    "Base",
    "Account",
    "AccountPlan",
    "Invoice",
    "InvoiceAuditLog",
    "InvoicePayment",
    "InvoiceReminder",
    "InvoiceStatus",
    "LateFeeType",
    "ReminderFailureCategory",
    "ReminderKind",
    "ReminderStatus",
]
