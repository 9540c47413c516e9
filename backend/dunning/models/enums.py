from __future__ import annotations

import enum


class AccountPlan(str, enum.Enum):
    FREE = "free"
    MONTHLY = "monthly"
    PAY_PER_INVOICE = "pay_per_invoice"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


OPEN_INVOICE_STATUSES = frozenset({InvoiceStatus.SENT, InvoiceStatus.OVERDUE})


class LateFeeType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class ReminderKind(str, enum.Enum):
    FRIENDLY = "friendly"
    POLITE = "polite"
    FIRM = "firm"
    URGENT = "urgent"

    @property
    def severity(self) -> int:
        return REMINDER_KIND_ORDER.index(self)


REMINDER_KIND_ORDER = (
    ReminderKind.FRIENDLY,
    ReminderKind.POLITE,
    ReminderKind.FIRM,
    ReminderKind.URGENT,
)


class ReminderStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ReminderFailureCategory(str, enum.Enum):
    VALIDATION = "validation"
    QUOTA_EXCEEDED = "quota_exceeded"
    DOMAIN_RESTRICTED = "domain_restricted"
    RATE_LIMITED = "rate_limited"
    INVALID_RECIPIENT = "invalid_recipient"
    PROVIDER_REJECTED = "provider_rejected"
    TRANSPORT = "transport"
    INVOICE_SETTLED = "invoice_settled"
    INVOICE_CANCELLED = "invoice_cancelled"
    RACE_CONDITION_VETO = "race_condition_veto"
