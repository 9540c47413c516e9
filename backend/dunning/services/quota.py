"""Reminder quota checks.

The dispatcher asks twice per send: once before resolving a record and once
after the provider accepted the message. The second check passes
``exclude_reminder_id`` so the just-sent record does not count against
itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import func
from sqlalchemy.orm import Session

from dunning.core.settings import Settings, settings as default_settings
from dunning.models.account import Account
from dunning.models.enums import AccountPlan, ReminderStatus
from dunning.models.invoice import Invoice
from dunning.models.reminder import InvoiceReminder


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None
    limit_type: Optional[str] = None


ALLOWED = QuotaDecision(allowed=True)


class QuotaChecker(Protocol):
    def can_send_reminder(
        self,
        db: Session,
        account: Account,
        invoice: Optional[Invoice] = None,
        *,
        exclude_reminder_id: Optional[int] = None,
    ) -> QuotaDecision:
        ...


def count_reminders_sent_for_invoice(
    db: Session,
    invoice_id: int,
    *,
    exclude_reminder_id: Optional[int] = None,
) -> int:
    query = db.query(func.count(InvoiceReminder.id)).filter(
        InvoiceReminder.invoice_id == invoice_id,
        InvoiceReminder.status == ReminderStatus.SENT,
    )
    if exclude_reminder_id is not None:
        query = query.filter(InvoiceReminder.id != exclude_reminder_id)
    return query.scalar() or 0


def count_reminders_sent_today(
    db: Session,
    *,
    account_id: int,
    exclude_reminder_id: Optional[int] = None,
) -> int:
    now = datetime.now(timezone.utc)
    start = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    query = (
        db.query(func.count(InvoiceReminder.id))
        .join(Invoice, Invoice.id == InvoiceReminder.invoice_id)
        .filter(
            Invoice.account_id == account_id,
            InvoiceReminder.status == ReminderStatus.SENT,
            InvoiceReminder.sent_at >= start,
        )
    )
    if exclude_reminder_id is not None:
        query = query.filter(InvoiceReminder.id != exclude_reminder_id)
    return query.scalar() or 0


class PlanQuotaChecker:
    def __init__(self, config: Settings | None = None) -> None:
        self.settings = config or default_settings

    def can_send_reminder(
        self,
        db: Session,
        account: Account,
        invoice: Optional[Invoice] = None,
        *,
        exclude_reminder_id: Optional[int] = None,
    ) -> QuotaDecision:
        if not account.is_active:
            return QuotaDecision(False, "Account is inactive", "account")

        if account.plan == AccountPlan.FREE and invoice is not None:
            limit = self.settings.free_plan_reminders_per_invoice
            sent = count_reminders_sent_for_invoice(db, invoice.id, exclude_reminder_id=exclude_reminder_id)
            if sent >= limit:
                return QuotaDecision(
                    False,
                    f"Free plan allows {limit} reminders per invoice. Upgrade to send more.",
                    "per_invoice",
                )

        daily_limit = self.settings.reminder_daily_limit
        if daily_limit:
            sent_today = count_reminders_sent_today(db, account_id=account.id, exclude_reminder_id=exclude_reminder_id)
            if sent_today >= daily_limit:
                return QuotaDecision(False, f"Daily reminder limit of {daily_limit} reached", "daily")

        return ALLOWED
