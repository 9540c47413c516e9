"""Decides which reminder occasions are due for an invoice.

The schedule is a list of (kind, days-after-due-date) rules ordered by
severity. A kind is due once the invoice is that many days overdue and no
message has been delivered for it yet; once delivered it never fires again
for the same invoice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from dunning.core.exceptions import ValidationError
from dunning.core.settings import settings
from dunning.models.enums import OPEN_INVOICE_STATUSES, ReminderKind, ReminderStatus
from dunning.models.invoice import Invoice
from dunning.models.reminder import InvoiceReminder
from dunning.schemas.reminder import ReminderRule
from dunning.services.audit import add_invoice_audit_log
from dunning.services.balances import compute_balance, live_payments, resolve_as_of
from dunning.services.late_fees import days_overdue


logger = logging.getLogger(__name__)

DEFAULT_REMINDER_SCHEDULE = (
    ReminderRule(kind=ReminderKind.FRIENDLY, days=1),
    ReminderRule(kind=ReminderKind.POLITE, days=3),
    ReminderRule(kind=ReminderKind.FIRM, days=7),
    ReminderRule(kind=ReminderKind.URGENT, days=14),
)

LIVE_REMINDER_STATUSES = (ReminderStatus.SCHEDULED, ReminderStatus.FAILED, ReminderStatus.SENT)


@dataclass(frozen=True)
class DueReminder:
    invoice_id: int
    kind: ReminderKind
    threshold_days: int
    days_overdue: int


def validate_reminder_schedule(raw: Optional[Iterable[dict]]) -> List[ReminderRule]:
    if not raw:
        return list(DEFAULT_REMINDER_SCHEDULE)
    try:
        rules = [ReminderRule.model_validate(item) for item in raw]
    except PydanticValidationError as exc:
        raise ValidationError("Invalid reminder schedule", {"errors": str(exc)}) from exc

    kinds = [rule.kind for rule in rules]
    if len(set(kinds)) != len(kinds):
        raise ValidationError("Reminder schedule lists a kind more than once", {"kinds": [k.value for k in kinds]})
    return sorted(rules, key=lambda rule: rule.kind.severity)


def reminder_schedule_for(invoice: Invoice) -> List[ReminderRule]:
    return validate_reminder_schedule(invoice.reminder_schedule)


def reminders_for_invoice(db: Session, invoice_id: int) -> list[InvoiceReminder]:
    return (
        db.query(InvoiceReminder)
        .filter(InvoiceReminder.invoice_id == invoice_id)
        .order_by(InvoiceReminder.created_at.asc(), InvoiceReminder.id.asc())
        .all()
    )


def plan_scheduled_reminders(db: Session, invoice: Invoice) -> list[InvoiceReminder]:
    """Create a ``scheduled`` record for every kind that has no live record yet."""
    if invoice.status not in OPEN_INVOICE_STATUSES or not invoice.reminders_enabled:
        return []

    existing = {
        reminder.kind
        for reminder in reminders_for_invoice(db, invoice.id)
        if reminder.status in LIVE_REMINDER_STATUSES
    }
    created: list[InvoiceReminder] = []
    for rule in reminder_schedule_for(invoice):
        if rule.kind in existing:
            continue
        fire_on = invoice.due_date + timedelta(days=rule.days)
        reminder = InvoiceReminder(
            invoice_id=invoice.id,
            kind=rule.kind,
            status=ReminderStatus.SCHEDULED,
            overdue_days=rule.days,
            scheduled_for=datetime.combine(fire_on, time.min, tzinfo=timezone.utc),
        )
        db.add(reminder)
        created.append(reminder)

    if created:
        db.flush()
        add_invoice_audit_log(
            db,
            invoice_id=invoice.id,
            event_type="reminders_scheduled",
            diff={"kinds": [reminder.kind.value for reminder in created]},
        )
        logger.info(
            "Scheduled %s reminders for invoice %s",
            len(created),
            invoice.invoice_number,
            extra={"invoice_id": invoice.id},
        )
    return created


def due_reminder_kinds(
    db: Session,
    invoice: Invoice,
    *,
    as_of: date | datetime | None = None,
) -> list[DueReminder]:
    as_of_date = resolve_as_of(as_of)
    if invoice.status not in OPEN_INVOICE_STATUSES or not invoice.reminders_enabled:
        return []
    if not invoice.due_date < as_of_date:
        return []

    summary = compute_balance(invoice, live_payments(db, invoice.id), as_of=as_of_date)
    if summary.is_settled:
        return []

    overdue = days_overdue(invoice.due_date, as_of_date)
    delivered = {reminder.kind for reminder in reminders_for_invoice(db, invoice.id) if reminder.was_delivered}

    due = [
        DueReminder(
            invoice_id=invoice.id,
            kind=rule.kind,
            threshold_days=rule.days,
            days_overdue=overdue,
        )
        for rule in reminder_schedule_for(invoice)
        if overdue >= rule.days and rule.kind not in delivered
    ]
    if settings.reminder_collapse_overdue and due:
        return due[-1:]
    return due
