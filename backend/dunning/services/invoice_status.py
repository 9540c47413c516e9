"""Invoice status transitions.

Persisted statuses are ``draft``, ``sent``, ``paid`` and ``cancelled``;
``overdue`` is derived from the due date by :func:`effective_status`. The
ledger is authoritative for ``paid``: ``resolve_invoice_status`` moves an open
invoice to ``paid`` once nothing is payable and moves a ledger-paid invoice
back to ``sent`` when a payment removal reopens the balance. Manual
overrides (single, bulk, or a write-off) also enter ``paid``. Entering
``paid`` or ``cancelled`` cancels every ``scheduled`` reminder; sent and
already-cancelled reminders are history and stay as they are.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from dunning.core.exceptions import AlreadyPaidError, ExceedsPayableError, InvoiceStateError, ValidationError
from dunning.core.observability import invoices_auto_paid_total
from dunning.db.base import utcnow
from dunning.models.enums import (
    OPEN_INVOICE_STATUSES,
    InvoiceStatus,
    ReminderFailureCategory,
    ReminderStatus,
)
from dunning.models.invoice import Invoice
from dunning.models.reminder import InvoiceReminder
from dunning.services.audit import add_invoice_audit_log
from dunning.services.balances import coerce_amount, compute_balance, live_payments, resolve_as_of
from dunning.services.reminder_scheduler import plan_scheduled_reminders


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusTransition:
    invoice_id: int
    from_status: InvoiceStatus
    to_status: InvoiceStatus
    reason: str
    cancelled_reminders: int = 0


def effective_status(invoice: Invoice, as_of: date | datetime | None = None) -> InvoiceStatus:
    if invoice.status in OPEN_INVOICE_STATUSES and invoice.due_date < resolve_as_of(as_of):
        return InvoiceStatus.OVERDUE
    if invoice.status == InvoiceStatus.OVERDUE:
        return InvoiceStatus.SENT
    return invoice.status


def cancel_scheduled_reminders(
    db: Session,
    invoice_id: int,
    *,
    reason: str,
    category: ReminderFailureCategory = ReminderFailureCategory.INVOICE_SETTLED,
) -> int:
    count = (
        db.query(InvoiceReminder)
        .filter(
            InvoiceReminder.invoice_id == invoice_id,
            InvoiceReminder.status == ReminderStatus.SCHEDULED,
        )
        .update(
            {
                InvoiceReminder.status: ReminderStatus.CANCELLED,
                InvoiceReminder.failure_reason: reason,
                InvoiceReminder.failure_category: category,
                InvoiceReminder.updated_at: utcnow(),
            },
            synchronize_session="fetch",
        )
    )
    db.flush()
    return count


def _enter_paid(
    db: Session,
    invoice: Invoice,
    *,
    manual: bool,
    actor_account_id: Optional[int],
    reason: str,
    reminder_reason: Optional[str] = None,
    details: Optional[dict] = None,
) -> StatusTransition:
    from_status = invoice.status
    invoice.status = InvoiceStatus.PAID
    invoice.paid_at = utcnow()
    invoice.paid_manually = manual
    db.add(invoice)

    cancelled = cancel_scheduled_reminders(
        db,
        invoice.id,
        reason=reminder_reason
        or (
            "Invoice marked as paid - scheduled reminders cancelled"
            if manual
            else "Invoice fully paid via payments - scheduled reminders cancelled"
        ),
    )
    add_invoice_audit_log(
        db,
        invoice_id=invoice.id,
        event_type="paid",
        actor_account_id=actor_account_id,
        diff={
            "from": from_status.value,
            "manual": manual,
            "cancelled_reminders": cancelled,
            **(details or {}),
        },
    )
    logger.info(
        "Invoice %s paid (%s), cancelled %s scheduled reminders",
        invoice.invoice_number,
        reason,
        cancelled,
        extra={"invoice_id": invoice.id},
    )
    return StatusTransition(
        invoice_id=invoice.id,
        from_status=from_status,
        to_status=InvoiceStatus.PAID,
        reason=reason,
        cancelled_reminders=cancelled,
    )


def resolve_invoice_status(
    db: Session,
    invoice: Invoice,
    *,
    as_of: date | datetime | None = None,
    actor_account_id: Optional[int] = None,
) -> Optional[StatusTransition]:
    """Apply the ledger-driven transitions; returns None when nothing changed."""
    if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
        return None

    summary = compute_balance(
        invoice,
        live_payments(db, invoice.id),
        as_of=as_of,
        assume_open=True,
    )

    if invoice.status in OPEN_INVOICE_STATUSES and summary.is_settled:
        transition = _enter_paid(
            db,
            invoice,
            manual=False,
            actor_account_id=actor_account_id,
            reason="ledger_settled",
        )
        invoices_auto_paid_total.inc()
        return transition

    if invoice.status == InvoiceStatus.PAID and not invoice.paid_manually and not summary.is_settled:
        invoice.status = InvoiceStatus.SENT
        invoice.paid_at = None
        db.add(invoice)
        add_invoice_audit_log(
            db,
            invoice_id=invoice.id,
            event_type="reopened",
            actor_account_id=actor_account_id,
            diff={"total_payable": str(summary.total_payable)},
        )
        logger.info(
            "Invoice %s reopened, %s payable",
            invoice.invoice_number,
            summary.total_payable,
            extra={"invoice_id": invoice.id},
        )
        return StatusTransition(
            invoice_id=invoice.id,
            from_status=InvoiceStatus.PAID,
            to_status=InvoiceStatus.SENT,
            reason="payment_removed",
        )

    return None


def mark_invoice_sent(
    db: Session,
    invoice: Invoice,
    *,
    actor_account_id: Optional[int] = None,
) -> StatusTransition:
    if invoice.status != InvoiceStatus.DRAFT:
        raise InvoiceStateError("Invoice already sent", {"status": invoice.status.value})
    if Decimal(invoice.total_amount or 0) <= Decimal("0.00"):
        raise ValidationError("Invoice total must be positive before sending", {"invoice_id": invoice.id})

    invoice.status = InvoiceStatus.SENT
    invoice.sent_at = utcnow()
    db.add(invoice)
    db.flush()

    add_invoice_audit_log(
        db,
        invoice_id=invoice.id,
        event_type="sent",
        actor_account_id=actor_account_id,
        diff={"total": str(invoice.total_amount), "due_date": invoice.due_date.isoformat()},
    )
    plan_scheduled_reminders(db, invoice)
    return StatusTransition(
        invoice_id=invoice.id,
        from_status=InvoiceStatus.DRAFT,
        to_status=InvoiceStatus.SENT,
        reason="issued",
    )


def mark_invoice_paid(
    db: Session,
    invoice: Invoice,
    *,
    actor_account_id: Optional[int] = None,
) -> StatusTransition:
    if invoice.status == InvoiceStatus.PAID:
        raise AlreadyPaidError(invoice.id)
    if invoice.status not in OPEN_INVOICE_STATUSES:
        raise InvoiceStateError(
            f"Cannot mark a {invoice.status.value} invoice as paid",
            {"status": invoice.status.value},
        )
    return _enter_paid(
        db,
        invoice,
        manual=True,
        actor_account_id=actor_account_id,
        reason="manual_override",
    )


def write_off_invoice(
    db: Session,
    invoice: Invoice,
    amount,
    *,
    notes: Optional[str] = None,
    as_of: date | datetime | None = None,
    actor_account_id: Optional[int] = None,
) -> StatusTransition:
    """Forgive ``amount`` of what is still owed and close the invoice as paid.

    The amount may not exceed the current total payable, late fee included.
    Once recorded, the write-off settles the balance for good: removing a
    payment afterwards does not reopen the invoice.
    """
    if invoice.status == InvoiceStatus.PAID:
        raise AlreadyPaidError(invoice.id)
    if invoice.status not in OPEN_INVOICE_STATUSES:
        raise InvoiceStateError(
            f"Cannot write off a {invoice.status.value} invoice",
            {"status": invoice.status.value},
        )
    amount = coerce_amount(amount, label="write-off")
    summary = compute_balance(invoice, live_payments(db, invoice.id), as_of=as_of)
    if amount > summary.total_payable:
        raise ExceedsPayableError(amount, summary.total_payable, label="Write-off")

    invoice.write_off_amount = amount
    invoice.write_off_notes = notes
    return _enter_paid(
        db,
        invoice,
        manual=True,
        actor_account_id=actor_account_id,
        reason="write_off",
        reminder_reason="Invoice marked as paid with write-off - scheduled reminders cancelled",
        details={
            "write_off_amount": str(amount),
            "notes": notes,
            "total_payable": str(summary.total_payable),
        },
    )


def mark_invoices_paid(
    db: Session,
    invoice_ids: Iterable[int],
    *,
    account_id: int,
    actor_account_id: Optional[int] = None,
) -> list[StatusTransition]:
    """Mark every open invoice of ``account_id`` among ``invoice_ids`` as paid.

    Ids that are unknown, belong to another account or are not open are left
    alone; it is an error only when none qualifies.
    """
    ids = sorted({int(invoice_id) for invoice_id in invoice_ids})
    if not ids:
        raise ValidationError("invoice_ids must not be empty")

    invoices = (
        db.query(Invoice)
        .filter(
            Invoice.id.in_(ids),
            Invoice.account_id == account_id,
            Invoice.status.in_(list(OPEN_INVOICE_STATUSES)),
        )
        .order_by(Invoice.id.asc())
        .with_for_update()
        .all()
    )
    if not invoices:
        raise ValidationError("No valid invoices found to mark as paid", {"invoice_ids": ids})

    return [
        _enter_paid(
            db,
            invoice,
            manual=True,
            actor_account_id=actor_account_id,
            reason="bulk_manual_override",
            reminder_reason="Invoice marked as paid via bulk action - scheduled reminders cancelled",
            details={"bulk": True},
        )
        for invoice in invoices
    ]


def cancel_invoice(
    db: Session,
    invoice: Invoice,
    *,
    actor_account_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> StatusTransition:
    if invoice.status == InvoiceStatus.CANCELLED:
        raise InvoiceStateError("Invoice already cancelled", {"status": invoice.status.value})
    if invoice.status == InvoiceStatus.PAID:
        raise InvoiceStateError("Paid invoices cannot be cancelled", {"status": invoice.status.value})

    from_status = invoice.status
    invoice.status = InvoiceStatus.CANCELLED
    invoice.cancelled_at = utcnow()
    invoice.cancel_reason = reason
    db.add(invoice)

    cancelled = cancel_scheduled_reminders(
        db,
        invoice.id,
        reason="Invoice cancelled - scheduled reminders cancelled",
        category=ReminderFailureCategory.INVOICE_CANCELLED,
    )
    add_invoice_audit_log(
        db,
        invoice_id=invoice.id,
        event_type="cancelled",
        actor_account_id=actor_account_id,
        diff={"from": from_status.value, "reason": reason, "cancelled_reminders": cancelled},
    )
    return StatusTransition(
        invoice_id=invoice.id,
        from_status=from_status,
        to_status=InvoiceStatus.CANCELLED,
        reason=reason or "manual_cancel",
        cancelled_reminders=cancelled,
    )
