"""Payment ledger: recording and removing payments against an invoice.

``add_payment`` loads the invoice row ``FOR UPDATE`` so the payable check and
the insert run under a single row lock; callers commit (or roll back) the
session once per operation, so a rejected payment never leaves a partial
write behind.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from dunning.core.exceptions import (
    AlreadyPaidError,
    ExceedsPayableError,
    InvoiceStateError,
    PaymentNotFoundError,
)
from dunning.core.observability import payments_recorded_total
from dunning.db.base import utcnow
from dunning.models.enums import InvoiceStatus
from dunning.models.invoice import InvoicePayment
from dunning.services.audit import add_invoice_audit_log
from dunning.services.balances import (
    LedgerSummary,
    coerce_amount,
    compute_balance,
    get_invoice,
    get_payments_and_balance,
    live_payments,
    remaining_balance,
    resolve_as_of,
    total_paid,
)
from dunning.services.invoice_status import resolve_invoice_status


logger = logging.getLogger(__name__)

__all__ = [
    "LedgerSummary",
    "add_payment",
    "coerce_amount",
    "get_payments_and_balance",
    "remaining_balance",
    "remove_payment",
    "total_paid",
]


def add_payment(
    db: Session,
    *,
    invoice_id: int,
    account_id: int,
    amount,
    payment_date: Optional[date] = None,
    method: Optional[str] = None,
    notes: Optional[str] = None,
    as_of: date | datetime | None = None,
) -> InvoicePayment:
    amount = coerce_amount(amount)
    as_of_date = resolve_as_of(as_of)

    invoice = get_invoice(db, invoice_id, account_id=account_id, lock=True)
    if invoice.status == InvoiceStatus.PAID:
        raise AlreadyPaidError(invoice.id)
    if invoice.status == InvoiceStatus.DRAFT:
        raise InvoiceStateError("Send the invoice before recording payment", {"status": invoice.status.value})
    if invoice.status == InvoiceStatus.CANCELLED:
        raise InvoiceStateError("Cannot pay a cancelled invoice", {"status": invoice.status.value})

    summary = compute_balance(invoice, live_payments(db, invoice.id), as_of=as_of_date)
    if amount > summary.total_payable:
        raise ExceedsPayableError(amount, summary.total_payable)

    payment = InvoicePayment(
        invoice_id=invoice.id,
        amount=amount,
        payment_date=payment_date or as_of_date,
        method=method,
        notes=notes,
    )
    db.add(payment)
    db.flush()

    add_invoice_audit_log(
        db,
        invoice_id=invoice.id,
        event_type="payment_recorded",
        actor_account_id=account_id,
        diff={
            "payment_id": payment.id,
            "amount": str(amount),
            "method": method,
            "total_payable_before": str(summary.total_payable),
        },
    )
    resolve_invoice_status(db, invoice, as_of=as_of_date, actor_account_id=account_id)
    payments_recorded_total.inc()

    logger.info(
        "Payment of %s recorded for invoice %s",
        amount,
        invoice.invoice_number,
        extra={"invoice_id": invoice.id, "account_id": account_id},
    )
    return payment


def remove_payment(
    db: Session,
    *,
    invoice_id: int,
    payment_id: int,
    account_id: int,
    as_of: date | datetime | None = None,
) -> LedgerSummary:
    as_of_date = resolve_as_of(as_of)
    invoice = get_invoice(db, invoice_id, account_id=account_id, lock=True)

    payment = (
        db.query(InvoicePayment)
        .filter(
            InvoicePayment.id == payment_id,
            InvoicePayment.invoice_id == invoice.id,
            InvoicePayment.deleted_at.is_(None),
        )
        .first()
    )
    if not payment:
        raise PaymentNotFoundError(payment_id)

    payment.deleted_at = utcnow()
    db.add(payment)
    db.flush()

    add_invoice_audit_log(
        db,
        invoice_id=invoice.id,
        event_type="payment_removed",
        actor_account_id=account_id,
        diff={"payment_id": payment.id, "amount": str(payment.amount)},
    )
    resolve_invoice_status(db, invoice, as_of=as_of_date, actor_account_id=account_id)
    return compute_balance(invoice, live_payments(db, invoice.id), as_of=as_of_date)
