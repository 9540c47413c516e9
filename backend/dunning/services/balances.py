"""Read-side ledger arithmetic.

Totals are recomputed from live payment rows on every call; the invoice row
stores no running balance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from dunning.core.exceptions import InvoiceNotFoundError, ValidationError
from dunning.models.invoice import Invoice, InvoicePayment
from dunning.services.late_fees import TWOPLACES, ZERO, compute_late_fee


def _q(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def coerce_amount(value, *, label: str = "payment") -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"Valid {label} amount is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Valid {label} amount is required", {"amount": str(value)}) from exc
    if not amount.is_finite() or amount <= ZERO:
        raise ValidationError(f"{label.capitalize()} amount must be positive", {"amount": str(value)})
    if amount != amount.quantize(TWOPLACES, rounding=ROUND_HALF_UP):
        raise ValidationError(
            f"{label.capitalize()} amount has more than two decimal places",
            {"amount": str(value)},
        )
    return amount.quantize(TWOPLACES)


@dataclass
class LedgerSummary:
    invoice_id: int
    currency: str
    invoice_total: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    late_fee: Decimal
    late_fee_paid: Decimal
    total_payable: Decimal
    days_overdue: int
    late_fee_chargeable: bool
    written_off: Decimal = ZERO
    payments: List[InvoicePayment] = field(default_factory=list)

    @property
    def is_settled(self) -> bool:
        return self.total_payable <= ZERO


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def resolve_as_of(as_of: date | datetime | None) -> date:
    if as_of is None:
        return today_utc()
    if isinstance(as_of, datetime):
        return as_of.date()
    return as_of


def get_invoice(db: Session, invoice_id: int, *, account_id: Optional[int] = None, lock: bool = False) -> Invoice:
    query = db.query(Invoice).filter(Invoice.id == invoice_id)
    if lock:
        query = query.with_for_update()
    invoice = query.first()
    if not invoice or (account_id is not None and invoice.account_id != account_id):
        raise InvoiceNotFoundError(invoice_id)
    return invoice


def live_payments(db: Session, invoice_id: int) -> list[InvoicePayment]:
    return (
        db.query(InvoicePayment)
        .filter(
            InvoicePayment.invoice_id == invoice_id,
            InvoicePayment.deleted_at.is_(None),
        )
        .order_by(InvoicePayment.payment_date.desc(), InvoicePayment.id.desc())
        .all()
    )


def compute_balance(
    invoice: Invoice,
    payments: Sequence[InvoicePayment],
    *,
    as_of: date | datetime | None = None,
    assume_open: bool = False,
) -> LedgerSummary:
    """Derive paid/remaining/fee figures for ``invoice`` from ``payments``.

    Any amount paid beyond the original total is credited against the late
    fee, so a fixed fee can be settled by paying ``total + fee``.

    ``assume_open`` computes the fee as if the invoice were still open, which
    is what status resolution needs when deciding whether a paid invoice must
    be reopened.

    A recorded write-off closes the balance: nothing stays payable, whatever
    the write-off left uncollected.
    """
    as_of_date = resolve_as_of(as_of)
    invoice_total = _q(Decimal(invoice.total_amount or ZERO))
    paid = _q(sum((Decimal(p.amount) for p in payments), start=ZERO))
    remaining = max(ZERO, _q(invoice_total - paid))

    fee = compute_late_fee(
        invoice.due_date,
        as_of_date,
        remaining,
        invoice.late_fee_policy,
        status=None if assume_open else invoice.status,
    )
    late_fee_paid = max(ZERO, _q(paid - invoice_total))
    outstanding_fee = max(ZERO, _q(fee.late_fee - late_fee_paid))
    total_payable = _q(remaining + outstanding_fee)

    written_off = ZERO
    if invoice.write_off_amount is not None:
        written_off = _q(Decimal(invoice.write_off_amount))
        remaining = ZERO
        total_payable = ZERO

    return LedgerSummary(
        invoice_id=invoice.id,
        currency=invoice.currency,
        invoice_total=invoice_total,
        total_paid=paid,
        remaining_balance=remaining,
        late_fee=fee.late_fee,
        late_fee_paid=late_fee_paid,
        total_payable=total_payable,
        days_overdue=fee.days_overdue,
        late_fee_chargeable=fee.chargeable,
        written_off=written_off,
        payments=list(payments),
    )


def get_payments_and_balance(
    db: Session,
    invoice_id: int,
    *,
    as_of: date | datetime | None = None,
    account_id: Optional[int] = None,
) -> LedgerSummary:
    invoice = get_invoice(db, invoice_id, account_id=account_id)
    return compute_balance(invoice, live_payments(db, invoice.id), as_of=as_of)


def total_paid(db: Session, invoice_id: int) -> Decimal:
    return _q(sum((Decimal(p.amount) for p in live_payments(db, invoice_id)), start=ZERO))


def remaining_balance(db: Session, invoice_id: int) -> Decimal:
    invoice = get_invoice(db, invoice_id)
    return max(ZERO, _q(Decimal(invoice.total_amount) - total_paid(db, invoice_id)))
