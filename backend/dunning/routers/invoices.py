from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from dunning.core.deps import get_current_account
from dunning.db.session import get_db
from dunning.models.account import Account
from dunning.schemas.invoice import (
    BulkMarkPaid,
    BulkMarkPaidResult,
    CancelPayload,
    InvoiceRead,
    LedgerRead,
    PaymentCreate,
    PaymentRead,
    PaymentResult,
    WriteOffCreate,
)
from dunning.services.balances import LedgerSummary, get_invoice
from dunning.services.invoice_status import (
    cancel_invoice,
    effective_status,
    mark_invoice_paid,
    mark_invoice_sent,
    mark_invoices_paid,
    write_off_invoice,
)
from dunning.services.ledger import add_payment, get_payments_and_balance, remove_payment


router = APIRouter(prefix="/api/invoices", tags=["invoices"])


def _ledger_read(db: Session, summary: LedgerSummary) -> LedgerRead:
    invoice = get_invoice(db, summary.invoice_id)
    return LedgerRead(
        invoice_id=summary.invoice_id,
        status=effective_status(invoice),
        currency=summary.currency,
        invoice_total=summary.invoice_total,
        total_paid=summary.total_paid,
        remaining_balance=summary.remaining_balance,
        late_fee=summary.late_fee,
        late_fee_paid=summary.late_fee_paid,
        total_payable=summary.total_payable,
        days_overdue=summary.days_overdue,
        late_fee_chargeable=summary.late_fee_chargeable,
        written_off=summary.written_off,
        payments=[PaymentRead.model_validate(payment) for payment in summary.payments],
    )


@router.post("/bulk/mark-paid", response_model=BulkMarkPaidResult)
def bulk_mark_paid(
    payload: BulkMarkPaid,
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account),
) -> BulkMarkPaidResult:
    transitions = mark_invoices_paid(
        db,
        payload.invoice_ids,
        account_id=current_account.id,
        actor_account_id=current_account.id,
    )
    db.commit()
    return BulkMarkPaidResult(
        count=len(transitions),
        invoice_ids=[transition.invoice_id for transition in transitions],
    )


@router.post("/{invoice_id}/send", response_model=InvoiceRead)
def send_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account),
) -> InvoiceRead:
    invoice = get_invoice(db, invoice_id, account_id=current_account.id)
    mark_invoice_sent(db, invoice, actor_account_id=current_account.id)
    db.commit()
    db.refresh(invoice)
    return InvoiceRead.model_validate(invoice)


@router.get("/{invoice_id}/payments", response_model=LedgerRead)
def get_ledger(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account),
) -> LedgerRead:
    summary = get_payments_and_balance(db, invoice_id, account_id=current_account.id)
    return _ledger_read(db, summary)


@router.post("/{invoice_id}/payments", response_model=PaymentResult, status_code=status.HTTP_201_CREATED)
def record_payment(
    invoice_id: int,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account),
) -> PaymentResult:
    payment = add_payment(
        db,
        invoice_id=invoice_id,
        account_id=current_account.id,
        amount=payload.amount,
        payment_date=payload.payment_date,
        method=payload.method,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(payment)
    summary = get_payments_and_balance(db, invoice_id, account_id=current_account.id)
    return PaymentResult(payment=PaymentRead.model_validate(payment), ledger=_ledger_read(db, summary))


@router.delete("/{invoice_id}/payments/{payment_id}", response_model=LedgerRead)
def delete_payment(
    invoice_id: int,
    payment_id: int,
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account),
) -> LedgerRead:
    summary = remove_payment(
        db,
        invoice_id=invoice_id,
        payment_id=payment_id,
        account_id=current_account.id,
    )
    db.commit()
    return _ledger_read(db, summary)


@router.post("/{invoice_id}/mark-paid", response_model=InvoiceRead)
def mark_paid(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account),
) -> InvoiceRead:
    invoice = get_invoice(db, invoice_id, account_id=current_account.id, lock=True)
    mark_invoice_paid(db, invoice, actor_account_id=current_account.id)
    db.commit()
    db.refresh(invoice)
    return InvoiceRead.model_validate(invoice)


@router.post("/{invoice_id}/write-off", response_model=InvoiceRead)
def write_off(
    invoice_id: int,
    payload: WriteOffCreate,
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account),
) -> InvoiceRead:
    invoice = get_invoice(db, invoice_id, account_id=current_account.id, lock=True)
    write_off_invoice(
        db,
        invoice,
        payload.amount,
        notes=payload.notes,
        actor_account_id=current_account.id,
    )
    db.commit()
    db.refresh(invoice)
    return InvoiceRead.model_validate(invoice)


@router.post("/{invoice_id}/cancel", response_model=InvoiceRead)
def cancel(
    invoice_id: int,
    payload: Optional[CancelPayload] = None,
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account),
) -> InvoiceRead:
    invoice = get_invoice(db, invoice_id, account_id=current_account.id, lock=True)
    cancel_invoice(
        db,
        invoice,
        actor_account_id=current_account.id,
        reason=payload.reason if payload else None,
    )
    db.commit()
    db.refresh(invoice)
    return InvoiceRead.model_validate(invoice)
