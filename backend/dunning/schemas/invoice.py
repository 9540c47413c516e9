from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from dunning.models.enums import InvoiceStatus
from dunning.schemas.base import ORMModel, StrictModel


class PaymentCreate(StrictModel):
    amount: Decimal = Field(..., gt=Decimal("0.00"), max_digits=12, decimal_places=2)
    payment_date: Optional[date] = None
    method: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = None


class PaymentRead(ORMModel):
    id: int
    invoice_id: int
    amount: Decimal
    payment_date: date
    method: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class LedgerRead(ORMModel):
    invoice_id: int
    status: InvoiceStatus
    currency: str
    invoice_total: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    late_fee: Decimal
    late_fee_paid: Decimal
    total_payable: Decimal
    days_overdue: int
    late_fee_chargeable: bool
    written_off: Decimal = Decimal("0.00")
    payments: List[PaymentRead] = Field(default_factory=list)


class PaymentResult(ORMModel):
    payment: PaymentRead
    ledger: LedgerRead


class InvoiceRead(ORMModel):
    id: int
    account_id: int
    invoice_number: str
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    currency: str
    total_amount: Decimal
    issued_date: date
    due_date: date
    status: InvoiceStatus
    reminders_enabled: bool
    reminder_count: int
    last_reminder_sent: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    write_off_amount: Optional[Decimal] = None
    write_off_notes: Optional[str] = None


class CancelPayload(StrictModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class WriteOffCreate(StrictModel):
    amount: Decimal = Field(..., gt=Decimal("0.00"), max_digits=12, decimal_places=2)
    notes: Optional[str] = None


class BulkMarkPaid(StrictModel):
    invoice_ids: List[int] = Field(..., min_length=1)


class BulkMarkPaidResult(ORMModel):
    count: int
    invoice_ids: List[int]
