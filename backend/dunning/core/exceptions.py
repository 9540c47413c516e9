"""Domain exceptions raised by ledger and invoice lifecycle operations.

Reminder dispatch never raises these; its failures are recorded on the
reminder record instead.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional


class DunningError(Exception):
    """Base exception for application errors"""

    code = "UNKNOWN_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(DunningError):
    """Bad amount, missing or unknown field"""

    code = "VALIDATION_ERROR"


class InvoiceNotFoundError(DunningError):
    code = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: int):
        super().__init__(f"Invoice {invoice_id} not found", {"invoice_id": invoice_id})


class PaymentNotFoundError(DunningError):
    code = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: int):
        super().__init__(f"Payment {payment_id} not found", {"payment_id": payment_id})


class InvoiceStateError(DunningError):
    """Operation not allowed in the invoice's current status"""

    code = "INVALID_INVOICE_STATE"


class AlreadyPaidError(InvoiceStateError):
    code = "ALREADY_PAID"

    def __init__(self, invoice_id: int):
        super().__init__(
            "Invoice is already marked as fully paid. Cannot add partial payments.",
            {"invoice_id": invoice_id},
        )


class ExceedsPayableError(DunningError):
    code = "EXCEEDS_PAYABLE"

    def __init__(self, amount: Decimal, max_amount: Decimal, *, label: str = "Payment"):
        self.amount = amount
        self.max_amount = max_amount
        super().__init__(
            f"{label} amount exceeds total payable. Maximum {label.lower()} allowed: {max_amount:.2f}",
            {"amount": str(amount), "max_amount": str(max_amount)},
        )
