from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from dunning.models.invoice import InvoiceAuditLog


def add_invoice_audit_log(
    db: Session,
    *,
    invoice_id: int,
    event_type: str,
    actor_account_id: Optional[int] = None,
    diff: Optional[dict] = None,
) -> InvoiceAuditLog:
    entry = InvoiceAuditLog(
        invoice_id=invoice_id,
        event_type=event_type,
        actor_account_id=actor_account_id,
        diff_json=diff,
    )
    db.add(entry)
    db.flush()
    return entry
