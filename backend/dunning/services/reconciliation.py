"""Periodic reminder reconciliation.

Walks open, past-due invoices with reminders enabled and drives every due
occasion through the dispatcher in batch mode. Safe to re-run after a crash:
the dispatcher reuses existing records and skips kinds already sent.

Candidates are read in pages keyed on ``(due_date, id)`` until none are
left, so invoices that already received every reminder never crowd newer
ones out of a pass.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from dunning.core.observability import reconciliation_runs_total
from dunning.core.settings import settings
from dunning.models.account import Account
from dunning.models.enums import OPEN_INVOICE_STATUSES
from dunning.models.invoice import Invoice
from dunning.services.balances import resolve_as_of
from dunning.services.reminder_dispatch import DispatchStatus, ReminderDispatcher
from dunning.services.reminder_scheduler import due_reminder_kinds


logger = logging.getLogger(__name__)


@dataclass
class ReconciliationSummary:
    found: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def get_reconcilable_invoices(
    db: Session,
    *,
    as_of: date,
    limit: int,
    after: Optional[Tuple[date, int]] = None,
) -> list[Invoice]:
    """One page of candidates, oldest due date first, strictly after ``after``."""
    query = (
        db.query(Invoice)
        .join(Account, Account.id == Invoice.account_id)
        .filter(
            Invoice.status.in_(list(OPEN_INVOICE_STATUSES)),
            Invoice.due_date < as_of,
            Invoice.reminders_enabled.is_(True),
            Account.is_active.is_(True),
        )
    )
    if after is not None:
        last_due, last_id = after
        query = query.filter(
            or_(
                Invoice.due_date > last_due,
                and_(Invoice.due_date == last_due, Invoice.id > last_id),
            )
        )
    return query.order_by(Invoice.due_date.asc(), Invoice.id.asc()).limit(limit).all()


def _reconcile_invoice(
    db: Session,
    dispatcher: ReminderDispatcher,
    invoice: Invoice,
    summary: ReconciliationSummary,
    as_of_date: date,
) -> None:
    due = due_reminder_kinds(db, invoice, as_of=as_of_date)
    summary.found += len(due)
    for outcome in dispatcher.dispatch_batch(db, due, as_of=as_of_date):
        if outcome.status == DispatchStatus.SENT:
            summary.sent += 1
        elif outcome.status == DispatchStatus.FAILED:
            summary.failed += 1
        elif outcome.status in (DispatchStatus.CANCELLED, DispatchStatus.VETOED):
            summary.cancelled += 1
        else:
            summary.skipped += 1


def run_reminder_reconciliation(
    db: Session,
    dispatcher: ReminderDispatcher,
    *,
    as_of: date | datetime | None = None,
    limit: Optional[int] = None,
) -> ReconciliationSummary:
    """Dispatch every due reminder; ``limit`` is the page size, not a cap."""
    as_of_date = resolve_as_of(as_of)
    page_size = max(1, limit or settings.reconciliation_batch_limit)
    summary = ReconciliationSummary()
    cursor: Optional[Tuple[date, int]] = None

    while True:
        page = get_reconcilable_invoices(db, as_of=as_of_date, limit=page_size, after=cursor)
        if not page:
            break
        keys = [(invoice.due_date, invoice.id) for invoice in page]
        cursor = keys[-1]

        for invoice, (_, invoice_id) in zip(page, keys):
            try:
                _reconcile_invoice(db, dispatcher, invoice, summary, as_of_date)
            except Exception:
                db.rollback()
                summary.errors += 1
                logger.exception("Reminder reconciliation failed for invoice", extra={"invoice_id": invoice_id})

        if len(page) < page_size:
            break

    reconciliation_runs_total.inc()
    logger.info(
        "Reminder reconciliation finished: %s",
        summary.as_dict(),
        extra={"outcome": "completed"},
    )
    return summary
