from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dunning.core.deps import get_current_account, get_dispatcher, require_cron_secret
from dunning.db.session import get_db
from dunning.models.account import Account
from dunning.models.enums import ReminderKind
from dunning.schemas.reminder import DispatchOutcomeRead, ReconciliationRead, ReminderHistory, ReminderRead
from dunning.services.balances import get_invoice
from dunning.services.reconciliation import run_reminder_reconciliation
from dunning.services.reminder_dispatch import ReminderDispatcher
from dunning.services.reminder_scheduler import reminders_for_invoice


router = APIRouter(prefix="/api", tags=["reminders"])


@router.get("/invoices/{invoice_id}/reminders", response_model=ReminderHistory)
def reminder_history(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account),
) -> ReminderHistory:
    invoice = get_invoice(db, invoice_id, account_id=current_account.id)
    return ReminderHistory(
        invoice_id=invoice.id,
        reminder_count=invoice.reminder_count,
        last_reminder_sent=invoice.last_reminder_sent,
        items=[ReminderRead.model_validate(item) for item in reminders_for_invoice(db, invoice.id)],
    )


@router.post("/invoices/{invoice_id}/reminders/{kind}", response_model=DispatchOutcomeRead)
def send_reminder(
    invoice_id: int,
    kind: ReminderKind,
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account),
    dispatcher: ReminderDispatcher = Depends(get_dispatcher),
) -> DispatchOutcomeRead:
    invoice = get_invoice(db, invoice_id, account_id=current_account.id)
    outcome = dispatcher.dispatch(db, invoice.id, kind, manual=True)
    return DispatchOutcomeRead(
        status=outcome.status.value,
        invoice_id=outcome.invoice_id,
        kind=outcome.kind,
        reminder_id=outcome.reminder_id,
        message_id=outcome.message_id,
        category=outcome.category,
        reason=outcome.reason,
        counted=outcome.counted,
    )


@router.post("/reminders/reconcile", response_model=ReconciliationRead, dependencies=[Depends(require_cron_secret)])
def reconcile_reminders(
    db: Session = Depends(get_db),
    dispatcher: ReminderDispatcher = Depends(get_dispatcher),
) -> ReconciliationRead:
    summary = run_reminder_reconciliation(db, dispatcher)
    return ReconciliationRead.model_validate(summary)
