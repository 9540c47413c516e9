from __future__ import annotations

from datetime import datetime, timezone

from dunning.core.settings import settings
from dunning.models.enums import AccountPlan, InvoiceStatus, ReminderKind, ReminderStatus
from dunning.models.reminder import InvoiceReminder
from dunning.services.quota import PlanQuotaChecker


def _sent(db, invoice, kind):
    record = InvoiceReminder(
        invoice_id=invoice.id,
        kind=kind,
        status=ReminderStatus.SENT,
        sent_at=datetime.now(timezone.utc),
        external_message_id=f"msg-{kind.value}",
    )
    db.add(record)
    db.commit()
    return record


def test_free_plan_caps_reminders_per_invoice(db, account, make_invoice):
    invoice = make_invoice(status=InvoiceStatus.SENT)
    records = [_sent(db, invoice, kind) for kind in ReminderKind]
    checker = PlanQuotaChecker()

    decision = checker.can_send_reminder(db, account, invoice)
    assert decision.allowed is False
    assert decision.limit_type == "per_invoice"

    recheck = checker.can_send_reminder(db, account, invoice, exclude_reminder_id=records[-1].id)
    assert recheck.allowed is True


def test_paid_plans_are_not_capped_per_invoice(db, account, make_invoice):
    account.plan = AccountPlan.MONTHLY
    db.commit()
    invoice = make_invoice(status=InvoiceStatus.SENT)
    for kind in ReminderKind:
        _sent(db, invoice, kind)

    assert PlanQuotaChecker().can_send_reminder(db, account, invoice).allowed is True


def test_daily_limit_applies_across_invoices(db, account, make_invoice):
    account.plan = AccountPlan.PAY_PER_INVOICE
    db.commit()
    checker = PlanQuotaChecker(settings.model_copy(update={"reminder_daily_limit": 2}))
    first = make_invoice(status=InvoiceStatus.SENT)
    second = make_invoice(status=InvoiceStatus.SENT)
    _sent(db, first, ReminderKind.FRIENDLY)
    assert checker.can_send_reminder(db, account, second).allowed is True

    _sent(db, second, ReminderKind.FRIENDLY)
    decision = checker.can_send_reminder(db, account, second)
    assert decision.allowed is False
    assert decision.limit_type == "daily"


def test_inactive_account_is_denied(db, account, make_invoice):
    invoice = make_invoice(status=InvoiceStatus.SENT)
    account.is_active = False
    db.commit()

    assert PlanQuotaChecker().can_send_reminder(db, account, invoice).allowed is False
