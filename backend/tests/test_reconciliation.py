from __future__ import annotations

from datetime import date

from dunning.models.account import Account
from dunning.models.enums import InvoiceStatus, ReminderFailureCategory, ReminderKind, ReminderStatus
from dunning.models.reminder import InvoiceReminder
from dunning.services.invoice_status import mark_invoice_paid, mark_invoice_sent
from dunning.services.reconciliation import run_reminder_reconciliation
from dunning.services.reminder_dispatch import ReminderDispatcher

from conftest import FakeSender, send_error


DAY_10 = date(2026, 1, 11)


def _issue(db, invoice):
    mark_invoice_sent(db, invoice)
    db.commit()
    return invoice


def test_reconciliation_sends_due_reminders_once(db, make_invoice, dispatcher, sender):
    overdue = [_issue(db, make_invoice()) for _ in range(2)]
    _issue(db, make_invoice(due_date=date(2026, 2, 1)))
    paid = _issue(db, make_invoice())
    mark_invoice_paid(db, paid)
    make_invoice()
    db.commit()

    summary = run_reminder_reconciliation(db, dispatcher, as_of=DAY_10)

    assert summary.found == 6
    assert summary.sent == 6
    assert summary.failed == 0
    assert summary.errors == 0
    assert len(sender.calls) == 6
    assert {call["to"] for call in sender.calls} == {"client@example.com"}
    for invoice in overdue:
        db.refresh(invoice)
        assert invoice.reminder_count == 3

    rerun = run_reminder_reconciliation(db, dispatcher, as_of=DAY_10)
    assert rerun.found == 0
    assert rerun.sent == 0
    assert len(sender.calls) == 6


def test_rerun_after_failures_reuses_records(db, make_invoice, quota):
    invoice = _issue(db, make_invoice())
    sender = FakeSender([send_error(ReminderFailureCategory.TRANSPORT) for _ in range(3)])
    dispatcher = ReminderDispatcher(sender, quota, min_send_interval=0)

    first = run_reminder_reconciliation(db, dispatcher, as_of=DAY_10)
    assert (first.found, first.sent, first.failed) == (3, 0, 3)
    record_count = db.query(InvoiceReminder).filter(InvoiceReminder.invoice_id == invoice.id).count()

    second = run_reminder_reconciliation(db, dispatcher, as_of=DAY_10)
    assert (second.found, second.sent, second.failed) == (3, 3, 0)
    assert db.query(InvoiceReminder).filter(InvoiceReminder.invoice_id == invoice.id).count() == record_count
    statuses = {
        r.kind: r.status
        for r in db.query(InvoiceReminder).filter(InvoiceReminder.invoice_id == invoice.id)
        if r.kind != ReminderKind.URGENT
    }
    assert set(statuses.values()) == {ReminderStatus.SENT}


def test_one_bad_invoice_does_not_abort_the_batch(db, make_invoice, dispatcher):
    broken = _issue(db, make_invoice())
    broken.reminder_schedule = [{"kind": "shouty", "days": 1}]
    healthy = _issue(db, make_invoice())
    db.commit()

    summary = run_reminder_reconciliation(db, dispatcher, as_of=DAY_10)

    assert summary.errors == 1
    assert summary.sent == 3
    db.refresh(healthy)
    assert healthy.reminder_count == 3


def test_limit_pages_through_every_candidate(db, make_invoice, dispatcher, sender):
    dormant = Account(name="Dormant", email="dormant@example.com", is_active=False)
    db.add(dormant)
    db.commit()
    skipped = _issue(db, make_invoice(owner=dormant))
    first = _issue(db, make_invoice(due_date=date(2025, 12, 1)))
    second = _issue(db, make_invoice())

    summary = run_reminder_reconciliation(db, dispatcher, as_of=DAY_10, limit=1)

    assert summary.found == 7
    assert summary.sent == 7
    sent_for = {
        r.invoice_id for r in db.query(InvoiceReminder).filter(InvoiceReminder.status == ReminderStatus.SENT)
    }
    assert sent_for == {first.id, second.id}
    assert skipped.id not in sent_for
    assert first.status == InvoiceStatus.SENT


def test_fully_reminded_invoices_do_not_starve_newer_ones(db, make_invoice, dispatcher, sender):
    old = _issue(db, make_invoice(due_date=date(2025, 1, 1)))
    first_pass = run_reminder_reconciliation(db, dispatcher, as_of=date(2025, 2, 1), limit=1)
    assert first_pass.sent == 4
    db.refresh(old)
    assert old.status == InvoiceStatus.SENT
    assert old.reminder_count == 4

    newer = _issue(db, make_invoice())
    for _ in range(2):
        run_reminder_reconciliation(db, dispatcher, as_of=DAY_10, limit=1)

    assert len(sender.calls) == 7
    db.refresh(newer)
    assert newer.reminder_count == 3
