from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from dunning.core.exceptions import AlreadyPaidError, ExceedsPayableError, InvoiceStateError, ValidationError
from dunning.models.account import Account
from dunning.models.enums import InvoiceStatus, LateFeeType, ReminderStatus
from dunning.models.invoice import InvoiceAuditLog
from dunning.services.invoice_status import mark_invoice_sent, mark_invoices_paid, write_off_invoice
from dunning.services.ledger import add_payment, get_payments_and_balance, remove_payment
from dunning.services.reminder_scheduler import due_reminder_kinds, reminders_for_invoice


DAY_10 = date(2026, 1, 11)


def _paid_events(db, invoice):
    return [
        row.diff_json
        for row in db.query(InvoiceAuditLog).filter(
            InvoiceAuditLog.invoice_id == invoice.id,
            InvoiceAuditLog.event_type == "paid",
        )
    ]


@pytest.fixture()
def partly_paid(db, make_invoice):
    invoice = make_invoice(late_fee_type=LateFeeType.PERCENTAGE, late_fee_amount="5", grace_days=3)
    mark_invoice_sent(db, invoice)
    payment = add_payment(db, invoice_id=invoice.id, account_id=invoice.account_id, amount="600.00", as_of=DAY_10)
    db.commit()
    return invoice, payment


def test_write_off_closes_the_balance(db, partly_paid):
    invoice, _ = partly_paid

    transition = write_off_invoice(db, invoice, "420.00", notes="goodwill", as_of=DAY_10)
    db.commit()

    assert transition.reason == "write_off"
    assert transition.cancelled_reminders == 4
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.write_off_amount == Decimal("420.00")
    assert invoice.write_off_notes == "goodwill"

    summary = get_payments_and_balance(db, invoice.id, as_of=DAY_10)
    assert summary.written_off == Decimal("420.00")
    assert summary.total_payable == Decimal("0.00")
    assert summary.is_settled

    reminders = reminders_for_invoice(db, invoice.id)
    assert {r.status for r in reminders} == {ReminderStatus.CANCELLED}
    assert all("write-off" in r.failure_reason for r in reminders)
    (event,) = _paid_events(db, invoice)
    assert event["write_off_amount"] == "420.00"
    assert event["notes"] == "goodwill"
    assert due_reminder_kinds(db, invoice, as_of=DAY_10) == []


def test_partial_write_off_still_settles(db, partly_paid):
    invoice, _ = partly_paid

    write_off_invoice(db, invoice, "20.00", as_of=DAY_10)
    db.commit()

    summary = get_payments_and_balance(db, invoice.id, as_of=DAY_10)
    assert invoice.status == InvoiceStatus.PAID
    assert summary.remaining_balance == Decimal("0.00")
    assert summary.total_payable == Decimal("0.00")


def test_write_off_cannot_exceed_what_is_owed(db, partly_paid):
    invoice, _ = partly_paid

    with pytest.raises(ExceedsPayableError) as excinfo:
        write_off_invoice(db, invoice, "420.01", as_of=DAY_10)

    assert excinfo.value.max_amount == Decimal("420.00")
    assert "Write-off" in excinfo.value.message
    assert invoice.status == InvoiceStatus.SENT
    assert invoice.write_off_amount is None


@pytest.mark.parametrize("amount", [None, "0", "-5", "1.001", "abc"])
def test_write_off_amount_must_be_valid(db, partly_paid, amount):
    invoice, _ = partly_paid

    with pytest.raises(ValidationError):
        write_off_invoice(db, invoice, amount, as_of=DAY_10)


def test_write_off_requires_an_open_invoice(db, make_invoice, partly_paid):
    with pytest.raises(InvoiceStateError):
        write_off_invoice(db, make_invoice(), "10.00", as_of=DAY_10)

    invoice, _ = partly_paid
    write_off_invoice(db, invoice, "420.00", as_of=DAY_10)
    with pytest.raises(AlreadyPaidError):
        write_off_invoice(db, invoice, "1.00", as_of=DAY_10)


def test_removing_a_payment_does_not_reopen_a_written_off_invoice(db, partly_paid):
    invoice, payment = partly_paid
    write_off_invoice(db, invoice, "420.00", as_of=DAY_10)
    db.commit()

    summary = remove_payment(
        db,
        invoice_id=invoice.id,
        payment_id=payment.id,
        account_id=invoice.account_id,
        as_of=DAY_10,
    )
    db.commit()

    assert invoice.status == InvoiceStatus.PAID
    assert summary.total_paid == Decimal("0.00")
    assert summary.total_payable == Decimal("0.00")


def test_bulk_mark_paid_only_touches_open_invoices_of_the_account(db, account, make_invoice):
    first = make_invoice()
    second = make_invoice()
    draft = make_invoice()
    for invoice in (first, second):
        mark_invoice_sent(db, invoice)
    stranger = Account(name="Other", email="other@example.com", is_active=True)
    db.add(stranger)
    db.commit()
    foreign = make_invoice(owner=stranger)
    mark_invoice_sent(db, foreign)
    db.commit()

    transitions = mark_invoices_paid(
        db,
        [second.id, first.id, draft.id, foreign.id, 9999, first.id],
        account_id=account.id,
    )
    db.commit()

    assert [t.invoice_id for t in transitions] == [first.id, second.id]
    assert all(t.reason == "bulk_manual_override" for t in transitions)
    assert first.status == second.status == InvoiceStatus.PAID
    assert first.paid_manually is True
    assert draft.status == InvoiceStatus.DRAFT
    assert foreign.status == InvoiceStatus.SENT
    assert {r.status for r in reminders_for_invoice(db, first.id)} == {ReminderStatus.CANCELLED}
    assert all("bulk action" in r.failure_reason for r in reminders_for_invoice(db, second.id))
    assert _paid_events(db, first)[0]["bulk"] is True
    assert {r.status for r in reminders_for_invoice(db, foreign.id)} == {ReminderStatus.SCHEDULED}


def test_bulk_mark_paid_rejects_empty_or_unmatched_selections(db, account, make_invoice):
    with pytest.raises(ValidationError):
        mark_invoices_paid(db, [], account_id=account.id)

    draft = make_invoice()
    with pytest.raises(ValidationError) as excinfo:
        mark_invoices_paid(db, [draft.id], account_id=account.id)
    assert excinfo.value.details["invoice_ids"] == [draft.id]
