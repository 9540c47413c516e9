from __future__ import annotations

from dunning.core.settings import settings
from dunning.models.enums import ReminderKind
from dunning.models.invoice import Invoice
from dunning.services.balances import LedgerSummary


_SUBJECTS = {
    ReminderKind.FRIENDLY: "Friendly reminder: invoice {number} is now due",
    ReminderKind.POLITE: "Reminder: invoice {number} is {days} days overdue",
    ReminderKind.FIRM: "Payment required: invoice {number} is {days} days overdue",
    ReminderKind.URGENT: "Urgent: invoice {number} is seriously overdue",
}

_OPENERS = {
    ReminderKind.FRIENDLY: "Just a friendly note that the invoice below has passed its due date.",
    ReminderKind.POLITE: "We have not yet received payment for the invoice below.",
    ReminderKind.FIRM: "Payment for the invoice below is still outstanding. Please arrange payment promptly.",
    ReminderKind.URGENT: "This invoice is seriously overdue. Please pay immediately or contact us to discuss.",
}


def build_reminder_content(invoice: Invoice, kind: ReminderKind, summary: LedgerSummary) -> dict:
    """Subject and bodies for one reminder, using amounts computed at send time."""
    base_url = settings.app_base_url.rstrip("/")
    link = f"{base_url}/invoices/{invoice.id}"
    currency = summary.currency
    greeting = f"Hi {invoice.client_name}," if invoice.client_name else "Hello,"
    opener = _OPENERS[kind]

    subject = _SUBJECTS[kind].format(number=invoice.invoice_number, days=summary.days_overdue)

    fee_line = None
    if summary.late_fee_chargeable and summary.late_fee > 0:
        fee_line = f"Late fee: {_money(summary.late_fee, currency)}"

    html = (
        f"<p>{greeting}</p>"
        f"<p>{opener}</p>"
        f"<p>Invoice: <strong>{invoice.invoice_number}</strong><br>"
        f"Due date: {invoice.due_date.isoformat()}<br>"
        f"Outstanding balance: {_money(summary.remaining_balance, currency)}<br>"
        + (f"{fee_line}<br>" if fee_line else "")
        + f"<strong>Total payable: {_money(summary.total_payable, currency)}</strong></p>"
        f"<p><a href=\"{link}\">View invoice</a></p>"
    )
    text = _join_text(
        greeting,
        opener,
        f"Invoice: {invoice.invoice_number}",
        f"Due date: {invoice.due_date.isoformat()}",
        f"Outstanding balance: {_money(summary.remaining_balance, currency)}",
        fee_line,
        f"Total payable: {_money(summary.total_payable, currency)}",
        f"View invoice: {link}",
    )
    return {"subject": subject, "html": html, "text": text}


def _money(value, currency: str) -> str:
    return f"{currency} {value:,.2f}"


def _join_text(*parts) -> str:
    return "\n".join([part for part in parts if part])
