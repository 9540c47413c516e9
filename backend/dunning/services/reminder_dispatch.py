"""Reminder dispatch for a single (invoice, kind) occasion.

A dispatch runs its pre-flight guards, resolves the one reminder record it
will work on, commits it, and only then calls the notification sender. A
crash after the commit leaves a ``scheduled`` or ``failed`` record that the
next run picks up again instead of inserting a duplicate.

Failures never propagate: every outcome is written to the record and
returned as a :class:`DispatchOutcome`.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from dunning.core.observability import record_dispatch
from dunning.core.settings import settings
from dunning.db.base import utcnow
from dunning.models.enums import (
    OPEN_INVOICE_STATUSES,
    InvoiceStatus,
    ReminderFailureCategory,
    ReminderKind,
    ReminderStatus,
)
from dunning.models.invoice import Invoice
from dunning.models.reminder import InvoiceReminder
from dunning.services.audit import add_invoice_audit_log
from dunning.services.balances import LedgerSummary, compute_balance, live_payments, resolve_as_of
from dunning.services.invoice_status import resolve_invoice_status
from dunning.services.notifications import NotificationSendError, NotificationSender
from dunning.services.quota import QuotaChecker
from dunning.services.reminder_scheduler import DueReminder, reminder_schedule_for, reminders_for_invoice
from dunning.services.reminder_templates import build_reminder_content


logger = logging.getLogger(__name__)

RACE_VETO_REASON = "Sent but not counted: reminder quota was exhausted by a concurrent dispatch"


class RecordAction(str, enum.Enum):
    REUSE_SCHEDULED = "reuse_scheduled"
    REUSE_FAILED = "reuse_failed"
    CREATE_NEW = "create_new"


@dataclass(frozen=True)
class RecordResolution:
    action: RecordAction
    record: Optional[InvoiceReminder] = None


def resolve_reminder_record(records: Sequence[InvoiceReminder], kind: ReminderKind) -> RecordResolution:
    """Pick the record a new attempt for ``kind`` should update.

    The most recent ``scheduled`` record wins, then the most recent
    ``failed`` one; otherwise a new record is needed.
    """
    candidates = [record for record in records if record.kind == kind]
    for status, action in (
        (ReminderStatus.SCHEDULED, RecordAction.REUSE_SCHEDULED),
        (ReminderStatus.FAILED, RecordAction.REUSE_FAILED),
    ):
        matching = [record for record in candidates if record.status == status]
        if matching:
            return RecordResolution(action, max(matching, key=lambda record: record.id or 0))
    return RecordResolution(RecordAction.CREATE_NEW)


class DispatchStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"
    VETOED = "vetoed"
    SKIPPED = "skipped"


@dataclass
class DispatchOutcome:
    status: DispatchStatus
    invoice_id: int
    kind: ReminderKind
    reminder_id: Optional[int] = None
    message_id: Optional[str] = None
    category: Optional[ReminderFailureCategory] = None
    reason: Optional[str] = None
    counted: bool = False


class ReminderDispatcher:
    def __init__(
        self,
        sender: NotificationSender,
        quota_checker: QuotaChecker,
        *,
        min_send_interval: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sender = sender
        self.quota_checker = quota_checker
        if min_send_interval is None:
            min_send_interval = settings.reminder_send_interval_ms / 1000.0
        self.min_send_interval = max(0.0, float(min_send_interval))
        self._sleep = sleep
        self._clock = clock
        self._last_send_at: Optional[float] = None
        self._send_lock = threading.Lock()

    def dispatch(
        self,
        db: Session,
        invoice_id: int,
        kind: ReminderKind,
        *,
        as_of: date | datetime | None = None,
        manual: bool = False,
    ) -> DispatchOutcome:
        return self._run(db, invoice_id, kind, as_of=as_of, manual=manual, throttle=False)

    def dispatch_batch(
        self,
        db: Session,
        occasions: Iterable[DueReminder],
        *,
        as_of: date | datetime | None = None,
    ) -> List[DispatchOutcome]:
        """Dispatch occasions one after another, spacing sender calls."""
        return [
            self._run(db, occasion.invoice_id, occasion.kind, as_of=as_of, manual=False, throttle=True)
            for occasion in occasions
        ]

    def _run(
        self,
        db: Session,
        invoice_id: int,
        kind: ReminderKind,
        *,
        as_of: date | datetime | None,
        manual: bool,
        throttle: bool,
    ) -> DispatchOutcome:
        try:
            outcome = self._dispatch(db, invoice_id, kind, as_of=as_of, manual=manual, throttle=throttle)
        except Exception as exc:
            db.rollback()
            logger.exception(
                "Reminder dispatch aborted",
                extra={"invoice_id": invoice_id, "reminder_kind": kind.value},
            )
            outcome = DispatchOutcome(
                status=DispatchStatus.FAILED,
                invoice_id=invoice_id,
                kind=kind,
                category=ReminderFailureCategory.TRANSPORT,
                reason=f"Unexpected error: {exc}",
            )
        record_dispatch(kind.value, outcome.status.value)
        logger.info(
            "Reminder dispatch %s for invoice %s",
            outcome.status.value,
            invoice_id,
            extra={
                "invoice_id": invoice_id,
                "reminder_kind": kind.value,
                "reminder_id": outcome.reminder_id,
                "outcome": outcome.status.value,
            },
        )
        return outcome

    def _dispatch(
        self,
        db: Session,
        invoice_id: int,
        kind: ReminderKind,
        *,
        as_of: date | datetime | None,
        manual: bool,
        throttle: bool,
    ) -> DispatchOutcome:
        as_of_date = resolve_as_of(as_of)

        def outcome(status: DispatchStatus, **kwargs) -> DispatchOutcome:
            return DispatchOutcome(status=status, invoice_id=invoice_id, kind=kind, **kwargs)

        invoice = db.get(Invoice, invoice_id)
        if invoice is None:
            return outcome(
                DispatchStatus.SKIPPED,
                category=ReminderFailureCategory.VALIDATION,
                reason="Invoice not found",
            )
        account = invoice.account
        if account is None or not account.is_active:
            return outcome(
                DispatchStatus.SKIPPED,
                category=ReminderFailureCategory.VALIDATION,
                reason="Invoice account is missing or inactive",
            )

        records = reminders_for_invoice(db, invoice.id)

        if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            category = (
                ReminderFailureCategory.INVOICE_CANCELLED
                if invoice.status == InvoiceStatus.CANCELLED
                else ReminderFailureCategory.INVOICE_SETTLED
            )
            cancelled = self._cancel_pending(
                db, records, kind, reason=f"Invoice is {invoice.status.value}", category=category
            )
            db.commit()
            return outcome(
                DispatchStatus.CANCELLED,
                reminder_id=cancelled.id if cancelled else None,
                category=category,
                reason=f"Invoice is {invoice.status.value}",
            )
        if invoice.status not in OPEN_INVOICE_STATUSES:
            return outcome(DispatchStatus.SKIPPED, reason="Invoice has not been sent")

        summary = compute_balance(invoice, live_payments(db, invoice.id), as_of=as_of_date)
        if summary.is_settled:
            cancelled = self._cancel_pending(db, records, kind, reason="Invoice was paid before the reminder was sent")
            resolve_invoice_status(db, invoice, as_of=as_of_date)
            db.commit()
            return outcome(
                DispatchStatus.CANCELLED,
                reminder_id=cancelled.id if cancelled else None,
                category=ReminderFailureCategory.INVOICE_SETTLED,
                reason="Nothing left to pay",
            )

        if any(record.kind == kind and record.was_delivered for record in records):
            return outcome(DispatchStatus.SKIPPED, reason=f"A {kind.value} reminder was already sent")

        if not manual:
            not_due = self._not_due_reason(invoice, kind, summary, as_of_date)
            if not_due:
                return outcome(DispatchStatus.SKIPPED, reason=not_due)

        decision = self.quota_checker.can_send_reminder(db, account, invoice)
        if not decision.allowed:
            record = self._materialize(db, invoice, kind, records, summary)
            self._record_failure(
                db,
                record,
                ReminderFailureCategory.QUOTA_EXCEEDED,
                decision.reason or "Reminder quota exhausted",
            )
            db.commit()
            return outcome(
                DispatchStatus.FAILED,
                reminder_id=record.id,
                category=ReminderFailureCategory.QUOTA_EXCEEDED,
                reason=record.failure_reason,
            )

        record = self._materialize(db, invoice, kind, records, summary)
        if not invoice.client_email:
            self._record_failure(db, record, ReminderFailureCategory.INVALID_RECIPIENT, "Invoice has no client email")
            db.commit()
            return outcome(
                DispatchStatus.FAILED,
                reminder_id=record.id,
                category=ReminderFailureCategory.INVALID_RECIPIENT,
                reason=record.failure_reason,
            )

        content = build_reminder_content(invoice, kind, summary)
        record.attempts = (record.attempts or 0) + 1
        db.add(record)
        db.commit()

        try:
            result = self._send(invoice.client_email, content, throttle=throttle)
        except NotificationSendError as exc:
            self._record_failure(db, record, exc.category, str(exc))
            db.commit()
            return outcome(
                DispatchStatus.FAILED,
                reminder_id=record.id,
                category=exc.category,
                reason=record.failure_reason,
            )
        except Exception as exc:
            logger.exception(
                "Notification sender raised unexpectedly",
                extra={"invoice_id": invoice.id, "reminder_id": record.id},
            )
            self._record_failure(db, record, ReminderFailureCategory.TRANSPORT, f"Unexpected error: {exc}")
            db.commit()
            return outcome(
                DispatchStatus.FAILED,
                reminder_id=record.id,
                category=ReminderFailureCategory.TRANSPORT,
                reason=record.failure_reason,
            )
        sent_at = utcnow()
        record.status = ReminderStatus.SENT
        record.external_message_id = result.message_id
        record.sent_at = sent_at
        record.failure_reason = None
        record.failure_category = None
        db.add(record)
        db.flush()

        recheck = self.quota_checker.can_send_reminder(db, account, invoice, exclude_reminder_id=record.id)
        if not recheck.allowed:
            record.status = ReminderStatus.CANCELLED
            record.failure_reason = f"{RACE_VETO_REASON} ({recheck.reason or 'quota'})"
            record.failure_category = ReminderFailureCategory.RACE_CONDITION_VETO
            db.add(record)
            add_invoice_audit_log(
                db,
                invoice_id=invoice.id,
                event_type="reminder_cancelled",
                diff={
                    "kind": kind.value,
                    "reminder_id": record.id,
                    "message_id": result.message_id,
                    "category": ReminderFailureCategory.RACE_CONDITION_VETO.value,
                },
            )
            db.commit()
            logger.warning(
                "Reminder %s sent but not counted for invoice %s",
                kind.value,
                invoice.invoice_number,
                extra={"invoice_id": invoice.id, "reminder_id": record.id},
            )
            return outcome(
                DispatchStatus.VETOED,
                reminder_id=record.id,
                message_id=result.message_id,
                category=ReminderFailureCategory.RACE_CONDITION_VETO,
                reason=record.failure_reason,
            )

        db.query(Invoice).filter(Invoice.id == invoice.id).update(
            {
                Invoice.reminder_count: Invoice.reminder_count + 1,
                Invoice.last_reminder_sent: sent_at,
            },
            synchronize_session=False,
        )
        add_invoice_audit_log(
            db,
            invoice_id=invoice.id,
            event_type="reminder_sent",
            diff={
                "kind": kind.value,
                "reminder_id": record.id,
                "message_id": result.message_id,
                "provider": result.provider,
                "total_payable": str(summary.total_payable),
                "manual": manual,
            },
        )
        db.commit()
        db.refresh(invoice)
        return outcome(
            DispatchStatus.SENT,
            reminder_id=record.id,
            message_id=result.message_id,
            counted=True,
        )

    def _send(self, to: str, content: dict, *, throttle: bool):
        if not throttle:
            return self._deliver(to, content)
        # Batch callers may share one dispatcher across threads.
        with self._send_lock:
            self._wait_for_slot()
            return self._deliver(to, content)

    def _deliver(self, to: str, content: dict):
        try:
            return self.sender.send(
                to=to,
                subject=content["subject"],
                body=content["html"],
                text=content["text"],
            )
        finally:
            self._last_send_at = self._clock()

    def _wait_for_slot(self) -> None:
        if self._last_send_at is None or not self.min_send_interval:
            return
        elapsed = self._clock() - self._last_send_at
        if elapsed < self.min_send_interval:
            self._sleep(self.min_send_interval - elapsed)

    @staticmethod
    def _not_due_reason(
        invoice: Invoice,
        kind: ReminderKind,
        summary: LedgerSummary,
        as_of_date: date,
    ) -> Optional[str]:
        if not invoice.reminders_enabled:
            return "Reminders are disabled for this invoice"
        if not invoice.due_date < as_of_date:
            return "Invoice is not overdue yet"
        rule = next((rule for rule in reminder_schedule_for(invoice) if rule.kind == kind), None)
        if rule is None:
            return f"No {kind.value} reminder in this invoice's schedule"
        if summary.days_overdue < rule.days:
            return f"{kind.value} reminder is due after {rule.days} days overdue"
        return None

    @staticmethod
    def _materialize(
        db: Session,
        invoice: Invoice,
        kind: ReminderKind,
        records: Sequence[InvoiceReminder],
        summary: LedgerSummary,
    ) -> InvoiceReminder:
        resolution = resolve_reminder_record(records, kind)
        record = resolution.record
        if record is None:
            record = InvoiceReminder(
                invoice_id=invoice.id,
                kind=kind,
                status=ReminderStatus.SCHEDULED,
                attempts=0,
            )
        record.overdue_days = summary.days_overdue
        db.add(record)
        db.flush()
        return record

    @staticmethod
    def _record_failure(
        db: Session,
        record: InvoiceReminder,
        category: ReminderFailureCategory,
        reason: str,
    ) -> None:
        record.status = ReminderStatus.FAILED
        record.failure_category = category
        record.failure_reason = reason
        db.add(record)
        add_invoice_audit_log(
            db,
            invoice_id=record.invoice_id,
            event_type="reminder_failed",
            diff={"kind": record.kind.value, "reminder_id": record.id, "category": category.value, "reason": reason},
        )

    @staticmethod
    def _cancel_pending(
        db: Session,
        records: Sequence[InvoiceReminder],
        kind: ReminderKind,
        *,
        reason: str,
        category: ReminderFailureCategory = ReminderFailureCategory.INVOICE_SETTLED,
    ) -> Optional[InvoiceReminder]:
        resolution = resolve_reminder_record(records, kind)
        if resolution.action != RecordAction.REUSE_SCHEDULED:
            return None
        record = resolution.record
        record.status = ReminderStatus.CANCELLED
        record.failure_category = category
        record.failure_reason = reason
        db.add(record)
        db.flush()
        add_invoice_audit_log(
            db,
            invoice_id=record.invoice_id,
            event_type="reminder_cancelled",
            diff={"kind": kind.value, "reminder_id": record.id, "reason": reason},
        )
        return record
