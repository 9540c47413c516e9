from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dunning.db.base import Base, IDMixin, TimestampMixin
from dunning.models.enums import ReminderFailureCategory, ReminderKind, ReminderStatus


class InvoiceReminder(IDMixin, TimestampMixin, Base):
    """One reminder occasion's lifecycle for an (invoice, kind) pair.

    Rows are never deleted; failed and cancelled rows stay as history and a
    later attempt updates the most recent live row in place.
    """

    __tablename__ = "invoice_reminders"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id"), nullable=False, index=True)
    kind: Mapped[ReminderKind] = mapped_column(
        Enum(ReminderKind, name="reminder_kind"),
        nullable=False,
        index=True,
    )
    status: Mapped[ReminderStatus] = mapped_column(
        Enum(ReminderStatus, name="reminder_status"),
        default=ReminderStatus.SCHEDULED,
        nullable=False,
        index=True,
    )
    overdue_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    external_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_category: Mapped[Optional[ReminderFailureCategory]] = mapped_column(
        Enum(ReminderFailureCategory, name="reminder_failure_category"),
        nullable=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    invoice: Mapped["Invoice"] = relationship(back_populates="reminders")

    @property
    def was_delivered(self) -> bool:
        return self.status == ReminderStatus.SENT or bool(self.external_message_id)
