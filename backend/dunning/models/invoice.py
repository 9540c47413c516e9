from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dunning.db.base import Base, IDMixin, Money, TimestampMixin
from dunning.models.enums import InvoiceStatus, LateFeeType

if TYPE_CHECKING:
    from dunning.services.late_fees import LateFeePolicy


class Invoice(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoices"

    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False, index=True)
    invoice_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    issued_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, name="invoice_status"),
        default=InvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )

    late_fee_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    late_fee_type: Mapped[LateFeeType] = mapped_column(
        Enum(LateFeeType, name="late_fee_type"),
        default=LateFeeType.PERCENTAGE,
        nullable=False,
    )
    late_fee_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    late_fee_grace_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    reminders_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    reminder_schedule: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    reminder_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reminder_sent: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_manually: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    write_off_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    write_off_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    account: Mapped["Account"] = relationship(back_populates="invoices")
    payments: Mapped[List["InvoicePayment"]] = relationship(
        back_populates="invoice",
        order_by=lambda: InvoicePayment.id.asc(),
    )
    reminders: Mapped[List["InvoiceReminder"]] = relationship(
        back_populates="invoice",
        order_by="InvoiceReminder.id",
    )
    audit_logs: Mapped[List["InvoiceAuditLog"]] = relationship(
        back_populates="invoice",
        order_by=lambda: InvoiceAuditLog.id.asc(),
    )

    @property
    def late_fee_policy(self) -> LateFeePolicy:
        from dunning.services.late_fees import LateFeePolicy

        return LateFeePolicy(
            enabled=bool(self.late_fee_enabled),
            fee_type=self.late_fee_type or LateFeeType.PERCENTAGE,
            amount=Decimal(self.late_fee_amount or Decimal("0.00")),
            grace_period_days=int(self.late_fee_grace_days or 0),
        )


class InvoicePayment(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_payments"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    invoice: Mapped[Invoice] = relationship(back_populates="payments")


class InvoiceAuditLog(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_audit_logs"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id"), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    actor_account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"), nullable=True, index=True)
    diff_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    invoice: Mapped[Invoice] = relationship(back_populates="audit_logs")
