from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import date, timedelta
from decimal import Decimal
from itertools import count

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dunning.db.base import Base
from dunning.models.account import Account
from dunning.models.enums import AccountPlan, InvoiceStatus, LateFeeType
from dunning.models.invoice import Invoice
from dunning.services.notifications import NotificationSendError, SendResult
from dunning.services.quota import ALLOWED, QuotaDecision
from dunning.services.reminder_dispatch import ReminderDispatcher


DUE = date(2026, 1, 1)


class FakeSender:
    """Records every send; raises queued errors first."""

    def __init__(self, errors=None):
        self.calls: list[dict] = []
        self.errors = list(errors or [])
        self._ids = count(1)

    def send(self, *, to, subject, body, text=None):
        self.calls.append({"to": to, "subject": subject, "body": body, "text": text})
        if self.errors:
            raise self.errors.pop(0)
        return SendResult(provider="fake", message_id=f"msg-{next(self._ids)}")


class FakeQuota:
    """Returns queued decisions in order, then allows everything."""

    def __init__(self, decisions=None):
        self.decisions = list(decisions or [])
        self.calls: list[dict] = []

    def can_send_reminder(self, db, account, invoice=None, *, exclude_reminder_id=None):
        self.calls.append({"invoice_id": invoice.id if invoice else None, "exclude_reminder_id": exclude_reminder_id})
        if self.decisions:
            return self.decisions.pop(0)
        return ALLOWED


DENIED = QuotaDecision(False, "Free plan allows 4 reminders per invoice. Upgrade to send more.", "per_invoice")


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def account(db):
    acct = Account(name="Acme Studio", email="owner@acme.test", plan=AccountPlan.FREE, is_active=True)
    db.add(acct)
    db.commit()
    return acct


@pytest.fixture()
def make_invoice(db, account):
    numbers = count(1)

    def _make(
        *,
        total="1000.00",
        due_date=DUE,
        status=InvoiceStatus.DRAFT,
        owner=None,
        late_fee_type=None,
        late_fee_amount="0.00",
        grace_days=0,
        reminders_enabled=True,
        client_email="client@example.com",
        reminder_schedule=None,
    ) -> Invoice:
        invoice = Invoice(
            account_id=(owner or account).id,
            invoice_number=f"INV-{next(numbers):04d}",
            client_name="Client Co",
            client_email=client_email,
            total_amount=Decimal(total),
            issued_date=due_date - timedelta(days=30),
            due_date=due_date,
            status=status,
            late_fee_enabled=late_fee_type is not None,
            late_fee_type=late_fee_type or LateFeeType.PERCENTAGE,
            late_fee_amount=Decimal(late_fee_amount),
            late_fee_grace_days=grace_days,
            reminders_enabled=reminders_enabled,
            reminder_schedule=reminder_schedule,
        )
        db.add(invoice)
        db.commit()
        return invoice

    return _make


@pytest.fixture()
def sender():
    return FakeSender()


@pytest.fixture()
def quota():
    return FakeQuota()


@pytest.fixture()
def dispatcher(sender, quota):
    return ReminderDispatcher(sender, quota, min_send_interval=0)


def send_error(category, message="provider said no"):
    return NotificationSendError(message, category)
