from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from dunning.models.enums import ReminderFailureCategory, ReminderKind, ReminderStatus
from dunning.schemas.base import ORMModel, StrictModel


class ReminderRule(StrictModel):
    kind: ReminderKind
    days: int = Field(..., ge=0, le=365, description="Days after the due date")


class ReminderRead(ORMModel):
    id: int
    invoice_id: int
    kind: ReminderKind
    status: ReminderStatus
    overdue_days: int
    scheduled_for: Optional[datetime] = None
    external_message_id: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_category: Optional[ReminderFailureCategory] = None
    attempts: int
    sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ReminderHistory(ORMModel):
    invoice_id: int
    reminder_count: int
    last_reminder_sent: Optional[datetime] = None
    items: List[ReminderRead]


class DispatchOutcomeRead(ORMModel):
    status: str
    invoice_id: int
    kind: ReminderKind
    reminder_id: Optional[int] = None
    message_id: Optional[str] = None
    category: Optional[ReminderFailureCategory] = None
    reason: Optional[str] = None
    counted: bool = False


class ReconciliationRead(ORMModel):
    found: int
    sent: int
    failed: int
    cancelled: int
    skipped: int
    errors: int
