"""Contract for the outbound notification collaborator used by reminder dispatch."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from dunning.models.enums import ReminderFailureCategory


@dataclass
class SendResult:
    provider: str
    message_id: Optional[str] = None


class NotificationSendError(RuntimeError):
    def __init__(self, message: str, category: ReminderFailureCategory = ReminderFailureCategory.TRANSPORT):
        super().__init__(message)
        self.category = category


class NotificationSender(Protocol):
    def send(self, *, to: str, subject: str, body: str, text: Optional[str] = None) -> SendResult:
        ...
