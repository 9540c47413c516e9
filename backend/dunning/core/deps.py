from __future__ import annotations

import hmac
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from dunning.core.settings import settings
from dunning.db.session import get_db
from dunning.models.account import Account
from dunning.services.email import EmailNotificationSender
from dunning.services.quota import PlanQuotaChecker
from dunning.services.reminder_dispatch import ReminderDispatcher


def get_current_account(
    x_account_id: Optional[int] = Header(None, alias="X-Account-Id"),
    db: Session = Depends(get_db),
) -> Account:
    if x_account_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Account-Id header required")
    account = db.get(Account, x_account_id)
    if not account or not account.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account not found or inactive")
    return account


@lru_cache(maxsize=1)
def get_dispatcher() -> ReminderDispatcher:
    return ReminderDispatcher(EmailNotificationSender(), PlanQuotaChecker())


def require_cron_secret(x_cron_secret: Optional[str] = Header(None, alias="X-Cron-Secret")) -> None:
    if not settings.cron_secret:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Reconciliation trigger disabled")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, settings.cron_secret):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid cron secret")
