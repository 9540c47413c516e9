"""Late fee computation.

Everything here is pure: callers pass the current remaining balance and get
back a fresh result. Nothing is cached, so a fee computed before a payment
can never outlive it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dunning.models.enums import InvoiceStatus, LateFeeType


TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def _q(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LateFeePolicy:
    enabled: bool = False
    fee_type: LateFeeType = LateFeeType.PERCENTAGE
    amount: Decimal = ZERO
    grace_period_days: int = 0

    def __post_init__(self) -> None:
        if Decimal(self.amount) < ZERO:
            raise ValueError("late fee amount must not be negative")
        if self.grace_period_days < 0:
            raise ValueError("grace period must not be negative")


DISABLED_POLICY = LateFeePolicy()


@dataclass(frozen=True)
class LateFeeResult:
    late_fee: Decimal
    chargeable: bool
    days_overdue: int
    chargeable_days: int
    total_payable: Decimal


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def days_overdue(due_date: date | datetime, as_of: date | datetime) -> int:
    """Whole days between the due date and ``as_of``, 0 when not yet overdue."""
    delta = (_as_date(as_of) - _as_date(due_date)).days
    return max(0, delta)


def compute_late_fee(
    due_date: date | datetime,
    as_of: date | datetime,
    remaining_balance: Decimal,
    policy: Optional[LateFeePolicy],
    *,
    status: Optional[InvoiceStatus] = None,
) -> LateFeeResult:
    balance = _q(max(Decimal(remaining_balance), ZERO))
    overdue = days_overdue(due_date, as_of)

    def _none() -> LateFeeResult:
        return LateFeeResult(
            late_fee=ZERO,
            chargeable=False,
            days_overdue=overdue,
            chargeable_days=0,
            total_payable=balance,
        )

    if policy is None or not policy.enabled or status == InvoiceStatus.PAID:
        return _none()
    if _as_date(as_of) <= _as_date(due_date):
        return _none()

    chargeable_days = max(0, overdue - policy.grace_period_days)
    if chargeable_days == 0:
        return _none()

    if policy.fee_type == LateFeeType.PERCENTAGE:
        fee = _q(balance * (Decimal(policy.amount) / Decimal("100")))
    else:
        # One flat charge once chargeable; does not accrue per day.
        fee = _q(Decimal(policy.amount))

    return LateFeeResult(
        late_fee=fee,
        chargeable=True,
        days_overdue=overdue,
        chargeable_days=chargeable_days,
        total_payable=_q(balance + fee),
    )
