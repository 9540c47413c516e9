from __future__ import annotations

from typing import List

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dunning.db.base import Base, IDMixin, TimestampMixin
from dunning.models.enums import AccountPlan


class Account(IDMixin, TimestampMixin, Base):
    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    plan: Mapped[AccountPlan] = mapped_column(
        Enum(AccountPlan, name="account_plan"),
        default=AccountPlan.FREE,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    invoices: Mapped[List["Invoice"]] = relationship(back_populates="account")
