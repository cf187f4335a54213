"""
Module: wallet_kernel.models.commission
Responsibility: ORM persistence for consultant commissions.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - withdrawal_id is the lock: a commission belongs to at most one active
      withdrawal.  It is set by one conditional UPDATE in WithdrawalService
      and cleared on reject/cancel.
    - PAID and CANCELLED are terminal (db/immutability.py).

Audit relevance:
    Commissions never touch the ledger.  Realisation into the consultant
    ledger happens only when a withdrawal is PAID.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from wallet_kernel.db.base import TrackedBase, UUIDString


class CommissionType(str, Enum):
    PLACEMENT = "placement"
    SUBSCRIPTION_SALE = "subscription_sale"
    RECRUITMENT_SERVICE = "recruitment_service"
    CUSTOM = "custom"


class CommissionStatus(str, Enum):
    """Lifecycle status of a commission.

    Contract: PENDING -> CONFIRMED -> PAID; PENDING/CONFIRMED -> CANCELLED.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELLED = "cancelled"


TERMINAL_COMMISSION_STATUSES = frozenset(
    {CommissionStatus.PAID, CommissionStatus.CANCELLED}
)


class Commission(TrackedBase):
    """
    An amount owed to a consultant for a placement, sale or service.

    Guarantees:
        - amount > 0 (CHECK constraint).
        - rate, when present, is the fraction used to derive amount.
    """

    __tablename__ = "commissions"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_commission_amount_positive"),
        Index("idx_commission_consultant_status", "consultant_id", "status"),
        Index("idx_commission_withdrawal", "withdrawal_id"),
        Index("idx_commission_job", "job_id"),
    )

    consultant_id: Mapped[str] = mapped_column(String(100), nullable=False)

    region_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    rate: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)

    type: Mapped[CommissionType] = mapped_column(String(30), nullable=False)

    status: Mapped[CommissionStatus] = mapped_column(
        String(10), nullable=False, default=CommissionStatus.PENDING
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    job_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    company_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    subscription_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    withdrawal_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("withdrawals.id"),
        nullable=True,
    )

    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    expiry_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return f"<Commission {self.id} {self.amount} status={self.status}>"

    @property
    def is_locked(self) -> bool:
        return self.withdrawal_id is not None
