"""
Module: wallet_kernel.models.withdrawal
Responsibility: ORM persistence for consultant withdrawal requests.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - amount equals the sum of the locked commissions (validated at creation).
    - status only moves along the table in domain/withdrawal_lifecycle.py.
    - PAID, REJECTED and CANCELLED are terminal (db/immutability.py).

Audit relevance:
    commission_snapshot keeps the ids claimed at creation so the audit trail
    survives unlocking on reject/cancel.  payout_attempt increments on every
    entry into PROCESSING and feeds the payout idempotency key.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from wallet_kernel.db.base import TrackedBase, UUIDString


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    PAID = "paid"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    STRIPE_CONNECT = "stripe_connect"
    PAYPAL = "paypal"


class Withdrawal(TrackedBase):
    """
    A consultant's request to be paid out for confirmed commissions.

    Guarantees:
        - amount > 0 (CHECK constraint).
        - payout_attempt starts at 0 and only grows.
    """

    __tablename__ = "withdrawals"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_amount_positive"),
        Index("idx_withdrawal_consultant_status", "consultant_id", "status"),
        Index("idx_withdrawal_status", "status"),
    )

    consultant_id: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    payment_method: Mapped[PaymentMethod] = mapped_column(String(20), nullable=False)

    payment_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    status: Mapped[WithdrawalStatus] = mapped_column(
        String(12), nullable=False, default=WithdrawalStatus.PENDING
    )

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    admin_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    payout_attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    failure_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Provider reference of the most recent failed attempt; late duplicates
    # of that failure are recognised and ignored.
    failed_payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    reviewed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    commission_snapshot: Mapped[list | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<Withdrawal {self.id} {self.amount} status={self.status}>"

    @property
    def destination(self) -> str | None:
        """Payout destination (e.g. a Stripe connected account id)."""
        if not self.payment_details:
            return None
        return self.payment_details.get("destination")

    @property
    def idempotency_key(self) -> str:
        """Payout rail idempotency key for the current attempt."""
        return f"withdrawal-{self.id}-attempt-{self.payout_attempt}"
