"""
Module: wallet_kernel.models.refund_request
Responsibility: ORM persistence for company refund requests.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - amount > 0.
    - PENDING -> APPROVED or PENDING -> REJECTED, nothing else.
    - APPROVED and REJECTED are terminal (db/immutability.py).

Audit relevance:
    credit_transaction_id points at the ledger row written on approval.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from wallet_kernel.db.base import TrackedBase, UUIDString


class RefundStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_REFUND_STATUSES = frozenset({RefundStatus.APPROVED, RefundStatus.REJECTED})


class RefundSource(str, Enum):
    """What the company paid for originally."""

    JOB_PAYMENT = "job_payment"
    SUBSCRIPTION_BILL = "subscription_bill"
    ADDON_SERVICE_CHARGE = "addon_service_charge"


class RefundRequest(TrackedBase):
    """A company's request to have a wallet charge refunded."""

    __tablename__ = "refund_requests"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_refund_amount_positive"),
        Index("idx_refund_company_status", "company_id", "status"),
    )

    company_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # The charge being disputed (a ledger transaction id or a billing id).
    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False)

    source: Mapped[RefundSource] = mapped_column(String(30), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    reason: Mapped[str] = mapped_column(String(1000), nullable=False)

    status: Mapped[RefundStatus] = mapped_column(
        String(10), nullable=False, default=RefundStatus.PENDING
    )

    admin_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    processed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    credit_transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<RefundRequest {self.id} {self.amount} status={self.status}>"
