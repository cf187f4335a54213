"""
Module: wallet_kernel.models.ledger_transaction
Responsibility: ORM persistence for the append-only transaction log.  Every
    balance-affecting event is one row here.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - amount is always positive; direction carries the sign.
    - COMPLETED rows are immutable (ORM listeners + PostgreSQL triggers).
      Corrections append a REVERSAL row pointing back via reversal_of_id.
    - At most one reversal per original (UNIQUE reversal_of_id).
    - balance_after is the account balance immediately after this row.

Audit relevance:
    The sum of CREDIT minus DEBIT rows per account is the authoritative
    balance; LedgerAccount.balance is only a cache verified against it.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from wallet_kernel.db.base import TrackedBase, UUIDString


class TransactionDirection(str, Enum):
    """Sign of a ledger transaction."""

    CREDIT = "credit"
    DEBIT = "debit"


class TransactionType(str, Enum):
    """Business reason for a ledger transaction."""

    JOB_POSTING_FEE = "job_posting_fee"
    JOB_REFUND = "job_refund"
    COMMISSION_EARNED = "commission_earned"
    COMMISSION_PAYOUT = "commission_payout"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    SUBSCRIPTION_PAYMENT = "subscription_payment"
    SUBSCRIPTION_REFUND = "subscription_refund"
    ADDON_SERVICE_CHARGE = "addon_service_charge"
    REVERSAL = "reversal"


class TransactionStatus(str, Enum):
    """Lifecycle status of a ledger transaction.

    BalanceEngine only ever writes COMPLETED rows.  PENDING and REVERSED are
    accepted on read for records imported from elsewhere; a reversed
    COMPLETED row is recognised by its REVERSAL counterpart, not by a
    status change.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    REVERSED = "reversed"


class LedgerTransaction(TrackedBase):
    """
    One immutable balance movement on one ledger account.

    Contract:
        Written only by BalanceEngine, in the same database transaction as
        the balance update it records.

    Guarantees:
        - amount > 0 (CHECK constraint).
        - reversal_of_id is unique: an original can be reversed once.
    """

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_transaction_amount_positive"),
        Index("idx_ledger_tx_account_created", "account_id", "created_at"),
        Index("idx_ledger_tx_type", "type"),
        Index("idx_ledger_tx_related", "related_entity_type", "related_entity_id"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_accounts.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    direction: Mapped[TransactionDirection] = mapped_column(String(6), nullable=False)

    type: Mapped[TransactionType] = mapped_column(String(40), nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        String(10), nullable=False, default=TransactionStatus.COMPLETED
    )

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    related_entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    related_entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    balance_after: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id"),
        nullable=True,
        unique=True,
    )

    # Named transaction_metadata to avoid the SQLAlchemy reserved name
    transaction_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<LedgerTransaction {self.id} {self.direction} {self.amount} {self.type}>"

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign implied by direction."""
        if self.direction == TransactionDirection.DEBIT:
            return -self.amount
        return self.amount

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None
