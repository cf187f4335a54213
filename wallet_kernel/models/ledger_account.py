"""
Module: wallet_kernel.models.ledger_account
Responsibility: ORM persistence for ledger accounts, the balance-bearing
    wallet of one owner (company, consultant or sales agent).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - UNIQUE (owner_type, owner_id): one account per owner.
    - balance == total_credits - total_debits after every mutation
      (BalanceEngine asserts it; the PostgreSQL trigger rejects violations).
    - Accounts are never deleted; owner fields never change; CLOSED is
      terminal (db/immutability.py + db/triggers.py).

Failure modes:
    - IntegrityError on duplicate (owner_type, owner_id); BalanceEngine
      catches it inside a savepoint and re-fetches.
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from wallet_kernel.db.base import TrackedBase


class OwnerType(str, Enum):
    """Kind of party that owns a ledger account."""

    COMPANY = "company"
    CONSULTANT = "consultant"
    SALES_AGENT = "sales_agent"


class AccountStatus(str, Enum):
    """Lifecycle status of a ledger account.

    Contract: ACTIVE <-> FROZEN; ACTIVE/FROZEN -> CLOSED; CLOSED is terminal.
    """

    ACTIVE = "active"
    FROZEN = "frozen"
    CLOSED = "closed"


class LedgerAccount(TrackedBase):
    """
    Cached balance plus running totals for one owner.

    Contract:
        The stored balance is a cache of the transaction log.  It is only
        ever changed by BalanceEngine through a single atomic UPDATE that
        adjusts balance and the matching running total together.

    Guarantees:
        - amounts are Decimal (Numeric(38, 9)), never float.
        - total_credits and total_debits only grow.

    Non-goals:
        - Does not validate transitions; BalanceEngine.set_account_status does.
    """

    __tablename__ = "ledger_accounts"

    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", name="uq_ledger_account_owner"),
        CheckConstraint("total_credits >= 0", name="ck_ledger_account_credits"),
        CheckConstraint("total_debits >= 0", name="ck_ledger_account_debits"),
        Index("idx_ledger_account_status", "status"),
    )

    owner_type: Mapped[OwnerType] = mapped_column(String(20), nullable=False)

    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)

    balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    total_credits: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    total_debits: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    status: Mapped[AccountStatus] = mapped_column(
        String(10), nullable=False, default=AccountStatus.ACTIVE
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerAccount {self.owner_type}:{self.owner_id} "
            f"balance={self.balance} status={self.status}>"
        )

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE
