"""
DTOs -- immutable read models returned by selectors and services.

Responsibility:
    Frozen dataclasses that cross the service boundary instead of ORM
    entities.  from_model() class methods are boundary converters used only
    by selectors and services.

Architecture position:
    Kernel > Domain -- no database access.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from wallet_kernel.models.commission import CommissionStatus, CommissionType
from wallet_kernel.models.ledger_account import AccountStatus, OwnerType
from wallet_kernel.models.ledger_transaction import (
    TransactionDirection,
    TransactionStatus,
    TransactionType,
)
from wallet_kernel.models.refund_request import RefundSource, RefundStatus
from wallet_kernel.models.withdrawal import PaymentMethod, WithdrawalStatus

if TYPE_CHECKING:
    from wallet_kernel.models import (
        Commission,
        LedgerAccount,
        LedgerTransaction,
        RefundRequest,
        Withdrawal,
    )


@dataclass(frozen=True)
class AccountBalance:
    account_id: UUID
    owner_type: OwnerType
    owner_id: str
    balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    status: AccountStatus
    currency: str

    @classmethod
    def from_model(cls, account: LedgerAccount) -> AccountBalance:
        return cls(
            account_id=account.id,
            owner_type=OwnerType(account.owner_type),
            owner_id=account.owner_id,
            balance=account.balance,
            total_credits=account.total_credits,
            total_debits=account.total_debits,
            status=AccountStatus(account.status),
            currency=account.currency,
        )


@dataclass(frozen=True)
class TransactionRecord:
    transaction_id: UUID
    account_id: UUID
    amount: Decimal
    direction: TransactionDirection
    type: TransactionType
    status: TransactionStatus
    description: str
    balance_after: Decimal
    created_at: datetime
    related_entity_type: str | None = None
    related_entity_id: str | None = None
    reversal_of_id: UUID | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_model(cls, tx: LedgerTransaction) -> TransactionRecord:
        return cls(
            transaction_id=tx.id,
            account_id=tx.account_id,
            amount=tx.amount,
            direction=TransactionDirection(tx.direction),
            type=TransactionType(tx.type),
            status=TransactionStatus(tx.status),
            description=tx.description,
            balance_after=tx.balance_after,
            created_at=tx.created_at,
            related_entity_type=tx.related_entity_type,
            related_entity_id=tx.related_entity_id,
            reversal_of_id=tx.reversal_of_id,
            metadata=dict(tx.transaction_metadata) if tx.transaction_metadata else None,
        )


@dataclass(frozen=True)
class TransactionPage:
    """One page of history plus the total row count for the filter."""

    items: tuple[TransactionRecord, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(frozen=True)
class IntegrityReport:
    """
    Stored balance compared with the balance recomputed from the log.

    Guarantees:
        is_consistent is True iff stored_balance == computed_balance and
        the stored running totals equal the log sums.
    """

    account_id: UUID
    stored_balance: Decimal
    computed_balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    is_consistent: bool
    difference: Decimal
    transaction_count: int = 0


@dataclass(frozen=True)
class CommissionRecord:
    commission_id: UUID
    consultant_id: str
    region_id: str | None
    amount: Decimal
    rate: Decimal | None
    type: CommissionType
    status: CommissionStatus
    withdrawal_id: UUID | None
    job_id: str | None
    company_id: str | None
    subscription_id: str | None
    description: str | None
    created_at: datetime
    confirmed_at: datetime | None = None
    paid_at: datetime | None = None
    payment_reference: str | None = None
    expiry_date: datetime | None = None

    @classmethod
    def from_model(cls, commission: Commission) -> CommissionRecord:
        return cls(
            commission_id=commission.id,
            consultant_id=commission.consultant_id,
            region_id=commission.region_id,
            amount=commission.amount,
            rate=commission.rate,
            type=CommissionType(commission.type),
            status=CommissionStatus(commission.status),
            withdrawal_id=commission.withdrawal_id,
            job_id=commission.job_id,
            company_id=commission.company_id,
            subscription_id=commission.subscription_id,
            description=commission.description,
            created_at=commission.created_at,
            confirmed_at=commission.confirmed_at,
            paid_at=commission.paid_at,
            payment_reference=commission.payment_reference,
            expiry_date=commission.expiry_date,
        )


@dataclass(frozen=True)
class WithdrawalRecord:
    withdrawal_id: UUID
    consultant_id: str
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    status: WithdrawalStatus
    commission_ids: tuple[UUID, ...]
    payout_attempt: int
    created_at: datetime
    payment_reference: str | None = None
    failure_reason: str | None = None
    failed_payment_reference: str | None = None
    rejection_reason: str | None = None
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    notes: str | None = None
    admin_notes: str | None = None

    @classmethod
    def from_model(
        cls, withdrawal: Withdrawal, commission_ids: tuple[UUID, ...] | None = None
    ) -> WithdrawalRecord:
        """
        Convert a withdrawal row.

        commission_ids defaults to the creation snapshot; selectors pass the
        currently locked set when they have it.
        """
        if commission_ids is None:
            commission_ids = tuple(
                UUID(str(cid)) for cid in (withdrawal.commission_snapshot or [])
            )
        return cls(
            withdrawal_id=withdrawal.id,
            consultant_id=withdrawal.consultant_id,
            amount=withdrawal.amount,
            currency=withdrawal.currency,
            payment_method=PaymentMethod(withdrawal.payment_method),
            status=WithdrawalStatus(withdrawal.status),
            commission_ids=commission_ids,
            payout_attempt=withdrawal.payout_attempt,
            created_at=withdrawal.created_at,
            payment_reference=withdrawal.payment_reference,
            failure_reason=withdrawal.failure_reason,
            failed_payment_reference=withdrawal.failed_payment_reference,
            rejection_reason=withdrawal.rejection_reason,
            reviewed_by=withdrawal.reviewed_by,
            reviewed_at=withdrawal.reviewed_at,
            paid_at=withdrawal.paid_at,
            cancelled_at=withdrawal.cancelled_at,
            notes=withdrawal.notes,
            admin_notes=withdrawal.admin_notes,
        )


@dataclass(frozen=True)
class WithdrawalBalanceSummary:
    """
    A consultant's withdrawable position.

    available_balance: CONFIRMED commissions not locked by a withdrawal.
    pending_balance: PENDING commissions plus amounts locked in open
        withdrawals (PENDING/APPROVED/PROCESSING).
    """

    consultant_id: str
    available_balance: Decimal
    pending_balance: Decimal
    total_earned: Decimal
    total_withdrawn: Decimal
    minimum_withdrawal: Decimal
    available_commission_count: int

    @property
    def can_withdraw(self) -> bool:
        return self.available_balance >= self.minimum_withdrawal


@dataclass(frozen=True)
class RefundRecord:
    refund_id: UUID
    company_id: str
    transaction_id: str
    source: RefundSource
    amount: Decimal
    reason: str
    status: RefundStatus
    created_at: datetime
    admin_notes: str | None = None
    rejection_reason: str | None = None
    processed_by: UUID | None = None
    processed_at: datetime | None = None
    credit_transaction_id: UUID | None = None

    @classmethod
    def from_model(cls, refund: RefundRequest) -> RefundRecord:
        return cls(
            refund_id=refund.id,
            company_id=refund.company_id,
            transaction_id=refund.transaction_id,
            source=RefundSource(refund.source),
            amount=refund.amount,
            reason=refund.reason,
            status=RefundStatus(refund.status),
            created_at=refund.created_at,
            admin_notes=refund.admin_notes,
            rejection_reason=refund.rejection_reason,
            processed_by=refund.processed_by,
            processed_at=refund.processed_at,
            credit_transaction_id=refund.credit_transaction_id,
        )


@dataclass(frozen=True)
class RefundPage:
    items: tuple[RefundRecord, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total
