"""
Module: wallet_kernel.selectors.ledger_selector
Responsibility: Read-only queries over ledger accounts and the transaction
    log: balances, paginated history, and the recomputed balance used by
    integrity verification.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - The computed balance is derived from the log only:
      sum(CREDIT) - sum(DEBIT) over non-PENDING rows.

Audit relevance:
    integrity_report() is the read half of BalanceEngine.verify_balance_integrity
    and of the ``wallet_ops verify`` script.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select

from wallet_kernel.domain.dtos import (
    AccountBalance,
    IntegrityReport,
    TransactionPage,
    TransactionRecord,
)
from wallet_kernel.domain.filters import TransactionFilter
from wallet_kernel.models.ledger_account import LedgerAccount, OwnerType
from wallet_kernel.models.ledger_transaction import (
    LedgerTransaction,
    TransactionDirection,
    TransactionStatus,
)
from wallet_kernel.selectors.base import BaseSelector, to_decimal as _dec


class LedgerSelector(BaseSelector[LedgerAccount]):
    """Read access to wallet balances and history."""

    def get_account(self, account_id: UUID) -> AccountBalance | None:
        account = self._get(LedgerAccount, account_id)
        if account is None:
            return None
        return AccountBalance.from_model(account)

    def get_account_by_owner(
        self, owner_type: OwnerType | str, owner_id: str
    ) -> AccountBalance | None:
        account = self._fresh(
            select(LedgerAccount).where(
                LedgerAccount.owner_type == OwnerType(owner_type),
                LedgerAccount.owner_id == owner_id,
            )
        ).scalar_one_or_none()
        if account is None:
            return None
        return AccountBalance.from_model(account)

    def list_accounts(self, owner_type: OwnerType | str | None = None) -> list[AccountBalance]:
        stmt = select(LedgerAccount).order_by(LedgerAccount.owner_type, LedgerAccount.owner_id)
        if owner_type is not None:
            stmt = stmt.where(LedgerAccount.owner_type == OwnerType(owner_type))
        return [AccountBalance.from_model(a) for a in self._fresh(stmt).scalars()]

    def get_transaction(self, transaction_id: UUID) -> TransactionRecord | None:
        tx = self._get(LedgerTransaction, transaction_id)
        if tx is None:
            return None
        return TransactionRecord.from_model(tx)

    def find_reversal(self, transaction_id: UUID) -> TransactionRecord | None:
        """Return the REVERSAL row pointing at transaction_id, if any."""
        tx = self._fresh(
            select(LedgerTransaction).where(
                LedgerTransaction.reversal_of_id == transaction_id
            )
        ).scalar_one_or_none()
        if tx is None:
            return None
        return TransactionRecord.from_model(tx)

    def list_transactions(
        self, account_id: UUID, filters: TransactionFilter | None = None
    ) -> TransactionPage:
        """
        One page of an account's history, newest first.

        Preconditions: filters has already been validated (TransactionFilter
            validates itself on construction).
        """
        filters = filters or TransactionFilter()
        conditions = [LedgerTransaction.account_id == account_id]
        if filters.type is not None:
            conditions.append(LedgerTransaction.type == filters.type)
        if filters.direction is not None:
            conditions.append(LedgerTransaction.direction == filters.direction)
        if filters.status is not None:
            conditions.append(LedgerTransaction.status == filters.status)
        if filters.created_from is not None:
            conditions.append(LedgerTransaction.created_at >= filters.created_from)
        if filters.created_to is not None:
            conditions.append(LedgerTransaction.created_at <= filters.created_to)
        if filters.min_amount is not None:
            conditions.append(LedgerTransaction.amount >= filters.min_amount)
        if filters.max_amount is not None:
            conditions.append(LedgerTransaction.amount <= filters.max_amount)

        total = self.session.execute(
            select(func.count(LedgerTransaction.id)).where(*conditions)
        ).scalar_one()

        rows = self._fresh(
            select(LedgerTransaction)
            .where(*conditions)
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        ).scalars().all()

        return TransactionPage(
            items=tuple(TransactionRecord.from_model(tx) for tx in rows),
            total=total,
            limit=filters.limit,
            offset=filters.offset,
        )

    def transactions_for_entity(
        self, related_entity_type: str, related_entity_id: str
    ) -> list[TransactionRecord]:
        """All ledger rows referencing a business entity (e.g. a withdrawal)."""
        rows = self._fresh(
            select(LedgerTransaction)
            .where(
                LedgerTransaction.related_entity_type == related_entity_type,
                LedgerTransaction.related_entity_id == related_entity_id,
            )
            .order_by(LedgerTransaction.created_at, LedgerTransaction.id)
        ).scalars().all()
        return [TransactionRecord.from_model(tx) for tx in rows]

    def computed_totals(self, account_id: UUID) -> tuple[Decimal, Decimal, int]:
        """(sum of credits, sum of debits, row count) from the log."""
        credit_sum = func.sum(
            case(
                (LedgerTransaction.direction == TransactionDirection.CREDIT, LedgerTransaction.amount),
                else_=0,
            )
        )
        debit_sum = func.sum(
            case(
                (LedgerTransaction.direction == TransactionDirection.DEBIT, LedgerTransaction.amount),
                else_=0,
            )
        )
        credits, debits, count = self.session.execute(
            select(credit_sum, debit_sum, func.count(LedgerTransaction.id)).where(
                LedgerTransaction.account_id == account_id,
                LedgerTransaction.status != TransactionStatus.PENDING,
            )
        ).one()
        return _dec(credits), _dec(debits), int(count or 0)

    def integrity_report(self, account_id: UUID) -> IntegrityReport | None:
        """
        Compare the cached balance with the log.

        Returns:
            IntegrityReport, or None if the account does not exist.
        """
        account = self._fresh(
            select(LedgerAccount).where(LedgerAccount.id == account_id)
        ).scalar_one_or_none()
        if account is None:
            return None

        credits, debits, count = self.computed_totals(account_id)
        stored = _dec(account.balance)
        computed = credits - debits
        consistent = (
            stored == computed
            and _dec(account.total_credits) == credits
            and _dec(account.total_debits) == debits
        )
        return IntegrityReport(
            account_id=account.id,
            stored_balance=stored,
            computed_balance=computed,
            total_credits=credits,
            total_debits=debits,
            is_consistent=consistent,
            difference=stored - computed,
            transaction_count=count,
        )
