"""
BalanceEngine -- atomic credit, debit and transfer on ledger accounts.

Responsibility:
    The ONLY writer of LedgerAccount balances and LedgerTransaction rows.
    Every balance change is one conditional UPDATE of the account row plus
    one appended transaction row, in the caller's database transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Called by WithdrawalService
    (payout realisation), WalletPaymentService (job fees) and
    WalletOrchestrator (adjustments, transfers, reversals).

Invariants enforced:
    - balance == total_credits - total_debits after every mutation.
    - Read-modify-write is a single SQL statement
      (``UPDATE ... SET balance = balance + :amt WHERE status = 'active'``),
      so concurrent mutations never lose updates.
    - Debits are guarded in the same statement (``AND balance >= :amt``);
      an overdraft is only possible for ADMIN_ADJUSTMENT on owner types
      listed in WalletSettings.overdraft_owner_types.
    - Transfers lock both rows in id order, then debit and credit inside one
      SAVEPOINT: both rows are written or neither.
    - Completed transactions are never edited; reverse_transaction appends a
      REVERSAL row (unique reversal_of_id).

Failure modes:
    - InvalidAmountError: amount <= 0, float, or not a number.
    - AccountNotFoundError / AccountFrozenError / InsufficientBalanceError:
      the conditional UPDATE matched no row; the cause is diagnosed after
      the fact.  Nothing is written.
    - InvalidTransferError: same source and destination, or currency mismatch.
    - TransactionNotFoundError / EntryAlreadyReversedError on reversal.
    - InvalidStateError on forbidden account status changes.

Audit relevance:
    Every mutation logs a structured event (account_credited,
    account_debited, transfer_completed, transaction_reversed).  Integrity
    mismatches are logged at ERROR and never auto-corrected.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wallet_config.schema import WalletSettings
from wallet_kernel.db.types import to_amount, validate_currency
from wallet_kernel.domain.clock import Clock
from wallet_kernel.domain.dtos import IntegrityReport, TransactionRecord
from wallet_kernel.exceptions import (
    AccountFrozenError,
    AccountNotFoundError,
    EntryAlreadyReversedError,
    InsufficientBalanceError,
    InvalidStateError,
    InvalidTransferError,
    TransactionNotFoundError,
)
from wallet_kernel.logging_config import get_logger
from wallet_kernel.models.ledger_account import AccountStatus, LedgerAccount, OwnerType
from wallet_kernel.models.ledger_transaction import (
    LedgerTransaction,
    TransactionDirection,
    TransactionStatus,
    TransactionType,
)
from wallet_kernel.selectors.ledger_selector import LedgerSelector
from wallet_kernel.services.base import BaseService, coerce_uuid

logger = get_logger("services.balance_engine")


@dataclass(frozen=True)
class TransferResult:
    """Both legs of a completed transfer."""

    debit: TransactionRecord
    credit: TransactionRecord

    @property
    def amount(self) -> Decimal:
        return self.debit.amount


class BalanceEngine(BaseService[LedgerAccount]):
    """
    Atomic balance mutations over the ledger.

    Contract:
        Accepts a Session and flushes; never commits.  Returns frozen
        TransactionRecord DTOs for every appended row.

    Non-goals:
        - Does not decide WHY money moves (commissions, job fees); callers
          supply the transaction type and references.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: WalletSettings | None = None,
    ):
        super().__init__(session, clock)
        self._settings = settings or WalletSettings()
        self._selector = LedgerSelector(session)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def find_account_by_owner(self, owner_type: OwnerType, owner_id: str) -> LedgerAccount | None:
        return self.session.execute(
            select(LedgerAccount)
            .where(
                LedgerAccount.owner_type == owner_type,
                LedgerAccount.owner_id == owner_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_or_create_account(
        self,
        owner_type: OwnerType | str,
        owner_id: str,
        actor_id: UUID,
        initial_balance: Decimal = Decimal("0"),
        currency: str | None = None,
    ) -> LedgerAccount:
        """
        Return the owner's account, creating it on first use.

        The insert runs inside a SAVEPOINT.  When a concurrent caller wins
        the UNIQUE (owner_type, owner_id) race, the savepoint is rolled back
        and the winner's row is re-fetched, so exactly one account exists.

        Args:
            owner_type: COMPANY, CONSULTANT or SALES_AGENT.
            owner_id: Identifier of the owner in the host application.
            actor_id: Who triggered the creation.
            initial_balance: Booked as an ADMIN_ADJUSTMENT credit when > 0
                so the log explains the opening balance.
            currency: ISO 4217 code; defaults to WalletSettings.currency.

        Returns:
            The existing or newly created LedgerAccount.
        """
        owner_type = OwnerType(owner_type)
        if not owner_id:
            raise AccountNotFoundError(f"{owner_type.value}:<empty>")

        account = self.find_account_by_owner(owner_type, owner_id)
        if account is not None:
            return account

        now = self._clock.now()
        savepoint = self.session.begin_nested()
        try:
            account = LedgerAccount(
                owner_type=owner_type,
                owner_id=owner_id,
                balance=Decimal("0"),
                total_credits=Decimal("0"),
                total_debits=Decimal("0"),
                status=AccountStatus.ACTIVE,
                currency=validate_currency(currency or self._settings.currency),
                created_by_id=actor_id,
                created_at=now,
                updated_at=now,
            )
            self.session.add(account)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "account_create_race_retry",
                extra={"owner_type": owner_type.value, "owner_id": owner_id},
            )
            savepoint.rollback()
            account = self.find_account_by_owner(owner_type, owner_id)
            if account is None:
                raise
            return account

        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "owner_type": owner_type.value,
                "owner_id": owner_id,
                "currency": account.currency,
            },
        )

        if initial_balance and Decimal(str(initial_balance)) > 0:
            self.credit_account(
                account.id,
                initial_balance,
                TransactionType.ADMIN_ADJUSTMENT,
                "Initial account balance",
                actor_id,
            )
            self.session.refresh(account)
        return account

    def get_account(self, account_id: UUID | str) -> LedgerAccount:
        """Load an account or raise AccountNotFoundError."""
        key = coerce_uuid(account_id)
        account = (
            self.session.get(LedgerAccount, key, populate_existing=True)
            if key is not None
            else None
        )
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def set_account_status(
        self,
        account_id: UUID | str,
        status: AccountStatus | str,
        actor_id: UUID,
    ) -> LedgerAccount:
        """
        Freeze, unfreeze or close an account.

        Raises:
            AccountNotFoundError: Unknown account.
            InvalidStateError: Account is CLOSED, or closing with a
                non-zero balance.
        """
        new_status = AccountStatus(status)
        key = coerce_uuid(account_id)
        account = None
        if key is not None:
            account = self.session.execute(
                select(LedgerAccount)
                .where(LedgerAccount.id == key)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))

        current = AccountStatus(account.status)
        if current == new_status:
            return account
        if current == AccountStatus.CLOSED:
            raise InvalidStateError(
                "ledger_account", str(account.id), current.value, f"set status {new_status.value}"
            )
        if new_status == AccountStatus.CLOSED and account.balance != 0:
            raise InvalidStateError(
                "ledger_account", str(account.id), current.value, "close with non-zero balance"
            )

        account.status = new_status
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "account_status_changed",
            extra={
                "account_id": str(account.id),
                "from_status": current.value,
                "to_status": new_status.value,
            },
        )
        return account

    def has_sufficient_balance(self, account_id: UUID | str, required: Decimal) -> bool:
        """True iff the account is ACTIVE and balance >= required."""
        key = coerce_uuid(account_id)
        if key is None:
            return False
        account = self.session.get(LedgerAccount, key, populate_existing=True)
        if account is None or account.status != AccountStatus.ACTIVE:
            return False
        return account.balance >= Decimal(str(required))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def credit_account(
        self,
        account_id: UUID | str,
        amount: Decimal,
        type: TransactionType | str,
        description: str,
        actor_id: UUID,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransactionRecord:
        """
        Add amount to an ACTIVE account and append a COMPLETED CREDIT.

        Raises:
            InvalidAmountError, AccountNotFoundError, AccountFrozenError.
        """
        return self._apply(
            account_id,
            amount,
            TransactionDirection.CREDIT,
            TransactionType(type),
            description,
            actor_id,
            related_entity_type,
            related_entity_id,
            metadata,
        )

    def debit_account(
        self,
        account_id: UUID | str,
        amount: Decimal,
        type: TransactionType | str,
        description: str,
        actor_id: UUID,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransactionRecord:
        """
        Subtract amount from an ACTIVE account and append a COMPLETED DEBIT.

        Raises:
            InvalidAmountError, AccountNotFoundError, AccountFrozenError,
            InsufficientBalanceError (balance unchanged, no row written).
        """
        return self._apply(
            account_id,
            amount,
            TransactionDirection.DEBIT,
            TransactionType(type),
            description,
            actor_id,
            related_entity_type,
            related_entity_id,
            metadata,
        )

    def _overdraft_allowed(self, account_id: UUID, tx_type: TransactionType) -> bool:
        if tx_type != TransactionType.ADMIN_ADJUSTMENT:
            return False
        if not self._settings.overdraft_owner_types:
            return False
        owner_type = self.session.execute(
            select(LedgerAccount.owner_type).where(LedgerAccount.id == account_id)
        ).scalar_one_or_none()
        if owner_type is None:
            return False
        return OwnerType(owner_type).value in self._settings.overdraft_owner_types

    def _apply(
        self,
        account_id: UUID | str,
        amount: Decimal,
        direction: TransactionDirection,
        tx_type: TransactionType,
        description: str,
        actor_id: UUID,
        related_entity_type: str | None,
        related_entity_id: str | None,
        metadata: dict[str, Any] | None,
        reversal_of_id: UUID | None = None,
    ) -> TransactionRecord:
        amount = to_amount(amount)
        key = coerce_uuid(account_id)
        if key is None:
            raise AccountNotFoundError(str(account_id))

        now = self._clock.now()
        conditions = [
            LedgerAccount.id == key,
            LedgerAccount.status == AccountStatus.ACTIVE,
        ]
        if direction == TransactionDirection.CREDIT:
            values = {
                "balance": LedgerAccount.balance + amount,
                "total_credits": LedgerAccount.total_credits + amount,
            }
        else:
            if not self._overdraft_allowed(key, tx_type):
                conditions.append(LedgerAccount.balance >= amount)
            values = {
                "balance": LedgerAccount.balance - amount,
                "total_debits": LedgerAccount.total_debits + amount,
            }
        values["updated_at"] = now
        values["updated_by_id"] = actor_id

        # Single atomic read-modify-write; the row lock is held until the
        # surrounding transaction ends.
        result = self.session.execute(
            update(LedgerAccount)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._raise_rejected_mutation(key, amount, direction)

        account = self.session.get(LedgerAccount, key, populate_existing=True)
        assert account.balance == account.total_credits - account.total_debits, (
            f"Balance invariant violated on {key}: "
            f"{account.balance} != {account.total_credits} - {account.total_debits}"
        )

        tx = LedgerTransaction(
            account_id=key,
            amount=amount,
            direction=direction,
            type=tx_type,
            status=TransactionStatus.COMPLETED,
            description=description,
            related_entity_type=related_entity_type,
            related_entity_id=str(related_entity_id) if related_entity_id is not None else None,
            balance_after=account.balance,
            reversal_of_id=reversal_of_id,
            transaction_metadata=metadata,
            created_by_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(tx)
        self.session.flush()

        logger.info(
            "account_credited" if direction == TransactionDirection.CREDIT else "account_debited",
            extra={
                "account_id": str(key),
                "transaction_id": str(tx.id),
                "amount": str(amount),
                "transaction_type": tx_type.value,
                "balance_after": str(account.balance),
            },
        )
        return TransactionRecord.from_model(tx)

    def _raise_rejected_mutation(
        self, account_id: UUID, amount: Decimal, direction: TransactionDirection
    ) -> None:
        """Explain why the guarded UPDATE matched no row."""
        account = self.session.get(LedgerAccount, account_id, populate_existing=True)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        if account.status != AccountStatus.ACTIVE:
            raise AccountFrozenError(str(account_id), AccountStatus(account.status).value)
        logger.warning(
            "insufficient_balance",
            extra={
                "account_id": str(account_id),
                "available": str(account.balance),
                "required": str(amount),
            },
        )
        raise InsufficientBalanceError(
            account_id=str(account_id),
            available=str(account.balance),
            required=str(amount),
        )

    def transfer(
        self,
        from_account_id: UUID | str,
        to_account_id: UUID | str,
        amount: Decimal,
        description: str,
        actor_id: UUID,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
    ) -> TransferResult:
        """
        Move amount between two accounts atomically.

        Preconditions: both accounts exist, are ACTIVE and share a currency.
        Postconditions: exactly one TRANSFER_OUT DEBIT and one TRANSFER_IN
            CREDIT are written; the sum of both balances is unchanged.

        Raises:
            InvalidTransferError: Same account or currency mismatch.
            InsufficientBalanceError, AccountFrozenError, AccountNotFoundError.
        """
        source = coerce_uuid(from_account_id)
        target = coerce_uuid(to_account_id)
        if source is not None and source == target:
            raise InvalidTransferError(
                str(from_account_id), str(to_account_id), "source and destination are the same account"
            )
        amount = to_amount(amount)

        # Lock in a deterministic order so opposing transfers cannot deadlock.
        locked: dict[UUID, LedgerAccount] = {}
        for key, raw in sorted(
            ((source, from_account_id), (target, to_account_id)),
            key=lambda pair: str(pair[0]),
        ):
            account = None
            if key is not None:
                account = self.session.execute(
                    select(LedgerAccount)
                    .where(LedgerAccount.id == key)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
            if account is None:
                raise AccountNotFoundError(str(raw))
            locked[key] = account

        if locked[source].currency != locked[target].currency:
            raise InvalidTransferError(
                str(source), str(target),
                f"currency mismatch {locked[source].currency} != {locked[target].currency}",
            )

        with self.session.begin_nested():
            debit = self._apply(
                source, amount, TransactionDirection.DEBIT, TransactionType.TRANSFER_OUT,
                description, actor_id, related_entity_type, related_entity_id,
                {"counterparty_account_id": str(target)},
            )
            credit = self._apply(
                target, amount, TransactionDirection.CREDIT, TransactionType.TRANSFER_IN,
                description, actor_id, related_entity_type, related_entity_id,
                {"counterparty_account_id": str(source)},
            )

        logger.info(
            "transfer_completed",
            extra={
                "from_account_id": str(source),
                "to_account_id": str(target),
                "amount": str(amount),
            },
        )
        return TransferResult(debit=debit, credit=credit)

    def reverse_transaction(
        self,
        transaction_id: UUID | str,
        reason: str,
        actor_id: UUID,
    ) -> TransactionRecord:
        """
        Append the opposite-direction REVERSAL of a completed transaction.

        The original row is not touched.

        Raises:
            TransactionNotFoundError: Unknown transaction.
            InvalidStateError: Original is not COMPLETED or is itself a reversal.
            EntryAlreadyReversedError: A reversal already exists.
            InsufficientBalanceError: Reversing a credit would overdraw.
        """
        key = coerce_uuid(transaction_id)
        original = (
            self.session.get(LedgerTransaction, key, populate_existing=True)
            if key is not None
            else None
        )
        if original is None:
            raise TransactionNotFoundError(str(transaction_id))
        if original.status != TransactionStatus.COMPLETED or original.reversal_of_id is not None:
            raise InvalidStateError(
                "ledger_transaction",
                str(original.id),
                TransactionStatus(original.status).value
                if original.reversal_of_id is None else "reversal",
                "reverse",
            )
        if self._selector.find_reversal(original.id) is not None:
            raise EntryAlreadyReversedError(str(original.id))

        opposite = (
            TransactionDirection.DEBIT
            if original.direction == TransactionDirection.CREDIT
            else TransactionDirection.CREDIT
        )
        savepoint = self.session.begin_nested()
        try:
            record = self._apply(
                original.account_id,
                original.amount,
                opposite,
                TransactionType.REVERSAL,
                f"Reversal: {reason}",
                actor_id,
                original.related_entity_type,
                original.related_entity_id,
                {
                    "reason": reason,
                    "original_type": TransactionType(original.type).value,
                },
                reversal_of_id=original.id,
            )
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise EntryAlreadyReversedError(str(original.id)) from None
        except Exception:
            savepoint.rollback()
            raise

        logger.info(
            "transaction_reversed",
            extra={
                "transaction_id": str(original.id),
                "reversal_id": str(record.transaction_id),
                "reason": reason,
            },
        )
        return record

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_balance_integrity(self, account_id: UUID | str) -> IntegrityReport:
        """
        Recompute the balance from the log and compare with the cache.

        Never corrects anything.  A mismatch is logged at ERROR.

        Raises:
            AccountNotFoundError: Unknown account.
        """
        key = coerce_uuid(account_id)
        report = self._selector.integrity_report(key) if key is not None else None
        if report is None:
            raise AccountNotFoundError(str(account_id))
        if not report.is_consistent:
            logger.error(
                "balance_integrity_violation",
                extra={
                    "account_id": str(report.account_id),
                    "stored_balance": str(report.stored_balance),
                    "computed_balance": str(report.computed_balance),
                    "difference": str(report.difference),
                },
            )
        else:
            logger.debug(
                "balance_integrity_verified",
                extra={"account_id": str(report.account_id)},
            )
        return report
