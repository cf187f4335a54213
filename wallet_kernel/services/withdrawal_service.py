"""
WithdrawalService -- the withdrawal settlement state machine.

Responsibility:
    Creates withdrawal requests over CONFIRMED commissions, locks those
    commissions, drives admin review, and settles a successful payout into
    the consultant ledger.

Architecture position:
    Kernel > Services -- imperative shell.  Transitions are validated against
    domain/withdrawal_lifecycle.py.  External payout calls are NOT made here;
    WalletOrchestrator.execute_withdrawal commits PROCESSING first and then
    talks to the PayoutRail.

Invariants enforced:
    - At most one active withdrawal per commission: the lock is ONE
      conditional UPDATE
      (``WHERE id IN (...) AND status = 'confirmed' AND withdrawal_id IS NULL
      AND consultant_id = :c``) whose row count must equal the number of
      requested commissions, inside a SAVEPOINT.  A short count rolls the
      savepoint back; nothing stays locked.
    - amount == sum(commission.amount) at creation.
    - Reject and cancel release every lock.
    - On PAID: each locked commission CONFIRMED -> PAID (row count must
      match), and the consultant ledger receives one COMMISSION_EARNED
      CREDIT followed by one COMMISSION_PAYOUT DEBIT of the withdrawal amount.
      No ledger mutation on failure.

Failure modes:
    - InvalidAmountError, BelowMinimumWithdrawalError,
      CommissionNotFoundError, CommissionNotEligibleError,
      CommissionAlreadyLockedError on create.
    - WithdrawalNotFoundError, InvalidStateError, UnauthorizedError,
      ReasonRequiredError on transitions.

Audit relevance:
    commission_snapshot keeps the claimed ids after unlock; every
    transition logs withdrawal_* events with from/to status.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from wallet_config.schema import WalletSettings
from wallet_kernel.db.types import to_amount, validate_currency
from wallet_kernel.domain.clock import Clock
from wallet_kernel.domain.dtos import WithdrawalRecord
from wallet_kernel.domain.withdrawal_lifecycle import WithdrawalAction, next_status
from wallet_kernel.exceptions import (
    BelowMinimumWithdrawalError,
    CommissionAlreadyLockedError,
    CommissionNotEligibleError,
    CommissionNotFoundError,
    InvalidAmountError,
    InvalidStateError,
    ReasonRequiredError,
    ReconciliationConflictError,
    UnauthorizedError,
    WithdrawalNotFoundError,
)
from wallet_kernel.logging_config import get_logger
from wallet_kernel.models.commission import Commission, CommissionStatus
from wallet_kernel.models.ledger_account import OwnerType
from wallet_kernel.models.ledger_transaction import TransactionType
from wallet_kernel.models.withdrawal import PaymentMethod, Withdrawal, WithdrawalStatus
from wallet_kernel.selectors.withdrawal_selector import WithdrawalSelector
from wallet_kernel.services.balance_engine import BalanceEngine
from wallet_kernel.services.base import BaseService, coerce_uuid

logger = get_logger("services.withdrawal")

WITHDRAWAL_ENTITY = "withdrawal"


class WithdrawalService(BaseService[Withdrawal]):
    """
    Withdrawal state machine.

    Contract:
        Flushes, never commits.  Every public method loads the withdrawal
        row ``FOR UPDATE`` before validating a transition.

    Non-goals:
        - Does not call the payout rail.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: WalletSettings | None = None,
        balance_engine: BalanceEngine | None = None,
    ):
        super().__init__(session, clock)
        self._settings = settings or WalletSettings()
        self._balance_engine = balance_engine or BalanceEngine(
            session, self._clock, self._settings
        )
        self._selector = WithdrawalSelector(session)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def lock_withdrawal(self, withdrawal_id: UUID | str) -> Withdrawal:
        """Load a withdrawal ``FOR UPDATE`` or raise WithdrawalNotFoundError."""
        key = coerce_uuid(withdrawal_id)
        withdrawal = None
        if key is not None:
            withdrawal = self.session.execute(
                select(Withdrawal)
                .where(Withdrawal.id == key)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if withdrawal is None:
            raise WithdrawalNotFoundError(str(withdrawal_id))
        return withdrawal

    def locked_commission_ids(self, withdrawal_id: UUID) -> tuple[UUID, ...]:
        return self._selector.locked_commission_ids(withdrawal_id)

    def _record(self, withdrawal: Withdrawal) -> WithdrawalRecord:
        return WithdrawalRecord.from_model(
            withdrawal, self.locked_commission_ids(withdrawal.id) or None
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _select_available(self, consultant_id: str, amount: Decimal) -> list[UUID]:
        """Oldest unlocked CONFIRMED commissions whose sum is exactly amount."""
        candidates = self.session.execute(
            select(Commission.id, Commission.amount)
            .where(
                Commission.consultant_id == consultant_id,
                Commission.status == CommissionStatus.CONFIRMED,
                Commission.withdrawal_id.is_(None),
            )
            .order_by(Commission.created_at, Commission.id)
        ).all()
        chosen: list[UUID] = []
        running = Decimal("0")
        for commission_id, commission_amount in candidates:
            if running >= amount:
                break
            chosen.append(commission_id)
            running += commission_amount
        if running != amount:
            raise InvalidAmountError(
                str(amount),
                f"available confirmed commissions cannot cover the amount exactly "
                f"(oldest-first total {running})",
            )
        return chosen

    def create(
        self,
        consultant_id: str,
        amount: Decimal,
        payment_method: PaymentMethod | str,
        commission_ids: list[UUID | str] | None,
        actor_id: UUID,
        payment_details: dict[str, Any] | None = None,
        notes: str | None = None,
        currency: str | None = None,
    ) -> WithdrawalRecord:
        """
        Request a withdrawal over confirmed commissions.

        Preconditions: every commission exists, belongs to consultant_id, is
            CONFIRMED and unlocked.  When commission_ids is empty the oldest
            available commissions covering the amount exactly are used.
        Postconditions: a PENDING withdrawal exists and every listed
            commission has withdrawal_id set to it, or nothing changed.

        Raises:
            InvalidAmountError: amount <= 0, or amount != sum of commissions.
            BelowMinimumWithdrawalError: amount < configured minimum.
            CommissionNotFoundError, CommissionNotEligibleError,
            CommissionAlreadyLockedError.
        """
        amount = to_amount(amount)
        minimum = self._settings.minimum_withdrawal
        if amount < minimum:
            raise BelowMinimumWithdrawalError(str(amount), str(minimum))
        method = PaymentMethod(payment_method)

        if commission_ids:
            ids: list[UUID] = []
            for raw in commission_ids:
                key = coerce_uuid(raw)
                if key is None:
                    raise CommissionNotFoundError(str(raw))
                if key not in ids:
                    ids.append(key)
        else:
            ids = self._select_available(consultant_id, amount)

        commissions = {
            c.id: c
            for c in self.session.execute(
                select(Commission)
                .where(Commission.id.in_(ids))
                .execution_options(populate_existing=True)
            ).scalars()
        }
        total = Decimal("0")
        for key in ids:
            commission = commissions.get(key)
            if commission is None:
                raise CommissionNotFoundError(str(key))
            if commission.consultant_id != consultant_id:
                raise CommissionNotEligibleError(str(key), "belongs to another consultant")
            if commission.withdrawal_id is not None:
                raise CommissionAlreadyLockedError(str(key), str(commission.withdrawal_id))
            if commission.status != CommissionStatus.CONFIRMED:
                raise CommissionNotEligibleError(
                    str(key), f"status is {CommissionStatus(commission.status).value}, not confirmed"
                )
            total += commission.amount
        if total != amount:
            raise InvalidAmountError(
                str(amount), f"does not match the sum of the selected commissions ({total})"
            )

        now = self._clock.now()
        savepoint = self.session.begin_nested()
        try:
            withdrawal = Withdrawal(
                consultant_id=consultant_id,
                amount=amount,
                currency=validate_currency(currency or self._settings.currency),
                payment_method=method,
                payment_details=payment_details,
                status=WithdrawalStatus.PENDING,
                notes=notes,
                payout_attempt=0,
                commission_snapshot=[str(key) for key in ids],
                created_by_id=actor_id,
                created_at=now,
                updated_at=now,
            )
            self.session.add(withdrawal)
            self.session.flush()

            result = self.session.execute(
                update(Commission)
                .where(
                    Commission.id.in_(ids),
                    Commission.status == CommissionStatus.CONFIRMED,
                    Commission.withdrawal_id.is_(None),
                    Commission.consultant_id == consultant_id,
                )
                .values(withdrawal_id=withdrawal.id, updated_at=now, updated_by_id=actor_id)
                .execution_options(synchronize_session=False)
            )
            locked = result.rowcount
        except Exception:
            savepoint.rollback()
            raise

        if locked != len(ids):
            savepoint.rollback()
            self._raise_lock_conflict(ids)
        savepoint.commit()

        logger.info(
            "withdrawal_created",
            extra={
                "withdrawal_id": str(withdrawal.id),
                "consultant_id": consultant_id,
                "amount": str(amount),
                "commission_count": len(ids),
            },
        )
        return WithdrawalRecord.from_model(withdrawal, tuple(ids))

    def _raise_lock_conflict(self, ids: list[UUID]) -> None:
        """A concurrent request claimed one of the commissions first."""
        for commission in self.session.execute(
            select(Commission)
            .where(Commission.id.in_(ids))
            .order_by(Commission.created_at, Commission.id)
            .execution_options(populate_existing=True)
        ).scalars():
            if commission.withdrawal_id is not None:
                logger.warning(
                    "commission_lock_conflict",
                    extra={
                        "commission_id": str(commission.id),
                        "locked_by": str(commission.withdrawal_id),
                    },
                )
                raise CommissionAlreadyLockedError(
                    str(commission.id), str(commission.withdrawal_id)
                )
            if commission.status != CommissionStatus.CONFIRMED:
                raise CommissionNotEligibleError(
                    str(commission.id),
                    f"status is {CommissionStatus(commission.status).value}, not confirmed",
                )
        raise CommissionAlreadyLockedError(str(ids[0]), None)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def _release_commissions(self, withdrawal_id: UUID, actor_id: UUID | None) -> int:
        now = self._clock.now()
        result = self.session.execute(
            update(Commission)
            .where(
                Commission.withdrawal_id == withdrawal_id,
                Commission.status == CommissionStatus.CONFIRMED,
            )
            .values(withdrawal_id=None, updated_at=now, updated_by_id=actor_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _log_transition(self, withdrawal: Withdrawal, event: str, from_status, **extra) -> None:
        logger.info(
            event,
            extra={
                "withdrawal_id": str(withdrawal.id),
                "from_status": WithdrawalStatus(from_status).value,
                "to_status": WithdrawalStatus(withdrawal.status).value,
                **extra,
            },
        )

    def approve(
        self,
        withdrawal_id: UUID | str,
        admin_id: UUID,
        admin_notes: str | None = None,
    ) -> WithdrawalRecord:
        """PENDING -> APPROVED."""
        withdrawal = self.lock_withdrawal(withdrawal_id)
        previous = withdrawal.status
        withdrawal.status = next_status(previous, WithdrawalAction.APPROVE, str(withdrawal.id))
        withdrawal.reviewed_by = admin_id
        withdrawal.reviewed_at = self._clock.now()
        if admin_notes:
            withdrawal.admin_notes = admin_notes
        withdrawal.updated_by_id = admin_id
        self.session.flush()
        self._log_transition(withdrawal, "withdrawal_approved", previous)
        return self._record(withdrawal)

    def reject(
        self,
        withdrawal_id: UUID | str,
        admin_id: UUID,
        reason: str | None,
    ) -> WithdrawalRecord:
        """
        PENDING -> REJECTED and release the commissions.

        Raises:
            ReasonRequiredError: reason missing or blank.
        """
        if not reason or not reason.strip():
            raise ReasonRequiredError("reject withdrawal", str(withdrawal_id))
        withdrawal = self.lock_withdrawal(withdrawal_id)
        previous = withdrawal.status
        withdrawal.status = next_status(previous, WithdrawalAction.REJECT, str(withdrawal.id))
        withdrawal.rejection_reason = reason.strip()
        withdrawal.reviewed_by = admin_id
        withdrawal.reviewed_at = self._clock.now()
        withdrawal.updated_by_id = admin_id
        self.session.flush()
        released = self._release_commissions(withdrawal.id, admin_id)
        self._log_transition(withdrawal, "withdrawal_rejected", previous, released=released)
        return WithdrawalRecord.from_model(withdrawal)

    def cancel(self, withdrawal_id: UUID | str, consultant_id: str) -> WithdrawalRecord:
        """
        PENDING/APPROVED -> CANCELLED by the owning consultant.

        Raises:
            UnauthorizedError: consultant_id does not own the withdrawal.
        """
        withdrawal = self.lock_withdrawal(withdrawal_id)
        if withdrawal.consultant_id != consultant_id:
            raise UnauthorizedError(WITHDRAWAL_ENTITY, str(withdrawal.id), consultant_id)
        previous = withdrawal.status
        withdrawal.status = next_status(previous, WithdrawalAction.CANCEL, str(withdrawal.id))
        withdrawal.cancelled_at = self._clock.now()
        self.session.flush()
        released = self._release_commissions(withdrawal.id, None)
        self._log_transition(withdrawal, "withdrawal_cancelled", previous, released=released)
        return WithdrawalRecord.from_model(withdrawal)

    # ------------------------------------------------------------------
    # Payout
    # ------------------------------------------------------------------

    def begin_processing(self, withdrawal_id: UUID | str, actor_id: UUID) -> str:
        """
        APPROVED -> PROCESSING for a new payout attempt.

        Returns:
            The rail idempotency key for this attempt
            (``withdrawal-<id>-attempt-<n>``).
        """
        withdrawal = self.lock_withdrawal(withdrawal_id)
        previous = withdrawal.status
        withdrawal.status = next_status(
            previous, WithdrawalAction.BEGIN_PROCESSING, str(withdrawal.id)
        )
        withdrawal.payout_attempt = (withdrawal.payout_attempt or 0) + 1
        withdrawal.processing_started_at = self._clock.now()
        withdrawal.payment_reference = None
        withdrawal.updated_by_id = actor_id
        self.session.flush()
        self._log_transition(
            withdrawal, "withdrawal_processing", previous, payout_attempt=withdrawal.payout_attempt
        )
        return withdrawal.idempotency_key

    def record_payment_reference(
        self, withdrawal: Withdrawal, payment_reference: str, actor_id: UUID | None = None
    ) -> bool:
        """
        Remember the provider reference of the in-flight attempt.

        Returns:
            True if the reference was newly recorded.

        Raises:
            ReconciliationConflictError: a different reference is recorded.
        """
        if withdrawal.payment_reference == payment_reference:
            return False
        if withdrawal.payment_reference is not None:
            raise ReconciliationConflictError(
                str(withdrawal.id),
                withdrawal.payment_reference,
                payment_reference,
                "a different payment reference is already recorded",
            )
        if withdrawal.status != WithdrawalStatus.PROCESSING:
            raise InvalidStateError(
                WITHDRAWAL_ENTITY,
                str(withdrawal.id),
                WithdrawalStatus(withdrawal.status).value,
                "record payment reference",
            )
        withdrawal.payment_reference = payment_reference
        withdrawal.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "payout_reference_recorded",
            extra={"withdrawal_id": str(withdrawal.id), "payment_reference": payment_reference},
        )
        return True

    def complete_payout(
        self,
        withdrawal: Withdrawal,
        payment_reference: str,
        actor_id: UUID,
        admin_notes: str | None = None,
    ) -> None:
        """
        PROCESSING -> PAID: settle commissions and realise the ledger pair.

        Preconditions: withdrawal is locked FOR UPDATE by the caller.
        Postconditions: withdrawal PAID; each locked commission PAID; one
            COMMISSION_EARNED credit and one COMMISSION_PAYOUT debit on the
            consultant account.  All inside one SAVEPOINT.

        Raises:
            InvalidStateError: transition not allowed, or the locked
                commission set changed underneath the withdrawal.
        """
        previous = withdrawal.status
        expected = self.locked_commission_ids(withdrawal.id)
        now = self._clock.now()

        with self.session.begin_nested():
            withdrawal.status = next_status(previous, WithdrawalAction.MARK_PAID, str(withdrawal.id))
            withdrawal.payment_reference = payment_reference
            withdrawal.paid_at = now
            withdrawal.failure_reason = None
            if admin_notes:
                withdrawal.admin_notes = admin_notes
            withdrawal.updated_by_id = actor_id
            self.session.flush()

            result = self.session.execute(
                update(Commission)
                .where(
                    Commission.withdrawal_id == withdrawal.id,
                    Commission.status == CommissionStatus.CONFIRMED,
                )
                .values(
                    status=CommissionStatus.PAID,
                    paid_at=now,
                    payment_reference=payment_reference,
                    updated_at=now,
                    updated_by_id=actor_id,
                )
                .execution_options(synchronize_session=False)
            )
            if not expected or result.rowcount != len(expected):
                raise InvalidStateError(
                    WITHDRAWAL_ENTITY,
                    str(withdrawal.id),
                    WithdrawalStatus(previous).value,
                    f"settle ({result.rowcount} of {len(expected)} commissions payable)",
                )

            account = self._balance_engine.get_or_create_account(
                OwnerType.CONSULTANT, withdrawal.consultant_id, actor_id
            )
            metadata = {
                "payment_reference": payment_reference,
                "commission_ids": [str(cid) for cid in expected],
            }
            self._balance_engine.credit_account(
                account.id,
                withdrawal.amount,
                TransactionType.COMMISSION_EARNED,
                f"Commissions realised for withdrawal {withdrawal.id}",
                actor_id,
                related_entity_type=WITHDRAWAL_ENTITY,
                related_entity_id=str(withdrawal.id),
                metadata=metadata,
            )
            self._balance_engine.debit_account(
                account.id,
                withdrawal.amount,
                TransactionType.COMMISSION_PAYOUT,
                f"Payout for withdrawal {withdrawal.id}",
                actor_id,
                related_entity_type=WITHDRAWAL_ENTITY,
                related_entity_id=str(withdrawal.id),
                metadata=metadata,
            )

        self._log_transition(
            withdrawal,
            "withdrawal_paid",
            previous,
            payment_reference=payment_reference,
            amount=str(withdrawal.amount),
        )

    def fail_payout(
        self,
        withdrawal: Withdrawal,
        failure_reason: str | None,
        payment_reference: str | None,
        actor_id: UUID | None,
    ) -> None:
        """
        PROCESSING -> APPROVED after a failed payout; the locks stay.

        Preconditions: withdrawal is locked FOR UPDATE by the caller.
        """
        previous = withdrawal.status
        withdrawal.status = next_status(previous, WithdrawalAction.PAYOUT_FAILED, str(withdrawal.id))
        withdrawal.failure_reason = failure_reason or "Payout failed"
        withdrawal.failed_payment_reference = payment_reference or withdrawal.payment_reference
        withdrawal.payment_reference = None
        withdrawal.updated_by_id = actor_id
        self.session.flush()
        self._log_transition(
            withdrawal,
            "withdrawal_payout_failed",
            previous,
            failure_reason=withdrawal.failure_reason,
            payment_reference=withdrawal.failed_payment_reference,
        )
