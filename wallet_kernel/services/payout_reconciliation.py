"""
PayoutReconciliation -- idempotent application of external payout outcomes.

Responsibility:
    Turns what the payout rail reports (a synchronous status, a webhook
    delivery, a polling sweep, or a manually entered reference) into
    withdrawal transitions.  Keyed on (withdrawal_id, payment_reference):
    the same outcome applied any number of times changes state at most once.

Architecture position:
    Kernel > Services -- imperative shell.  Depends on the abstract
    PayoutRail (domain/payout.py) and on WithdrawalService for the actual
    transitions.

Outcome table (withdrawal row locked FOR UPDATE):

    SUCCEEDED
        PROCESSING, recorded ref None or equal  -> PAID (realisation pair)
        PROCESSING, recorded ref different      -> conflict
        PAID, same ref                          -> no-op
        PAID, different ref                     -> conflict
        anything else                           -> conflict
    FAILED
        PROCESSING, recorded ref None or equal  -> APPROVED + failure_reason
        APPROVED, ref equal to last failed ref  -> no-op (duplicate)
        PROCESSING, ref of an earlier attempt   -> no-op (stale)
        PAID                                    -> conflict
        anything else                           -> conflict
    PENDING
        no state change; a PROCESSING row without a reference records it

Failure modes:
    - ReconciliationConflictError: never auto-resolved.
    - WithdrawalNotFoundError: unknown withdrawal id.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from wallet_config.schema import PayoutSettings
from wallet_kernel.domain.clock import Clock
from wallet_kernel.domain.payout import PayoutNotification, PayoutOutcome, PayoutRail
from wallet_kernel.exceptions import (
    InvalidStateError,
    PayoutDestinationMissingError,
    PayoutOutcomeUnknownError,
    PayoutRailError,
    ReconciliationConflictError,
)
from wallet_kernel.logging_config import LogContext, get_logger
from wallet_kernel.models.withdrawal import Withdrawal, WithdrawalStatus
from wallet_kernel.services.base import BaseService
from wallet_kernel.services.withdrawal_service import WithdrawalService

logger = get_logger("services.payout_reconciliation")


@dataclass(frozen=True)
class ReconciliationResult:
    """What apply_outcome did; applied is False for idempotent no-ops."""

    status: WithdrawalStatus
    withdrawal_id: UUID
    applied: bool
    outcome: PayoutOutcome
    payment_reference: str | None = None


@dataclass
class ReconciliationSummary:
    """Counters for one reconcile_processing sweep."""

    examined: int = 0
    paid: int = 0
    failed: int = 0
    pending: int = 0
    conflicts: int = 0
    unknown: int = 0


class PayoutReconciliation(BaseService[Withdrawal]):
    """
    Applies payout outcomes to withdrawals.

    Contract:
        Flushes, never commits.  reconcile_processing isolates each
        withdrawal in its own SAVEPOINT so one conflict does not undo the
        rest of the sweep.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        withdrawal_service: WithdrawalService | None = None,
        payout_settings: PayoutSettings | None = None,
    ):
        super().__init__(session, clock)
        self._withdrawals = withdrawal_service or WithdrawalService(session, self._clock)
        self._payout_settings = payout_settings or PayoutSettings()

    def _actor(self, actor_id: UUID | None) -> UUID:
        """Webhooks and sweeps run without a caller; they act as the system actor."""
        return actor_id if actor_id is not None else self._payout_settings.system_actor_id

    # ------------------------------------------------------------------
    # Outcome application
    # ------------------------------------------------------------------

    def apply_outcome(
        self,
        withdrawal_id: UUID | str,
        payment_reference: str | None,
        outcome: PayoutOutcome | str,
        failure_reason: str | None,
        actor_id: UUID | None,
        admin_notes: str | None = None,
    ) -> ReconciliationResult:
        """
        Apply one observed outcome for (withdrawal_id, payment_reference).

        Returns:
            ReconciliationResult with applied=False for no-ops.

        Raises:
            ReconciliationConflictError: The outcome contradicts the
                recorded state.
            WithdrawalNotFoundError: Unknown withdrawal.
        """
        outcome = PayoutOutcome(outcome)
        actor_id = self._actor(actor_id)
        withdrawal = self._withdrawals.lock_withdrawal(withdrawal_id)
        status = WithdrawalStatus(withdrawal.status)
        recorded = withdrawal.payment_reference

        if outcome == PayoutOutcome.SUCCEEDED:
            applied = self._apply_success(
                withdrawal, status, recorded, payment_reference, actor_id, admin_notes
            )
        elif outcome == PayoutOutcome.FAILED:
            applied = self._apply_failure(
                withdrawal, status, recorded, payment_reference, failure_reason, actor_id
            )
        else:
            applied = False
            if status == WithdrawalStatus.PROCESSING and payment_reference and recorded is None:
                self._withdrawals.record_payment_reference(withdrawal, payment_reference, actor_id)

        result = ReconciliationResult(
            status=WithdrawalStatus(withdrawal.status),
            withdrawal_id=withdrawal.id,
            applied=applied,
            outcome=outcome,
            payment_reference=payment_reference,
        )
        logger.info(
            "payout_reconciled" if applied else "payout_reconcile_noop",
            extra={
                "withdrawal_id": str(withdrawal.id),
                "outcome": outcome.value,
                "payment_reference": payment_reference,
                "status": result.status.value,
            },
        )
        return result

    def _conflict(self, withdrawal: Withdrawal, recorded, received, reason: str):
        logger.warning(
            "payout_reconcile_conflict",
            extra={
                "withdrawal_id": str(withdrawal.id),
                "recorded_reference": recorded,
                "received_reference": received,
                "reason": reason,
            },
        )
        return ReconciliationConflictError(str(withdrawal.id), recorded, received, reason)

    def _apply_success(
        self,
        withdrawal: Withdrawal,
        status: WithdrawalStatus,
        recorded: str | None,
        reference: str | None,
        actor_id: UUID | None,
        admin_notes: str | None,
    ) -> bool:
        if not reference:
            raise self._conflict(
                withdrawal, recorded, reference, "success reported without a reference"
            )
        if status == WithdrawalStatus.PAID:
            if recorded == reference:
                return False
            raise self._conflict(
                withdrawal, recorded, reference, "already paid under another reference"
            )
        if status != WithdrawalStatus.PROCESSING:
            raise self._conflict(
                withdrawal, recorded, reference, f"success reported while {status.value}"
            )
        if (recorded is not None and recorded != reference) or (
            reference == withdrawal.failed_payment_reference
        ):
            raise self._conflict(
                withdrawal, recorded, reference, "success for a reference that is not in flight"
            )
        self._withdrawals.complete_payout(withdrawal, reference, actor_id, admin_notes)
        return True

    def _apply_failure(
        self,
        withdrawal: Withdrawal,
        status: WithdrawalStatus,
        recorded: str | None,
        reference: str | None,
        failure_reason: str | None,
        actor_id: UUID | None,
    ) -> bool:
        if status == WithdrawalStatus.PROCESSING:
            if reference is None or recorded is None or recorded == reference:
                if reference is not None and reference == withdrawal.failed_payment_reference:
                    # Late duplicate of the previous attempt's failure.
                    return False
                self._withdrawals.fail_payout(withdrawal, failure_reason, reference, actor_id)
                return True
            if reference == withdrawal.failed_payment_reference:
                return False
            raise self._conflict(
                withdrawal, recorded, reference, "failure for a reference that is not in flight"
            )
        if status == WithdrawalStatus.APPROVED:
            if reference is None or reference == withdrawal.failed_payment_reference:
                return False
            raise self._conflict(withdrawal, recorded, reference, "failure for an unknown attempt")
        if status == WithdrawalStatus.PAID:
            raise self._conflict(withdrawal, recorded, reference, "failure reported after payment")
        raise self._conflict(withdrawal, recorded, reference, f"failure reported while {status.value}")

    def process_payment(
        self,
        withdrawal_id: UUID | str,
        payment_reference: str,
        actor_id: UUID,
        admin_notes: str | None = None,
    ) -> ReconciliationResult:
        """
        Manually settle with an externally known payment reference.

        APPROVED withdrawals pass through PROCESSING first so the same
        outcome table applies.

        Raises:
            ReconciliationConflictError: blank reference, or another
                reference is already recorded.
            InvalidStateError: the withdrawal is not APPROVED or PROCESSING.
        """
        if not payment_reference or not payment_reference.strip():
            raise ReconciliationConflictError(
                str(withdrawal_id), None, None, "a payment reference is required"
            )
        withdrawal = self._withdrawals.lock_withdrawal(withdrawal_id)
        if withdrawal.status == WithdrawalStatus.APPROVED:
            self._withdrawals.begin_processing(withdrawal.id, actor_id)
        return self.apply_outcome(
            withdrawal.id,
            payment_reference.strip(),
            PayoutOutcome.SUCCEEDED,
            None,
            actor_id,
            admin_notes=admin_notes,
        )

    def handle_notification(
        self, notification: PayoutNotification, actor_id: UUID | None = None
    ) -> ReconciliationResult:
        """Apply an authenticated webhook delivery."""
        with LogContext.bind(withdrawal_id=notification.withdrawal_id):
            logger.info(
                "payout_notification_received",
                extra={
                    "event_id": notification.event_id,
                    "event_type": notification.event_type,
                    "payment_reference": notification.payment_reference,
                },
            )
            return self.apply_outcome(
                notification.withdrawal_id,
                notification.payment_reference,
                notification.outcome,
                notification.failure_reason,
                actor_id,
            )

    # ------------------------------------------------------------------
    # Rail interaction
    # ------------------------------------------------------------------

    def submit(self, withdrawal: Withdrawal, rail: PayoutRail) -> str:
        """
        Submit the current attempt to the rail under its idempotency key.

        Raises:
            PayoutDestinationMissingError, PayoutRailError,
            PayoutOutcomeUnknownError.
        """
        destination = withdrawal.destination
        if not destination:
            raise PayoutDestinationMissingError(str(withdrawal.id))
        key = withdrawal.idempotency_key
        logger.info(
            "payout_submitting",
            extra={
                "withdrawal_id": str(withdrawal.id),
                "idempotency_key": key,
                "rail": rail.name,
                "amount": str(withdrawal.amount),
            },
        )
        return rail.submit(
            Decimal(withdrawal.amount),
            self._payout_settings.currency,
            destination,
            key,
            {
                "withdrawal_id": str(withdrawal.id),
                "consultant_id": withdrawal.consultant_id,
                "payout_attempt": str(withdrawal.payout_attempt),
            },
        )

    def processing_withdrawals(self, limit: int) -> list[Withdrawal]:
        return list(
            self.session.execute(
                select(Withdrawal)
                .where(Withdrawal.status == WithdrawalStatus.PROCESSING)
                .order_by(Withdrawal.processing_started_at, Withdrawal.id)
                .limit(limit)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def reconcile_processing(
        self,
        rail: PayoutRail,
        limit: int | None = None,
        actor_id: UUID | None = None,
    ) -> ReconciliationSummary:
        """
        Poll the rail for every PROCESSING withdrawal and apply the outcome.

        A withdrawal without a recorded reference is re-submitted under the
        same idempotency key; the rail returns the original transfer.
        Unknown outcomes are skipped and retried on the next sweep.
        """
        actor_id = self._actor(actor_id)
        summary = ReconciliationSummary()
        batch = limit or self._payout_settings.reconcile_batch_size
        for withdrawal in self.processing_withdrawals(batch):
            summary.examined += 1
            withdrawal_id = withdrawal.id
            try:
                with self.session.begin_nested():
                    result = self._reconcile_one(withdrawal, rail, actor_id)
            except PayoutOutcomeUnknownError as exc:
                summary.unknown += 1
                logger.warning(
                    "payout_outcome_unknown",
                    extra={"withdrawal_id": str(withdrawal_id), "reason": exc.reason},
                )
                continue
            except PayoutDestinationMissingError:
                summary.conflicts += 1
                logger.error(
                    "payout_destination_missing", extra={"withdrawal_id": str(withdrawal_id)}
                )
                continue
            except (ReconciliationConflictError, InvalidStateError, PayoutRailError) as exc:
                summary.conflicts += 1
                logger.error(
                    "payout_reconcile_failed",
                    extra={"withdrawal_id": str(withdrawal_id), "error_code": exc.code},
                )
                continue

            if result.status == WithdrawalStatus.PAID:
                summary.paid += 1
            elif result.status == WithdrawalStatus.APPROVED:
                summary.failed += 1
            else:
                summary.pending += 1

        logger.info(
            "payout_reconcile_sweep_completed",
            extra={
                "examined": summary.examined,
                "paid": summary.paid,
                "failed": summary.failed,
                "pending": summary.pending,
                "conflicts": summary.conflicts,
                "unknown": summary.unknown,
            },
        )
        return summary

    def _reconcile_one(
        self, withdrawal: Withdrawal, rail: PayoutRail, actor_id: UUID | None
    ) -> ReconciliationResult:
        reference = withdrawal.payment_reference
        if reference is None:
            try:
                reference = self.submit(withdrawal, rail)
            except PayoutRailError as exc:
                return self.apply_outcome(
                    withdrawal.id, exc.reference, PayoutOutcome.FAILED, exc.reason, actor_id
                )
            self._withdrawals.record_payment_reference(withdrawal, reference, actor_id)
        outcome = rail.status(reference)
        return self.apply_outcome(withdrawal.id, reference, outcome, None, actor_id)
