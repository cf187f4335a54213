"""
WalletOrchestrator -- the public entry point of the wallet kernel.

Responsibility:
    Wires the kernel services to one session, clock, configuration and
    payout rail, and owns the transaction boundary: every operation commits
    on success and rolls back on failure.  Kernel errors become
    ``WalletResult`` failures carrying the error's machine-readable code and
    structured attributes; anything else is rolled back and re-raised.

Architecture position:
    Kernel > Services -- the only class that calls ``session.commit()``.
    Hosts (HTTP handlers, scripts, webhook endpoints) talk to this class.

Invariants enforced:
    - One operation, one transaction.  execute_withdrawal is the exception
      by construction: PROCESSING is committed BEFORE the payout rail is
      called, and the observed outcome is applied in a later transaction.
    - An unknown rail outcome leaves the withdrawal PROCESSING; the
      reconcile sweep resolves it later under the same idempotency key.

Audit relevance:
    Each call runs inside ``LogContext.bind`` with the actor and the entity
    ids so every log line emitted below carries them.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, TypeVar
from uuid import UUID
from uuid import uuid4 as _uuid4

from sqlalchemy.orm import Session

from wallet_config import get_active_config
from wallet_config.schema import WalletConfig
from wallet_kernel.domain.clock import Clock, SystemClock
from wallet_kernel.domain.commission_rates import HiringMode
from wallet_kernel.domain.filters import TransactionFilter
from wallet_kernel.domain.payout import PayoutNotification, PayoutOutcome, PayoutRail
from wallet_kernel.exceptions import (
    AccountNotFoundError,
    PayoutDestinationMissingError,
    PayoutOutcomeUnknownError,
    PayoutRailError,
    RefundNotFoundError,
    WalletKernelError,
    WithdrawalNotFoundError,
)
from wallet_kernel.logging_config import LogContext, get_logger
from wallet_kernel.models.commission import CommissionType
from wallet_kernel.models.ledger_account import AccountStatus, OwnerType
from wallet_kernel.models.ledger_transaction import TransactionType
from wallet_kernel.models.refund_request import RefundSource
from wallet_kernel.models.withdrawal import PaymentMethod, Withdrawal, WithdrawalStatus
from wallet_kernel.selectors.commission_selector import CommissionSelector
from wallet_kernel.selectors.ledger_selector import LedgerSelector
from wallet_kernel.selectors.refund_selector import RefundSelector
from wallet_kernel.selectors.withdrawal_selector import WithdrawalSelector
from wallet_kernel.services.balance_engine import BalanceEngine
from wallet_kernel.services.base import coerce_uuid
from wallet_kernel.services.commission_service import CommissionService
from wallet_kernel.services.payout_reconciliation import PayoutReconciliation
from wallet_kernel.services.refund_service import RefundService
from wallet_kernel.services.wallet_payment_service import WalletPaymentService
from wallet_kernel.services.withdrawal_service import WithdrawalService

logger = get_logger("services.wallet_orchestrator")

T = TypeVar("T")


class WalletResultStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class WalletResult:
    """Outcome of one orchestrated operation."""

    status: WalletResultStatus
    value: Any = None
    error_code: str | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == WalletResultStatus.SUCCEEDED

    @classmethod
    def success(cls, value: Any = None) -> "WalletResult":
        return cls(status=WalletResultStatus.SUCCEEDED, value=value)

    @classmethod
    def failure(cls, error: WalletKernelError, value: Any = None) -> "WalletResult":
        return cls(
            status=WalletResultStatus.FAILED,
            value=value,
            error_code=error.code,
            message=str(error),
            details=dict(vars(error)),
        )


class WalletOrchestrator:
    """
    Facade over the wallet kernel services.

    Contract:
        Every public method returns a WalletResult.  Success commits;
        a WalletKernelError rolls back and is returned as a failure;
        any other exception rolls back and propagates.

    Non-goals:
        - Authentication.  Callers pass already-authenticated actor ids.
        - Webhook signature checks; see adapters.stripe_connect.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: WalletConfig | None = None,
        rail: PayoutRail | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._rail = rail

        settings = self._config.wallet
        self.balance_engine = BalanceEngine(session, self._clock, settings)
        self.commissions = CommissionService(session, self._clock, self._config.commissions)
        self.withdrawals = WithdrawalService(
            session, self._clock, settings, balance_engine=self.balance_engine
        )
        self.reconciliation = PayoutReconciliation(
            session, self._clock, self.withdrawals, self._config.payouts
        )
        self.payments = WalletPaymentService(
            session,
            self._clock,
            settings,
            self._config.commissions,
            balance_engine=self.balance_engine,
        )
        self.refunds = RefundService(
            session, self._clock, settings, balance_engine=self.balance_engine
        )
        self.ledger_selector = LedgerSelector(session)
        self.commission_selector = CommissionSelector(session)
        self.withdrawal_selector = WithdrawalSelector(session)
        self.refund_selector = RefundSelector(session)

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    def _run(self, operation: str, fn: Callable[[], T], **context: Any) -> WalletResult:
        correlation_id = context.pop("correlation_id", None) or str(_uuid4())
        with LogContext.bind(correlation_id=correlation_id, **context):
            t0 = time.monotonic()
            try:
                value = fn()
                self.session.commit()
            except WalletKernelError as exc:
                self.session.rollback()
                logger.warning(
                    "wallet_operation_rejected",
                    extra={
                        "operation": operation,
                        "error_code": exc.code,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return WalletResult.failure(exc)
            except Exception:
                self.session.rollback()
                logger.error(
                    "wallet_operation_failed",
                    extra={"operation": operation},
                    exc_info=True,
                )
                raise
            logger.debug(
                "wallet_operation_completed",
                extra={
                    "operation": operation,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return WalletResult.success(value)

    # ------------------------------------------------------------------
    # Accounts and ledger
    # ------------------------------------------------------------------

    def open_account(
        self,
        owner_type: OwnerType | str,
        owner_id: str,
        actor_id: UUID,
        initial_balance: Decimal = Decimal("0"),
        currency: str | None = None,
    ) -> WalletResult:
        """Get or create the owner's wallet; value is an AccountBalance."""

        def op():
            account = self.balance_engine.get_or_create_account(
                owner_type, owner_id, actor_id, initial_balance, currency
            )
            return self.ledger_selector.get_account(account.id)

        return self._run("open_account", op, actor_id=actor_id)

    def get_balance(self, owner_type: OwnerType | str, owner_id: str) -> WalletResult:
        def op():
            balance = self.ledger_selector.get_account_by_owner(owner_type, owner_id)
            if balance is None:
                raise AccountNotFoundError(f"{OwnerType(owner_type).value}:{owner_id}")
            return balance

        return self._run("get_balance", op)

    def list_transactions(
        self,
        account_id: UUID | str,
        filters: TransactionFilter | dict[str, Any] | None = None,
    ) -> WalletResult:
        """
        Paginated history, newest first; value is a TransactionPage.

        A dict of filters is validated once here (InvalidFilterError).
        """
        settings = self._config.wallet

        def op():
            account = self.balance_engine.get_account(account_id)
            if isinstance(filters, TransactionFilter):
                parsed = filters
            else:
                params = dict(filters or {})
                params.setdefault("limit", settings.transaction_page_default)
                parsed = TransactionFilter.from_params(params, settings.transaction_page_max)
            return self.ledger_selector.list_transactions(account.id, parsed)

        return self._run("list_transactions", op, account_id=account_id)

    def credit(
        self,
        account_id: UUID | str,
        amount: Decimal,
        type: TransactionType | str,
        description: str,
        actor_id: UUID,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> WalletResult:
        return self._run(
            "credit",
            lambda: self.balance_engine.credit_account(
                account_id, amount, type, description, actor_id,
                related_entity_type, related_entity_id, metadata,
            ),
            actor_id=actor_id,
            account_id=account_id,
        )

    def debit(
        self,
        account_id: UUID | str,
        amount: Decimal,
        type: TransactionType | str,
        description: str,
        actor_id: UUID,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> WalletResult:
        return self._run(
            "debit",
            lambda: self.balance_engine.debit_account(
                account_id, amount, type, description, actor_id,
                related_entity_type, related_entity_id, metadata,
            ),
            actor_id=actor_id,
            account_id=account_id,
        )

    def transfer(
        self,
        from_account_id: UUID | str,
        to_account_id: UUID | str,
        amount: Decimal,
        description: str,
        actor_id: UUID,
    ) -> WalletResult:
        return self._run(
            "transfer",
            lambda: self.balance_engine.transfer(
                from_account_id, to_account_id, amount, description, actor_id
            ),
            actor_id=actor_id,
            account_id=from_account_id,
        )

    def reverse_transaction(
        self, transaction_id: UUID | str, reason: str, actor_id: UUID
    ) -> WalletResult:
        return self._run(
            "reverse_transaction",
            lambda: self.balance_engine.reverse_transaction(transaction_id, reason, actor_id),
            actor_id=actor_id,
        )

    def set_account_status(
        self, account_id: UUID | str, status: AccountStatus | str, actor_id: UUID
    ) -> WalletResult:
        def op():
            account = self.balance_engine.set_account_status(account_id, status, actor_id)
            return self.ledger_selector.get_account(account.id)

        return self._run("set_account_status", op, actor_id=actor_id, account_id=account_id)

    def verify_integrity(self, account_id: UUID | str) -> WalletResult:
        """value is an IntegrityReport; an inconsistent report is still a success."""
        return self._run(
            "verify_integrity",
            lambda: self.balance_engine.verify_balance_integrity(account_id),
            account_id=account_id,
        )

    # ------------------------------------------------------------------
    # Commissions
    # ------------------------------------------------------------------

    def accrue_commission(
        self,
        consultant_id: str,
        amount: Decimal,
        type: CommissionType | str,
        actor_id: UUID,
        region_id: str | None = None,
        description: str | None = None,
        **kwargs: Any,
    ) -> WalletResult:
        return self._run(
            "accrue_commission",
            lambda: self.commissions.accrue(
                consultant_id=consultant_id,
                region_id=region_id,
                amount=amount,
                type=type,
                description=description,
                actor_id=actor_id,
                **kwargs,
            ),
            actor_id=actor_id,
        )

    def confirm_commission(self, commission_id: UUID | str, actor_id: UUID) -> WalletResult:
        return self._run(
            "confirm_commission",
            lambda: self.commissions.confirm(commission_id, actor_id),
            actor_id=actor_id,
            commission_id=commission_id,
        )

    def cancel_commission(
        self, commission_id: UUID | str, actor_id: UUID, reason: str | None = None
    ) -> WalletResult:
        return self._run(
            "cancel_commission",
            lambda: self.commissions.cancel(commission_id, actor_id, reason),
            actor_id=actor_id,
            commission_id=commission_id,
        )

    def accrue_for_job_assignment(
        self,
        job_id: str,
        consultant_id: str,
        region_id: str | None,
        hiring_mode: HiringMode | str,
        actor_id: UUID,
        service_fee: Decimal | None = None,
        company_id: str | None = None,
        job_title: str | None = None,
    ) -> WalletResult:
        return self._run(
            "accrue_for_job_assignment",
            lambda: self.commissions.accrue_for_job_assignment(
                job_id, consultant_id, region_id, hiring_mode, actor_id,
                service_fee=service_fee, company_id=company_id, job_title=job_title,
            ),
            actor_id=actor_id,
        )

    def confirm_commissions_for_job(self, job_id: str, actor_id: UUID) -> WalletResult:
        return self._run(
            "confirm_commissions_for_job",
            lambda: self.commissions.confirm_for_job(job_id, actor_id),
            actor_id=actor_id,
        )

    def expire_commissions(
        self, actor_id: UUID | None = None, as_of: datetime | None = None
    ) -> WalletResult:
        """Cancel PENDING subscription commissions past their expiry date."""
        return self._run(
            "expire_commissions",
            lambda: self.commissions.expire_stale(as_of or self._clock.now(), actor_id),
            actor_id=actor_id,
        )

    def withdrawal_balance(self, consultant_id: str) -> WalletResult:
        """value is a WithdrawalBalanceSummary."""
        return self._run(
            "withdrawal_balance",
            lambda: self.commission_selector.withdrawal_balance_summary(
                consultant_id, self._config.wallet.minimum_withdrawal
            ),
        )

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def request_withdrawal(
        self,
        consultant_id: str,
        amount: Decimal,
        payment_method: PaymentMethod | str,
        commission_ids: list[UUID | str] | None,
        actor_id: UUID,
        payment_details: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> WalletResult:
        return self._run(
            "request_withdrawal",
            lambda: self.withdrawals.create(
                consultant_id, amount, payment_method, commission_ids, actor_id,
                payment_details=payment_details, notes=notes,
            ),
            actor_id=actor_id,
        )

    def approve_withdrawal(
        self, withdrawal_id: UUID | str, admin_id: UUID, admin_notes: str | None = None
    ) -> WalletResult:
        return self._run(
            "approve_withdrawal",
            lambda: self.withdrawals.approve(withdrawal_id, admin_id, admin_notes),
            actor_id=admin_id,
            withdrawal_id=withdrawal_id,
        )

    def reject_withdrawal(
        self, withdrawal_id: UUID | str, admin_id: UUID, reason: str | None
    ) -> WalletResult:
        return self._run(
            "reject_withdrawal",
            lambda: self.withdrawals.reject(withdrawal_id, admin_id, reason),
            actor_id=admin_id,
            withdrawal_id=withdrawal_id,
        )

    def cancel_withdrawal(self, withdrawal_id: UUID | str, consultant_id: str) -> WalletResult:
        return self._run(
            "cancel_withdrawal",
            lambda: self.withdrawals.cancel(withdrawal_id, consultant_id),
            withdrawal_id=withdrawal_id,
        )

    def get_withdrawal(self, withdrawal_id: UUID | str) -> WalletResult:
        def op():
            key = coerce_uuid(withdrawal_id)
            record = self.withdrawal_selector.get(key) if key is not None else None
            if record is None:
                raise WithdrawalNotFoundError(str(withdrawal_id))
            return record

        return self._run("get_withdrawal", op, withdrawal_id=withdrawal_id)

    def pending_withdrawals(self, region_id: str | None = None) -> WalletResult:
        return self._run(
            "pending_withdrawals", lambda: self.withdrawal_selector.pending(region_id)
        )

    def process_payment(
        self,
        withdrawal_id: UUID | str,
        payment_reference: str,
        actor_id: UUID,
        admin_notes: str | None = None,
    ) -> WalletResult:
        """Manual settlement; value is a ReconciliationResult."""
        return self._run(
            "process_payment",
            lambda: self.reconciliation.process_payment(
                withdrawal_id, payment_reference, actor_id, admin_notes
            ),
            actor_id=actor_id,
            withdrawal_id=withdrawal_id,
        )

    def execute_withdrawal(self, withdrawal_id: UUID | str, actor_id: UUID) -> WalletResult:
        """
        Pay an APPROVED withdrawal through the payout rail.

        Steps, each its own transaction:
            1. APPROVED -> PROCESSING (new attempt), committed.
            2. rail.submit under the attempt's idempotency key.
            3. Record the returned reference, committed.
            4. Query the rail and apply the outcome.

        A definitive rail refusal reverts to APPROVED and returns a
        PAYOUT_RAIL_ERROR failure.  An unknown outcome returns a
        PAYOUT_OUTCOME_UNKNOWN failure and leaves PROCESSING in place.

        Returns:
            WalletResult whose value is the final WithdrawalRecord.
        """
        if self._rail is None:
            raise ValueError("execute_withdrawal requires a payout rail")
        rail = self._rail

        def start():
            self.withdrawals.begin_processing(withdrawal_id, actor_id)
            withdrawal = self.withdrawals.lock_withdrawal(withdrawal_id)
            if not withdrawal.destination:
                raise PayoutDestinationMissingError(str(withdrawal.id))
            return withdrawal.id

        started = self._run("begin_processing", start, actor_id=actor_id, withdrawal_id=withdrawal_id)
        if not started.is_success:
            return started
        key: UUID = started.value

        with LogContext.bind(actor_id=actor_id, withdrawal_id=key):
            # No row lock is held across the external call.
            withdrawal = self.session.get(Withdrawal, key, populate_existing=True)
            try:
                reference = self.reconciliation.submit(withdrawal, rail)
            except PayoutRailError as exc:
                self.session.rollback()
                reverted = self._run(
                    "payout_failed",
                    lambda: self.reconciliation.apply_outcome(
                        key, exc.reference, PayoutOutcome.FAILED, exc.reason, actor_id
                    ),
                )
                if not reverted.is_success:
                    return reverted
                return WalletResult.failure(exc, value=self.withdrawal_selector.get(key))
            except PayoutOutcomeUnknownError as exc:
                self.session.rollback()
                logger.warning(
                    "payout_outcome_unknown",
                    extra={"idempotency_key": exc.idempotency_key, "reason": exc.reason},
                )
                return WalletResult.failure(exc, value=self.withdrawal_selector.get(key))
            except Exception:
                self.session.rollback()
                raise

            def record():
                current = self.withdrawals.lock_withdrawal(key)
                if current.status == WithdrawalStatus.PROCESSING:
                    self.withdrawals.record_payment_reference(current, reference, actor_id)

            recorded = self._run("record_payment_reference", record)
            if not recorded.is_success:
                return recorded

            def settle():
                outcome = rail.status(reference)
                self.reconciliation.apply_outcome(key, reference, outcome, None, actor_id)
                return self.withdrawal_selector.get(key)

            return self._run("settle_payout", settle)

    def handle_payout_notification(
        self, notification: PayoutNotification, actor_id: UUID | None = None
    ) -> WalletResult:
        """Apply an authenticated webhook; value is a ReconciliationResult."""
        return self._run(
            "handle_payout_notification",
            lambda: self.reconciliation.handle_notification(notification, actor_id),
            actor_id=actor_id,
            withdrawal_id=notification.withdrawal_id,
        )

    def reconcile_processing(
        self, limit: int | None = None, actor_id: UUID | None = None
    ) -> WalletResult:
        """Poll the rail for PROCESSING withdrawals; value is a ReconciliationSummary."""
        if self._rail is None:
            raise ValueError("reconcile_processing requires a payout rail")
        return self._run(
            "reconcile_processing",
            lambda: self.reconciliation.reconcile_processing(self._rail, limit, actor_id),
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Job posting payments
    # ------------------------------------------------------------------

    def check_can_post_job(
        self, company_id: str, service_package: HiringMode | str, actor_id: UUID
    ) -> WalletResult:
        return self._run(
            "check_can_post_job",
            lambda: self.payments.check_can_post_job(company_id, service_package, actor_id),
            actor_id=actor_id,
        )

    def pay_for_job(
        self,
        company_id: str,
        job_id: str,
        service_package: HiringMode | str,
        actor_id: UUID,
        job_title: str,
    ) -> WalletResult:
        """Debit the posting fee; value is the transaction or None when free."""
        return self._run(
            "pay_for_job",
            lambda: self.payments.charge_job_posting_fee(
                company_id, job_id, service_package, actor_id, job_title
            ),
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Subscriptions and add-ons
    # ------------------------------------------------------------------

    def purchase_subscription(
        self,
        company_id: str,
        subscription_id: str,
        amount: Decimal | str,
        actor_id: UUID,
        plan_name: str,
    ) -> WalletResult:
        return self._run(
            "purchase_subscription",
            lambda: self.payments.credit_subscription_purchase(
                company_id, subscription_id, amount, actor_id, plan_name
            ),
            actor_id=actor_id,
        )

    def renew_subscription(
        self,
        company_id: str,
        subscription_id: str,
        amount: Decimal | str,
        actor_id: UUID,
        plan_name: str,
    ) -> WalletResult:
        """A declined renewal comes back as an INSUFFICIENT_BALANCE failure."""
        return self._run(
            "renew_subscription",
            lambda: self.payments.charge_subscription_renewal(
                company_id, subscription_id, amount, actor_id, plan_name
            ),
            actor_id=actor_id,
        )

    def purchase_addon(
        self,
        company_id: str,
        job_id: str,
        service_type: str,
        amount: Decimal | str,
        actor_id: UUID,
        description: str | None = None,
    ) -> WalletResult:
        return self._run(
            "purchase_addon",
            lambda: self.payments.charge_addon_service(
                company_id, job_id, service_type, amount, actor_id, description
            ),
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def request_refund(
        self,
        company_id: str,
        transaction_id: str,
        source: RefundSource | str,
        amount: Decimal | str,
        reason: str,
        actor_id: UUID,
    ) -> WalletResult:
        return self._run(
            "request_refund",
            lambda: self.refunds.create(
                company_id, transaction_id, source, amount, reason, actor_id
            ),
            actor_id=actor_id,
        )

    def approve_refund(
        self, refund_id: UUID | str, admin_id: UUID, admin_notes: str | None = None
    ) -> WalletResult:
        return self._run(
            "approve_refund",
            lambda: self.refunds.approve(refund_id, admin_id, admin_notes),
            actor_id=admin_id,
        )

    def reject_refund(
        self, refund_id: UUID | str, admin_id: UUID, reason: str | None
    ) -> WalletResult:
        return self._run(
            "reject_refund",
            lambda: self.refunds.reject(refund_id, admin_id, reason),
            actor_id=admin_id,
        )

    def get_refund(self, refund_id: UUID | str) -> WalletResult:
        def op():
            key = coerce_uuid(refund_id)
            record = self.refund_selector.get(key) if key is not None else None
            if record is None:
                raise RefundNotFoundError(str(refund_id))
            return record

        return self._run("get_refund", op)

    def pending_refunds(
        self, company_id: str | None = None, limit: int = 50, offset: int = 0
    ) -> WalletResult:
        return self._run(
            "pending_refunds", lambda: self.refund_selector.pending(company_id, limit, offset)
        )
