"""
RefundService -- company refund requests and their wallet credit.

Responsibility:
    Records a company's request to refund a wallet charge, and lets an
    admin approve it (crediting the company wallet) or reject it.

Architecture position:
    Kernel > Services.  The only ledger writer it uses is BalanceEngine.

Invariants enforced:
    - Only PENDING requests can be approved or rejected.
    - Approval is one SAVEPOINT: the status change and the wallet credit
      commit together or not at all.
    - A subscription bill is credited back as SUBSCRIPTION_REFUND; job
      payments and add-on charges as JOB_REFUND.
    - Rejection requires a non-blank reason.

Failure modes:
    - InvalidAmountError, ReasonRequiredError on create.
    - RefundNotFoundError, InvalidStateError, ReasonRequiredError on review.
    - AccountFrozenError from BalanceEngine if the company wallet is not
      ACTIVE; the request stays PENDING.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from wallet_config.schema import WalletSettings
from wallet_kernel.db.types import to_amount
from wallet_kernel.domain.clock import Clock
from wallet_kernel.domain.dtos import RefundRecord
from wallet_kernel.exceptions import (
    InvalidStateError,
    ReasonRequiredError,
    RefundNotFoundError,
)
from wallet_kernel.logging_config import get_logger
from wallet_kernel.models.ledger_account import OwnerType
from wallet_kernel.models.ledger_transaction import TransactionType
from wallet_kernel.models.refund_request import RefundRequest, RefundSource, RefundStatus
from wallet_kernel.services.balance_engine import BalanceEngine
from wallet_kernel.services.base import BaseService, coerce_uuid

logger = get_logger("services.refund")

REFUND_ENTITY = "refund_request"

_CREDIT_TYPES = {
    RefundSource.JOB_PAYMENT: TransactionType.JOB_REFUND,
    RefundSource.ADDON_SERVICE_CHARGE: TransactionType.JOB_REFUND,
    RefundSource.SUBSCRIPTION_BILL: TransactionType.SUBSCRIPTION_REFUND,
}


class RefundService(BaseService[RefundRequest]):
    """
    Refund request workflow.

    Contract:
        Flushes, never commits.  Review methods load the request
        ``FOR UPDATE`` before checking its status.
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

    def _lock(self, refund_id: UUID | str) -> RefundRequest:
        key = coerce_uuid(refund_id)
        refund = None
        if key is not None:
            refund = self.session.execute(
                select(RefundRequest)
                .where(RefundRequest.id == key)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if refund is None:
            raise RefundNotFoundError(str(refund_id))
        return refund

    def _require_pending(self, refund: RefundRequest, attempted: str) -> None:
        if refund.status != RefundStatus.PENDING:
            raise InvalidStateError(
                REFUND_ENTITY, str(refund.id), RefundStatus(refund.status).value, attempted
            )

    def create(
        self,
        company_id: str,
        transaction_id: str,
        source: RefundSource | str,
        amount: Decimal | int | str,
        reason: str,
        actor_id: UUID,
    ) -> RefundRecord:
        """Open a PENDING refund request."""
        value = to_amount(amount)
        source = RefundSource(source)
        if not reason or not reason.strip():
            raise ReasonRequiredError("request refund for", transaction_id)
        now = self._clock.now()
        refund = RefundRequest(
            company_id=company_id,
            transaction_id=transaction_id,
            source=source,
            amount=value,
            reason=reason.strip(),
            status=RefundStatus.PENDING,
            created_by_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(refund)
        self.session.flush()
        logger.info(
            "refund_requested",
            extra={
                "refund_id": str(refund.id),
                "company_id": company_id,
                "source": source.value,
                "amount": str(value),
            },
        )
        return RefundRecord.from_model(refund)

    def approve(
        self,
        refund_id: UUID | str,
        admin_id: UUID,
        admin_notes: str | None = None,
    ) -> RefundRecord:
        """
        PENDING -> APPROVED and credit the company wallet.

        The company wallet is created if the company never had one.
        """
        refund = self._lock(refund_id)
        self._require_pending(refund, "approve")
        credit_type = _CREDIT_TYPES[RefundSource(refund.source)]

        with self.session.begin_nested():
            account = self._balance_engine.get_or_create_account(
                OwnerType.COMPANY, refund.company_id, admin_id
            )
            credit = self._balance_engine.credit_account(
                account.id,
                refund.amount,
                credit_type,
                f"Refund approved: {refund.reason}",
                admin_id,
                related_entity_type=REFUND_ENTITY,
                related_entity_id=str(refund.id),
                metadata={
                    "transaction_id": refund.transaction_id,
                    "source": RefundSource(refund.source).value,
                },
            )
            refund.status = RefundStatus.APPROVED
            refund.processed_by = admin_id
            refund.processed_at = self._clock.now()
            refund.credit_transaction_id = credit.transaction_id
            if admin_notes:
                refund.admin_notes = admin_notes
            refund.updated_by_id = admin_id
            self.session.flush()

        logger.info(
            "refund_approved",
            extra={
                "refund_id": str(refund.id),
                "company_id": refund.company_id,
                "transaction_type": credit_type.value,
                "amount": str(refund.amount),
            },
        )
        return RefundRecord.from_model(refund)

    def reject(self, refund_id: UUID | str, admin_id: UUID, reason: str | None) -> RefundRecord:
        """PENDING -> REJECTED.  The ledger is not touched."""
        if not reason or not reason.strip():
            raise ReasonRequiredError("reject refund", str(refund_id))
        refund = self._lock(refund_id)
        self._require_pending(refund, "reject")
        refund.status = RefundStatus.REJECTED
        refund.rejection_reason = reason.strip()
        refund.processed_by = admin_id
        refund.processed_at = self._clock.now()
        refund.updated_by_id = admin_id
        self.session.flush()
        logger.info(
            "refund_rejected",
            extra={"refund_id": str(refund.id), "company_id": refund.company_id},
        )
        return RefundRecord.from_model(refund)
