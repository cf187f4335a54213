"""
CommissionService -- accrual, confirmation and cancellation of commissions.

Responsibility:
    Owns the commission lifecycle up to CONFIRMED:
    PENDING -> CONFIRMED, PENDING/CONFIRMED -> CANCELLED.  The move to PAID
    belongs to WithdrawalService, which is the only path into the ledger.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Status changes are conditional UPDATEs keyed on the expected current
      status, so two racing callers cannot both succeed.
    - A commission locked by a withdrawal cannot be cancelled.
    - No ledger effect: commissions never call BalanceEngine.

Failure modes:
    - InvalidAmountError: amount <= 0.
    - CommissionNotFoundError: unknown id.
    - InvalidStateError: transition not allowed from the current status.
    - CommissionAlreadyLockedError: cancel while claimed by a withdrawal.
    - CommissionNotEligibleError: hiring mode earns no commission.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from wallet_config.schema import CommissionPolicy
from wallet_kernel.db.types import to_amount
from wallet_kernel.domain.clock import Clock
from wallet_kernel.domain.commission_rates import HiringMode, quote_commission
from wallet_kernel.domain.dtos import CommissionRecord
from wallet_kernel.exceptions import (
    CommissionAlreadyLockedError,
    CommissionNotFoundError,
    InvalidStateError,
)
from wallet_kernel.logging_config import get_logger
from wallet_kernel.models.commission import Commission, CommissionStatus, CommissionType
from wallet_kernel.services.base import BaseService, coerce_uuid

logger = get_logger("services.commission")


class CommissionService(BaseService[Commission]):
    """
    Commission accrual service.

    Contract:
        Flushes, never commits.  Returns CommissionRecord DTOs.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: CommissionPolicy | None = None,
    ):
        super().__init__(session, clock)
        self._policy = policy or CommissionPolicy()

    def _load(self, commission_id: UUID | str) -> Commission:
        key = coerce_uuid(commission_id)
        commission = (
            self.session.get(Commission, key, populate_existing=True)
            if key is not None
            else None
        )
        if commission is None:
            raise CommissionNotFoundError(str(commission_id))
        return commission

    def accrue(
        self,
        consultant_id: str,
        region_id: str | None,
        amount: Decimal,
        type: CommissionType | str,
        description: str,
        actor_id: UUID,
        job_id: str | None = None,
        company_id: str | None = None,
        subscription_id: str | None = None,
        rate: Decimal | None = None,
        expiry_date: datetime | None = None,
        notes: str | None = None,
    ) -> CommissionRecord:
        """
        Record a new PENDING commission.

        Raises:
            InvalidAmountError: amount <= 0.
        """
        amount = to_amount(amount)
        now = self._clock.now()
        commission = Commission(
            consultant_id=consultant_id,
            region_id=region_id,
            amount=amount,
            rate=rate,
            type=CommissionType(type),
            status=CommissionStatus.PENDING,
            description=description,
            job_id=job_id,
            company_id=company_id,
            subscription_id=subscription_id,
            expiry_date=expiry_date,
            notes=notes,
            created_by_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(commission)
        self.session.flush()

        logger.info(
            "commission_accrued",
            extra={
                "commission_id": str(commission.id),
                "consultant_id": consultant_id,
                "amount": str(amount),
                "commission_type": CommissionType(type).value,
            },
        )
        return CommissionRecord.from_model(commission)

    def confirm(self, commission_id: UUID | str, actor_id: UUID | None = None) -> CommissionRecord:
        """
        PENDING -> CONFIRMED.

        Raises:
            CommissionNotFoundError, InvalidStateError.
        """
        key = coerce_uuid(commission_id)
        now = self._clock.now()
        result = None
        if key is not None:
            result = self.session.execute(
                update(Commission)
                .where(Commission.id == key, Commission.status == CommissionStatus.PENDING)
                .values(
                    status=CommissionStatus.CONFIRMED,
                    confirmed_at=now,
                    updated_at=now,
                    updated_by_id=actor_id,
                )
                .execution_options(synchronize_session=False)
            )
        if result is None or result.rowcount != 1:
            commission = self._load(commission_id)
            raise InvalidStateError(
                "commission",
                str(commission.id),
                CommissionStatus(commission.status).value,
                "confirm",
            )

        commission = self._load(key)
        logger.info("commission_confirmed", extra={"commission_id": str(key)})
        return CommissionRecord.from_model(commission)

    def cancel(
        self,
        commission_id: UUID | str,
        actor_id: UUID | None = None,
        reason: str | None = None,
    ) -> CommissionRecord:
        """
        PENDING/CONFIRMED -> CANCELLED, only while unlocked.

        Raises:
            CommissionNotFoundError, CommissionAlreadyLockedError,
            InvalidStateError.
        """
        key = coerce_uuid(commission_id)
        now = self._clock.now()
        values = {
            "status": CommissionStatus.CANCELLED,
            "updated_at": now,
            "updated_by_id": actor_id,
        }
        if reason:
            values["notes"] = reason
        result = None
        if key is not None:
            result = self.session.execute(
                update(Commission)
                .where(
                    Commission.id == key,
                    Commission.status.in_(
                        [CommissionStatus.PENDING, CommissionStatus.CONFIRMED]
                    ),
                    Commission.withdrawal_id.is_(None),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        if result is None or result.rowcount != 1:
            commission = self._load(commission_id)
            status = CommissionStatus(commission.status)
            if commission.withdrawal_id is not None and status == CommissionStatus.CONFIRMED:
                raise CommissionAlreadyLockedError(
                    str(commission.id), str(commission.withdrawal_id)
                )
            raise InvalidStateError("commission", str(commission.id), status.value, "cancel")

        commission = self._load(key)
        logger.info(
            "commission_cancelled",
            extra={"commission_id": str(key), "reason": reason},
        )
        return CommissionRecord.from_model(commission)

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
    ) -> CommissionRecord:
        """
        Accrue (or re-price) the consultant's commission for a job.

        An existing PENDING commission for the same job and consultant is
        updated in place instead of creating a duplicate.

        Raises:
            CommissionNotEligibleError: SELF_MANAGED or unconfigured mode.
        """
        quote = quote_commission(
            hiring_mode,
            self._policy.rates,
            self._policy.service_fees,
            service_fee=service_fee,
            job_id=job_id,
        )
        description = f"Commission for {quote.hiring_mode.value} service"
        if job_title:
            description = f"{description} - {job_title}"

        existing = self.session.execute(
            select(Commission)
            .where(
                Commission.job_id == job_id,
                Commission.consultant_id == consultant_id,
                Commission.status == CommissionStatus.PENDING,
            )
            .order_by(Commission.created_at)
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if existing is not None:
            existing.amount = quote.amount
            existing.rate = quote.rate
            existing.description = description
            existing.updated_by_id = actor_id
            self.session.flush()
            logger.info(
                "commission_repriced",
                extra={
                    "commission_id": str(existing.id),
                    "job_id": job_id,
                    "amount": str(quote.amount),
                },
            )
            return CommissionRecord.from_model(existing)

        return self.accrue(
            consultant_id=consultant_id,
            region_id=region_id,
            amount=quote.amount,
            type=CommissionType.PLACEMENT,
            description=description,
            actor_id=actor_id,
            job_id=job_id,
            company_id=company_id,
            rate=quote.rate,
        )

    def confirm_for_job(self, job_id: str, actor_id: UUID | None = None) -> list[CommissionRecord]:
        """Confirm every PENDING commission of a job (hire completed)."""
        pending_ids = self.session.execute(
            select(Commission.id).where(
                Commission.job_id == job_id,
                Commission.status == CommissionStatus.PENDING,
            )
        ).scalars().all()
        return [self.confirm(cid, actor_id) for cid in pending_ids]

    def expire_stale(self, as_of: datetime, actor_id: UUID | None = None) -> list[UUID]:
        """
        Cancel PENDING commissions that can no longer be earned.

        A commission expires when its expiry_date has passed, or when it is
        a SUBSCRIPTION_SALE older than the configured expiry window.

        Returns:
            Ids of the commissions cancelled.
        """
        cutoff = as_of - relativedelta(months=self._policy.subscription_expiry_months)
        stale_ids = self.session.execute(
            select(Commission.id).where(
                Commission.status == CommissionStatus.PENDING,
                Commission.withdrawal_id.is_(None),
                or_(
                    Commission.expiry_date < as_of,
                    (Commission.type == CommissionType.SUBSCRIPTION_SALE)
                    & (Commission.created_at < cutoff),
                ),
            )
        ).scalars().all()
        if not stale_ids:
            return []

        now = self._clock.now()
        self.session.execute(
            update(Commission)
            .where(
                Commission.id.in_(stale_ids),
                Commission.status == CommissionStatus.PENDING,
            )
            .values(
                status=CommissionStatus.CANCELLED,
                notes="Expired",
                updated_at=now,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        self.session.expire_all()
        logger.info(
            "commissions_expired",
            extra={"count": len(stale_ids), "as_of": as_of.isoformat()},
        )
        return list(stale_ids)
