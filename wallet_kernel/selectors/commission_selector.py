"""
Module: wallet_kernel.selectors.commission_selector
Responsibility: Read-only queries over commissions and the consultant's
    withdrawable position.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - available balance counts only CONFIRMED commissions with no
      withdrawal lock; locked amounts are reported as pending.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from wallet_kernel.domain.dtos import CommissionRecord, WithdrawalBalanceSummary
from wallet_kernel.models.commission import Commission, CommissionStatus
from wallet_kernel.models.withdrawal import Withdrawal, WithdrawalStatus
from wallet_kernel.selectors.base import BaseSelector, to_decimal


class CommissionSelector(BaseSelector[Commission]):
    """Read access to commissions."""

    def get(self, commission_id: UUID) -> CommissionRecord | None:
        commission = self._get(Commission, commission_id)
        if commission is None:
            return None
        return CommissionRecord.from_model(commission)

    def list_for_consultant(
        self,
        consultant_id: str,
        status: CommissionStatus | str | None = None,
    ) -> list[CommissionRecord]:
        query = select(Commission).where(Commission.consultant_id == consultant_id)
        if status is not None:
            query = query.where(Commission.status == CommissionStatus(status))
        query = query.order_by(Commission.created_at.desc(), Commission.id.desc())
        return [CommissionRecord.from_model(c) for c in self._fresh(query).scalars()]

    def list_for_job(self, job_id: str) -> list[CommissionRecord]:
        query = (
            select(Commission)
            .where(Commission.job_id == job_id)
            .order_by(Commission.created_at, Commission.id)
        )
        return [CommissionRecord.from_model(c) for c in self._fresh(query).scalars()]

    def available_for_withdrawal(self, consultant_id: str) -> list[CommissionRecord]:
        """Unlocked CONFIRMED commissions, oldest first."""
        query = (
            select(Commission)
            .where(
                Commission.consultant_id == consultant_id,
                Commission.status == CommissionStatus.CONFIRMED,
                Commission.withdrawal_id.is_(None),
            )
            .order_by(Commission.created_at, Commission.id)
        )
        return [CommissionRecord.from_model(c) for c in self._fresh(query).scalars()]

    def _sum(self, *conditions) -> tuple[Decimal, int]:
        total, count = self.session.execute(
            select(func.sum(Commission.amount), func.count(Commission.id)).where(*conditions)
        ).one()
        return to_decimal(total), int(count or 0)

    def withdrawal_balance_summary(
        self, consultant_id: str, minimum_withdrawal: Decimal
    ) -> WithdrawalBalanceSummary:
        owned = Commission.consultant_id == consultant_id
        available, available_count = self._sum(
            owned,
            Commission.status == CommissionStatus.CONFIRMED,
            Commission.withdrawal_id.is_(None),
        )
        accruing, _ = self._sum(owned, Commission.status == CommissionStatus.PENDING)
        locked, _ = self._sum(
            owned,
            Commission.status == CommissionStatus.CONFIRMED,
            Commission.withdrawal_id.is_not(None),
        )
        earned, _ = self._sum(
            owned,
            Commission.status.in_([CommissionStatus.CONFIRMED, CommissionStatus.PAID]),
        )
        withdrawn = self.session.execute(
            select(func.sum(Withdrawal.amount)).where(
                Withdrawal.consultant_id == consultant_id,
                Withdrawal.status == WithdrawalStatus.PAID,
            )
        ).scalar_one()
        return WithdrawalBalanceSummary(
            consultant_id=consultant_id,
            available_balance=available,
            pending_balance=accruing + locked,
            total_earned=earned,
            total_withdrawn=to_decimal(withdrawn),
            minimum_withdrawal=minimum_withdrawal,
            available_commission_count=available_count,
        )
