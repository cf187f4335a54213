"""
Module: wallet_kernel.selectors.withdrawal_selector
Responsibility: Read-only queries over withdrawals for consultants, the
    admin review queue and payout operations.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select

from wallet_kernel.domain.dtos import WithdrawalRecord
from wallet_kernel.models.commission import Commission
from wallet_kernel.models.withdrawal import Withdrawal, WithdrawalStatus
from wallet_kernel.selectors.base import BaseSelector


class WithdrawalSelector(BaseSelector[Withdrawal]):
    """Read access to withdrawals."""

    def locked_commission_ids(self, withdrawal_id: UUID) -> tuple[UUID, ...]:
        return tuple(
            self.session.execute(
                select(Commission.id)
                .where(Commission.withdrawal_id == withdrawal_id)
                .order_by(Commission.created_at, Commission.id)
            ).scalars()
        )

    def _record(self, withdrawal: Withdrawal) -> WithdrawalRecord:
        # Open withdrawals report the live lock set; closed ones the snapshot.
        locked = self.locked_commission_ids(withdrawal.id)
        return WithdrawalRecord.from_model(withdrawal, locked or None)

    def get(self, withdrawal_id: UUID) -> WithdrawalRecord | None:
        withdrawal = self._get(Withdrawal, withdrawal_id)
        if withdrawal is None:
            return None
        return self._record(withdrawal)

    def list_for_consultant(
        self,
        consultant_id: str,
        status: WithdrawalStatus | str | None = None,
    ) -> list[WithdrawalRecord]:
        query = select(Withdrawal).where(Withdrawal.consultant_id == consultant_id)
        if status is not None:
            query = query.where(Withdrawal.status == WithdrawalStatus(status))
        query = query.order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
        return [self._record(w) for w in self._fresh(query).scalars()]

    def pending(self, region_id: str | None = None) -> list[WithdrawalRecord]:
        """
        The admin review queue, oldest first.

        With region_id, only withdrawals holding at least one commission
        earned in that region.
        """
        query = select(Withdrawal).where(Withdrawal.status == WithdrawalStatus.PENDING)
        if region_id is not None:
            in_region = select(Commission.withdrawal_id).where(
                Commission.region_id == region_id,
                Commission.withdrawal_id.is_not(None),
            )
            query = query.where(Withdrawal.id.in_(in_region))
        query = query.order_by(Withdrawal.created_at, Withdrawal.id)
        return [self._record(w) for w in self._fresh(query).scalars()]

    def processing(self) -> list[WithdrawalRecord]:
        query = (
            select(Withdrawal)
            .where(Withdrawal.status == WithdrawalStatus.PROCESSING)
            .order_by(Withdrawal.processing_started_at, Withdrawal.id)
        )
        return [self._record(w) for w in self._fresh(query).scalars()]
