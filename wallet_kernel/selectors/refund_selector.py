"""
Module: wallet_kernel.selectors.refund_selector
Responsibility: Read-only queries over refund requests for companies and
    the admin review queue.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import func, select

from wallet_kernel.domain.dtos import RefundPage, RefundRecord
from wallet_kernel.models.refund_request import RefundRequest, RefundStatus
from wallet_kernel.selectors.base import BaseSelector


class RefundSelector(BaseSelector[RefundRequest]):
    """Read access to refund requests."""

    def get(self, refund_id: UUID) -> RefundRecord | None:
        refund = self._get(RefundRequest, refund_id)
        if refund is None:
            return None
        return RefundRecord.from_model(refund)

    def _page(self, conditions: list, order_by, limit: int, offset: int) -> RefundPage:
        total = self.session.execute(
            select(func.count(RefundRequest.id)).where(*conditions)
        ).scalar_one()
        rows = self._fresh(
            select(RefundRequest)
            .where(*conditions)
            .order_by(*order_by)
            .limit(limit)
            .offset(offset)
        ).scalars()
        return RefundPage(
            items=tuple(RefundRecord.from_model(r) for r in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

    def pending(
        self, company_id: str | None = None, limit: int = 50, offset: int = 0
    ) -> RefundPage:
        """The admin review queue, oldest first."""
        conditions = [RefundRequest.status == RefundStatus.PENDING]
        if company_id is not None:
            conditions.append(RefundRequest.company_id == company_id)
        return self._page(
            conditions, (RefundRequest.created_at, RefundRequest.id), limit, offset
        )

    def list_for_company(self, company_id: str, limit: int = 20, offset: int = 0) -> RefundPage:
        return self._page(
            [RefundRequest.company_id == company_id],
            (RefundRequest.created_at.desc(), RefundRequest.id.desc()),
            limit,
            offset,
        )
