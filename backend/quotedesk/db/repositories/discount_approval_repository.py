"""
Discount approval repository.
"""

from datetime import datetime
from typing import Optional, List
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.discount_approval import DiscountApproval, ApprovalStatus, ApprovalLevel


class DiscountApprovalRepository(BaseRepository[DiscountApproval]):
    """Repository for discount approvals."""

    def __init__(self, session: AsyncSession):
        super().__init__(DiscountApproval, session)

    async def get(self, id: UUID, for_update: bool = False) -> Optional[DiscountApproval]:
        query = select(DiscountApproval).where(DiscountApproval.id == id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def list_pending(self) -> List[DiscountApproval]:
        result = await self.session.execute(
            select(DiscountApproval)
            .where(DiscountApproval.status == ApprovalStatus.PENDING)
            .order_by(DiscountApproval.requested_at)
        )
        return list(result.scalars().all())

    async def list_stale_manager_pending(self, requested_before: datetime) -> List[DiscountApproval]:
        """Manager-tier approvals still pending and not yet escalated."""
        result = await self.session.execute(
            select(DiscountApproval)
            .where(
                DiscountApproval.status == ApprovalStatus.PENDING,
                DiscountApproval.approval_level == ApprovalLevel.MANAGER,
                DiscountApproval.escalated_to_admin == False,  # noqa: E712
                DiscountApproval.requested_at < requested_before,
            )
            .order_by(DiscountApproval.requested_at)
        )
        return list(result.scalars().all())

    async def list_by_quotation(
        self,
        quotation_id: UUID,
        status: Optional[ApprovalStatus] = None,
    ) -> List[DiscountApproval]:
        query = select(DiscountApproval).where(DiscountApproval.quotation_id == quotation_id)
        if status is not None:
            query = query.where(DiscountApproval.status == status)
        result = await self.session.execute(query.order_by(DiscountApproval.requested_at))
        return list(result.scalars().all())
