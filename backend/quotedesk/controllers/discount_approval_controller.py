"""
Discount approval controller.
"""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.controllers.base_controller import BaseController
from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.integrations.contracts import Notifier
from quotedesk.models.user import User
from quotedesk.schemas.discount_approval import DiscountApprovalResponse
from quotedesk.services.discount_approval_service import DiscountApprovalService
from quotedesk.services.notification_dispatch_service import NotificationDispatchService


class DiscountApprovalController(BaseController):
    """Controller for discount approval operations."""

    def __init__(self, session: AsyncSession, notifier: Notifier, clock: Clock = system_clock):
        self.approval_service = DiscountApprovalService(
            session,
            dispatcher=NotificationDispatchService(session, notifier, clock),
            clock=clock,
        )

    async def request_approval(
        self,
        quotation_id: UUID,
        discount_percentage: Decimal,
        reason: str,
        actor: User,
    ) -> DiscountApprovalResponse:
        approval = await self.approval_service.request_approval(quotation_id, discount_percentage, reason, actor)
        return DiscountApprovalResponse.model_validate(approval)

    async def list_pending(self, actor: User) -> List[DiscountApprovalResponse]:
        approvals = await self.approval_service.list_pending_for(actor)
        return [DiscountApprovalResponse.model_validate(a) for a in approvals]

    async def approve(self, approval_id: UUID, actor: User, comments: Optional[str]) -> DiscountApprovalResponse:
        return DiscountApprovalResponse.model_validate(
            await self.approval_service.approve(approval_id, actor, comments)
        )

    async def reject(self, approval_id: UUID, actor: User, reason: str) -> DiscountApprovalResponse:
        return DiscountApprovalResponse.model_validate(
            await self.approval_service.reject(approval_id, actor, reason)
        )

    async def escalate(self, approval_id: UUID, actor: User, reason: str) -> DiscountApprovalResponse:
        return DiscountApprovalResponse.model_validate(
            await self.approval_service.escalate(approval_id, actor, reason)
        )

    async def resubmit(
        self,
        approval_id: UUID,
        actor: User,
        discount_percentage: Decimal,
        reason: str,
    ) -> DiscountApprovalResponse:
        return DiscountApprovalResponse.model_validate(
            await self.approval_service.resubmit(approval_id, actor, discount_percentage, reason)
        )
