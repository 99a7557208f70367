"""
Discount approval API endpoints.
"""

from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from quotedesk.api.v1.middleware import require_authentication
from quotedesk.db.session import get_db
from quotedesk.deps.di_container import get_container
from quotedesk.models.user import User
from quotedesk.schemas.discount_approval import (
    ApprovalDecisionRequest,
    DiscountApprovalRequest,
    DiscountApprovalResponse,
    EscalationRequest,
    RejectionRequest,
    ResubmissionRequest,
)

router = APIRouter()


@router.post("", response_model=DiscountApprovalResponse, status_code=status.HTTP_201_CREATED)
async def request_discount_approval(
    approval_data: DiscountApprovalRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
) -> DiscountApprovalResponse:
    """Request approval for a discount. The quotation is locked until resolved."""
    controller = get_container().discount_approval_controller(session=db)
    return await controller.request_approval(
        approval_data.quotation_id,
        approval_data.discount_percentage,
        approval_data.reason,
        current_user,
    )


@router.get("/pending", response_model=List[DiscountApprovalResponse])
async def list_pending_approvals(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
) -> List[DiscountApprovalResponse]:
    """Pending approvals the current user can act on."""
    controller = get_container().discount_approval_controller(session=db)
    return await controller.list_pending(current_user)


@router.post("/{approval_id}/approve", response_model=DiscountApprovalResponse)
async def approve_discount(
    approval_id: UUID,
    decision: ApprovalDecisionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
) -> DiscountApprovalResponse:
    controller = get_container().discount_approval_controller(session=db)
    return await controller.approve(approval_id, current_user, decision.comments)


@router.post("/{approval_id}/reject", response_model=DiscountApprovalResponse)
async def reject_discount(
    approval_id: UUID,
    rejection: RejectionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
) -> DiscountApprovalResponse:
    controller = get_container().discount_approval_controller(session=db)
    return await controller.reject(approval_id, current_user, rejection.reason)


@router.post("/{approval_id}/escalate", response_model=DiscountApprovalResponse)
async def escalate_discount(
    approval_id: UUID,
    escalation: EscalationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
) -> DiscountApprovalResponse:
    """Hand a manager-level approval to an admin."""
    controller = get_container().discount_approval_controller(session=db)
    return await controller.escalate(approval_id, current_user, escalation.reason)


@router.post("/{approval_id}/resubmit", response_model=DiscountApprovalResponse, status_code=status.HTTP_201_CREATED)
async def resubmit_discount(
    approval_id: UUID,
    resubmission: ResubmissionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
) -> DiscountApprovalResponse:
    """Open a new request after a rejection, linked to the rejected one."""
    controller = get_container().discount_approval_controller(session=db)
    return await controller.resubmit(
        approval_id, current_user, resubmission.discount_percentage, resubmission.reason
    )
