"""
Discount approval Pydantic schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID
from decimal import Decimal

from quotedesk.models.discount_approval import ApprovalStatus, ApprovalLevel


class DiscountApprovalRequest(BaseModel):
    """Request approval for a discount on a quotation."""
    quotation_id: UUID
    discount_percentage: Decimal = Field(..., gt=0, le=100)
    reason: str = Field(..., min_length=1, max_length=2000)


class ApprovalDecisionRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=2000)


class RejectionRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class EscalationRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class ResubmissionRequest(BaseModel):
    discount_percentage: Decimal = Field(..., gt=0, le=100)
    reason: str = Field(..., min_length=1, max_length=2000)


class DiscountApprovalResponse(BaseModel):
    id: UUID
    quotation_id: UUID
    requested_by_user_id: UUID
    approver_user_id: Optional[UUID] = None
    status: ApprovalStatus
    approval_level: ApprovalLevel
    discount_percentage: Decimal
    threshold: Decimal
    escalated_to_admin: bool
    reason: str
    comments: Optional[str] = None
    previous_approval_id: Optional[UUID] = None
    requested_at: datetime
    resolved_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None

    class Config:
        from_attributes = True
