"""
Quotation Pydantic schemas for request/response validation.
"""

from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import Optional, List
from datetime import date, datetime
from uuid import UUID
from decimal import Decimal

from quotedesk.models.quotation import QuotationStatus


class LineItemCreate(BaseModel):
    """Line item as supplied by the author."""
    item_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    quantity: Decimal = Field(..., gt=0)
    unit_rate: Decimal = Field(..., ge=0)
    discount_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    display_order: int = Field(default=0, ge=0)


class LineItemResponse(BaseModel):
    id: UUID
    item_name: str
    description: Optional[str] = None
    quantity: Decimal
    unit_rate: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    amount: Decimal
    display_order: int

    class Config:
        from_attributes = True


class QuotationCreate(BaseModel):
    """Create schema for quotation."""
    client_id: UUID
    title: str = Field(..., min_length=1, max_length=255)
    quotation_date: Optional[date] = None
    valid_until: Optional[date] = None
    currency: str = Field(default="INR", min_length=3, max_length=3)
    discount_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    approval_reason: Optional[str] = Field(None, max_length=2000, description="Required when the discount needs approval")
    notes: Optional[str] = None
    line_items: List[LineItemCreate] = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_dates(self):
        if self.quotation_date and self.valid_until and self.valid_until < self.quotation_date:
            raise ValueError("valid_until must not be before quotation_date")
        return self


class QuotationUpdate(BaseModel):
    """Update schema for quotation (all fields optional)."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    valid_until: Optional[date] = None
    discount_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    approval_reason: Optional[str] = Field(None, max_length=2000)
    notes: Optional[str] = None
    line_items: Optional[List[LineItemCreate]] = Field(None, min_length=1)


class QuotationResponse(BaseModel):
    """Response schema for quotation."""
    id: UUID
    quotation_number: str
    client_id: UUID
    created_by_user_id: UUID
    title: str
    status: QuotationStatus
    effective_status: Optional[QuotationStatus] = None
    quotation_date: date
    valid_until: date
    currency: str
    subtotal: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    total_discount: Decimal
    tax_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    total_amount: Decimal
    notes: Optional[str] = None
    is_pending_approval: bool
    pending_approval_id: Optional[UUID] = None
    line_items: List[LineItemResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StatusHistoryResponse(BaseModel):
    id: UUID
    previous_status: Optional[QuotationStatus] = None
    new_status: QuotationStatus
    changed_by_user_id: Optional[UUID] = None
    reason: Optional[str] = None
    ip_address: Optional[str] = None
    changed_at: datetime

    class Config:
        from_attributes = True


class SendQuotationRequest(BaseModel):
    """Send or resend a quotation to a client."""
    recipient_email: Optional[EmailStr] = Field(None, description="Defaults to the client's email")
    cc: List[EmailStr] = []
    bcc: List[EmailStr] = []
    subject: Optional[str] = Field(None, max_length=500)
    custom_message: Optional[str] = Field(None, max_length=5000)


class AccessLinkDescriptor(BaseModel):
    """Link handed back to the sender. The token appears only here, once."""
    access_link_id: UUID
    quotation_id: UUID
    url: str
    token: str
    client_email: str
    expires_at: datetime
    sent_at: Optional[datetime] = None
    view_count: int = 0
    first_viewed_at: Optional[datetime] = None
    last_viewed_at: Optional[datetime] = None


class SendQuotationResponse(BaseModel):
    quotation_id: UUID
    quotation_number: str
    status: QuotationStatus
    is_resend: bool
    access_link: AccessLinkDescriptor


class AccessLinkSummary(BaseModel):
    """Access link with its token masked."""
    id: UUID
    client_email: str
    masked_token: str
    is_active: bool
    created_at: datetime
    expires_at: datetime
    sent_at: Optional[datetime] = None
    first_viewed_at: Optional[datetime] = None
    last_viewed_at: Optional[datetime] = None
    view_count: int
    last_client_ip: Optional[str] = None
