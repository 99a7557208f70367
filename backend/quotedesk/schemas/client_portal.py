"""
Client portal schemas.
Responses never carry internal identifiers beyond the quotation itself.
"""

from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import date, datetime
from uuid import UUID
from decimal import Decimal

from quotedesk.models.quotation import QuotationStatus, ResponseDecision


class LinkValidationResponse(BaseModel):
    valid: bool = True
    quotation_number: str
    client_email_hint: str
    expires_at: datetime


class OtpRequest(BaseModel):
    email: EmailStr


class OtpRequestResponse(BaseModel):
    message: str = "If the email matches this link, a verification code has been sent."
    expires_in_minutes: int


class OtpVerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=4, max_length=10, pattern=r"^\d+$")


class OtpVerifyResponse(BaseModel):
    verified: bool = True
    session_token: str
    expires_in_minutes: int


class PortalLineItem(BaseModel):
    item_name: str
    description: Optional[str] = None
    quantity: Decimal
    unit_rate: Decimal
    discount_amount: Decimal
    amount: Decimal


class PortalQuotationView(BaseModel):
    quotation_id: UUID
    quotation_number: str
    title: str
    status: QuotationStatus
    quotation_date: date
    valid_until: date
    currency: str
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    total_amount: Decimal
    notes: Optional[str] = None
    line_items: List[PortalLineItem]
    can_respond: bool


class ClientResponseRequest(BaseModel):
    decision: ResponseDecision
    message: Optional[str] = Field(None, max_length=5000)


class ClientResponseResult(BaseModel):
    quotation_number: str
    status: QuotationStatus
    decision: ResponseDecision
    responded_at: datetime


class PageViewStartRequest(BaseModel):
    user_agent: Optional[str] = Field(None, max_length=500)


class PageViewStartResponse(BaseModel):
    page_view_id: UUID
    started_at: datetime


class PageViewEndRequest(BaseModel):
    page_view_id: UUID


class PageViewEndResponse(BaseModel):
    page_view_id: UUID
    ended_at: datetime
    duration_seconds: int
