"""
Database models.
Import all models here to ensure they're registered with Base.
"""

from quotedesk.models.user import User, UserRole
from quotedesk.models.client import Client
from quotedesk.models.quotation import (
    Quotation,
    QuotationLineItem,
    QuotationStatus,
    QuotationStatusHistory,
    QuotationClientResponse,
    ResponseDecision,
)
from quotedesk.models.access_link import QuotationAccessLink, QuotationPageView
from quotedesk.models.otp import ClientPortalOtp
from quotedesk.models.discount_approval import DiscountApproval, ApprovalStatus, ApprovalLevel
from quotedesk.models.document_number import DocumentNumber
from quotedesk.models.notification import (
    NotificationDispatchAttempt,
    NotificationChannel,
    NotificationKind,
    DispatchStatus,
)

__all__ = [
    "User",
    "UserRole",
    "Client",
    "Quotation",
    "QuotationLineItem",
    "QuotationStatus",
    "QuotationStatusHistory",
    "QuotationClientResponse",
    "ResponseDecision",
    "QuotationAccessLink",
    "QuotationPageView",
    "ClientPortalOtp",
    "DiscountApproval",
    "ApprovalStatus",
    "ApprovalLevel",
    "DocumentNumber",
    "NotificationDispatchAttempt",
    "NotificationChannel",
    "NotificationKind",
    "DispatchStatus",
]
