"""
Notification dispatch attempt model.
Rows are appended per attempt and updated in place while that attempt progresses.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Boolean, Text, JSON, Uuid, Enum as SQLEnum
import uuid
import enum

from quotedesk.db.base import Base


class NotificationChannel(str, enum.Enum):
    EMAIL = "EMAIL"


class NotificationKind(str, enum.Enum):
    QUOTATION_SENT = "QUOTATION_SENT"
    PORTAL_OTP = "PORTAL_OTP"
    UNVIEWED_REMINDER = "UNVIEWED_REMINDER"
    FOLLOW_UP_REMINDER = "FOLLOW_UP_REMINDER"
    CLIENT_RESPONSE = "CLIENT_RESPONSE"
    APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
    APPROVAL_RESOLVED = "APPROVAL_RESOLVED"


class DispatchStatus(str, enum.Enum):
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    PERMANENTLY_FAILED = "PERMANENTLY_FAILED"
    CANCELLED = "CANCELLED"


class NotificationDispatchAttempt(Base):
    """Per-channel delivery attempt for an outbound notification."""

    __tablename__ = "notification_dispatch_attempts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quotation_id = Column(Uuid, ForeignKey("quotations.id", ondelete="CASCADE"), nullable=True, index=True)
    kind = Column(SQLEnum(NotificationKind), nullable=False, index=True)
    channel = Column(SQLEnum(NotificationChannel), nullable=False, default=NotificationChannel.EMAIL)
    status = Column(SQLEnum(DispatchStatus), nullable=False, default=DispatchStatus.PENDING, index=True)
    recipient = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    # Only best-effort notifications are retried by the sweep
    retryable = Column(Boolean, nullable=False, default=False)
    next_retry_at = Column(DateTime, nullable=True, index=True)
    error_detail = Column(Text, nullable=True)
    provider_ref = Column(String(255), nullable=True)
    # Enough to rebuild the message on retry; never holds secrets
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False)
