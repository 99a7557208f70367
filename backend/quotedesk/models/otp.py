"""
One-time passcode model for client portal verification.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Boolean, Index, Uuid
import uuid

from quotedesk.db.base import Base


class ClientPortalOtp(Base):
    """Hashed, expiring, attempt-limited passcode bound to an access link and email."""

    __tablename__ = "client_portal_otps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    access_link_id = Column(Uuid, ForeignKey("quotation_access_links.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=False)
    otp_hash = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    ip_address = Column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_client_portal_otps_link_email", "access_link_id", "email"),
    )
