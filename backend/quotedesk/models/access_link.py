"""
Client-portal access link and page view models.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Boolean, Index, Uuid, text
import uuid

from quotedesk.db.base import Base


class QuotationAccessLink(Base):
    """
    Capability granting one email address time-boxed view rights to one quotation.
    Only the SHA-256 digest of the token is stored.
    """

    __tablename__ = "quotation_access_links"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quotation_id = Column(Uuid, ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True)
    client_email = Column(String(255), nullable=False)
    access_token_hash = Column(String(64), nullable=False, unique=True)
    token_prefix = Column(String(8), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    sent_at = Column(DateTime, nullable=True)
    first_viewed_at = Column(DateTime, nullable=True)
    last_viewed_at = Column(DateTime, nullable=True)
    view_count = Column(Integer, nullable=False, default=0)
    last_client_ip = Column(String(64), nullable=True)
    deactivated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # At most one active link per quotation
        Index(
            "uq_quotation_access_links_active_quotation",
            "quotation_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )


class QuotationPageView(Base):
    """One portal viewing session; duration is derived from start and end."""

    __tablename__ = "quotation_page_views"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    access_link_id = Column(Uuid, ForeignKey("quotation_access_links.id", ondelete="CASCADE"), nullable=False, index=True)
    quotation_id = Column(Uuid, ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
