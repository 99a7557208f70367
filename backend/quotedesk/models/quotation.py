"""
Quotation aggregate models: quotation, line items, status history and client response.
"""

from sqlalchemy import (
    Column,
    String,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    Integer,
    Boolean,
    Text,
    Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
import uuid
import enum

from quotedesk.core.clock import system_clock
from quotedesk.db.base import Base


class QuotationStatus(str, enum.Enum):
    """
    Quotation lifecycle states.
    EXPIRED is only ever reported as an effective status; it is never stored.
    """
    DRAFT = "DRAFT"
    SENT = "SENT"
    VIEWED = "VIEWED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class ResponseDecision(str, enum.Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class Quotation(Base):
    """Priced offer to a client."""

    __tablename__ = "quotations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    quotation_number = Column(String(50), nullable=False, unique=True, index=True)
    client_id = Column(Uuid, ForeignKey("clients.id", ondelete="RESTRICT"), nullable=False, index=True)
    created_by_user_id = Column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    status = Column(SQLEnum(QuotationStatus), nullable=False, default=QuotationStatus.DRAFT, index=True)
    quotation_date = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=False, index=True)
    currency = Column(String(3), nullable=False, default="INR")

    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(15, 2), nullable=False, default=0)
    total_discount = Column(Numeric(15, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(15, 2), nullable=False, default=0)
    cgst_amount = Column(Numeric(15, 2), nullable=False, default=0)
    sgst_amount = Column(Numeric(15, 2), nullable=False, default=0)
    igst_amount = Column(Numeric(15, 2), nullable=False, default=0)
    total_amount = Column(Numeric(15, 2), nullable=False, default=0)

    notes = Column(Text, nullable=True)

    # Edit lock held while a discount approval is pending
    is_pending_approval = Column(Boolean, nullable=False, default=False)
    pending_approval_id = Column(Uuid, nullable=True)

    created_at = Column(DateTime, nullable=False, default=system_clock.now)
    updated_at = Column(DateTime, nullable=False, default=system_clock.now)

    client = relationship("Client")
    created_by = relationship("User")
    line_items = relationship(
        "QuotationLineItem",
        back_populates="quotation",
        cascade="all, delete-orphan",
        order_by="QuotationLineItem.display_order",
    )

    @property
    def is_locked(self) -> bool:
        return bool(self.is_pending_approval)


class QuotationLineItem(Base):
    """Single priced line on a quotation."""

    __tablename__ = "quotation_line_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quotation_id = Column(Uuid, ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True)
    item_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(15, 2), nullable=False)
    unit_rate = Column(Numeric(15, 2), nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(15, 2), nullable=False, default=0)
    amount = Column(Numeric(15, 2), nullable=False, default=0)
    display_order = Column(Integer, nullable=False, default=0)

    quotation = relationship("Quotation", back_populates="line_items")


class QuotationStatusHistory(Base):
    """Write-once audit record of a quotation status change."""

    __tablename__ = "quotation_status_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quotation_id = Column(Uuid, ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True)
    previous_status = Column(SQLEnum(QuotationStatus), nullable=True)
    new_status = Column(SQLEnum(QuotationStatus), nullable=False)
    changed_by_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reason = Column(String(500), nullable=True)
    ip_address = Column(String(64), nullable=True)
    changed_at = Column(DateTime, nullable=False, index=True)


class QuotationClientResponse(Base):
    """Client's accept/reject decision. At most one per quotation."""

    __tablename__ = "quotation_responses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quotation_id = Column(Uuid, ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, unique=True)
    access_link_id = Column(Uuid, ForeignKey("quotation_access_links.id", ondelete="SET NULL"), nullable=True)
    decision = Column(SQLEnum(ResponseDecision), nullable=False)
    message = Column(Text, nullable=True)
    client_email = Column(String(255), nullable=False)
    ip_address = Column(String(64), nullable=True)
    responded_at = Column(DateTime, nullable=False)
