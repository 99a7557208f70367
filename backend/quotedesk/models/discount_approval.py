"""
Discount approval model.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Boolean, Text, Index, Uuid, text, Enum as SQLEnum
import uuid
import enum

from quotedesk.db.base import Base


class ApprovalStatus(str, enum.Enum):
    """Approval status. Everything except PENDING is terminal."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    APPLIED = "APPLIED"


class ApprovalLevel(str, enum.Enum):
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


class DiscountApproval(Base):
    """Request to apply a discount above a configured threshold."""

    __tablename__ = "discount_approvals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quotation_id = Column(Uuid, ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by_user_id = Column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    approver_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING, index=True)
    approval_level = Column(SQLEnum(ApprovalLevel), nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False)
    threshold = Column(Numeric(5, 2), nullable=False)
    escalated_to_admin = Column(Boolean, nullable=False, default=False)
    reason = Column(Text, nullable=False)
    comments = Column(Text, nullable=True)
    previous_approval_id = Column(Uuid, nullable=True)
    requested_at = Column(DateTime, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
    escalated_at = Column(DateTime, nullable=True)
    applied_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # One open approval per quotation
        Index(
            "uq_discount_approvals_pending_quotation",
            "quotation_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def append_comment(self, comment: str) -> None:
        self.comments = f"{self.comments}\n{comment}" if self.comments else comment
