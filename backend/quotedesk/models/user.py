"""
Internal CRM user model.
Only the fields the quotation workflows need: identity, contact and role tier.
"""

from sqlalchemy import Column, String, Boolean, DateTime, Uuid, Enum as SQLEnum
import uuid
import enum

from quotedesk.core.clock import system_clock
from quotedesk.db.base import Base


class UserRole(str, enum.Enum):
    """Role tiers used by the discount approval rules."""
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SALES_REP = "SALES_REP"


class User(Base):
    """Internal user who authors quotations or resolves approvals."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.SALES_REP, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=system_clock.now)
