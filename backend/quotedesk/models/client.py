"""
Client model.
"""

from sqlalchemy import Column, String, Boolean, DateTime, Uuid
import uuid

from quotedesk.core.clock import system_clock
from quotedesk.db.base import Base


class Client(Base):
    """Customer a quotation is addressed to."""

    __tablename__ = "clients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    # Tax jurisdiction (state/region code); compared against the company's code
    jurisdiction_code = Column(String(16), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=system_clock.now)
