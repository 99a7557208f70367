"""
Allocated document numbers. The primary key enforces uniqueness across concurrent allocators.
"""

from sqlalchemy import Column, String, DateTime, Integer, Boolean, Index

from quotedesk.db.base import Base


class DocumentNumber(Base):
    __tablename__ = "document_numbers"

    number = Column(String(50), primary_key=True)
    prefix = Column(String(10), nullable=False)
    period = Column(Integer, nullable=False)
    # Null for random-suffix fallback numbers
    sequence = Column(Integer, nullable=True)
    is_fallback = Column(Boolean, nullable=False, default=False)
    allocated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_document_numbers_prefix_period", "prefix", "period"),
    )
