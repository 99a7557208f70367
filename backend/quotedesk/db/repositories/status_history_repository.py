"""
Quotation status history repository.
History rows are append-only: there is no update or delete here.
"""

from datetime import datetime
from typing import Optional, List
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from quotedesk.models.quotation import QuotationStatus, QuotationStatusHistory


class StatusHistoryRepository:
    """Append and read quotation status history."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        quotation_id: UUID,
        previous_status: Optional[QuotationStatus],
        new_status: QuotationStatus,
        changed_at: datetime,
        changed_by_user_id: Optional[UUID] = None,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> QuotationStatusHistory:
        entry = QuotationStatusHistory(
            quotation_id=quotation_id,
            previous_status=previous_status,
            new_status=new_status,
            changed_at=changed_at,
            changed_by_user_id=changed_by_user_id,
            reason=reason,
            ip_address=ip_address,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_by_quotation(self, quotation_id: UUID) -> List[QuotationStatusHistory]:
        """History entries for a quotation, oldest first."""
        result = await self.session.execute(
            select(QuotationStatusHistory)
            .where(QuotationStatusHistory.quotation_id == quotation_id)
            .order_by(QuotationStatusHistory.changed_at, QuotationStatusHistory.id)
        )
        return list(result.scalars().all())
