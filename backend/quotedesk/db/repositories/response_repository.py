"""
Client response repository.
"""

from typing import Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.quotation import QuotationClientResponse


class ResponseRepository(BaseRepository[QuotationClientResponse]):
    """Repository for client accept/reject responses."""

    def __init__(self, session: AsyncSession):
        super().__init__(QuotationClientResponse, session)

    async def get_by_quotation(self, quotation_id: UUID) -> Optional[QuotationClientResponse]:
        result = await self.session.execute(
            select(QuotationClientResponse).where(QuotationClientResponse.quotation_id == quotation_id)
        )
        return result.scalar_one_or_none()

    async def quotation_ids_with_response(self, quotation_ids) -> set:
        ids = list(quotation_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(QuotationClientResponse.quotation_id).where(QuotationClientResponse.quotation_id.in_(ids))
        )
        return set(result.scalars().all())
