"""
Quotation repository for database operations.
"""

from typing import Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.quotation import Quotation


class QuotationRepository(BaseRepository[Quotation]):
    """Repository for quotations and their line items."""

    def __init__(self, session: AsyncSession):
        super().__init__(Quotation, session)

    def _base_query(self):
        """Base query loading the quotation aggregate (client, author, line items)."""
        return (
            select(Quotation)
            .options(
                selectinload(Quotation.client),
                selectinload(Quotation.created_by),
                selectinload(Quotation.line_items),
            )
            .execution_options(populate_existing=True)
        )

    async def get(self, id: UUID, for_update: bool = False) -> Optional[Quotation]:
        """
        Get quotation by ID with its aggregate loaded.
        With for_update the row is locked until the transaction ends.
        """
        query = self._base_query().where(Quotation.id == id)
        if for_update:
            query = query.with_for_update(of=Quotation)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

