"""
Access link and page view repository.
"""

from datetime import datetime
from typing import Optional, List
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.access_link import QuotationAccessLink, QuotationPageView
from quotedesk.models.client import Client
from quotedesk.models.quotation import Quotation, QuotationStatus


class AccessLinkRepository(BaseRepository[QuotationAccessLink]):
    """Repository for client portal access links."""

    def __init__(self, session: AsyncSession):
        super().__init__(QuotationAccessLink, session)

    async def deactivate_active_for_quotation(self, quotation_id: UUID, now: datetime) -> int:
        """Deactivate every active link for a quotation. Returns the number deactivated."""
        result = await self.session.execute(
            update(QuotationAccessLink)
            .where(
                QuotationAccessLink.quotation_id == quotation_id,
                QuotationAccessLink.is_active == True,  # noqa: E712
            )
            .values(is_active=False, deactivated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return result.rowcount

    async def get_by_token_hash(self, token_hash: str) -> Optional[QuotationAccessLink]:
        """Exact match on the indexed token digest."""
        result = await self.session.execute(
            select(QuotationAccessLink).where(QuotationAccessLink.access_token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    async def list_by_quotation(self, quotation_id: UUID) -> List[QuotationAccessLink]:
        """Links for a quotation, newest first."""
        result = await self.session.execute(
            select(QuotationAccessLink)
            .where(QuotationAccessLink.quotation_id == quotation_id)
            .order_by(QuotationAccessLink.created_at.desc())
        )
        return list(result.scalars().all())

    async def record_visit(self, link_id: UUID, now: datetime, ip_address: Optional[str]) -> Optional[QuotationAccessLink]:
        """
        Increment the view counter in a single UPDATE so concurrent visits are
        not lost, set first_viewed_at only once and always refresh last-seen data.
        """
        await self.session.execute(
            update(QuotationAccessLink)
            .where(QuotationAccessLink.id == link_id)
            .values(
                view_count=QuotationAccessLink.view_count + 1,
                last_viewed_at=now,
                last_client_ip=ip_address,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            update(QuotationAccessLink)
            .where(
                QuotationAccessLink.id == link_id,
                QuotationAccessLink.first_viewed_at.is_(None),
            )
            .values(first_viewed_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        result = await self.session.execute(
            select(QuotationAccessLink)
            .where(QuotationAccessLink.id == link_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_links_for_open_quotations(self, statuses: List[QuotationStatus]) -> List[tuple]:
        """(link, quotation, client name) for every link whose quotation is in one of the statuses."""
        result = await self.session.execute(
            select(QuotationAccessLink, Quotation, Client.name)
            .join(Quotation, Quotation.id == QuotationAccessLink.quotation_id)
            .join(Client, Client.id == Quotation.client_id)
            .where(Quotation.status.in_(statuses))
            .order_by(QuotationAccessLink.quotation_id, QuotationAccessLink.created_at)
        )
        return [tuple(row) for row in result.all()]

    async def create_page_view(self, **kwargs) -> QuotationPageView:
        page_view = QuotationPageView(**kwargs)
        self.session.add(page_view)
        await self.session.flush()
        return page_view

    async def get_page_view(self, page_view_id: UUID) -> Optional[QuotationPageView]:
        result = await self.session.execute(
            select(QuotationPageView).where(QuotationPageView.id == page_view_id)
        )
        return result.scalar_one_or_none()
