"""
Notification dispatch attempt repository.
"""

from datetime import datetime
from typing import Optional, List
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.notification import NotificationDispatchAttempt, NotificationKind, DispatchStatus


class DispatchAttemptRepository(BaseRepository[NotificationDispatchAttempt]):
    """Repository for notification dispatch attempts. Rows are never deleted."""

    def __init__(self, session: AsyncSession):
        super().__init__(NotificationDispatchAttempt, session)

    async def list_due_retries(self, now: datetime, limit: int = 100) -> List[NotificationDispatchAttempt]:
        result = await self.session.execute(
            select(NotificationDispatchAttempt)
            .where(
                NotificationDispatchAttempt.status == DispatchStatus.FAILED,
                NotificationDispatchAttempt.retryable == True,  # noqa: E712
                NotificationDispatchAttempt.next_retry_at.is_not(None),
                NotificationDispatchAttempt.next_retry_at <= now,
            )
            .order_by(NotificationDispatchAttempt.next_retry_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def quotation_ids_notified_since(self, kind: NotificationKind, since: datetime) -> set:
        """Quotations that already have a non-cancelled attempt of this kind since the given time."""
        result = await self.session.execute(
            select(NotificationDispatchAttempt.quotation_id)
            .where(
                NotificationDispatchAttempt.kind == kind,
                NotificationDispatchAttempt.created_at >= since,
                NotificationDispatchAttempt.status != DispatchStatus.CANCELLED,
                NotificationDispatchAttempt.quotation_id.is_not(None),
            )
            .distinct()
        )
        return set(result.scalars().all())

    async def list_by_quotation(
        self,
        quotation_id: UUID,
        kind: Optional[NotificationKind] = None,
    ) -> List[NotificationDispatchAttempt]:
        query = select(NotificationDispatchAttempt).where(NotificationDispatchAttempt.quotation_id == quotation_id)
        if kind is not None:
            query = query.where(NotificationDispatchAttempt.kind == kind)
        result = await self.session.execute(query.order_by(NotificationDispatchAttempt.created_at))
        return list(result.scalars().all())
