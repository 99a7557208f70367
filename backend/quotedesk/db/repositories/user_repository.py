"""
User repository for database operations.
"""

from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.user import User, UserRole


class UserRepository(BaseRepository[User]):
    """Repository for internal users."""

    def __init__(self, session: AsyncSession):
        super().__init__(User, session)

    async def list_active_by_role(self, role: UserRole) -> List[User]:
        result = await self.session.execute(
            select(User)
            .where(User.role == role, User.is_active == True)  # noqa: E712
            .order_by(User.created_at, User.email)
        )
        return list(result.scalars().all())

    async def get_first_active_admin(self) -> Optional[User]:
        """Admin assigned to admin-tier and escalated approvals."""
        admins = await self.list_active_by_role(UserRole.ADMIN)
        return admins[0] if admins else None
