"""
Client repository for database operations.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.client import Client


class ClientRepository(BaseRepository[Client]):
    """Repository for clients."""

    def __init__(self, session: AsyncSession):
        super().__init__(Client, session)
