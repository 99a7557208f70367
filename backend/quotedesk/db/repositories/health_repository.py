"""
Health repository.
Checks database connectivity and that the core tables are provisioned.
"""

from typing import Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from quotedesk.db.errors import classify_store_error, StoreNotProvisionedError


class HealthRepository:
    """Repository for health check operations."""

    PROBE_TABLES = ("quotations", "quotation_access_links", "document_numbers")

    def __init__(self, session: AsyncSession):
        self.session = session

    async def check_database(self) -> bool:
        """True if the database answers a trivial query."""
        try:
            result = await self.session.execute(text("SELECT 1"))
            return result.scalar() == 1
        except SQLAlchemyError:
            return False

    async def check_tables(self) -> Dict[str, str]:
        """Per-table "ok" / "missing" / "error" status."""
        statuses = {}
        for table in self.PROBE_TABLES:
            try:
                await self.session.execute(text(f"SELECT 1 FROM {table} LIMIT 1"))
                statuses[table] = "ok"
            except SQLAlchemyError as e:
                await self.session.rollback()
                statuses[table] = "missing" if isinstance(
                    classify_store_error(e, self.session.get_bind().dialect.name), StoreNotProvisionedError
                ) else "error"
        return statuses
