"""
Document number repository.
Reservations are single INSERT ... ON CONFLICT DO NOTHING statements so that a
concurrent writer holding the same number makes this insert a no-op instead of
an error.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from quotedesk.db.errors import classify_store_error
from quotedesk.models.document_number import DocumentNumber


class DocumentNumberRepository:
    """Reads and reserves document numbers; classifies store failures."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(DocumentNumber)
        if dialect == "sqlite":
            return sqlite_insert(DocumentNumber)
        raise NotImplementedError(f"Document numbering does not support dialect '{dialect}'")

    async def _raise_classified(self, exc: SQLAlchemyError) -> None:
        classified = classify_store_error(exc, self.session.get_bind().dialect.name)
        if classified is None:
            raise exc
        await self.session.rollback()
        raise classified from exc

    async def max_sequence(self, prefix: str, period: int) -> Optional[int]:
        """Highest sequential suffix allocated for the prefix and period."""
        try:
            result = await self.session.execute(
                select(func.max(DocumentNumber.sequence)).where(
                    DocumentNumber.prefix == prefix,
                    DocumentNumber.period == period,
                    DocumentNumber.is_fallback == False,  # noqa: E712
                )
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self._raise_classified(e)

    async def try_reserve(
        self,
        number: str,
        prefix: str,
        period: int,
        sequence: Optional[int],
        allocated_at: datetime,
        is_fallback: bool = False,
    ) -> bool:
        """Insert the number unless it already exists. True when this caller reserved it."""
        statement = (
            self._insert()
            .values(
                number=number,
                prefix=prefix,
                period=period,
                sequence=sequence,
                is_fallback=is_fallback,
                allocated_at=allocated_at,
            )
            .on_conflict_do_nothing(index_elements=["number"])
        )
        try:
            result = await self.session.execute(statement)
        except SQLAlchemyError as e:
            await self._raise_classified(e)
        return result.rowcount == 1
