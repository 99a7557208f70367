"""
Client portal OTP repository.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.otp import ClientPortalOtp


class OtpRepository(BaseRepository[ClientPortalOtp]):
    """Repository for one-time passcodes."""

    def __init__(self, session: AsyncSession):
        super().__init__(ClientPortalOtp, session)

    async def supersede_open(self, access_link_id: UUID, email: str, now: datetime) -> int:
        """Mark every unused, unexpired passcode for the pair as used."""
        result = await self.session.execute(
            update(ClientPortalOtp)
            .where(
                ClientPortalOtp.access_link_id == access_link_id,
                ClientPortalOtp.email == email,
                ClientPortalOtp.is_used == False,  # noqa: E712
                ClientPortalOtp.expires_at > now,
            )
            .values(is_used=True)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return result.rowcount

    async def get_latest_unused(self, access_link_id: UUID, email: str) -> Optional[ClientPortalOtp]:
        result = await self.session.execute(
            select(ClientPortalOtp)
            .where(
                ClientPortalOtp.access_link_id == access_link_id,
                ClientPortalOtp.email == email,
                ClientPortalOtp.is_used == False,  # noqa: E712
            )
            .order_by(ClientPortalOtp.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def claim_attempt(self, otp_id: UUID, seen_attempts: int, max_attempts: int) -> bool:
        """
        Compare-and-set increment of the attempt counter.
        Returns False when another verifier already moved the counter, the
        passcode was used meanwhile, or the ceiling is reached.
        """
        result = await self.session.execute(
            update(ClientPortalOtp)
            .where(
                ClientPortalOtp.id == otp_id,
                ClientPortalOtp.attempts == seen_attempts,
                ClientPortalOtp.attempts < max_attempts,
                ClientPortalOtp.is_used == False,  # noqa: E712
            )
            .values(attempts=seen_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1

    async def mark_used(self, otp_id: UUID, verified_at: Optional[datetime] = None) -> None:
        values = {"is_used": True}
        if verified_at is not None:
            values["verified_at"] = verified_at
        await self.session.execute(
            update(ClientPortalOtp)
            .where(ClientPortalOtp.id == otp_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()

    async def consume(self, otp_id: UUID, verified_at: datetime) -> bool:
        """Mark a passcode verified. Only one caller can win for a given row."""
        result = await self.session.execute(
            update(ClientPortalOtp)
            .where(
                ClientPortalOtp.id == otp_id,
                ClientPortalOtp.is_used == False,  # noqa: E712
            )
            .values(is_used=True, verified_at=verified_at)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1
