"""
One-time passcode service for the client portal.

Codes are bcrypt-hashed before storage and only leave this module in the
outgoing email and the returned IssuedOtp. Verification commits its own
bookkeeping (attempt counter, used flag) so a denial still burns the attempt.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.config import settings
from quotedesk.core.exceptions import ExternalDependencyError
from quotedesk.core.security import generate_otp_code, hash_otp_code, verify_otp_code
from quotedesk.db.repositories.otp_repository import OtpRepository
from quotedesk.models.access_link import QuotationAccessLink
from quotedesk.models.notification import DispatchStatus, NotificationKind
from quotedesk.services import email_templates
from quotedesk.services.base_service import BaseService
from quotedesk.services.notification_dispatch_service import NotificationDispatchService

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class IssuedOtp:
    otp_id: UUID
    code: str
    expires_at: datetime


@dataclass(frozen=True)
class OtpVerification:
    success: bool
    reason: str
    otp_id: Optional[UUID] = None


class OtpService(BaseService):
    """Issues and verifies passcodes bound to an access link and email."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: Optional[NotificationDispatchService] = None,
        clock: Clock = system_clock,
    ):
        super().__init__(session, clock)
        self.otp_repo = OtpRepository(session)
        self.dispatcher = dispatcher
        self.max_attempts = settings.OTP_MAX_ATTEMPTS

    async def issue(
        self,
        link: QuotationAccessLink,
        email: str,
        ip_address: Optional[str] = None,
        quotation_number: Optional[str] = None,
    ) -> IssuedOtp:
        """
        Supersede open passcodes for the pair, store a new hashed code and email
        the plaintext. A delivery failure rolls the whole issue back.
        """
        email = normalize_email(email)
        link_id = link.id
        quotation_id = link.quotation_id
        now = self.clock.now()

        superseded = await self.otp_repo.supersede_open(link_id, email, now)
        code = generate_otp_code(settings.OTP_LENGTH)
        code_hash = await asyncio.to_thread(hash_otp_code, code, settings.OTP_BCRYPT_ROUNDS)
        otp = await self.otp_repo.create(
            access_link_id=link_id,
            email=email,
            otp_hash=code_hash,
            created_at=now,
            expires_at=now + timedelta(minutes=settings.OTP_EXPIRY_MINUTES),
            is_used=False,
            attempts=0,
            ip_address=ip_address,
        )

        if self.dispatcher is not None:
            message = email_templates.portal_otp(
                email, quotation_number or "", code, settings.OTP_EXPIRY_MINUTES
            )
            try:
                provider_ref = await self.dispatcher.send(message)
            except Exception as e:
                await self.session.rollback()
                logger.error(
                    "Failed to deliver verification code",
                    extra={"access_link_id": str(link_id), "error": repr(e)},
                )
                raise ExternalDependencyError(
                    ExternalDependencyError.NOTIFY,
                    "Could not send the verification code. Please try again.",
                    cause=type(e).__name__,
                ) from e
            await self.dispatcher.record_attempt(
                NotificationKind.PORTAL_OTP,
                message,
                DispatchStatus.DELIVERED,
                quotation_id=quotation_id,
                provider_ref=provider_ref,
            )

        await self.session.commit()
        logger.info(
            "Issued portal passcode",
            extra={"access_link_id": str(link_id), "otp_id": str(otp.id), "superseded": superseded},
        )
        return IssuedOtp(otp_id=otp.id, code=code, expires_at=otp.expires_at)

    async def verify(
        self,
        access_link_id: UUID,
        email: str,
        code: str,
        ip_address: Optional[str] = None,
    ) -> OtpVerification:
        """Check a supplied code against the newest unused passcode for the pair."""
        result = await self._verify(access_link_id, normalize_email(email), code)
        await self.session.commit()

        log = logger.info if result.success else logger.warning
        log(
            "Portal passcode verification " + ("succeeded" if result.success else "denied"),
            extra={
                "access_link_id": str(access_link_id),
                "otp_id": str(result.otp_id) if result.otp_id else None,
                "reason": result.reason,
                "ip_address": ip_address,
            },
        )
        return result

    async def _verify(self, access_link_id: UUID, email: str, code: str) -> OtpVerification:
        otp = await self.otp_repo.get_latest_unused(access_link_id, email)
        if otp is None:
            return OtpVerification(False, "no_active_code")

        now = self.clock.now()
        if otp.expires_at <= now:
            await self.otp_repo.mark_used(otp.id)
            return OtpVerification(False, "expired", otp.id)
        if otp.attempts >= self.max_attempts:
            await self.otp_repo.mark_used(otp.id)
            return OtpVerification(False, "attempts_exhausted", otp.id)

        # The attempt is spent before the hash comparison
        if not await self.otp_repo.claim_attempt(otp.id, otp.attempts, self.max_attempts):
            return OtpVerification(False, "concurrent_attempt", otp.id)

        matches = await asyncio.to_thread(verify_otp_code, code, otp.otp_hash)
        if not matches:
            return OtpVerification(False, "mismatch", otp.id)

        if not await self.otp_repo.consume(otp.id, now):
            return OtpVerification(False, "already_used", otp.id)
        return OtpVerification(True, "verified", otp.id)
