"""
Access link service.

Owns the one-active-link-per-quotation rule, token validation and visit
recording for the client portal. Plaintext tokens exist only in the value
returned from ``issue``; everything stored or logged is a digest or a mask.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.config import settings
from quotedesk.core.exceptions import ConflictError, SecurityError
from quotedesk.core.security import generate_access_token, hash_access_token, mask_token
from quotedesk.db.repositories.access_link_repository import AccessLinkRepository
from quotedesk.models.access_link import QuotationAccessLink, QuotationPageView
from quotedesk.services.base_service import BaseService

logger = logging.getLogger(__name__)


class LinkState(str, enum.Enum):
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"


@dataclass(frozen=True)
class LinkValidation:
    state: LinkState
    link: Optional[QuotationAccessLink] = None
    reason: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.state == LinkState.VALID


@dataclass(frozen=True)
class IssuedLink:
    link: QuotationAccessLink
    token: str
    url: str


def build_portal_url(quotation_id: UUID, token: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.PORTAL_BASE_URL).rstrip("/")
    return f"{base}/client-portal/quotations/{quotation_id}/{token}"


def masked_link_token(link: QuotationAccessLink) -> str:
    return mask_token(link.token_prefix)


class AccessLinkService(BaseService):
    """Service for issuing, validating and tracking access links."""

    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        super().__init__(session, clock)
        self.link_repo = AccessLinkRepository(session)

    async def issue(
        self,
        quotation_id: UUID,
        client_email: str,
        expiry_days: Optional[int] = None,
    ) -> IssuedLink:
        """
        Deactivate every active link for the quotation and create a new one.
        Both statements run in the caller's transaction.
        """
        now = self.clock.now()
        days = expiry_days if expiry_days is not None else settings.ACCESS_LINK_EXPIRATION_DAYS
        deactivated = await self.link_repo.deactivate_active_for_quotation(quotation_id, now)

        token = generate_access_token()
        try:
            link = await self.link_repo.create(
                quotation_id=quotation_id,
                client_email=client_email.strip().lower(),
                access_token_hash=hash_access_token(token),
                token_prefix=token[:6],
                is_active=True,
                created_at=now,
                expires_at=now + timedelta(days=days),
                view_count=0,
            )
        except IntegrityError as e:
            # Another writer issued a link for this quotation between our deactivate and insert
            raise ConflictError(
                "Another access link was issued concurrently for this quotation",
                details={"quotation_id": str(quotation_id)},
            ) from e

        logger.info(
            "Issued access link",
            extra={
                "quotation_id": str(quotation_id),
                "access_link_id": str(link.id),
                "token": mask_token(token),
                "deactivated_links": deactivated,
            },
        )
        return IssuedLink(link=link, token=token, url=build_portal_url(quotation_id, token))

    async def validate(self, token: Optional[str]) -> LinkValidation:
        """Resolve a token to its link; never raises."""
        if not token:
            return LinkValidation(LinkState.INVALID, reason="missing_token")

        link = await self.link_repo.get_by_token_hash(hash_access_token(token))
        if link is None:
            return LinkValidation(LinkState.INVALID, reason="not_found")
        if not link.is_active:
            return LinkValidation(LinkState.EXPIRED, link=link, reason="inactive")
        if link.expires_at <= self.clock.now():
            return LinkValidation(LinkState.EXPIRED, link=link, reason="expired")
        return LinkValidation(LinkState.VALID, link=link)

    async def require_valid(self, token: Optional[str], quotation_id: Optional[UUID] = None) -> QuotationAccessLink:
        """Validated link, or a generic SecurityError with the specific reason attached."""
        result = await self.validate(token)
        if not result.is_valid:
            logger.warning(
                "Access link rejected",
                extra={"token": mask_token(token), "reason": result.reason},
            )
            raise SecurityError.invalid_link(result.reason)
        if quotation_id is not None and result.link.quotation_id != quotation_id:
            logger.warning(
                "Access link used with a different quotation",
                extra={"token": mask_token(token), "reason": "quotation_mismatch"},
            )
            raise SecurityError.invalid_link("quotation_mismatch")
        return result.link

    async def record_visit(self, link: QuotationAccessLink, ip_address: Optional[str]) -> QuotationAccessLink:
        """Bump the view counter; first_viewed_at is set on the first visit only."""
        updated = await self.link_repo.record_visit(link.id, self.clock.now(), ip_address)
        logger.debug(
            "Recorded access link visit",
            extra={"access_link_id": str(link.id), "view_count": updated.view_count},
        )
        return updated

    async def start_page_view(
        self,
        link: QuotationAccessLink,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> QuotationPageView:
        return await self.link_repo.create_page_view(
            access_link_id=link.id,
            quotation_id=link.quotation_id,
            started_at=self.clock.now(),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500] or None,
        )

    async def end_page_view(self, link: QuotationAccessLink, page_view_id: UUID) -> Optional[QuotationPageView]:
        """Close a page view belonging to this link. Ending twice keeps the first end time."""
        page_view = await self.link_repo.get_page_view(page_view_id)
        if page_view is None or page_view.access_link_id != link.id:
            return None
        if page_view.ended_at is None:
            ended_at = max(self.clock.now(), page_view.started_at)
            page_view.ended_at = ended_at
            page_view.duration_seconds = int((ended_at - page_view.started_at).total_seconds())
            await self.session.flush()
        return page_view

    async def list_links(self, quotation_id: UUID) -> List[QuotationAccessLink]:
        return await self.link_repo.list_by_quotation(quotation_id)

    def is_expired(self, link: QuotationAccessLink, now: Optional[datetime] = None) -> bool:
        return not link.is_active or link.expires_at <= (now or self.clock.now())
