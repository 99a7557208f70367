"""
Client portal service.

Public entry point for clients holding an access link. Every denial raises a
SecurityError carrying the specific reason for the server log while the caller
only ever sees a generic message.
"""

import asyncio
import logging
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.config import settings
from quotedesk.core.exceptions import ExternalDependencyError, SecurityError
from quotedesk.core.integrations.contracts import DocumentRenderer, Notifier
from quotedesk.core.security import create_portal_session_token, decode_portal_session_token, mask_token
from quotedesk.db.repositories.quotation_repository import QuotationRepository
from quotedesk.models.access_link import QuotationAccessLink, QuotationPageView
from quotedesk.models.quotation import Quotation, QuotationClientResponse, ResponseDecision
from quotedesk.services.access_link_service import AccessLinkService
from quotedesk.services.base_service import BaseService
from quotedesk.services.otp_service import OtpService, normalize_email
from quotedesk.services.quotation_lifecycle_service import QuotationLifecycleService
from quotedesk.services.quotation_service import is_expired

logger = logging.getLogger(__name__)


def email_hint(email: str) -> str:
    """j***@example.com style hint of the address a link is bound to."""
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


class ClientPortalService(BaseService):
    """Token + passcode gated access to a single quotation."""

    def __init__(
        self,
        session: AsyncSession,
        renderer: DocumentRenderer,
        notifier: Notifier,
        clock: Clock = system_clock,
    ):
        super().__init__(session, clock)
        self.renderer = renderer
        self.quotation_repo = QuotationRepository(session)
        self.link_service = AccessLinkService(session, clock)
        self.lifecycle = QuotationLifecycleService(session, renderer, notifier, clock)
        self.otp_service = OtpService(session, dispatcher=self.lifecycle.dispatcher, clock=clock)

    async def validate_link(self, quotation_id: UUID, token: str) -> Tuple[QuotationAccessLink, Quotation]:
        link = await self.link_service.require_valid(token, quotation_id)
        quotation = await self.quotation_repo.get(link.quotation_id)
        if quotation is None:
            raise SecurityError.invalid_link("quotation_missing")
        if is_expired(quotation, self.clock.today()):
            logger.warning(
                "Access link used for an expired quotation",
                extra={"token": mask_token(token), "reason": "quotation_expired"},
            )
            raise SecurityError.invalid_link("quotation_expired")
        return link, quotation

    async def request_otp(
        self,
        quotation_id: UUID,
        token: str,
        email: str,
        ip_address: Optional[str] = None,
    ) -> None:
        """
        Issue a passcode when the email matches the link. A mismatch is logged
        and otherwise indistinguishable from success for the caller.
        """
        link, quotation = await self.validate_link(quotation_id, token)
        if normalize_email(email) != link.client_email:
            logger.warning(
                "Passcode requested for an email not bound to the link",
                extra={"access_link_id": str(link.id), "reason": "email_mismatch"},
            )
            return
        await self.otp_service.issue(link, email, ip_address, quotation.quotation_number)

    async def verify_otp(
        self,
        quotation_id: UUID,
        token: str,
        email: str,
        code: str,
        ip_address: Optional[str] = None,
    ) -> str:
        """Verify the passcode and return a portal session token."""
        link, _ = await self.validate_link(quotation_id, token)
        result = await self.otp_service.verify(link.id, email, code, ip_address)
        if not result.success:
            raise SecurityError.invalid_otp(result.reason)
        return create_portal_session_token(link.id, normalize_email(email), self.clock.now())

    def require_session(self, link: QuotationAccessLink, session_token: Optional[str]) -> str:
        """Email proven by the session token; the token must belong to this link."""
        if not session_token:
            raise SecurityError.session_required("missing_session")
        payload = decode_portal_session_token(session_token, self.clock.now())
        if payload is None:
            raise SecurityError.session_required("invalid_session")
        if payload.get("sub") != str(link.id) or payload.get("email") != link.client_email:
            raise SecurityError.session_required("session_link_mismatch")
        return payload["email"]

    async def view(
        self,
        quotation_id: UUID,
        token: str,
        session_token: Optional[str],
        ip_address: Optional[str] = None,
    ) -> Quotation:
        link, _ = await self.validate_link(quotation_id, token)
        self.require_session(link, session_token)
        await self.lifecycle.record_view(link, ip_address)
        return await self.quotation_repo.get(link.quotation_id)

    async def download(self, quotation_id: UUID, token: str, session_token: Optional[str]) -> Tuple[str, bytes]:
        link, quotation = await self.validate_link(quotation_id, token)
        self.require_session(link, session_token)
        try:
            document = await asyncio.wait_for(
                self.renderer.render(quotation), timeout=settings.RENDER_TIMEOUT_SECONDS
            )
        except Exception as e:
            logger.error(
                "Portal document download failed",
                extra={"quotation_id": str(quotation.id), "error": repr(e)},
            )
            raise ExternalDependencyError(
                ExternalDependencyError.RENDER,
                "The document is temporarily unavailable. Please try again later.",
                cause=type(e).__name__,
            ) from e
        return f"{quotation.quotation_number}.pdf", document

    async def respond(
        self,
        quotation_id: UUID,
        token: str,
        session_token: Optional[str],
        decision: ResponseDecision,
        message: Optional[str],
        ip_address: Optional[str] = None,
    ) -> Tuple[QuotationClientResponse, Quotation]:
        link, _ = await self.validate_link(quotation_id, token)
        email = self.require_session(link, session_token)
        response = await self.lifecycle.record_response(link, decision, message, email, ip_address)
        quotation = await self.quotation_repo.get(link.quotation_id)
        return response, quotation

    async def start_page_view(
        self,
        quotation_id: UUID,
        token: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> QuotationPageView:
        link, _ = await self.validate_link(quotation_id, token)
        page_view = await self.link_service.start_page_view(link, ip_address, user_agent)
        await self.session.commit()
        return page_view

    async def end_page_view(self, quotation_id: UUID, token: str, page_view_id: UUID) -> QuotationPageView:
        link = await self.link_service.require_valid(token, quotation_id)
        page_view = await self.link_service.end_page_view(link, page_view_id)
        if page_view is None:
            raise SecurityError.invalid_link("page_view_not_found")
        await self.session.commit()
        return page_view
