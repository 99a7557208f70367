"""
Client portal controller.
"""

from typing import Optional, Tuple
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.controllers.base_controller import BaseController
from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.config import settings
from quotedesk.core.integrations.contracts import DocumentRenderer, Notifier
from quotedesk.models.quotation import Quotation, QuotationStatus
from quotedesk.schemas.client_portal import (
    ClientResponseRequest,
    ClientResponseResult,
    LinkValidationResponse,
    OtpRequestResponse,
    OtpVerifyResponse,
    PageViewEndResponse,
    PageViewStartResponse,
    PortalLineItem,
    PortalQuotationView,
)
from quotedesk.services.client_portal_service import ClientPortalService, email_hint


class ClientPortalController(BaseController):
    """Controller for the public client portal."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier,
        renderer: DocumentRenderer,
        clock: Clock = system_clock,
    ):
        self.portal_service = ClientPortalService(session, renderer, notifier, clock)

    @staticmethod
    def _to_view(quotation: Quotation) -> PortalQuotationView:
        return PortalQuotationView(
            quotation_id=quotation.id,
            quotation_number=quotation.quotation_number,
            title=quotation.title,
            status=quotation.status,
            quotation_date=quotation.quotation_date,
            valid_until=quotation.valid_until,
            currency=quotation.currency,
            subtotal=quotation.subtotal,
            discount_amount=quotation.discount_amount,
            tax_amount=quotation.tax_amount,
            cgst_amount=quotation.cgst_amount,
            sgst_amount=quotation.sgst_amount,
            igst_amount=quotation.igst_amount,
            total_amount=quotation.total_amount,
            notes=quotation.notes,
            line_items=[
                PortalLineItem(
                    item_name=item.item_name,
                    description=item.description,
                    quantity=item.quantity,
                    unit_rate=item.unit_rate,
                    discount_amount=item.discount_amount,
                    amount=item.amount,
                )
                for item in quotation.line_items
            ],
            can_respond=quotation.status in (QuotationStatus.SENT, QuotationStatus.VIEWED),
        )

    async def validate(self, quotation_id: UUID, token: str) -> LinkValidationResponse:
        link, quotation = await self.portal_service.validate_link(quotation_id, token)
        return LinkValidationResponse(
            quotation_number=quotation.quotation_number,
            client_email_hint=email_hint(link.client_email),
            expires_at=link.expires_at,
        )

    async def request_otp(self, quotation_id: UUID, token: str, email: str, ip: Optional[str]) -> OtpRequestResponse:
        await self.portal_service.request_otp(quotation_id, token, email, ip)
        return OtpRequestResponse(expires_in_minutes=settings.OTP_EXPIRY_MINUTES)

    async def verify_otp(
        self,
        quotation_id: UUID,
        token: str,
        email: str,
        code: str,
        ip: Optional[str],
    ) -> OtpVerifyResponse:
        session_token = await self.portal_service.verify_otp(quotation_id, token, email, code, ip)
        return OtpVerifyResponse(session_token=session_token, expires_in_minutes=settings.PORTAL_SESSION_MINUTES)

    async def view(
        self,
        quotation_id: UUID,
        token: str,
        session_token: Optional[str],
        ip: Optional[str],
    ) -> PortalQuotationView:
        quotation = await self.portal_service.view(quotation_id, token, session_token, ip)
        return self._to_view(quotation)

    async def download(self, quotation_id: UUID, token: str, session_token: Optional[str]) -> Tuple[str, bytes]:
        return await self.portal_service.download(quotation_id, token, session_token)

    async def respond(
        self,
        quotation_id: UUID,
        token: str,
        session_token: Optional[str],
        body: ClientResponseRequest,
        ip: Optional[str],
    ) -> ClientResponseResult:
        response, quotation = await self.portal_service.respond(
            quotation_id, token, session_token, body.decision, body.message, ip
        )
        return ClientResponseResult(
            quotation_number=quotation.quotation_number,
            status=quotation.status,
            decision=response.decision,
            responded_at=response.responded_at,
        )

    async def start_view(
        self,
        quotation_id: UUID,
        token: str,
        ip: Optional[str],
        user_agent: Optional[str],
    ) -> PageViewStartResponse:
        page_view = await self.portal_service.start_page_view(quotation_id, token, ip, user_agent)
        return PageViewStartResponse(page_view_id=page_view.id, started_at=page_view.started_at)

    async def end_view(self, quotation_id: UUID, token: str, page_view_id: UUID) -> PageViewEndResponse:
        page_view = await self.portal_service.end_page_view(quotation_id, token, page_view_id)
        return PageViewEndResponse(
            page_view_id=page_view.id,
            ended_at=page_view.ended_at,
            duration_seconds=page_view.duration_seconds or 0,
        )
