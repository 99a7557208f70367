"""
Quotation controller.
"""

from typing import List
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.controllers.base_controller import BaseController
from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.integrations.contracts import DocumentRenderer, Notifier
from quotedesk.models.quotation import Quotation
from quotedesk.models.user import User
from quotedesk.schemas.quotation import (
    AccessLinkDescriptor,
    AccessLinkSummary,
    QuotationCreate,
    QuotationResponse,
    QuotationUpdate,
    SendQuotationRequest,
    SendQuotationResponse,
    StatusHistoryResponse,
)
from quotedesk.services.access_link_service import masked_link_token
from quotedesk.services.notification_dispatch_service import NotificationDispatchService
from quotedesk.services.quotation_lifecycle_service import QuotationLifecycleService
from quotedesk.services.quotation_service import QuotationService


class QuotationController(BaseController):
    """Controller for internal quotation operations."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier,
        renderer: DocumentRenderer,
        clock: Clock = system_clock,
    ):
        self.clock = clock
        self.lifecycle_service = QuotationLifecycleService(session, renderer, notifier, clock)
        self.quotation_service = QuotationService(
            session,
            clock=clock,
            dispatcher=NotificationDispatchService(session, notifier, clock),
        )

    def _to_response(self, quotation: Quotation) -> QuotationResponse:
        response = QuotationResponse.model_validate(quotation)
        return response.model_copy(update={"effective_status": self.quotation_service.effective_status(quotation)})

    async def create_quotation(self, data: QuotationCreate, actor: User) -> QuotationResponse:
        quotation = await self.quotation_service.create_quotation(data, actor)
        return self._to_response(quotation)

    async def get_quotation(self, quotation_id: UUID) -> QuotationResponse:
        quotation = await self.quotation_service.get_quotation(quotation_id)
        return self._to_response(quotation)

    async def update_quotation(self, quotation_id: UUID, data: QuotationUpdate, actor: User) -> QuotationResponse:
        quotation = await self.quotation_service.update_quotation(quotation_id, data, actor)
        return self._to_response(quotation)

    async def send_quotation(
        self,
        quotation_id: UUID,
        request: SendQuotationRequest,
        actor: User,
        resend: bool = False,
    ) -> SendQuotationResponse:
        outcome = await self.lifecycle_service.send(quotation_id, actor, request, resend=resend)
        link = outcome.issued.link
        return SendQuotationResponse(
            quotation_id=outcome.quotation.id,
            quotation_number=outcome.quotation.quotation_number,
            status=outcome.quotation.status,
            is_resend=outcome.is_resend,
            access_link=AccessLinkDescriptor(
                access_link_id=link.id,
                quotation_id=link.quotation_id,
                url=outcome.issued.url,
                token=outcome.issued.token,
                client_email=link.client_email,
                expires_at=link.expires_at,
                sent_at=link.sent_at,
                view_count=link.view_count or 0,
                first_viewed_at=link.first_viewed_at,
                last_viewed_at=link.last_viewed_at,
            ),
        )

    async def get_history(self, quotation_id: UUID) -> List[StatusHistoryResponse]:
        entries = await self.quotation_service.get_history(quotation_id)
        return [StatusHistoryResponse.model_validate(entry) for entry in entries]

    async def list_access_links(self, quotation_id: UUID) -> List[AccessLinkSummary]:
        await self.quotation_service.get_quotation(quotation_id)
        links = await self.lifecycle_service.link_service.list_links(quotation_id)
        return [
            AccessLinkSummary(
                id=link.id,
                client_email=link.client_email,
                masked_token=masked_link_token(link),
                is_active=link.is_active,
                created_at=link.created_at,
                expires_at=link.expires_at,
                sent_at=link.sent_at,
                first_viewed_at=link.first_viewed_at,
                last_viewed_at=link.last_viewed_at,
                view_count=link.view_count or 0,
                last_client_ip=link.last_client_ip,
            )
            for link in links
        ]
