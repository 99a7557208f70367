"""
Quotation lifecycle service: send/resend, client views and client responses.

Status flow is Draft -> Sent -> Viewed -> Accepted | Rejected. Resending keeps
or returns the quotation to Sent. Expiry is derived from valid_until and is
never written.

Sending stages every store change (link rotation, status, history) in the open
transaction, then renders and emails. The email goes out only after the new
state is staged; any render or notify failure rolls the staged state back, so
no active link survives without a delivered notification.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.config import settings
from quotedesk.core.exceptions import (
    ConflictError,
    ExternalDependencyError,
    NotFoundError,
    QuotationLockedError,
    SecurityError,
    ValidationError,
)
from quotedesk.core.integrations.contracts import DocumentRenderer, Notifier
from quotedesk.db.repositories.quotation_repository import QuotationRepository
from quotedesk.db.repositories.response_repository import ResponseRepository
from quotedesk.db.repositories.status_history_repository import StatusHistoryRepository
from quotedesk.db.repositories.user_repository import UserRepository
from quotedesk.models.access_link import QuotationAccessLink
from quotedesk.models.notification import DispatchStatus, NotificationDispatchAttempt, NotificationKind
from quotedesk.models.quotation import (
    Quotation,
    QuotationClientResponse,
    QuotationStatus,
    ResponseDecision,
)
from quotedesk.models.user import User, UserRole
from quotedesk.schemas.quotation import SendQuotationRequest
from quotedesk.services import email_templates
from quotedesk.services.access_link_service import AccessLinkService, IssuedLink
from quotedesk.services.base_service import BaseService
from quotedesk.services.discount_approval_service import DiscountApprovalService
from quotedesk.services.notification_dispatch_service import NotificationDispatchService
from quotedesk.services.quotation_service import is_expired

logger = logging.getLogger(__name__)

SENT_REASON = "Quotation sent to client"
RESENT_REASON = "Quotation resent to client"
VIEWED_REASON = "Quotation viewed by client"
SENDABLE_STATUSES = (QuotationStatus.DRAFT, QuotationStatus.SENT, QuotationStatus.VIEWED)
RESPONDABLE_STATUSES = (QuotationStatus.SENT, QuotationStatus.VIEWED)


@dataclass
class SendOutcome:
    quotation: Quotation
    issued: IssuedLink
    is_resend: bool
    dispatch_attempt: NotificationDispatchAttempt


class QuotationLifecycleService(BaseService):
    """Drives the quotation status machine and coordinates sending."""

    def __init__(
        self,
        session: AsyncSession,
        renderer: DocumentRenderer,
        notifier: Notifier,
        clock: Clock = system_clock,
        render_timeout: Optional[float] = None,
        notify_timeout: Optional[float] = None,
    ):
        super().__init__(session, clock)
        self.renderer = renderer
        self.render_timeout = render_timeout or settings.RENDER_TIMEOUT_SECONDS
        self.quotation_repo = QuotationRepository(session)
        self.history_repo = StatusHistoryRepository(session)
        self.response_repo = ResponseRepository(session)
        self.user_repo = UserRepository(session)
        self.link_service = AccessLinkService(session, clock)
        self.dispatcher = NotificationDispatchService(session, notifier, clock, timeout_seconds=notify_timeout)
        self.approval_service = DiscountApprovalService(session, dispatcher=self.dispatcher, clock=clock)

    async def _load_for_update(self, quotation_id: UUID) -> Quotation:
        quotation = await self.quotation_repo.get(quotation_id, for_update=True)
        if quotation is None:
            raise NotFoundError("Quotation", quotation_id)
        return quotation

    async def send(
        self,
        quotation_id: UUID,
        actor: User,
        request: SendQuotationRequest,
        resend: bool = False,
    ) -> SendOutcome:
        """
        Rotate the access link, render, email and mark the quotation Sent as one unit.
        With resend=True the quotation must already have been sent.
        """
        quotation = await self._load_for_update(quotation_id)
        if quotation.is_locked:
            raise QuotationLockedError(quotation.id, quotation.pending_approval_id)
        if quotation.status not in SENDABLE_STATUSES:
            raise ValidationError(
                f"A {quotation.status.value.lower()} quotation cannot be sent again",
                details={"status": quotation.status.value},
            )
        if resend and quotation.status == QuotationStatus.DRAFT:
            raise ValidationError("Only a quotation that has been sent can be resent")
        if is_expired(quotation, self.clock.today()):
            raise ValidationError(
                "The quotation validity date has passed",
                details={"valid_until": quotation.valid_until.isoformat()},
            )
        if not quotation.line_items:
            raise ValidationError("A quotation needs at least one line item before it can be sent")

        recipient = request.recipient_email or (quotation.client.email if quotation.client else None)
        if not recipient:
            raise ValidationError("A recipient email address is required")

        is_resend = quotation.status != QuotationStatus.DRAFT
        previous_status = quotation.status
        quotation_ref = quotation.id
        quotation_number = quotation.quotation_number

        # Stage store changes
        issued = await self.link_service.issue(quotation.id, recipient)
        now = self.clock.now()
        issued.link.sent_at = now
        quotation.status = QuotationStatus.SENT
        quotation.updated_at = now
        await self.history_repo.append(
            quotation.id,
            previous_status,
            QuotationStatus.SENT,
            changed_at=now,
            changed_by_user_id=actor.id,
            reason=RESENT_REASON if is_resend else SENT_REASON,
        )
        await self.session.flush()

        document = await self._render(quotation)

        message = email_templates.quotation_sent(
            to=recipient,
            quotation_number=quotation_number,
            title=quotation.title,
            currency=quotation.currency,
            total_amount=quotation.total_amount,
            valid_until=quotation.valid_until,
            view_url=issued.url,
            document=document,
            cc=request.cc,
            bcc=request.bcc,
            subject=request.subject,
            custom_message=request.custom_message,
        )
        try:
            provider_ref = await self.dispatcher.send(message)
        except Exception as e:
            await self.session.rollback()
            await self.dispatcher.record_attempt(
                NotificationKind.QUOTATION_SENT,
                message,
                DispatchStatus.FAILED,
                quotation_id=quotation_ref,
                retryable=False,
                error_detail=repr(e)[:2000],
            )
            await self.session.commit()
            logger.error(
                f"Quotation {quotation_number} email failed; send rolled back",
                extra={"quotation_id": str(quotation_ref), "stage": "notify", "error": repr(e)},
            )
            raise ExternalDependencyError(
                ExternalDependencyError.NOTIFY,
                "The quotation could not be emailed. Nothing was sent; please try again.",
                cause=type(e).__name__,
            ) from e

        attempt = await self.dispatcher.record_attempt(
            NotificationKind.QUOTATION_SENT,
            message,
            DispatchStatus.DELIVERED,
            quotation_id=quotation.id,
            provider_ref=provider_ref,
        )
        applied = await self.approval_service.mark_applied(quotation.id)

        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                f"Quotation {quotation_number} was emailed but its state could not be saved",
                extra={"quotation_id": str(quotation_ref), "provider_ref": provider_ref, "error": repr(e)},
            )
            raise ConflictError(
                "The quotation state could not be saved after sending; please resend it",
                details={"quotation_id": str(quotation_ref)},
            ) from e

        logger.info(
            f"Quotation {quotation_number} {'resent' if is_resend else 'sent'}",
            extra={
                "quotation_id": str(quotation_ref),
                "access_link_id": str(issued.link.id),
                "approvals_applied": applied,
            },
        )
        return SendOutcome(quotation=quotation, issued=issued, is_resend=is_resend, dispatch_attempt=attempt)

    async def _render(self, quotation: Quotation) -> bytes:
        quotation_ref = quotation.id
        quotation_number = quotation.quotation_number
        try:
            document = await asyncio.wait_for(self.renderer.render(quotation), timeout=self.render_timeout)
            if not document:
                raise ValueError("Renderer returned an empty document")
        except Exception as e:
            await self.session.rollback()
            logger.error(
                f"Quotation {quotation_number} rendering failed; send rolled back",
                extra={"quotation_id": str(quotation_ref), "stage": "render", "error": repr(e)},
            )
            raise ExternalDependencyError(
                ExternalDependencyError.RENDER,
                "The quotation document could not be generated. Nothing was sent; please try again.",
                cause=type(e).__name__,
            ) from e
        return document

    async def record_view(
        self,
        link: QuotationAccessLink,
        ip_address: Optional[str] = None,
    ) -> Quotation:
        """
        Count a portal visit on a validated link and move Sent to Viewed once.
        Repeat visits only update the link counters.
        """
        quotation = await self._load_for_update(link.quotation_id)
        if is_expired(quotation, self.clock.today()):
            raise SecurityError.invalid_link("quotation_expired")

        await self.link_service.record_visit(link, ip_address)
        if quotation.status == QuotationStatus.SENT:
            now = self.clock.now()
            quotation.status = QuotationStatus.VIEWED
            quotation.updated_at = now
            await self.history_repo.append(
                quotation.id,
                QuotationStatus.SENT,
                QuotationStatus.VIEWED,
                changed_at=now,
                reason=VIEWED_REASON,
                ip_address=ip_address,
            )
            logger.info(
                f"Quotation {quotation.quotation_number} viewed by client",
                extra={"quotation_id": str(quotation.id)},
            )
        await self.session.commit()
        return quotation

    async def record_response(
        self,
        link: QuotationAccessLink,
        decision: ResponseDecision,
        message: Optional[str],
        client_email: str,
        ip_address: Optional[str] = None,
    ) -> QuotationClientResponse:
        """Record the client's one and only decision and notify the owner after commit."""
        quotation = await self._load_for_update(link.quotation_id)
        if is_expired(quotation, self.clock.today()):
            raise SecurityError.invalid_link("quotation_expired")
        if await self.response_repo.get_by_quotation(quotation.id) is not None:
            raise ValidationError("A response has already been recorded for this quotation")
        if quotation.status not in RESPONDABLE_STATUSES:
            raise ValidationError(
                "This quotation can no longer be responded to",
                details={"status": quotation.status.value},
            )

        now = self.clock.now()
        previous_status = quotation.status
        new_status = QuotationStatus.ACCEPTED if decision == ResponseDecision.ACCEPTED else QuotationStatus.REJECTED
        try:
            response = await self.response_repo.create(
                quotation_id=quotation.id,
                access_link_id=link.id,
                decision=decision,
                message=message,
                client_email=client_email.strip().lower(),
                ip_address=ip_address,
                responded_at=now,
            )
        except IntegrityError as e:
            await self.session.rollback()
            raise ValidationError("A response has already been recorded for this quotation") from e

        quotation.status = new_status
        quotation.updated_at = now
        await self.history_repo.append(
            quotation.id,
            previous_status,
            new_status,
            changed_at=now,
            reason=f"Client responded: {decision.value.title()}",
            ip_address=ip_address,
        )
        await self.session.commit()
        logger.info(
            f"Quotation {quotation.quotation_number} {new_status.value.lower()} by client",
            extra={"quotation_id": str(quotation.id), "decision": decision.value},
        )

        await self._notify_response(quotation, response)
        return response

    async def _notify_response(self, quotation: Quotation, response: QuotationClientResponse) -> None:
        recipients: List[str] = []
        owner = await self.user_repo.get(quotation.created_by_user_id)
        if owner is not None and owner.is_active:
            recipients.append(owner.email)
        for admin in await self.user_repo.list_active_by_role(UserRole.ADMIN):
            if admin.email not in recipients:
                recipients.append(admin.email)

        for recipient in recipients:
            message = email_templates.client_response(
                recipient,
                quotation.quotation_number,
                response.client_email,
                response.decision.value,
                response.message,
            )
            await self.dispatcher.deliver_best_effort(NotificationKind.CLIENT_RESPONSE, message, quotation.id)
        await self.session.commit()
