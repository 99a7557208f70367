"""
Quotation service with business logic for creation, pricing edits and expiry.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.config import settings
from quotedesk.core.exceptions import NotFoundError, QuotationLockedError, ValidationError
from quotedesk.db.repositories.client_repository import ClientRepository
from quotedesk.db.repositories.document_number_repository import DocumentNumberRepository
from quotedesk.db.repositories.quotation_repository import QuotationRepository
from quotedesk.db.repositories.status_history_repository import StatusHistoryRepository
from quotedesk.db.repositories.user_repository import UserRepository
from quotedesk.models.quotation import Quotation, QuotationLineItem, QuotationStatus, QuotationStatusHistory
from quotedesk.models.user import User
from quotedesk.schemas.quotation import LineItemCreate, QuotationCreate, QuotationUpdate
from quotedesk.services.base_service import BaseService
from quotedesk.services.discount_approval_service import DiscountApprovalService, required_level
from quotedesk.services.notification_dispatch_service import NotificationDispatchService
from quotedesk.services.sequence_allocator import SequenceAllocator
from quotedesk.services.totals_service import TotalsService

logger = logging.getLogger(__name__)

LIVE_STATUSES = (QuotationStatus.DRAFT, QuotationStatus.SENT, QuotationStatus.VIEWED)


def is_expired(quotation: Quotation, today: date) -> bool:
    """Live quotations past their validity date are expired. Stored status is untouched."""
    return quotation.status in LIVE_STATUSES and quotation.valid_until < today


def effective_status(quotation: Quotation, today: date) -> QuotationStatus:
    return QuotationStatus.EXPIRED if is_expired(quotation, today) else quotation.status


def _build_line_items(items: List[LineItemCreate]) -> List[QuotationLineItem]:
    return [
        QuotationLineItem(
            item_name=item.item_name,
            description=item.description,
            quantity=item.quantity,
            unit_rate=item.unit_rate,
            discount_percentage=item.discount_percentage,
            display_order=item.display_order if item.display_order else index,
        )
        for index, item in enumerate(items)
    ]


class QuotationService(BaseService):
    """Service for quotation creation and draft edits."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = system_clock,
        dispatcher: Optional[NotificationDispatchService] = None,
        totals_service: Optional[TotalsService] = None,
        allocator: Optional[SequenceAllocator] = None,
    ):
        super().__init__(session, clock)
        self.quotation_repo = QuotationRepository(session)
        self.client_repo = ClientRepository(session)
        self.history_repo = StatusHistoryRepository(session)
        self.user_repo = UserRepository(session)
        self.totals_service = totals_service or TotalsService()
        self.allocator = allocator or SequenceAllocator(DocumentNumberRepository(session), clock)
        self.approval_service = DiscountApprovalService(
            session, dispatcher=dispatcher, clock=clock, totals_service=self.totals_service
        )

    async def get_quotation(self, quotation_id: UUID) -> Quotation:
        quotation = await self.quotation_repo.get(quotation_id)
        if quotation is None:
            raise NotFoundError("Quotation", quotation_id)
        return quotation

    async def create_quotation(self, data: QuotationCreate, author: User) -> Quotation:
        """
        Allocate a number, price the lines and persist a Draft. A discount that
        needs approval is not applied; it opens an approval and locks the draft.
        """
        level = required_level(data.discount_percentage)
        if level is not None and not (data.approval_reason and data.approval_reason.strip()):
            raise ValidationError(
                "A discount of this size needs approval; provide approval_reason",
                details={"discount_percentage": str(data.discount_percentage), "approval_level": level.value},
            )

        # Numbering first: a store failure rolls the transaction back and expires loaded rows
        author_id = author.id
        allocated = await self.allocator.allocate()
        author = await self.user_repo.get(author_id)

        client = await self.client_repo.get(data.client_id)
        if client is None:
            raise NotFoundError("Client", data.client_id)

        now = self.clock.now()
        quotation_date = data.quotation_date or self.clock.today()
        valid_until = data.valid_until or quotation_date + timedelta(days=settings.QUOTATION_DEFAULT_VALIDITY_DAYS)

        quotation = Quotation(
            quotation_number=allocated.number,
            client_id=client.id,
            client=client,
            created_by_user_id=author.id,
            title=data.title,
            status=QuotationStatus.DRAFT,
            quotation_date=quotation_date,
            valid_until=valid_until,
            currency=data.currency.upper(),
            notes=data.notes,
            is_pending_approval=False,
            created_at=now,
            updated_at=now,
            line_items=_build_line_items(data.line_items),
        )
        applied_discount = Decimal("0") if level is not None else data.discount_percentage
        self.totals_service.recalculate(quotation, applied_discount)
        self.session.add(quotation)
        await self.session.flush()

        await self.history_repo.append(
            quotation.id,
            None,
            QuotationStatus.DRAFT,
            changed_at=now,
            changed_by_user_id=author.id,
            reason="Quotation created",
        )

        approval = None
        if level is not None:
            approval = await self.approval_service.stage_request(
                quotation, data.discount_percentage, data.approval_reason, author
            )

        await self.session.commit()
        logger.info(
            f"Created quotation {quotation.quotation_number}",
            extra={
                "quotation_id": str(quotation.id),
                "number_degraded": allocated.degraded,
                "pending_approval": approval is not None,
            },
        )
        if approval is not None:
            await self.approval_service.notify_approvers(approval, quotation, author)
        return await self.get_quotation(quotation.id)

    async def update_quotation(self, quotation_id: UUID, data: QuotationUpdate, actor: User) -> Quotation:
        """Edit a draft. Locked or non-draft quotations are immutable."""
        quotation = await self.quotation_repo.get(quotation_id, for_update=True)
        if quotation is None:
            raise NotFoundError("Quotation", quotation_id)
        if quotation.is_locked:
            raise QuotationLockedError(quotation.id, quotation.pending_approval_id)
        if quotation.status != QuotationStatus.DRAFT:
            raise ValidationError(
                "Only draft quotations can be edited",
                details={"status": quotation.status.value},
            )

        update_data = data.model_dump(exclude_unset=True)
        if "title" in update_data and data.title is not None:
            quotation.title = data.title
        if "notes" in update_data:
            quotation.notes = data.notes
        if "valid_until" in update_data and data.valid_until is not None:
            if data.valid_until < quotation.quotation_date:
                raise ValidationError("valid_until must not be before quotation_date")
            quotation.valid_until = data.valid_until
        if data.line_items is not None:
            quotation.line_items = _build_line_items(data.line_items)

        requested_discount = data.discount_percentage
        level = None
        if requested_discount is not None and requested_discount != quotation.discount_percentage:
            level = required_level(requested_discount)
            if level is not None and not (data.approval_reason and data.approval_reason.strip()):
                raise ValidationError(
                    "A discount of this size needs approval; provide approval_reason",
                    details={"discount_percentage": str(requested_discount), "approval_level": level.value},
                )

        if requested_discount is not None and level is None:
            self.totals_service.recalculate(quotation, requested_discount)
        else:
            self.totals_service.recalculate(quotation)
        quotation.updated_at = self.clock.now()
        await self.session.flush()

        approval = None
        if level is not None:
            approval = await self.approval_service.stage_request(
                quotation, requested_discount, data.approval_reason, actor
            )

        await self.session.commit()
        logger.info(
            f"Updated quotation {quotation.quotation_number}",
            extra={"quotation_id": str(quotation.id), "pending_approval": approval is not None},
        )
        if approval is not None:
            await self.approval_service.notify_approvers(approval, quotation, actor)
        return await self.get_quotation(quotation.id)

    async def get_history(self, quotation_id: UUID) -> List[QuotationStatusHistory]:
        await self.get_quotation(quotation_id)
        return await self.history_repo.list_by_quotation(quotation_id)

    def effective_status(self, quotation: Quotation) -> QuotationStatus:
        return effective_status(quotation, self.clock.today())
