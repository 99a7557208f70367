"""
Quotation API endpoints.
"""

from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from quotedesk.api.v1.middleware import require_authentication
from quotedesk.db.session import get_db
from quotedesk.deps.di_container import get_container
from quotedesk.models.user import User
from quotedesk.schemas.quotation import (
    AccessLinkSummary,
    QuotationCreate,
    QuotationResponse,
    QuotationUpdate,
    SendQuotationRequest,
    SendQuotationResponse,
    StatusHistoryResponse,
)

router = APIRouter()


@router.post("", response_model=QuotationResponse, status_code=status.HTTP_201_CREATED)
async def create_quotation(
    quotation_data: QuotationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
) -> QuotationResponse:
    """Create a draft quotation with an allocated number."""
    controller = get_container().quotation_controller(session=db)
    return await controller.create_quotation(quotation_data, current_user)


@router.get("/{quotation_id}", response_model=QuotationResponse)
async def get_quotation(
    quotation_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> QuotationResponse:
    """Get quotation by ID, with its effective status."""
    controller = get_container().quotation_controller(session=db)
    return await controller.get_quotation(quotation_id)


@router.patch("/{quotation_id}", response_model=QuotationResponse)
async def update_quotation(
    quotation_id: UUID,
    quotation_data: QuotationUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
) -> QuotationResponse:
    """Edit a draft quotation."""
    controller = get_container().quotation_controller(session=db)
    return await controller.update_quotation(quotation_id, quotation_data, current_user)


@router.post("/{quotation_id}/send", response_model=SendQuotationResponse)
async def send_quotation(
    quotation_id: UUID,
    send_request: SendQuotationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
) -> SendQuotationResponse:
    """Send a quotation to the client with a fresh access link."""
    controller = get_container().quotation_controller(session=db)
    return await controller.send_quotation(quotation_id, send_request, current_user)


@router.post("/{quotation_id}/resend", response_model=SendQuotationResponse)
async def resend_quotation(
    quotation_id: UUID,
    send_request: SendQuotationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
) -> SendQuotationResponse:
    """Resend a previously sent quotation. The previous link stops working."""
    controller = get_container().quotation_controller(session=db)
    return await controller.send_quotation(quotation_id, send_request, current_user, resend=True)


@router.get("/{quotation_id}/history", response_model=List[StatusHistoryResponse])
async def get_quotation_history(
    quotation_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[StatusHistoryResponse]:
    controller = get_container().quotation_controller(session=db)
    return await controller.get_history(quotation_id)


@router.get("/{quotation_id}/access-links", response_model=List[AccessLinkSummary])
async def list_access_links(
    quotation_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[AccessLinkSummary]:
    """Access links for a quotation, newest first, with masked tokens."""
    controller = get_container().quotation_controller(session=db)
    return await controller.list_access_links(quotation_id)
