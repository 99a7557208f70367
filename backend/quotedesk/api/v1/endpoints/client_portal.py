"""
Client portal API endpoints.
Public routes addressed by quotation id and access token. Viewing, downloading
and responding additionally need the session token issued by OTP verification.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from quotedesk.api.v1.middleware import client_ip, portal_session_token
from quotedesk.core.config import settings
from quotedesk.core.rate_limit import limiter
from quotedesk.db.session import get_db
from quotedesk.deps.di_container import get_container
from quotedesk.schemas.client_portal import (
    ClientResponseRequest,
    ClientResponseResult,
    LinkValidationResponse,
    OtpRequest,
    OtpRequestResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    PageViewEndRequest,
    PageViewEndResponse,
    PageViewStartRequest,
    PageViewStartResponse,
    PortalQuotationView,
)

router = APIRouter()

PORTAL_PATH = "/quotations/{quotation_id}/{token}"


@router.get(f"{PORTAL_PATH}/validate", response_model=LinkValidationResponse)
async def validate_link(
    quotation_id: UUID,
    token: str,
    db: AsyncSession = Depends(get_db),
) -> LinkValidationResponse:
    """Check that the link is usable before asking for a passcode."""
    controller = get_container().client_portal_controller(session=db)
    return await controller.validate(quotation_id, token)


@router.post(f"{PORTAL_PATH}/request-otp", response_model=OtpRequestResponse)
@limiter.limit(settings.PORTAL_OTP_RATE_LIMIT)
async def request_otp(
    request: Request,
    quotation_id: UUID,
    token: str,
    otp_request: OtpRequest,
    db: AsyncSession = Depends(get_db),
) -> OtpRequestResponse:
    controller = get_container().client_portal_controller(session=db)
    return await controller.request_otp(quotation_id, token, otp_request.email, client_ip(request))


@router.post(f"{PORTAL_PATH}/verify-otp", response_model=OtpVerifyResponse)
@limiter.limit(settings.PORTAL_OTP_RATE_LIMIT)
async def verify_otp(
    request: Request,
    quotation_id: UUID,
    token: str,
    verify_request: OtpVerifyRequest,
    db: AsyncSession = Depends(get_db),
) -> OtpVerifyResponse:
    """Exchange a passcode for a portal session token."""
    controller = get_container().client_portal_controller(session=db)
    return await controller.verify_otp(
        quotation_id, token, verify_request.email, verify_request.code, client_ip(request)
    )


@router.get(PORTAL_PATH, response_model=PortalQuotationView)
async def view_quotation(
    request: Request,
    quotation_id: UUID,
    token: str,
    session_token: Optional[str] = Depends(portal_session_token),
    db: AsyncSession = Depends(get_db),
) -> PortalQuotationView:
    """Show the quotation. The first view moves a Sent quotation to Viewed."""
    controller = get_container().client_portal_controller(session=db)
    return await controller.view(quotation_id, token, session_token, client_ip(request))


@router.get(f"{PORTAL_PATH}/download")
async def download_quotation(
    quotation_id: UUID,
    token: str,
    session_token: Optional[str] = Depends(portal_session_token),
    db: AsyncSession = Depends(get_db),
) -> Response:
    controller = get_container().client_portal_controller(session=db)
    filename, document = await controller.download(quotation_id, token, session_token)
    return Response(
        content=document,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post(f"{PORTAL_PATH}/respond", response_model=ClientResponseResult)
async def respond_to_quotation(
    request: Request,
    quotation_id: UUID,
    token: str,
    response_request: ClientResponseRequest,
    session_token: Optional[str] = Depends(portal_session_token),
    db: AsyncSession = Depends(get_db),
) -> ClientResponseResult:
    """Accept or reject the quotation. Only one response is ever recorded."""
    controller = get_container().client_portal_controller(session=db)
    return await controller.respond(quotation_id, token, session_token, response_request, client_ip(request))


@router.post(f"{PORTAL_PATH}/start-view", response_model=PageViewStartResponse)
async def start_page_view(
    request: Request,
    quotation_id: UUID,
    token: str,
    start_request: PageViewStartRequest,
    db: AsyncSession = Depends(get_db),
) -> PageViewStartResponse:
    controller = get_container().client_portal_controller(session=db)
    user_agent = start_request.user_agent or request.headers.get("user-agent")
    return await controller.start_view(quotation_id, token, client_ip(request), user_agent)


@router.post(f"{PORTAL_PATH}/end-view", response_model=PageViewEndResponse)
async def end_page_view(
    quotation_id: UUID,
    token: str,
    end_request: PageViewEndRequest,
    db: AsyncSession = Depends(get_db),
) -> PageViewEndResponse:
    controller = get_container().client_portal_controller(session=db)
    return await controller.end_view(quotation_id, token, end_request.page_view_id)
