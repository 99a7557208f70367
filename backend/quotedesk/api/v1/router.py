"""
API v1 router that aggregates all endpoint routers.
Internal routes require a bearer token; health and the client portal are public.
"""

from fastapi import APIRouter, Depends
from quotedesk.api.v1.middleware import require_authentication

from quotedesk.api.v1.endpoints import (
    health,
    quotations,
    discount_approvals,
    client_portal,
)

api_router = APIRouter()

# Public routes (no authentication required)
api_router.include_router(health.router, tags=["health"])
api_router.include_router(client_portal.router, prefix="/client-portal", tags=["client-portal"])

# Protected routes (authentication required for all endpoints)
api_router.include_router(
    quotations.router,
    prefix="/quotations",
    tags=["quotations"],
    dependencies=[Depends(require_authentication)],
)
api_router.include_router(
    discount_approvals.router,
    prefix="/discount-approvals",
    tags=["discount-approvals"],
    dependencies=[Depends(require_authentication)],
)
