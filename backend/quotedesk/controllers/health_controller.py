"""
Health controller.
"""

from quotedesk.controllers.base_controller import BaseController
from quotedesk.schemas.health import HealthResponse
from quotedesk.services.health_service import HealthService


class HealthController(BaseController):
    """Controller for health check operations."""

    def __init__(self, health_service: HealthService = None):
        self.health_service = health_service or HealthService()

    async def get_health(self) -> HealthResponse:
        return await self.health_service.get_health()
