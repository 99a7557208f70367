"""
Health service.
Reports uptime, database connectivity and whether core tables are provisioned.
"""

import time
from quotedesk.services.base_service import BaseService
from quotedesk.schemas.health import HealthResponse


class HealthService(BaseService):
    """Service for health check operations."""

    def __init__(self):
        self.start_time = time.time()

    async def get_health(self) -> HealthResponse:
        """
        Get system health status.

        Returns:
            HealthResponse with status, uptime, and checks
        """
        uptime_seconds = int(time.time() - self.start_time)
        uptime_str = f"PT{uptime_seconds}S"  # ISO 8601 duration format

        checks = {}
        try:
            from quotedesk.db import session as db_session
            from quotedesk.db.repositories.health_repository import HealthRepository

            if db_session.async_session_maker is None:
                db_session.create_sessionmaker()
            async with db_session.async_session_maker() as session:
                repo = HealthRepository(session=session)
                db_ok = await repo.check_database()
                checks["database"] = "ok" if db_ok else "error"
                if db_ok:
                    for table, table_status in (await repo.check_tables()).items():
                        checks[f"table:{table}"] = table_status
        except Exception as e:
            checks["database"] = f"error: {type(e).__name__}"

        status = "ok" if all(check == "ok" for check in checks.values()) else "degraded"

        return HealthResponse(
            status=status,
            uptime=uptime_str,
            checks=checks,
        )
