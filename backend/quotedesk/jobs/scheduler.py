"""
Background scheduler for reminder sweeps, approval escalation and
notification retries.

Each job opens its own database session and commits per record, so a job
stopped mid-run leaves every finished record committed. A tick that fires
while the previous run of the same job is still going is skipped.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.clock import Clock
from quotedesk.core.config import settings
from quotedesk.core.integrations.contracts import Notifier
from quotedesk.db import session as db_session
from quotedesk.services.discount_approval_service import DiscountApprovalService
from quotedesk.services.notification_dispatch_service import NotificationDispatchService
from quotedesk.services.reminder_service import ReminderService

logger = logging.getLogger(__name__)

UNVIEWED_JOB = "unviewed_reminders"
FOLLOW_UP_JOB = "follow_up_reminders"
ESCALATION_JOB = "approval_escalation"
RETRY_JOB = "notification_retry"


class QuotationScheduler:
    """Owns the AsyncIOScheduler and the job bodies it triggers."""

    def __init__(
        self,
        notifier: Notifier,
        clock: Clock,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
    ):
        self.notifier = notifier
        self.clock = clock
        self._session_factory = session_factory
        self.scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._stopping = False

    def _open_session(self) -> AsyncSession:
        if self._session_factory is not None:
            return self._session_factory()
        if db_session.async_session_maker is None:
            db_session.create_sessionmaker()
        return db_session.async_session_maker()

    def stop_requested(self) -> bool:
        return self._stopping

    def start(self) -> None:
        """Register all jobs and start the scheduler."""
        self._stopping = False
        self.scheduler.add_job(
            self.run_unviewed_reminders,
            CronTrigger(hour=settings.REMINDER_CRON_HOUR, minute=0),
            id=UNVIEWED_JOB,
            name="Unviewed quotation reminders",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.run_follow_up_reminders,
            CronTrigger(hour=settings.REMINDER_CRON_HOUR, minute=30),
            id=FOLLOW_UP_JOB,
            name="Pending response follow-ups",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.run_approval_escalation,
            CronTrigger(minute=settings.APPROVAL_ESCALATION_CRON_MINUTE),
            id=ESCALATION_JOB,
            name="Stale approval escalation",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.run_notification_retries,
            IntervalTrigger(minutes=settings.NOTIFICATION_RETRY_INTERVAL_MINUTES),
            id=RETRY_JOB,
            name="Notification retries",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("Scheduler started", extra={"jobs": [job.id for job in self.scheduler.get_jobs()]})

    async def stop(self) -> None:
        """Ask running jobs to stop after their current record, then wait for them to finish."""
        self._stopping = True
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        for lock in list(self._locks.values()):
            async with lock:
                pass
        logger.info("Scheduler stopped")

    async def _run_exclusive(self, job_id: str, body: Callable[[AsyncSession], Awaitable[object]]) -> Optional[object]:
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        if lock.locked():
            logger.info(f"Skipping {job_id}: previous run still in progress")
            return None
        async with lock:
            if self._stopping:
                return None
            async with self._open_session() as session:
                try:
                    return await body(session)
                except Exception as e:
                    await session.rollback()
                    logger.exception(f"Scheduled job {job_id} failed", extra={"error": repr(e)})
                    return None

    def _dispatcher(self, session: AsyncSession) -> NotificationDispatchService:
        return NotificationDispatchService(session, self.notifier, self.clock)

    async def run_unviewed_reminders(self):
        async def body(session: AsyncSession):
            service = ReminderService(session, self._dispatcher(session), self.clock)
            return await service.run_unviewed_sweep(self.stop_requested)

        return await self._run_exclusive(UNVIEWED_JOB, body)

    async def run_follow_up_reminders(self):
        async def body(session: AsyncSession):
            service = ReminderService(session, self._dispatcher(session), self.clock)
            return await service.run_follow_up_sweep(self.stop_requested)

        return await self._run_exclusive(FOLLOW_UP_JOB, body)

    async def run_approval_escalation(self):
        async def body(session: AsyncSession):
            service = DiscountApprovalService(session, dispatcher=self._dispatcher(session), clock=self.clock)
            return await service.auto_escalate_stale(self.stop_requested)

        return await self._run_exclusive(ESCALATION_JOB, body)

    async def run_notification_retries(self):
        async def body(session: AsyncSession):
            return await self._dispatcher(session).retry_due(self.stop_requested)

        return await self._run_exclusive(RETRY_JOB, body)
