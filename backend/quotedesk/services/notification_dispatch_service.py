"""
Notification dispatch service.

Every outbound email produces a NotificationDispatchAttempt row. Quotation
sends and passcodes are hard-failure paths: the caller decides what a failure
means and nothing is retried. Owner notifications and reminders are
best-effort: failures are recorded with a backoff schedule and re-sent by the
retry sweep as new attempt rows.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.config import settings
from quotedesk.core.integrations.contracts import EmailMessage, Notifier
from quotedesk.db.repositories.dispatch_attempt_repository import DispatchAttemptRepository
from quotedesk.db.repositories.quotation_repository import QuotationRepository
from quotedesk.models.notification import (
    DispatchStatus,
    NotificationChannel,
    NotificationDispatchAttempt,
    NotificationKind,
)
from quotedesk.models.quotation import QuotationStatus
from quotedesk.services.base_service import BaseService

logger = logging.getLogger(__name__)

JITTER_RATIO = 0.25
REMINDER_KINDS = (NotificationKind.UNVIEWED_REMINDER, NotificationKind.FOLLOW_UP_REMINDER)
TERMINAL_STATUSES = (QuotationStatus.ACCEPTED, QuotationStatus.REJECTED)


class RetryPolicy:
    """Exponential backoff with +/-25% jitter, capped, for a bounded number of attempts."""

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base_seconds: Optional[int] = None,
        max_seconds: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.max_attempts = max_attempts or settings.NOTIFICATION_MAX_ATTEMPTS
        self.base_seconds = base_seconds or settings.NOTIFICATION_RETRY_BASE_SECONDS
        self.max_seconds = max_seconds or settings.NOTIFICATION_RETRY_MAX_SECONDS
        self.rng = rng or random.Random()

    def delay_for(self, attempt_number: int) -> timedelta:
        delay = self.base_seconds * (2 ** (attempt_number - 1))
        jitter = delay * JITTER_RATIO * (self.rng.random() * 2 - 1)
        return timedelta(seconds=min(max(delay + jitter, 0), self.max_seconds))

    def next_retry_at(self, attempt_number: int, now: datetime) -> Optional[datetime]:
        """None once the attempt budget is spent."""
        if attempt_number >= self.max_attempts:
            return None
        return now + self.delay_for(attempt_number)


@dataclass
class RetrySweepSummary:
    examined: int = 0
    delivered: int = 0
    failed: int = 0
    cancelled: int = 0


def message_payload(message: EmailMessage) -> dict:
    """Serializable form of a message without attachments, used to rebuild it on retry."""
    return {
        "to": message.to,
        "cc": list(message.cc),
        "bcc": list(message.bcc),
        "subject": message.subject,
        "html_body": message.html_body,
    }


def message_from_payload(payload: dict) -> EmailMessage:
    return EmailMessage(
        to=payload["to"],
        cc=list(payload.get("cc") or []),
        bcc=list(payload.get("bcc") or []),
        subject=payload["subject"],
        html_body=payload["html_body"],
    )


class NotificationDispatchService(BaseService):
    """Sends emails through the notifier and records every attempt."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier,
        clock: Clock = system_clock,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__(session, clock)
        self.notifier = notifier
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout_seconds = timeout_seconds or settings.NOTIFY_TIMEOUT_SECONDS
        self.attempt_repo = DispatchAttemptRepository(session)
        self.quotation_repo = QuotationRepository(session)

    async def send(self, message: EmailMessage) -> Optional[str]:
        """Send one email, bounded by the notify timeout. Raises on any failure."""
        return await asyncio.wait_for(self.notifier.send_email(message), timeout=self.timeout_seconds)

    async def record_attempt(
        self,
        kind: NotificationKind,
        message: EmailMessage,
        status: DispatchStatus,
        quotation_id: Optional[UUID] = None,
        attempt_number: int = 1,
        retryable: bool = False,
        payload: Optional[dict] = None,
        error_detail: Optional[str] = None,
        provider_ref: Optional[str] = None,
        next_retry_at: Optional[datetime] = None,
    ) -> NotificationDispatchAttempt:
        now = self.clock.now()
        return await self.attempt_repo.create(
            quotation_id=quotation_id,
            kind=kind,
            channel=NotificationChannel.EMAIL,
            status=status,
            recipient=message.to,
            subject=message.subject,
            attempt_number=attempt_number,
            retryable=retryable,
            payload=payload,
            error_detail=error_detail,
            provider_ref=provider_ref,
            next_retry_at=next_retry_at,
            created_at=now,
            updated_at=now,
        )

    async def deliver_best_effort(
        self,
        kind: NotificationKind,
        message: EmailMessage,
        quotation_id: Optional[UUID] = None,
        attempt_number: int = 1,
    ) -> NotificationDispatchAttempt:
        """
        Send and record the outcome. Notifier failures are recorded with a
        retry schedule and never raised.
        """
        try:
            provider_ref = await self.send(message)
        except Exception as e:
            next_retry_at = self.retry_policy.next_retry_at(attempt_number, self.clock.now())
            status = DispatchStatus.FAILED if next_retry_at else DispatchStatus.PERMANENTLY_FAILED
            logger.warning(
                f"Notification {kind.value} failed (attempt {attempt_number})",
                extra={
                    "quotation_id": str(quotation_id) if quotation_id else None,
                    "kind": kind.value,
                    "status": status.value,
                    "error": repr(e),
                    "next_retry_at": next_retry_at.isoformat() if next_retry_at else None,
                },
            )
            return await self.record_attempt(
                kind,
                message,
                status,
                quotation_id=quotation_id,
                attempt_number=attempt_number,
                retryable=True,
                payload=message_payload(message),
                error_detail=repr(e)[:2000],
                next_retry_at=next_retry_at,
            )

        logger.info(
            f"Notification {kind.value} delivered",
            extra={"quotation_id": str(quotation_id) if quotation_id else None, "provider_ref": provider_ref},
        )
        return await self.record_attempt(
            kind,
            message,
            DispatchStatus.DELIVERED,
            quotation_id=quotation_id,
            attempt_number=attempt_number,
            retryable=True,
            payload=message_payload(message),
            provider_ref=provider_ref,
        )

    async def _should_cancel(self, attempt: NotificationDispatchAttempt) -> bool:
        if attempt.kind not in REMINDER_KINDS or attempt.quotation_id is None:
            return False
        quotation = await self.quotation_repo.get(attempt.quotation_id)
        if quotation is None or quotation.status in TERMINAL_STATUSES:
            return True
        # An unviewed reminder is stale once the client has opened the quotation
        return attempt.kind == NotificationKind.UNVIEWED_REMINDER and quotation.status != QuotationStatus.SENT

    async def retry_due(self, stop_requested: Callable[[], bool] = lambda: False) -> RetrySweepSummary:
        """
        Re-send failed best-effort notifications whose retry time has come.
        Each record is committed on its own so a stop request never leaves a
        half-processed attempt.
        """
        summary = RetrySweepSummary()
        due = await self.attempt_repo.list_due_retries(self.clock.now())

        for attempt in due:
            if stop_requested():
                logger.info("Notification retry sweep stopping early")
                break
            summary.examined += 1
            now = self.clock.now()
            attempt.next_retry_at = None
            attempt.updated_at = now

            if await self._should_cancel(attempt):
                attempt.status = DispatchStatus.CANCELLED
                summary.cancelled += 1
                await self.session.commit()
                continue

            if not attempt.payload:
                attempt.status = DispatchStatus.PERMANENTLY_FAILED
                summary.failed += 1
                await self.session.commit()
                continue

            result = await self.deliver_best_effort(
                attempt.kind,
                message_from_payload(attempt.payload),
                quotation_id=attempt.quotation_id,
                attempt_number=attempt.attempt_number + 1,
            )
            if result.status == DispatchStatus.DELIVERED:
                summary.delivered += 1
            else:
                summary.failed += 1
            await self.session.commit()

        return summary
