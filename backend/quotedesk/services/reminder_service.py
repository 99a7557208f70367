"""
Reminder sweeps.

Planning is a pure function of ``(now, snapshot) -> actions`` so it can be
tested without a clock or database. The sweeps read state, plan, and send
notifications to quotation owners; they never change quotation or link state.
A quotation already reminded today (per the dispatch records) is skipped, so
re-running a sweep on the same day sends nothing new.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.config import settings
from quotedesk.db.repositories.access_link_repository import AccessLinkRepository
from quotedesk.db.repositories.dispatch_attempt_repository import DispatchAttemptRepository
from quotedesk.db.repositories.response_repository import ResponseRepository
from quotedesk.db.repositories.user_repository import UserRepository
from quotedesk.models.notification import NotificationKind
from quotedesk.models.quotation import QuotationStatus
from quotedesk.services import email_templates
from quotedesk.services.base_service import BaseService
from quotedesk.services.notification_dispatch_service import NotificationDispatchService

logger = logging.getLogger(__name__)

FOLLOW_UP_STATUSES = (QuotationStatus.SENT, QuotationStatus.VIEWED)


@dataclass(frozen=True)
class LinkSnapshot:
    """What the planners need to know about one access link and its quotation."""
    quotation_id: UUID
    quotation_number: str
    quotation_status: QuotationStatus
    valid_until: date
    owner_user_id: UUID
    client_name: str
    link_id: UUID
    is_active: bool
    created_at: datetime
    sent_at: Optional[datetime]
    first_viewed_at: Optional[datetime]
    view_count: int


@dataclass(frozen=True)
class ReminderAction:
    kind: NotificationKind
    quotation_id: UUID
    quotation_number: str
    owner_user_id: UUID
    client_name: str
    reference_at: datetime


@dataclass
class SweepResult:
    kind: NotificationKind
    planned: int = 0
    notified: int = 0
    skipped: int = 0
    stopped_early: bool = False
    quotation_ids: List[UUID] = field(default_factory=list)


def _latest_sent_links(links: Iterable[LinkSnapshot]) -> Dict[UUID, LinkSnapshot]:
    latest: Dict[UUID, LinkSnapshot] = {}
    for link in links:
        if link.sent_at is None:
            continue
        current = latest.get(link.quotation_id)
        if current is None or link.sent_at > current.sent_at:
            latest[link.quotation_id] = link
    return latest


def plan_unviewed_reminders(
    now: datetime,
    links: Iterable[LinkSnapshot],
    already_notified: Set[UUID] = frozenset(),
    threshold_days: Optional[int] = None,
) -> List[ReminderAction]:
    """
    One reminder per quotation still Sent whose most recently sent link is
    active, older than the threshold and never viewed.
    """
    days = settings.UNVIEWED_REMINDER_DAYS if threshold_days is None else threshold_days
    cutoff = now - timedelta(days=days)
    today = now.date()

    actions = []
    for quotation_id, link in _latest_sent_links(links).items():
        if quotation_id in already_notified:
            continue
        if link.quotation_status != QuotationStatus.SENT or link.valid_until < today:
            continue
        if not link.is_active or link.sent_at >= cutoff:
            continue
        if link.view_count > 0 or link.first_viewed_at is not None:
            continue
        actions.append(
            ReminderAction(
                kind=NotificationKind.UNVIEWED_REMINDER,
                quotation_id=quotation_id,
                quotation_number=link.quotation_number,
                owner_user_id=link.owner_user_id,
                client_name=link.client_name,
                reference_at=link.sent_at,
            )
        )
    return sorted(actions, key=lambda a: a.quotation_number)


def plan_follow_up_reminders(
    now: datetime,
    links: Iterable[LinkSnapshot],
    responded: Set[UUID] = frozenset(),
    already_notified: Set[UUID] = frozenset(),
    threshold_days: Optional[int] = None,
) -> List[ReminderAction]:
    """
    One follow-up per live Sent/Viewed quotation first viewed before the
    threshold that has no recorded response.
    """
    days = settings.PENDING_RESPONSE_FOLLOW_UP_DAYS if threshold_days is None else threshold_days
    cutoff = now - timedelta(days=days)
    today = now.date()

    first_views: Dict[UUID, LinkSnapshot] = {}
    first_viewed_at: Dict[UUID, datetime] = {}
    for link in links:
        if link.first_viewed_at is None:
            continue
        seen = first_viewed_at.get(link.quotation_id)
        if seen is None or link.first_viewed_at < seen:
            first_viewed_at[link.quotation_id] = link.first_viewed_at
            first_views[link.quotation_id] = link

    actions = []
    for quotation_id, link in first_views.items():
        if quotation_id in responded or quotation_id in already_notified:
            continue
        if link.quotation_status not in FOLLOW_UP_STATUSES or link.valid_until < today:
            continue
        if first_viewed_at[quotation_id] >= cutoff:
            continue
        actions.append(
            ReminderAction(
                kind=NotificationKind.FOLLOW_UP_REMINDER,
                quotation_id=quotation_id,
                quotation_number=link.quotation_number,
                owner_user_id=link.owner_user_id,
                client_name=link.client_name,
                reference_at=first_viewed_at[quotation_id],
            )
        )
    return sorted(actions, key=lambda a: a.quotation_number)


class ReminderService(BaseService):
    """Runs the unviewed and follow-up sweeps against the database."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: NotificationDispatchService,
        clock: Clock = system_clock,
    ):
        super().__init__(session, clock)
        self.dispatcher = dispatcher
        self.link_repo = AccessLinkRepository(session)
        self.attempt_repo = DispatchAttemptRepository(session)
        self.response_repo = ResponseRepository(session)
        self.user_repo = UserRepository(session)

    async def load_snapshot(self, statuses) -> List[LinkSnapshot]:
        rows = await self.link_repo.list_links_for_open_quotations(list(statuses))
        return [
            LinkSnapshot(
                quotation_id=quotation.id,
                quotation_number=quotation.quotation_number,
                quotation_status=quotation.status,
                valid_until=quotation.valid_until,
                owner_user_id=quotation.created_by_user_id,
                client_name=client_name,
                link_id=link.id,
                is_active=link.is_active,
                created_at=link.created_at,
                sent_at=link.sent_at,
                first_viewed_at=link.first_viewed_at,
                view_count=link.view_count or 0,
            )
            for link, quotation, client_name in rows
        ]

    def _start_of_day(self, now: datetime) -> datetime:
        return datetime.combine(now.date(), time.min)

    async def run_unviewed_sweep(self, stop_requested: Callable[[], bool] = lambda: False) -> SweepResult:
        now = self.clock.now()
        snapshot = await self.load_snapshot([QuotationStatus.SENT])
        notified = await self.attempt_repo.quotation_ids_notified_since(
            NotificationKind.UNVIEWED_REMINDER, self._start_of_day(now)
        )
        actions = plan_unviewed_reminders(now, snapshot, notified)
        return await self._deliver(actions, NotificationKind.UNVIEWED_REMINDER, stop_requested)

    async def run_follow_up_sweep(self, stop_requested: Callable[[], bool] = lambda: False) -> SweepResult:
        now = self.clock.now()
        snapshot = await self.load_snapshot(FOLLOW_UP_STATUSES)
        responded = await self.response_repo.quotation_ids_with_response({s.quotation_id for s in snapshot})
        notified = await self.attempt_repo.quotation_ids_notified_since(
            NotificationKind.FOLLOW_UP_REMINDER, self._start_of_day(now)
        )
        actions = plan_follow_up_reminders(now, snapshot, responded, notified)
        return await self._deliver(actions, NotificationKind.FOLLOW_UP_REMINDER, stop_requested)

    async def _deliver(
        self,
        actions: List[ReminderAction],
        kind: NotificationKind,
        stop_requested: Callable[[], bool],
    ) -> SweepResult:
        result = SweepResult(kind=kind, planned=len(actions))
        for action in actions:
            if stop_requested():
                result.stopped_early = True
                logger.info(f"{kind.value} sweep stopping early", extra={"remaining": result.planned - result.notified - result.skipped})
                break

            owner = await self.user_repo.get(action.owner_user_id)
            if owner is None or not owner.is_active:
                result.skipped += 1
                logger.warning(
                    f"Skipping {kind.value} for quotation without an active owner",
                    extra={"quotation_id": str(action.quotation_id)},
                )
                continue

            if kind == NotificationKind.UNVIEWED_REMINDER:
                message = email_templates.unviewed_reminder(
                    owner.email, owner.full_name, action.quotation_number, action.client_name, action.reference_at
                )
            else:
                message = email_templates.follow_up_reminder(
                    owner.email, owner.full_name, action.quotation_number, action.client_name, action.reference_at
                )
            await self.dispatcher.deliver_best_effort(kind, message, action.quotation_id)
            await self.session.commit()
            result.notified += 1
            result.quotation_ids.append(action.quotation_id)

        logger.info(
            f"{kind.value} sweep finished",
            extra={"planned": result.planned, "notified": result.notified, "skipped": result.skipped},
        )
        return result
