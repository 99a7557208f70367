"""
Reminder planning and sweep tests.
"""

import asyncio
import uuid
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quotedesk.jobs.scheduler import QuotationScheduler
from quotedesk.models.notification import NotificationKind
from quotedesk.models.quotation import QuotationStatus, ResponseDecision
from quotedesk.services.notification_dispatch_service import NotificationDispatchService
from quotedesk.services.reminder_service import (
    LinkSnapshot,
    ReminderService,
    plan_follow_up_reminders,
    plan_unviewed_reminders,
)

NOW = datetime(2025, 6, 20, 9, 0)


def snapshot(**overrides) -> LinkSnapshot:
    data = dict(
        quotation_id=uuid.uuid4(),
        quotation_number="QT-2025-000001",
        quotation_status=QuotationStatus.SENT,
        valid_until=date(2025, 7, 31),
        owner_user_id=uuid.uuid4(),
        client_name="Acme Traders",
        link_id=uuid.uuid4(),
        is_active=True,
        created_at=NOW - timedelta(days=5),
        sent_at=NOW - timedelta(days=5),
        first_viewed_at=None,
        view_count=0,
    )
    data.update(overrides)
    return LinkSnapshot(**data)


def test_unviewed_reminder_after_threshold():
    link = snapshot()

    actions = plan_unviewed_reminders(NOW, [link], threshold_days=3)

    assert [a.quotation_id for a in actions] == [link.quotation_id]
    assert actions[0].kind == NotificationKind.UNVIEWED_REMINDER
    assert actions[0].reference_at == link.sent_at


@pytest.mark.parametrize(
    "overrides",
    [
        {"sent_at": NOW - timedelta(days=2)},
        {"view_count": 1, "first_viewed_at": NOW - timedelta(days=4)},
        {"quotation_status": QuotationStatus.VIEWED},
        {"valid_until": date(2025, 6, 19)},
        {"is_active": False},
        {"sent_at": None},
    ],
)
def test_unviewed_reminder_skips(overrides):
    assert plan_unviewed_reminders(NOW, [snapshot(**overrides)], threshold_days=3) == []


def test_unviewed_reminder_uses_latest_sent_link():
    quotation_id = uuid.uuid4()
    old = snapshot(quotation_id=quotation_id, sent_at=NOW - timedelta(days=10), is_active=False)
    fresh = snapshot(quotation_id=quotation_id, sent_at=NOW - timedelta(days=1))

    assert plan_unviewed_reminders(NOW, [old, fresh], threshold_days=3) == []


def test_unviewed_reminder_skips_already_notified():
    link = snapshot()
    assert plan_unviewed_reminders(NOW, [link], {link.quotation_id}, threshold_days=3) == []


def test_follow_up_after_first_view():
    link = snapshot(
        quotation_status=QuotationStatus.VIEWED,
        first_viewed_at=NOW - timedelta(days=8),
        view_count=3,
    )

    actions = plan_follow_up_reminders(NOW, [link], threshold_days=7)

    assert len(actions) == 1
    assert actions[0].kind == NotificationKind.FOLLOW_UP_REMINDER
    assert actions[0].reference_at == link.first_viewed_at


def test_follow_up_uses_earliest_view_across_links():
    quotation_id = uuid.uuid4()
    early = snapshot(
        quotation_id=quotation_id,
        quotation_status=QuotationStatus.VIEWED,
        is_active=False,
        first_viewed_at=NOW - timedelta(days=9),
        view_count=1,
    )
    late = snapshot(
        quotation_id=quotation_id,
        quotation_status=QuotationStatus.VIEWED,
        first_viewed_at=NOW - timedelta(days=1),
        view_count=1,
    )

    actions = plan_follow_up_reminders(NOW, [late, early], threshold_days=7)

    assert [a.reference_at for a in actions] == [early.first_viewed_at]


@pytest.mark.parametrize(
    "overrides, responded",
    [
        ({"first_viewed_at": NOW - timedelta(days=3)}, False),
        ({"first_viewed_at": None}, False),
        ({"quotation_status": QuotationStatus.ACCEPTED}, False),
        ({}, True),
    ],
)
def test_follow_up_skips(overrides, responded):
    data = {"quotation_status": QuotationStatus.VIEWED, "first_viewed_at": NOW - timedelta(days=8), "view_count": 1}
    data.update(overrides)
    link = snapshot(**data)
    answered = {link.quotation_id} if responded else set()

    assert plan_follow_up_reminders(NOW, [link], answered, threshold_days=7) == []


@pytest.fixture
def reminder_service(test_db_session, clock, notifier) -> ReminderService:
    return ReminderService(test_db_session, NotificationDispatchService(test_db_session, notifier, clock), clock)


async def test_unviewed_sweep_is_idempotent_within_a_day(reminder_service, sent, seed, notifier, clock):
    clock.advance(days=3, hours=1)

    first = await reminder_service.run_unviewed_sweep()
    second = await reminder_service.run_unviewed_sweep()

    assert first.notified == 1
    assert first.quotation_ids == [sent.quotation.id]
    assert second.notified == 0
    reminders = [m for m in notifier.to(seed.sales_rep.email) if m.subject.startswith("Reminder")]
    assert len(reminders) == 1


async def test_unviewed_sweep_ignores_viewed_quotations(reminder_service, lifecycle, sent, clock):
    clock.advance(hours=1)
    await lifecycle.record_view(sent.issued.link)
    clock.advance(days=4)

    result = await reminder_service.run_unviewed_sweep()

    assert result.planned == 0


async def test_follow_up_sweep_skips_answered_quotations(reminder_service, lifecycle, sent, clock):
    clock.advance(hours=1)
    await lifecycle.record_view(sent.issued.link)
    clock.advance(days=8)

    assert (await reminder_service.run_follow_up_sweep()).notified == 1

    await lifecycle.record_response(sent.issued.link, ResponseDecision.REJECTED, "Over budget", "buyer@acme.test")
    clock.advance(days=1)

    assert (await reminder_service.run_follow_up_sweep()).planned == 0


async def test_sweep_stops_when_asked(reminder_service, sent, clock):
    clock.advance(days=4)

    result = await reminder_service.run_unviewed_sweep(stop_requested=lambda: True)

    assert result.stopped_early
    assert result.notified == 0


@pytest.fixture
def scheduler(test_db_session, notifier, clock) -> QuotationScheduler:
    factory = async_sessionmaker(test_db_session.bind, class_=AsyncSession, expire_on_commit=False)
    return QuotationScheduler(notifier=notifier, clock=clock, session_factory=factory)


async def test_scheduler_job_runs_sweep(scheduler, sent, clock):
    clock.advance(days=4)

    result = await scheduler.run_unviewed_reminders()

    assert result.notified == 1


async def test_scheduler_skips_overlapping_run(scheduler, sent, clock):
    clock.advance(days=4)

    results = await asyncio.gather(scheduler.run_unviewed_reminders(), scheduler.run_unviewed_reminders())

    assert sorted(r is None for r in results) == [False, True]


async def test_stopped_scheduler_runs_nothing(scheduler, sent, clock):
    clock.advance(days=4)
    await scheduler.stop()

    assert await scheduler.run_notification_retries() is None
    assert scheduler.stop_requested()
