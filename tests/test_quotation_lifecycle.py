"""
Quotation send, view and response lifecycle tests.
"""

from datetime import timedelta

import pytest

from quotedesk.core.exceptions import ExternalDependencyError, SecurityError, ValidationError
from quotedesk.db.repositories.access_link_repository import AccessLinkRepository
from quotedesk.db.repositories.dispatch_attempt_repository import DispatchAttemptRepository
from quotedesk.db.repositories.user_repository import UserRepository
from quotedesk.models.notification import DispatchStatus, NotificationKind
from quotedesk.models.quotation import QuotationStatus, ResponseDecision
from quotedesk.schemas.quotation import SendQuotationRequest
from quotedesk.services.quotation_lifecycle_service import RESENT_REASON, SENT_REASON, VIEWED_REASON
from quotedesk.services.quotation_service import effective_status


async def test_send_draft(lifecycle, quotation_service, draft, seed, notifier, renderer, test_db_session, clock):
    clock.advance(minutes=5)
    outcome = await lifecycle.send(draft.id, seed.sales_rep, SendQuotationRequest(custom_message="Thanks for your time"))

    assert outcome.quotation.status == QuotationStatus.SENT
    assert not outcome.is_resend
    assert outcome.issued.link.sent_at == clock.now()
    assert renderer.rendered == [draft.quotation_number]

    message = notifier.sent[-1]
    assert message.to == seed.client.email
    assert message.attachments[0].filename == f"{draft.quotation_number}.pdf"
    assert outcome.issued.url in message.html_body

    history = await quotation_service.get_history(draft.id)
    assert [(h.previous_status, h.new_status) for h in history] == [
        (None, QuotationStatus.DRAFT),
        (QuotationStatus.DRAFT, QuotationStatus.SENT),
    ]
    assert history[-1].reason == SENT_REASON
    assert history[-1].changed_by_user_id == seed.sales_rep.id

    attempts = await DispatchAttemptRepository(test_db_session).list_by_quotation(draft.id, NotificationKind.QUOTATION_SENT)
    assert [a.status for a in attempts] == [DispatchStatus.DELIVERED]


async def test_resend_rotates_the_link(lifecycle, quotation_service, sent, seed, test_db_session, clock):
    clock.advance(hours=1)
    resent = await lifecycle.send(sent.quotation.id, seed.sales_rep, SendQuotationRequest(), resend=True)

    links = await AccessLinkRepository(test_db_session).list_by_quotation(sent.quotation.id)
    active = [link for link in links if link.is_active]
    assert resent.is_resend
    assert [link.id for link in active] == [resent.issued.link.id]
    assert resent.issued.token != sent.issued.token

    old = await lifecycle.link_service.validate(sent.issued.token)
    assert not old.is_valid

    history = await quotation_service.get_history(sent.quotation.id)
    assert history[-1].previous_status == QuotationStatus.SENT
    assert history[-1].new_status == QuotationStatus.SENT
    assert history[-1].reason == RESENT_REASON


async def test_resend_requires_prior_send(lifecycle, draft, seed):
    with pytest.raises(ValidationError):
        await lifecycle.send(draft.id, seed.sales_rep, SendQuotationRequest(), resend=True)


async def test_render_failure_leaves_nothing_behind(lifecycle, draft, seed, renderer, notifier, test_db_session):
    quotation_id = draft.id
    renderer.fail = True

    with pytest.raises(ExternalDependencyError) as exc_info:
        await lifecycle.send(quotation_id, seed.sales_rep, SendQuotationRequest())

    assert exc_info.value.stage == ExternalDependencyError.RENDER
    assert notifier.sent == []
    assert await AccessLinkRepository(test_db_session).list_by_quotation(quotation_id) == []
    quotation = await lifecycle.quotation_repo.get(quotation_id)
    assert quotation.status == QuotationStatus.DRAFT


async def test_notify_failure_on_resend_keeps_previous_link(lifecycle, sent, seed, notifier, test_db_session, clock):
    quotation_id = sent.quotation.id
    previous_link_id = sent.issued.link.id
    previous_token = sent.issued.token
    rep_id = seed.sales_rep.id
    notifier.fail = True
    clock.advance(hours=1)

    with pytest.raises(ExternalDependencyError) as exc_info:
        await lifecycle.send(quotation_id, seed.sales_rep, SendQuotationRequest(), resend=True)

    assert exc_info.value.stage == ExternalDependencyError.NOTIFY
    links = await AccessLinkRepository(test_db_session).list_by_quotation(quotation_id)
    assert [(link.id, link.is_active) for link in links] == [(previous_link_id, True)]
    assert (await lifecycle.link_service.validate(previous_token)).is_valid

    attempts = await DispatchAttemptRepository(test_db_session).list_by_quotation(quotation_id, NotificationKind.QUOTATION_SENT)
    assert [a.status for a in attempts] == [DispatchStatus.DELIVERED, DispatchStatus.FAILED]
    assert attempts[-1].retryable is False

    # A later retry by the user succeeds
    notifier.fail = False
    actor = await UserRepository(test_db_session).get(rep_id)
    retried = await lifecycle.send(quotation_id, actor, SendQuotationRequest(), resend=True)
    assert retried.issued.link.is_active


async def test_expired_quotation_cannot_be_sent(lifecycle, draft, seed, clock):
    clock.advance(days=31)

    with pytest.raises(ValidationError):
        await lifecycle.send(draft.id, seed.sales_rep, SendQuotationRequest())


async def test_first_view_moves_sent_to_viewed(lifecycle, quotation_service, sent, clock):
    link = sent.issued.link
    clock.advance(hours=2)

    viewed = await lifecycle.record_view(link, "203.0.113.7")
    clock.advance(minutes=10)
    again = await lifecycle.record_view(link, "203.0.113.7")

    assert viewed.status == QuotationStatus.VIEWED
    assert again.status == QuotationStatus.VIEWED
    history = await quotation_service.get_history(sent.quotation.id)
    viewed_entries = [h for h in history if h.new_status == QuotationStatus.VIEWED]
    assert len(viewed_entries) == 1
    assert viewed_entries[0].reason == VIEWED_REASON
    assert viewed_entries[0].ip_address == "203.0.113.7"

    refreshed = await AccessLinkRepository(lifecycle.session).get(link.id)
    assert refreshed.view_count == 2


async def test_client_response_is_final(lifecycle, quotation_service, sent, seed, notifier, clock):
    link = sent.issued.link
    clock.advance(hours=2)
    await lifecycle.record_view(link)
    clock.advance(hours=1)

    response = await lifecycle.record_response(link, ResponseDecision.ACCEPTED, "Go ahead", "Buyer@Acme.test")

    quotation = await quotation_service.get_quotation(sent.quotation.id)
    assert quotation.status == QuotationStatus.ACCEPTED
    assert response.client_email == "buyer@acme.test"
    history = await quotation_service.get_history(quotation.id)
    assert history[-1].reason == "Client responded: Accepted"
    recipients = {m.to for m in notifier.sent if m.subject.endswith("by client")}
    assert {seed.sales_rep.email, seed.admin.email} <= recipients

    with pytest.raises(ValidationError):
        await lifecycle.record_response(link, ResponseDecision.REJECTED, None, "buyer@acme.test")


async def test_accepted_quotation_cannot_be_resent(lifecycle, sent, seed, clock):
    clock.advance(hours=1)
    await lifecycle.record_response(sent.issued.link, ResponseDecision.ACCEPTED, None, "buyer@acme.test")

    with pytest.raises(ValidationError):
        await lifecycle.send(sent.quotation.id, seed.sales_rep, SendQuotationRequest(), resend=True)


async def test_expired_quotation_denies_views(lifecycle, sent, clock):
    clock.advance(days=31)

    with pytest.raises(SecurityError) as exc_info:
        await lifecycle.record_view(sent.issued.link)

    assert exc_info.value.reason == "quotation_expired"


async def test_effective_status_is_derived(sent, clock):
    quotation = sent.quotation
    today = clock.today()

    assert effective_status(quotation, today) == QuotationStatus.SENT
    assert effective_status(quotation, quotation.valid_until) == QuotationStatus.SENT
    assert effective_status(quotation, quotation.valid_until + timedelta(days=1)) == QuotationStatus.EXPIRED
    assert quotation.status == QuotationStatus.SENT
