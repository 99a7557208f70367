"""
Discount approval workflow tests.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from quotedesk.core.exceptions import PermissionDeniedError, QuotationLockedError, ValidationError
from quotedesk.models.discount_approval import ApprovalLevel, ApprovalStatus
from quotedesk.models.notification import NotificationKind
from quotedesk.schemas.quotation import QuotationUpdate, SendQuotationRequest
from quotedesk.services.discount_approval_service import DiscountApprovalService, required_level
from quotedesk.services.notification_dispatch_service import NotificationDispatchService

from conftest import quotation_payload


@pytest.fixture
def approval_service(test_db_session, clock, notifier) -> DiscountApprovalService:
    return DiscountApprovalService(
        test_db_session,
        dispatcher=NotificationDispatchService(test_db_session, notifier, clock),
        clock=clock,
    )


async def _locked_draft(quotation_service, seed, discount="15"):
    quotation = await quotation_service.create_quotation(
        quotation_payload(seed.client.id, discount=discount, approval_reason="Strategic account"),
        seed.sales_rep,
    )
    return quotation


@pytest.mark.parametrize(
    "discount, expected",
    [
        ("0", None),
        ("9.99", None),
        ("10", ApprovalLevel.MANAGER),
        ("19.99", ApprovalLevel.MANAGER),
        ("20", ApprovalLevel.ADMIN),
        ("45", ApprovalLevel.ADMIN),
    ],
)
def test_required_level_thresholds(discount, expected):
    assert required_level(Decimal(discount)) == expected


async def test_small_discount_is_applied_directly(quotation_service, seed):
    quotation = await quotation_service.create_quotation(
        quotation_payload(seed.client.id, discount="5"), seed.sales_rep
    )

    assert not quotation.is_locked
    assert quotation.discount_percentage == Decimal("5")
    assert quotation.discount_amount == Decimal("2655.00")


async def test_large_discount_needs_reason(quotation_service, seed):
    with pytest.raises(ValidationError):
        await quotation_service.create_quotation(quotation_payload(seed.client.id, discount="15"), seed.sales_rep)


async def test_large_discount_opens_approval_and_locks(quotation_service, approval_service, seed, notifier):
    quotation = await _locked_draft(quotation_service, seed)

    assert quotation.is_locked
    assert quotation.discount_percentage == Decimal("0")
    assert quotation.total_amount == Decimal("62658.00")

    pending = await approval_service.list_pending_for(seed.manager)
    assert len(pending) == 1
    assert pending[0].approval_level == ApprovalLevel.MANAGER
    assert pending[0].approver_user_id is None
    assert pending[0].id == quotation.pending_approval_id
    assert len(notifier.to(seed.manager.email)) == 1


async def test_locked_quotation_rejects_edits_and_sends(quotation_service, lifecycle, seed):
    quotation = await _locked_draft(quotation_service, seed)

    with pytest.raises(QuotationLockedError):
        await quotation_service.update_quotation(quotation.id, QuotationUpdate(title="New title"), seed.sales_rep)
    with pytest.raises(QuotationLockedError):
        await lifecycle.send(quotation.id, seed.sales_rep, SendQuotationRequest())


async def test_manager_approval_applies_discount(quotation_service, approval_service, seed, notifier):
    quotation = await _locked_draft(quotation_service, seed)

    approval = await approval_service.approve(quotation.pending_approval_id, seed.manager, "Fine for this account")
    refreshed = await quotation_service.get_quotation(quotation.id)

    assert approval.status == ApprovalStatus.APPROVED
    assert approval.approver_user_id == seed.manager.id
    assert not refreshed.is_locked
    assert refreshed.discount_percentage == Decimal("15")
    assert refreshed.discount_amount == Decimal("7965.00")
    assert refreshed.tax_amount == Decimal("8124.30")
    assert refreshed.total_amount == Decimal("53259.30")
    assert any(m.to == seed.sales_rep.email for m in notifier.sent)


async def test_admin_tier_is_assigned_and_closed_to_managers(quotation_service, approval_service, seed):
    quotation = await _locked_draft(quotation_service, seed, discount="25")
    approval_id = quotation.pending_approval_id

    assert await approval_service.list_pending_for(seed.manager) == []
    with pytest.raises(PermissionDeniedError):
        await approval_service.approve(approval_id, seed.manager)

    approval = await approval_service.approve(approval_id, seed.admin)
    assert approval.approval_level == ApprovalLevel.ADMIN
    assert approval.status == ApprovalStatus.APPROVED


async def test_sales_rep_cannot_resolve(quotation_service, approval_service, seed):
    quotation = await _locked_draft(quotation_service, seed)

    with pytest.raises(PermissionDeniedError):
        await approval_service.approve(quotation.pending_approval_id, seed.sales_rep)


async def test_rejection_resets_discount_and_allows_resubmission(quotation_service, approval_service, seed, clock):
    quotation = await _locked_draft(quotation_service, seed)

    rejected = await approval_service.reject(quotation.pending_approval_id, seed.manager, "Margin too thin")
    refreshed = await quotation_service.get_quotation(quotation.id)

    assert rejected.status == ApprovalStatus.REJECTED
    assert "[Rejected]: Margin too thin" in rejected.comments
    assert not refreshed.is_locked
    assert refreshed.discount_percentage == Decimal("0")

    with pytest.raises(PermissionDeniedError):
        await approval_service.resubmit(rejected.id, seed.manager, Decimal("12"), "Trying again")

    clock.advance(minutes=1)
    resubmitted = await approval_service.resubmit(rejected.id, seed.sales_rep, Decimal("12"), "Volume commitment added")

    assert resubmitted.status == ApprovalStatus.PENDING
    assert resubmitted.previous_approval_id == rejected.id
    assert (await quotation_service.get_quotation(quotation.id)).is_locked


async def test_resolved_approval_cannot_be_resolved_again(quotation_service, approval_service, seed):
    quotation = await _locked_draft(quotation_service, seed)
    approval_id = quotation.pending_approval_id
    await approval_service.approve(approval_id, seed.manager)

    with pytest.raises(ValidationError):
        await approval_service.reject(approval_id, seed.admin, "Too late")


async def test_manager_escalates_once(quotation_service, approval_service, seed, notifier):
    quotation = await _locked_draft(quotation_service, seed)
    approval_id = quotation.pending_approval_id

    escalated = await approval_service.escalate(approval_id, seed.manager, "Above my comfort level")

    assert escalated.escalated_to_admin
    assert escalated.approval_level == ApprovalLevel.ADMIN
    assert escalated.approver_user_id == seed.admin.id
    assert "[Escalated]: Above my comfort level" in escalated.comments
    assert len(notifier.to(seed.admin.email)) == 1

    with pytest.raises(ValidationError):
        await approval_service.escalate(approval_id, seed.admin, "Again")


async def test_sales_rep_cannot_escalate(quotation_service, approval_service, seed):
    quotation = await _locked_draft(quotation_service, seed)

    with pytest.raises(PermissionDeniedError):
        await approval_service.escalate(quotation.pending_approval_id, seed.sales_rep, "Please")


async def test_stale_manager_approvals_escalate_automatically(quotation_service, approval_service, seed, clock):
    quotation = await _locked_draft(quotation_service, seed)

    clock.advance(hours=23)
    assert await approval_service.auto_escalate_stale() == 0

    clock.advance(hours=2)
    assert await approval_service.auto_escalate_stale() == 1
    assert await approval_service.auto_escalate_stale() == 0

    approval = await approval_service.approval_repo.get(quotation.pending_approval_id)
    assert approval.escalated_to_admin


async def test_request_below_threshold_is_rejected(draft, approval_service, seed):
    with pytest.raises(ValidationError):
        await approval_service.request_approval(draft.id, Decimal("5"), "Small favour", seed.sales_rep)


async def test_send_marks_approved_discount_applied(quotation_service, approval_service, lifecycle, seed, clock):
    quotation = await _locked_draft(quotation_service, seed)
    approval_id = quotation.pending_approval_id
    await approval_service.approve(approval_id, seed.manager)

    clock.advance(minutes=5)
    await lifecycle.send(quotation.id, seed.sales_rep, SendQuotationRequest())

    approval = await approval_service.approval_repo.get(approval_id)
    assert approval.status == ApprovalStatus.APPLIED
    assert approval.applied_at == clock.now()


async def test_approval_notifications_are_recorded(quotation_service, approval_service, seed, test_db_session):
    quotation = await _locked_draft(quotation_service, seed)
    dispatch = NotificationDispatchService(test_db_session, None)

    attempts = await dispatch.attempt_repo.list_by_quotation(quotation.id, NotificationKind.APPROVAL_REQUESTED)

    assert [a.recipient for a in attempts] == [seed.manager.email]
    assert timedelta(0) <= attempts[0].created_at - quotation.created_at
