"""
Discount approval service with business logic for tiered approvals and escalation.

A discount at or above the manager threshold cannot be applied directly: it
opens a Pending approval and locks the quotation until the approval is
resolved. Approving writes the discount onto the quotation and recomputes its
totals; rejecting resets the quotation discount to zero. Both unlock it.
"""

import logging
from decimal import Decimal
from datetime import timedelta
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.config import settings
from quotedesk.core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    QuotationLockedError,
    ValidationError,
)
from quotedesk.db.repositories.discount_approval_repository import DiscountApprovalRepository
from quotedesk.db.repositories.quotation_repository import QuotationRepository
from quotedesk.db.repositories.user_repository import UserRepository
from quotedesk.models.discount_approval import ApprovalLevel, ApprovalStatus, DiscountApproval
from quotedesk.models.notification import NotificationKind
from quotedesk.models.quotation import Quotation, QuotationStatus
from quotedesk.models.user import User, UserRole
from quotedesk.services import email_templates
from quotedesk.services.base_service import BaseService
from quotedesk.services.notification_dispatch_service import NotificationDispatchService
from quotedesk.services.totals_service import TotalsService

logger = logging.getLogger(__name__)

AUTO_ESCALATION_REASON = "Automatically escalated: pending beyond the manager response window"


def required_level(
    discount_percentage: Decimal,
    manager_threshold: Optional[Decimal] = None,
    admin_threshold: Optional[Decimal] = None,
) -> Optional[ApprovalLevel]:
    """Approval tier a discount needs, or None when it can be applied directly."""
    manager_threshold = settings.DISCOUNT_MANAGER_THRESHOLD if manager_threshold is None else manager_threshold
    admin_threshold = settings.DISCOUNT_ADMIN_THRESHOLD if admin_threshold is None else admin_threshold
    if discount_percentage >= admin_threshold:
        return ApprovalLevel.ADMIN
    if discount_percentage >= manager_threshold:
        return ApprovalLevel.MANAGER
    return None


def can_act_on(actor: User, approval: DiscountApproval) -> bool:
    """
    Admins may always act. Managers may act on manager-tier approvals that are
    unassigned or assigned to them. Anyone else only when explicitly assigned.
    """
    if actor is None or not actor.is_active:
        return False
    if actor.role == UserRole.ADMIN:
        return True
    if actor.role == UserRole.MANAGER and approval.approval_level == ApprovalLevel.MANAGER:
        return approval.approver_user_id is None or approval.approver_user_id == actor.id
    return approval.approver_user_id == actor.id


class DiscountApprovalService(BaseService):
    """Service for discount approval operations."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: Optional[NotificationDispatchService] = None,
        clock: Clock = system_clock,
        totals_service: Optional[TotalsService] = None,
    ):
        super().__init__(session, clock)
        self.approval_repo = DiscountApprovalRepository(session)
        self.quotation_repo = QuotationRepository(session)
        self.user_repo = UserRepository(session)
        self.dispatcher = dispatcher
        self.totals_service = totals_service or TotalsService()

    async def _get_quotation(self, quotation_id: UUID) -> Quotation:
        quotation = await self.quotation_repo.get(quotation_id, for_update=True)
        if quotation is None:
            raise NotFoundError("Quotation", quotation_id)
        return quotation

    async def _get_approval(self, approval_id: UUID) -> DiscountApproval:
        approval = await self.approval_repo.get(approval_id, for_update=True)
        if approval is None:
            raise NotFoundError("DiscountApproval", approval_id)
        return approval

    def _require_pending(self, approval: DiscountApproval, action: str) -> None:
        if not approval.is_pending:
            raise ValidationError(
                f"Cannot {action} a discount approval that is {approval.status.value}",
                details={"approval_id": str(approval.id), "status": approval.status.value},
            )

    def _require_actor(self, actor: User, approval: DiscountApproval, action: str) -> None:
        if not can_act_on(actor, approval):
            raise PermissionDeniedError(
                f"You are not authorized to {action} this discount approval",
                details={"approval_id": str(approval.id)},
            )

    async def stage_request(
        self,
        quotation: Quotation,
        discount_percentage: Decimal,
        reason: str,
        requester: User,
        previous_approval_id: Optional[UUID] = None,
    ) -> DiscountApproval:
        """
        Create a Pending approval and lock the quotation, without committing.
        Used by quotation edits that cross the threshold.
        """
        if quotation.status != QuotationStatus.DRAFT:
            raise ValidationError("Discounts can only be changed while the quotation is a draft")
        if quotation.is_locked:
            raise QuotationLockedError(quotation.id, quotation.pending_approval_id)
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to request a discount approval")

        level = required_level(discount_percentage)
        if level is None:
            raise ValidationError(
                f"A discount below {settings.DISCOUNT_MANAGER_THRESHOLD}% does not require approval",
                details={"discount_percentage": str(discount_percentage)},
            )

        threshold = settings.DISCOUNT_ADMIN_THRESHOLD if level == ApprovalLevel.ADMIN else settings.DISCOUNT_MANAGER_THRESHOLD
        approver_id = None
        if level == ApprovalLevel.ADMIN:
            admin = await self.user_repo.get_first_active_admin()
            approver_id = admin.id if admin else None

        now = self.clock.now()
        approval = await self.approval_repo.create(
            quotation_id=quotation.id,
            requested_by_user_id=requester.id,
            approver_user_id=approver_id,
            status=ApprovalStatus.PENDING,
            approval_level=level,
            discount_percentage=discount_percentage,
            threshold=threshold,
            escalated_to_admin=False,
            reason=reason.strip(),
            previous_approval_id=previous_approval_id,
            requested_at=now,
        )
        quotation.is_pending_approval = True
        quotation.pending_approval_id = approval.id
        quotation.updated_at = now
        await self.session.flush()

        logger.info(
            "Discount approval requested",
            extra={
                "approval_id": str(approval.id),
                "quotation_id": str(quotation.id),
                "level": level.value,
                "discount_percentage": str(discount_percentage),
            },
        )
        return approval

    async def request_approval(
        self,
        quotation_id: UUID,
        discount_percentage: Decimal,
        reason: str,
        requester: User,
    ) -> DiscountApproval:
        quotation = await self._get_quotation(quotation_id)
        approval = await self.stage_request(quotation, discount_percentage, reason, requester)
        await self.session.commit()
        await self.notify_approvers(approval, quotation, requester)
        return approval

    async def approve(self, approval_id: UUID, actor: User, comments: Optional[str] = None) -> DiscountApproval:
        approval = await self._get_approval(approval_id)
        self._require_pending(approval, "approve")
        self._require_actor(actor, approval, "approve")

        now = self.clock.now()
        approval.status = ApprovalStatus.APPROVED
        approval.approver_user_id = actor.id
        approval.resolved_at = now
        if comments:
            approval.append_comment(comments)

        quotation = await self._get_quotation(approval.quotation_id)
        self.totals_service.recalculate(quotation, Decimal(approval.discount_percentage))
        self._unlock(quotation, now)
        await self.session.commit()

        logger.info(
            "Discount approval approved",
            extra={"approval_id": str(approval.id), "quotation_id": str(quotation.id), "actor_id": str(actor.id)},
        )
        await self._notify_requester(approval, quotation, "APPROVED")
        return approval

    async def reject(self, approval_id: UUID, actor: User, reason: str) -> DiscountApproval:
        approval = await self._get_approval(approval_id)
        self._require_pending(approval, "reject")
        self._require_actor(actor, approval, "reject")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reject a discount approval")

        now = self.clock.now()
        approval.status = ApprovalStatus.REJECTED
        approval.approver_user_id = actor.id
        approval.resolved_at = now
        approval.append_comment(f"[Rejected]: {reason.strip()}")

        quotation = await self._get_quotation(approval.quotation_id)
        self.totals_service.recalculate(quotation, Decimal("0"))
        self._unlock(quotation, now)
        await self.session.commit()

        logger.info(
            "Discount approval rejected",
            extra={"approval_id": str(approval.id), "quotation_id": str(quotation.id), "actor_id": str(actor.id)},
        )
        await self._notify_requester(approval, quotation, "REJECTED")
        return approval

    async def escalate(self, approval_id: UUID, actor: User, reason: str) -> DiscountApproval:
        approval = await self._get_approval(approval_id)
        self._require_pending(approval, "escalate")
        if actor.role not in (UserRole.MANAGER, UserRole.ADMIN):
            raise PermissionDeniedError("Only managers or administrators can escalate approvals")
        self._require_actor(actor, approval, "escalate")

        await self._escalate(approval, reason)
        await self.session.commit()
        await self._notify_escalation(approval)
        return approval

    async def _escalate(self, approval: DiscountApproval, reason: str) -> None:
        if approval.escalated_to_admin:
            raise ValidationError("This approval has already been escalated")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to escalate an approval")
        admin = await self.user_repo.get_first_active_admin()
        if admin is None:
            raise ValidationError("No active administrator is available for escalation")

        approval.escalated_to_admin = True
        approval.approval_level = ApprovalLevel.ADMIN
        approval.approver_user_id = admin.id
        approval.escalated_at = self.clock.now()
        approval.append_comment(f"[Escalated]: {reason.strip()}")
        await self.session.flush()

        logger.info(
            "Discount approval escalated",
            extra={"approval_id": str(approval.id), "admin_id": str(admin.id)},
        )

    async def resubmit(
        self,
        approval_id: UUID,
        actor: User,
        discount_percentage: Decimal,
        reason: str,
    ) -> DiscountApproval:
        """Open a new request after a rejection. Only the original requester may resubmit."""
        previous = await self._get_approval(approval_id)
        if previous.status != ApprovalStatus.REJECTED:
            raise ValidationError("Only rejected approvals can be resubmitted")
        if previous.requested_by_user_id != actor.id:
            raise PermissionDeniedError("Only the original requester can resubmit this approval")

        quotation = await self._get_quotation(previous.quotation_id)
        approval = await self.stage_request(
            quotation, discount_percentage, reason, actor, previous_approval_id=previous.id
        )
        await self.session.commit()
        await self.notify_approvers(approval, quotation, actor)
        return approval

    async def list_pending_for(self, actor: User) -> List[DiscountApproval]:
        pending = await self.approval_repo.list_pending()
        return [approval for approval in pending if can_act_on(actor, approval)]

    async def auto_escalate_stale(self, stop_requested: Callable[[], bool] = lambda: False) -> int:
        """Escalate manager-tier approvals pending longer than the configured window."""
        cutoff = self.clock.now() - timedelta(hours=settings.APPROVAL_AUTO_ESCALATION_HOURS)
        stale = await self.approval_repo.list_stale_manager_pending(cutoff)
        escalated = 0
        for approval in stale:
            if stop_requested():
                logger.info("Approval escalation sweep stopping early")
                break
            try:
                await self._escalate(approval, AUTO_ESCALATION_REASON)
            except ValidationError as e:
                logger.warning(
                    f"Could not auto-escalate approval: {e.message}",
                    extra={"approval_id": str(approval.id)},
                )
                break
            await self.session.commit()
            escalated += 1
            await self._notify_escalation(approval)
        if escalated:
            logger.info(f"Auto-escalated {escalated} discount approvals")
        return escalated

    async def mark_applied(self, quotation_id: UUID) -> int:
        """Mark approved requests for the quotation as Applied. Does not commit."""
        approved = await self.approval_repo.list_by_quotation(quotation_id, ApprovalStatus.APPROVED)
        now = self.clock.now()
        for approval in approved:
            approval.status = ApprovalStatus.APPLIED
            approval.applied_at = now
        await self.session.flush()
        return len(approved)

    def _unlock(self, quotation: Quotation, now) -> None:
        quotation.is_pending_approval = False
        quotation.pending_approval_id = None
        quotation.updated_at = now

    async def notify_approvers(self, approval: DiscountApproval, quotation: Quotation, requester: User) -> None:
        if self.dispatcher is None:
            return
        if approval.approver_user_id:
            approver = await self.user_repo.get(approval.approver_user_id)
            recipients = [approver] if approver else []
        else:
            recipients = await self.user_repo.list_active_by_role(UserRole.MANAGER)
        for recipient in recipients:
            message = email_templates.approval_requested(
                recipient.email,
                quotation.quotation_number,
                requester.full_name,
                approval.discount_percentage,
                approval.reason,
            )
            await self.dispatcher.deliver_best_effort(NotificationKind.APPROVAL_REQUESTED, message, quotation.id)
        await self.session.commit()

    async def _notify_escalation(self, approval: DiscountApproval) -> None:
        if self.dispatcher is None or approval.approver_user_id is None:
            return
        admin = await self.user_repo.get(approval.approver_user_id)
        requester = await self.user_repo.get(approval.requested_by_user_id)
        quotation = await self.quotation_repo.get(approval.quotation_id)
        if admin is None or quotation is None:
            return
        message = email_templates.approval_requested(
            admin.email,
            quotation.quotation_number,
            requester.full_name if requester else "A sales representative",
            approval.discount_percentage,
            approval.reason,
            escalated=True,
        )
        await self.dispatcher.deliver_best_effort(NotificationKind.APPROVAL_REQUESTED, message, quotation.id)
        await self.session.commit()

    async def _notify_requester(self, approval: DiscountApproval, quotation: Quotation, decision: str) -> None:
        if self.dispatcher is None:
            return
        requester = await self.user_repo.get(approval.requested_by_user_id)
        if requester is None:
            return
        message = email_templates.approval_resolved(
            requester.email,
            quotation.quotation_number,
            decision,
            approval.discount_percentage,
            approval.comments,
        )
        await self.dispatcher.deliver_best_effort(NotificationKind.APPROVAL_RESOLVED, message, quotation.id)
        await self.session.commit()
