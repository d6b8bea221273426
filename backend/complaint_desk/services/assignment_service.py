"""
AssignmentService - eligibility lookup, lifecycle assign, then notification.

The assignment and the notification are decoupled: once the assignment is
committed it stays, and a failed e-mail is reported as a warning.
"""

from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from complaint_desk.core.exceptions import InvalidAssigneeError, NotificationFailed
from complaint_desk.db.session import store_errors
from complaint_desk.models.complaint import Complaint
from complaint_desk.models.user import Profile, UserRole, STAFF_ROLES, UNKNOWN_NAME
from complaint_desk.schemas.user import Actor, AssigneeRead
from complaint_desk.services.complaint_service import ComplaintService
from complaint_desk.services.lifecycle import ComplaintLifecycle
from complaint_desk.services.notification_service import AssignmentNotice, NotificationService

logger = structlog.get_logger()


@dataclass
class AssignmentOutcome:
    complaint: Complaint
    assigned: bool
    # None when skipped because the assignee has no address
    notified: Optional[bool] = None
    warning: Optional[str] = None


class AssignmentService:
    def __init__(self, session: AsyncSession, notifier: Optional[NotificationService] = None):
        self.session = session
        self.notifier = notifier or NotificationService()

    async def list_eligible_assignees(self) -> List[AssigneeRead]:
        """
        Every identity with a staff or admin role, with display name and e-mail.
        """
        stmt = (
            select(UserRole.user_id, UserRole.role, Profile.full_name, Profile.email)
            .outerjoin(Profile, Profile.id == UserRole.user_id)
            .where(UserRole.role.in_(list(STAFF_ROLES)))
            .order_by(Profile.full_name)
        )
        async with store_errors("list assignees"):
            result = await self.session.execute(stmt)
            rows = result.all()

        return [
            AssigneeRead(id=row.user_id, role=row.role, full_name=row.full_name or UNKNOWN_NAME, email=row.email)
            for row in rows
        ]

    async def get_eligible_assignee(self, staff_id: UUID) -> AssigneeRead:
        for assignee in await self.list_eligible_assignees():
            if assignee.id == staff_id:
                return assignee
        raise InvalidAssigneeError(f"User {staff_id} is not staff or admin", staff_id=staff_id)

    async def assign_and_notify(
        self,
        complaint_id: UUID,
        staff_id: UUID,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> AssignmentOutcome:
        # 1. Validate before touching anything
        ComplaintLifecycle.require_staff(actor, "assign complaints")
        assignee = await self.get_eligible_assignee(staff_id)

        # 2. Assign through the lifecycle
        complaint = await ComplaintService.get(self.session, complaint_id)
        ComplaintLifecycle.check_version(complaint, expected_version)
        ComplaintLifecycle.assign(complaint, staff_id, actor)
        await ComplaintService.commit_mutation(self.session, complaint)
        complaint.assignee_name = assignee.full_name

        # 3. Notify (best effort)
        if not assignee.email:
            logger.info("assignment_notification_skipped", complaint_id=str(complaint.id), assignee=str(staff_id))
            return AssignmentOutcome(complaint=complaint, assigned=True, notified=None)

        result = await self.notifier.send_assignment_email(
            AssignmentNotice(
                recipient_address=assignee.email,
                recipient_name=assignee.full_name,
                complaint_number=complaint.complaint_number,
                complaint_title=complaint.title,
                complaint_id=complaint.id,
            )
        )
        if not result.sent:
            warning = NotificationFailed(
                f"Assigned successfully, but failed to send email notification: {result.error}",
                complaint_id=complaint.id,
            )
            logger.warning("assignment_notification_failed", complaint_id=str(complaint.id), error=result.error)
            return AssignmentOutcome(complaint=complaint, assigned=True, notified=False, warning=warning.message)

        return AssignmentOutcome(complaint=complaint, assigned=True, notified=True)

    async def unassign(self, complaint_id: UUID, actor: Actor, expected_version: Optional[int] = None) -> Complaint:
        ComplaintLifecycle.require_staff(actor, "unassign complaints")
        complaint = await ComplaintService.get(self.session, complaint_id)
        ComplaintLifecycle.check_version(complaint, expected_version)
        ComplaintLifecycle.unassign(complaint, actor)
        await ComplaintService.commit_mutation(self.session, complaint)
        complaint.assignee_name = None
        return complaint
