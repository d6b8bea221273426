from typing import Any, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from complaint_desk.db.session import get_db
from complaint_desk.api.deps import get_current_actor
from complaint_desk.schemas.complaint import (
    AssignRequest,
    AssignmentResponse,
    BulkItemResult,
    BulkUpdateRequest,
    BulkUpdateResponse,
    ComplaintCreate,
    ComplaintDetail,
    ComplaintRead,
    PriorityUpdateRequest,
    StatusUpdateRequest,
)
from complaint_desk.schemas.user import Actor, AssigneeRead
from complaint_desk.services.assignment_service import AssignmentService
from complaint_desk.services.bulk_service import BulkMutationService
from complaint_desk.services.complaint_service import ComplaintService
from complaint_desk.services.lifecycle import ComplaintLifecycle
from complaint_desk.services.notification_service import NotificationService

router = APIRouter()


def get_notifier() -> NotificationService:
    return NotificationService()


@router.post("/", response_model=ComplaintRead, status_code=status.HTTP_201_CREATED)
async def create_complaint(
    payload: ComplaintCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    """
    Submit a new complaint. The caller becomes its owner.
    """
    return await ComplaintService.create(db, payload, actor)


@router.get("/", response_model=List[ComplaintRead])
async def list_complaints(
    status: Optional[str] = None,
    category: Optional[str] = None,
    assigned_to: Optional[UUID] = None,
    mine: bool = False,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    """
    Newest first. Students get their own complaints only; staff can filter
    by assignee ("assigned to me") or restrict to their own submissions.
    """
    return await ComplaintService.search(
        db,
        actor,
        status=status,
        category=category,
        assigned_to=assigned_to,
        user_id=actor.user_id if mine else None,
        skip=skip,
        limit=limit,
    )


@router.get("/assignees", response_model=List[AssigneeRead])
async def list_assignees(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    """
    Staff and admins eligible for assignment.
    """
    ComplaintLifecycle.require_staff(actor, "list assignees")
    return await AssignmentService(db).list_eligible_assignees()


@router.post("/bulk", response_model=BulkUpdateResponse)
async def bulk_update(
    request: BulkUpdateRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    """
    Apply one status or priority value to every selected complaint.
    """
    result = await BulkMutationService(db).apply(request.ids, request.field, request.value, actor, atomic=request.atomic)
    return BulkUpdateResponse(
        affected=result.affected,
        results=[BulkItemResult(id=r.id, ok=r.ok, error=r.error, code=r.code) for r in result.results],
        selection_cleared=not result.failed,
    )


@router.get("/{complaint_id}", response_model=ComplaintDetail)
async def read_complaint(
    complaint_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    return await ComplaintService.get(db, complaint_id, actor, with_attachments=True)


@router.patch("/{complaint_id}/status", response_model=ComplaintRead)
async def update_status(
    complaint_id: UUID,
    request: StatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    return await ComplaintService.update_status(db, complaint_id, request.status, actor, request.expected_version)


@router.patch("/{complaint_id}/priority", response_model=ComplaintRead)
async def update_priority(
    complaint_id: UUID,
    request: PriorityUpdateRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    return await ComplaintService.update_priority(db, complaint_id, request.priority, actor, request.expected_version)


@router.post("/{complaint_id}/assign", response_model=AssignmentResponse)
async def assign_complaint(
    complaint_id: UUID,
    request: AssignRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    notifier: NotificationService = Depends(get_notifier),
) -> Any:
    """
    Assign (or reassign) and e-mail the assignee.
    A failed e-mail comes back as `warning`; the assignment stands.
    """
    outcome = await AssignmentService(db, notifier).assign_and_notify(
        complaint_id, request.staff_id, actor, request.expected_version
    )
    return AssignmentResponse(
        complaint=ComplaintRead.model_validate(outcome.complaint),
        assigned=outcome.assigned,
        notified=outcome.notified,
        warning=outcome.warning,
    )


@router.delete("/{complaint_id}/assign", response_model=ComplaintRead)
async def unassign_complaint(
    complaint_id: UUID,
    expected_version: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    return await AssignmentService(db).unassign(complaint_id, actor, expected_version)
