from typing import List, Optional
from uuid import UUID
import re

from sqlalchemy import select, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload
from sqlalchemy.orm.exc import StaleDataError
import structlog

from complaint_desk.core.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    PermissionDeniedError,
)
from complaint_desk.db.session import store_errors
from complaint_desk.models.complaint import Complaint, ComplaintPriority, ComplaintStatus
from complaint_desk.models.user import Profile, UNKNOWN_NAME
from complaint_desk.schemas.complaint import ComplaintCreate
from complaint_desk.schemas.user import Actor
from complaint_desk.services.lifecycle import ComplaintLifecycle

logger = structlog.get_logger()

Submitter = aliased(Profile, name="submitter")
Assignee = aliased(Profile, name="assignee")


class ComplaintService:
    """
    Complaint store access: numbering, visibility-aware reads and
    single-complaint mutations routed through the lifecycle.
    """

    PREFIX = "CMP"
    STARTING_NUM = 100001  # CMP100001
    CREATE_RETRIES = 3

    # ------------------------------------------------------------------
    # Numbering
    # ------------------------------------------------------------------

    @classmethod
    async def generate_next_complaint_number(cls, session: AsyncSession) -> str:
        """
        Next incremental complaint number: CMP + digits.
        Longest number first, then lexical max, so CMP1000000 sorts after CMP999999.
        """
        stmt = (
            select(Complaint.complaint_number)
            .where(Complaint.complaint_number.like(f"{cls.PREFIX}%"))
            .order_by(desc(func.length(Complaint.complaint_number)), desc(Complaint.complaint_number))
            .limit(1)
        )
        result = await session.execute(stmt)
        max_number = result.scalar_one_or_none()

        if not max_number:
            return f"{cls.PREFIX}{cls.STARTING_NUM}"

        match = re.match(rf"^{cls.PREFIX}(\d+)$", max_number)
        if not match:
            # Non-numeric legacy value; restart from the floor
            return f"{cls.PREFIX}{cls.STARTING_NUM}"

        next_num = max(int(match.group(1)) + 1, cls.STARTING_NUM)
        return f"{cls.PREFIX}{next_num}"

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    @classmethod
    async def create(cls, session: AsyncSession, payload: ComplaintCreate, actor: Actor) -> Complaint:
        category = ComplaintLifecycle.parse_category(payload.category)
        priority = ComplaintLifecycle.parse_priority(payload.priority) if payload.priority else ComplaintPriority.MEDIUM

        for attempt in range(1, cls.CREATE_RETRIES + 1):
            async with store_errors("create complaint"):
                complaint = Complaint(
                    complaint_number=await cls.generate_next_complaint_number(session),
                    title=payload.title,
                    description=payload.description,
                    category=category,
                    priority=priority,
                    status=ComplaintStatus.OPEN,
                    user_id=actor.user_id,
                )
                session.add(complaint)
                try:
                    await session.commit()
                except IntegrityError:
                    # Another request took the same number
                    await session.rollback()
                    logger.warning("complaint_number_collision", attempt=attempt)
                    continue

            logger.info(
                "complaint_created",
                complaint_id=str(complaint.id),
                complaint_number=complaint.complaint_number,
                user_id=str(actor.user_id),
            )
            complaint.submitter_name = await cls.display_name(session, actor.user_id)
            return complaint

        raise ConcurrentModificationError("Could not allocate a complaint number, please retry")

    @staticmethod
    def _select_with_names():
        return (
            select(Complaint, Submitter.full_name, Assignee.full_name)
            .outerjoin(Submitter, Submitter.id == Complaint.user_id)
            .outerjoin(Assignee, Assignee.id == Complaint.assigned_to)
        )

    @staticmethod
    def _attach_names(row) -> Complaint:
        complaint, submitter_name, assignee_name = row
        complaint.submitter_name = submitter_name or UNKNOWN_NAME
        complaint.assignee_name = (assignee_name or UNKNOWN_NAME) if complaint.assigned_to else None
        return complaint

    @staticmethod
    async def display_name(session: AsyncSession, user_id: UUID) -> str:
        async with store_errors("load display name"):
            result = await session.execute(select(Profile.full_name).where(Profile.id == user_id))
            return result.scalar_one_or_none() or UNKNOWN_NAME

    @staticmethod
    def ensure_can_view(complaint: Complaint, actor: Actor) -> None:
        if actor.is_staff or complaint.user_id == actor.user_id:
            return
        raise PermissionDeniedError("You do not have access to this complaint", complaint_id=complaint.id)

    @classmethod
    async def get(
        cls,
        session: AsyncSession,
        complaint_id: UUID,
        actor: Optional[Actor] = None,
        with_attachments: bool = False,
    ) -> Complaint:
        """
        Load one complaint. With an actor, visibility is enforced.
        """
        stmt = cls._select_with_names().where(Complaint.id == complaint_id)
        if with_attachments:
            stmt = stmt.options(selectinload(Complaint.attachments))

        async with store_errors("load complaint"):
            result = await session.execute(stmt)
            row = result.first()

        if row is None:
            raise NotFoundError(f"Complaint {complaint_id} not found", complaint_id=complaint_id)
        complaint = cls._attach_names(row)
        if actor is not None:
            cls.ensure_can_view(complaint, actor)
        return complaint

    @classmethod
    async def search(
        cls,
        session: AsyncSession,
        actor: Actor,
        status: Optional[str] = None,
        category: Optional[str] = None,
        assigned_to: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Complaint]:
        """
        Newest first. Students only ever see their own complaints.
        """
        stmt = cls._select_with_names()

        if not actor.is_staff:
            if user_id is not None and user_id != actor.user_id:
                raise PermissionDeniedError("Students can only list their own complaints")
            user_id = actor.user_id

        if user_id is not None:
            stmt = stmt.where(Complaint.user_id == user_id)
        if assigned_to is not None:
            stmt = stmt.where(Complaint.assigned_to == assigned_to)
        if status:
            stmt = stmt.where(Complaint.status == ComplaintLifecycle.parse_status(status))
        if category:
            stmt = stmt.where(Complaint.category == ComplaintLifecycle.parse_category(category))

        stmt = stmt.order_by(desc(Complaint.created_at)).offset(skip).limit(limit)

        async with store_errors("list complaints"):
            result = await session.execute(stmt)
            rows = result.all()
        return [cls._attach_names(row) for row in rows]

    # ------------------------------------------------------------------
    # Single mutations
    # ------------------------------------------------------------------

    @classmethod
    async def update_status(
        cls,
        session: AsyncSession,
        complaint_id: UUID,
        new_status: str,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> Complaint:
        ComplaintLifecycle.require_staff(actor, "change complaint status")
        complaint = await cls.get(session, complaint_id)
        ComplaintLifecycle.check_version(complaint, expected_version)
        ComplaintLifecycle.set_status(complaint, new_status, actor)
        await cls.commit_mutation(session, complaint)
        return complaint

    @classmethod
    async def update_priority(
        cls,
        session: AsyncSession,
        complaint_id: UUID,
        new_priority: str,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> Complaint:
        ComplaintLifecycle.require_staff(actor, "change complaint priority")
        complaint = await cls.get(session, complaint_id)
        ComplaintLifecycle.check_version(complaint, expected_version)
        ComplaintLifecycle.set_priority(complaint, new_priority, actor)
        await cls.commit_mutation(session, complaint)
        return complaint

    @staticmethod
    async def commit_mutation(session: AsyncSession, complaint: Optional[Complaint] = None) -> None:
        """
        Commit lifecycle mutations. A version mismatch at flush time means
        another writer got there first.
        """
        # Captured up front: rollback expires every loaded attribute
        label = f"Complaint {complaint.complaint_number}" if complaint is not None else "One or more complaints"
        complaint_id = complaint.id if complaint is not None else None
        async with store_errors("update complaint"):
            try:
                await session.commit()
            except StaleDataError as e:
                await session.rollback()
                raise ConcurrentModificationError(
                    f"{label} was modified concurrently",
                    complaint_id=complaint_id,
                ) from e
