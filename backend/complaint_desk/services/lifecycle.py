"""
ComplaintLifecycle - the state machine for status, priority and assignment.

Responsibilities:
1. Parse raw values into enum members (InvalidEnumValueError otherwise).
2. Enforce the staff/admin permission on every mutation.
3. Enforce the transition table for status.
4. Stamp resolved_at on the first entry into Resolved/Closed and never clear it.
5. Bump updated_at on every accepted mutation.

Operates on loaded Complaint rows only. Persisting is the caller's job,
which lets the single and bulk paths share exactly the same rules.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Optional, Type, TypeVar
from uuid import UUID
import enum
import structlog

from complaint_desk.core.config import settings
from complaint_desk.core.exceptions import (
    ConcurrentModificationError,
    InvalidEnumValueError,
    InvalidTransitionError,
    PermissionDeniedError,
)
from complaint_desk.core.time_utils import get_utc_now
from complaint_desk.models.complaint import Complaint, ComplaintStatus, ComplaintPriority, ComplaintCategory
from complaint_desk.schemas.user import Actor

logger = structlog.get_logger()

E = TypeVar("E", bound=enum.Enum)

RESOLVING_STATUSES = frozenset({ComplaintStatus.RESOLVED, ComplaintStatus.CLOSED})


class ComplaintLifecycle:
    TRANSITIONS: Dict[ComplaintStatus, FrozenSet[ComplaintStatus]] = {
        ComplaintStatus.OPEN: frozenset({ComplaintStatus.IN_PROGRESS, ComplaintStatus.RESOLVED, ComplaintStatus.CLOSED}),
        ComplaintStatus.IN_PROGRESS: frozenset({ComplaintStatus.OPEN, ComplaintStatus.RESOLVED, ComplaintStatus.CLOSED}),
        ComplaintStatus.RESOLVED: frozenset({ComplaintStatus.CLOSED, ComplaintStatus.OPEN}),
        ComplaintStatus.CLOSED: frozenset({ComplaintStatus.OPEN}),
    }

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(enum_cls: Type[E], value, label: str) -> E:
        if isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(value)
        except ValueError:
            allowed = ", ".join(m.value for m in enum_cls)
            raise InvalidEnumValueError(f"Invalid {label} '{value}'. Allowed: {allowed}", field=label)

    @classmethod
    def parse_status(cls, value) -> ComplaintStatus:
        return cls._parse(ComplaintStatus, value, "status")

    @classmethod
    def parse_priority(cls, value) -> ComplaintPriority:
        return cls._parse(ComplaintPriority, value, "priority")

    @classmethod
    def parse_category(cls, value) -> ComplaintCategory:
        return cls._parse(ComplaintCategory, value, "category")

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def require_staff(actor: Actor, action: str) -> None:
        if not actor.is_staff:
            logger.warning("permission_denied", action=action, user_id=str(actor.user_id), role=actor.role.value)
            raise PermissionDeniedError(f"Role '{actor.role.value}' may not {action}", action=action)

    @staticmethod
    def check_version(complaint: Complaint, expected_version: Optional[int]) -> None:
        if expected_version is not None and complaint.version != expected_version:
            raise ConcurrentModificationError(
                f"Complaint {complaint.complaint_number} was modified concurrently "
                f"(expected version {expected_version}, found {complaint.version})",
                complaint_id=complaint.id,
            )

    @classmethod
    def allowed_transitions(cls, current: ComplaintStatus) -> FrozenSet[ComplaintStatus]:
        if current == ComplaintStatus.CLOSED and settings.CLOSED_IS_TERMINAL:
            return frozenset()
        return cls.TRANSITIONS[current]

    @classmethod
    def can_transition(cls, current: ComplaintStatus, target: ComplaintStatus) -> bool:
        # Re-applying the current status is an idempotent self-transition
        return target == current or target in cls.allowed_transitions(current)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @classmethod
    def set_status(cls, complaint: Complaint, new_status, actor: Actor, now: Optional[datetime] = None) -> Complaint:
        cls.require_staff(actor, "change complaint status")
        target = cls.parse_status(new_status)

        current = ComplaintStatus(complaint.status)
        if not cls.can_transition(current, target):
            raise InvalidTransitionError(
                f"Cannot move complaint {complaint.complaint_number} from '{current.value}' to '{target.value}'",
                complaint_id=complaint.id,
            )

        now = now or get_utc_now()
        complaint.status = target
        if target in RESOLVING_STATUSES and complaint.resolved_at is None:
            complaint.resolved_at = now
        complaint.updated_at = now

        logger.info(
            "complaint_status_changed",
            complaint_id=str(complaint.id),
            from_status=current.value,
            to_status=target.value,
            actor_id=str(actor.user_id),
        )
        return complaint

    @classmethod
    def set_priority(cls, complaint: Complaint, new_priority, actor: Actor, now: Optional[datetime] = None) -> Complaint:
        cls.require_staff(actor, "change complaint priority")
        target = cls.parse_priority(new_priority)

        previous = complaint.priority
        complaint.priority = target
        complaint.updated_at = now or get_utc_now()

        logger.info(
            "complaint_priority_changed",
            complaint_id=str(complaint.id),
            from_priority=getattr(previous, "value", previous),
            to_priority=target.value,
            actor_id=str(actor.user_id),
        )
        return complaint

    @classmethod
    def assign(cls, complaint: Complaint, staff_id: UUID, actor: Actor, now: Optional[datetime] = None) -> Complaint:
        """
        Eligibility of staff_id is checked by the assignment engine,
        which has the store at hand.
        """
        cls.require_staff(actor, "assign complaints")

        previous = complaint.assigned_to
        complaint.assigned_to = staff_id
        complaint.updated_at = now or get_utc_now()

        logger.info(
            "complaint_assigned",
            complaint_id=str(complaint.id),
            previous_assignee=str(previous) if previous else None,
            assignee=str(staff_id),
            actor_id=str(actor.user_id),
        )
        return complaint

    @classmethod
    def unassign(cls, complaint: Complaint, actor: Actor, now: Optional[datetime] = None) -> Complaint:
        cls.require_staff(actor, "unassign complaints")

        previous = complaint.assigned_to
        complaint.assigned_to = None
        complaint.updated_at = now or get_utc_now()

        logger.info(
            "complaint_unassigned",
            complaint_id=str(complaint.id),
            previous_assignee=str(previous) if previous else None,
            actor_id=str(actor.user_id),
        )
        return complaint
