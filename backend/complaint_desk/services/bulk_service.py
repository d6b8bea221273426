"""
BulkMutationService - one status or priority change across many complaints.

Every id goes through ComplaintLifecycle individually, inside a single
transaction with one deferred commit, so bulk edits obey the same
transition rules and resolved_at stamping as single edits.

- atomic=True: any missing id or lifecycle error fails the whole batch and
  nothing is written.
- atomic=False: failures are reported per id; successes are committed.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from complaint_desk.core.exceptions import (
    ComplaintDeskError,
    EmptyBatchError,
    InvalidEnumValueError,
    NotFoundError,
)
from complaint_desk.core.time_utils import get_utc_now
from complaint_desk.db.session import store_errors
from complaint_desk.models.complaint import Complaint
from complaint_desk.schemas.user import Actor
from complaint_desk.services.complaint_service import ComplaintService
from complaint_desk.services.lifecycle import ComplaintLifecycle

logger = structlog.get_logger()


@dataclass
class BulkItemResult:
    id: UUID
    ok: bool
    error: Optional[str] = None
    code: Optional[str] = None


@dataclass
class BulkResult:
    affected: int
    results: List[BulkItemResult] = field(default_factory=list)

    @property
    def failed(self) -> List[BulkItemResult]:
        return [r for r in self.results if not r.ok]


class BulkMutationService:
    FIELDS: Dict[str, Callable] = {
        "status": ComplaintLifecycle.parse_status,
        "priority": ComplaintLifecycle.parse_priority,
    }

    def __init__(self, session: AsyncSession):
        self.session = session

    @classmethod
    def validate(cls, ids: Iterable[UUID], field_name: Optional[str], value: Optional[str]):
        """
        Reject the batch before any store access.
        Returns the de-duplicated id list (request order kept) and the parsed value.
        """
        unique_ids = list(dict.fromkeys(ids or ()))
        if not unique_ids:
            raise EmptyBatchError("Select at least one complaint")
        if not field_name or not value:
            raise EmptyBatchError("Select an action and a value")
        if field_name not in cls.FIELDS:
            raise InvalidEnumValueError(
                f"Invalid bulk field '{field_name}'. Allowed: {', '.join(cls.FIELDS)}",
                field=field_name,
            )
        return unique_ids, cls.FIELDS[field_name](value)

    async def apply(
        self,
        ids: Iterable[UUID],
        field_name: Optional[str],
        value: Optional[str],
        actor: Actor,
        atomic: bool = True,
    ) -> BulkResult:
        unique_ids, parsed = self.validate(ids, field_name, value)
        ComplaintLifecycle.require_staff(actor, f"bulk update complaint {field_name}")

        async with store_errors("load bulk batch"):
            result = await self.session.execute(select(Complaint).where(Complaint.id.in_(unique_ids)))
            by_id = {c.id: c for c in result.scalars().all()}

        missing = [i for i in unique_ids if i not in by_id]
        if missing and atomic:
            raise NotFoundError(
                f"{len(missing)} selected complaint(s) no longer exist",
                missing=",".join(str(i) for i in missing),
            )

        mutate = ComplaintLifecycle.set_status if field_name == "status" else ComplaintLifecycle.set_priority
        now = get_utc_now()
        results: List[BulkItemResult] = []

        for complaint_id in unique_ids:
            complaint = by_id.get(complaint_id)
            if complaint is None:
                results.append(BulkItemResult(id=complaint_id, ok=False, error="Complaint not found", code=NotFoundError.code))
                continue
            try:
                # The lifecycle validates before it mutates, so a failed item is untouched
                mutate(complaint, parsed, actor, now=now)
            except ComplaintDeskError as e:
                if atomic:
                    logger.warning("bulk_update_rejected", field=field_name, value=parsed.value, complaint_id=str(complaint_id), error=e.message)
                    # Nothing flushed yet; drop the edits already made to earlier items
                    await self.session.rollback()
                    raise
                results.append(BulkItemResult(id=complaint_id, ok=False, error=e.message, code=e.code))
                continue
            results.append(BulkItemResult(id=complaint_id, ok=True))

        affected = sum(1 for r in results if r.ok)
        if affected:
            await ComplaintService.commit_mutation(self.session)

        logger.info(
            "bulk_update_applied",
            field=field_name,
            value=parsed.value,
            requested=len(unique_ids),
            affected=affected,
            failed=len(results) - affected,
            actor_id=str(actor.user_id),
        )
        return BulkResult(affected=affected, results=results)
