import uuid

import pytest

from complaint_desk.core.exceptions import (
    ConcurrentModificationError,
    InvalidEnumValueError,
    NotFoundError,
    PermissionDeniedError,
)
from complaint_desk.models.complaint import Complaint, ComplaintCategory, ComplaintPriority, ComplaintStatus
from complaint_desk.schemas.complaint import ComplaintCreate
from complaint_desk.services.complaint_service import ComplaintService


async def test_numbers_start_at_floor_and_increment(make_complaint):
    first = await make_complaint()
    second = await make_complaint(title="Mess food cold")
    assert first.complaint_number == "CMP100001"
    assert second.complaint_number == "CMP100002"
    assert first.status == ComplaintStatus.OPEN
    assert first.priority == ComplaintPriority.MEDIUM
    assert first.version == 1


async def test_numbering_orders_by_length_before_value(session, users):
    session.add(Complaint(
        complaint_number="CMP999999",
        title="Legacy",
        description="Imported",
        category=ComplaintCategory.OTHER,
        user_id=users.student.user_id,
    ))
    await session.commit()
    assert await ComplaintService.generate_next_complaint_number(session) == "CMP1000000"


async def test_create_rejects_unknown_category(session, users):
    with pytest.raises(InvalidEnumValueError):
        await ComplaintService.create(
            session,
            ComplaintCreate(title="x", description="y", category="Parking"),
            users.student,
        )


async def test_students_only_see_their_own(session, users, make_complaint):
    mine = await make_complaint()
    theirs = await make_complaint(owner=users.other_student)

    listed = await ComplaintService.search(session, users.student)
    assert [c.id for c in listed] == [mine.id]

    with pytest.raises(PermissionDeniedError):
        await ComplaintService.get(session, theirs.id, users.student)
    with pytest.raises(PermissionDeniedError):
        await ComplaintService.search(session, users.student, user_id=users.other_student.user_id)

    staff_view = await ComplaintService.search(session, users.staff)
    assert {c.id for c in staff_view} == {mine.id, theirs.id}


async def test_search_filters(session, users, make_complaint):
    await make_complaint(category="Hostel")
    technical = await make_complaint(category="Technical")
    await ComplaintService.update_status(session, technical.id, "In Progress", users.staff)

    in_progress = await ComplaintService.search(session, users.staff, status="In Progress")
    assert [c.id for c in in_progress] == [technical.id]

    hostel = await ComplaintService.search(session, users.staff, category="Hostel")
    assert len(hostel) == 1


async def test_get_missing_complaint(session, users):
    with pytest.raises(NotFoundError):
        await ComplaintService.get(session, uuid.uuid4(), users.staff)


async def test_update_status_persists_and_bumps_version(session_factory, users, make_complaint):
    complaint = await make_complaint()

    async with session_factory() as s:
        updated = await ComplaintService.update_status(s, complaint.id, "Resolved", users.staff, expected_version=1)
        assert updated.version == 2

    async with session_factory() as s:
        reloaded = await ComplaintService.get(s, complaint.id)
        assert reloaded.status == ComplaintStatus.RESOLVED
        assert reloaded.resolved_at is not None


async def test_stale_expected_version_is_rejected(session_factory, users, make_complaint):
    complaint = await make_complaint()

    async with session_factory() as s:
        await ComplaintService.update_priority(s, complaint.id, "High", users.staff)

    async with session_factory() as s:
        with pytest.raises(ConcurrentModificationError):
            await ComplaintService.update_status(s, complaint.id, "Closed", users.admin, expected_version=1)

    async with session_factory() as s:
        reloaded = await ComplaintService.get(s, complaint.id)
        assert reloaded.status == ComplaintStatus.OPEN
        assert reloaded.priority == ComplaintPriority.HIGH


async def test_lost_update_is_detected_at_commit(session_factory, users, make_complaint):
    complaint = await make_complaint()

    async with session_factory() as first, session_factory() as second:
        a = await ComplaintService.get(first, complaint.id)

        await ComplaintService.update_priority(second, complaint.id, "Low", users.staff)

        a.priority = ComplaintPriority.HIGH
        with pytest.raises(ConcurrentModificationError):
            await ComplaintService.commit_mutation(first, a)

    async with session_factory() as s:
        reloaded = await ComplaintService.get(s, complaint.id)
        assert reloaded.priority == ComplaintPriority.LOW
