import uuid
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from complaint_desk.api.v1.complaints import get_notifier
from complaint_desk.api.v1.messages import get_live_channel
from complaint_desk.core.config import settings
from complaint_desk.core.security import create_access_token
from complaint_desk.db.session import get_db
from complaint_desk.main import app
from complaint_desk.services.notification_service import NotificationService

PREFIX = f"{settings.API_V1_STR}/complaints"


def auth(actor):
    return {"Authorization": f"Bearer {create_access_token(actor.user_id)}"}


@pytest.fixture
def sent_mail(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test_key")
    return []


@pytest_asyncio.fixture
async def client(session_factory, users, channel, sent_mail):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    def record(request):
        sent_mail.append(request)
        return httpx.Response(200, json={"id": "email_1"})

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_live_channel] = lambda: channel
    app.dependency_overrides[get_notifier] = lambda: NotificationService(transport=httpx.MockTransport(record))

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def create(client, actor, **overrides):
    body = {"title": "Library AC not working", "description": "Second floor reading hall", "category": "Library"}
    body.update(overrides)
    response = await client.post(f"{PREFIX}/", json=body, headers=auth(actor))
    assert response.status_code == 201, response.text
    return response.json()


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_requires_a_token(client):
    response = await client.get(f"{PREFIX}/")
    assert response.status_code == 401


async def test_rejects_bad_or_expired_tokens(client, users):
    response = await client.get(f"{PREFIX}/", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 403

    expired = create_access_token(users.staff.user_id, expires_delta=timedelta(minutes=-5))
    response = await client.get(f"{PREFIX}/", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 403


async def test_identity_without_role_is_denied(client):
    token = create_access_token(uuid.uuid4())
    response = await client.get(f"{PREFIX}/", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403
    assert response.json()["code"] == "permission_denied"


async def test_create_and_read(client, users):
    created = await create(client, users.student, priority="High")
    assert created["complaint_number"] == "CMP100001"
    assert created["status"] == "Open"
    assert created["priority"] == "High"
    assert created["user_id"] == str(users.student.user_id)

    detail = await client.get(f"{PREFIX}/{created['id']}", headers=auth(users.student))
    assert detail.status_code == 200
    assert detail.json()["attachments"] == []

    forbidden = await client.get(f"{PREFIX}/{created['id']}", headers=auth(users.other_student))
    assert forbidden.status_code == 403

    missing = await client.get(f"{PREFIX}/{uuid.uuid4()}", headers=auth(users.staff))
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"


async def test_create_rejects_unknown_category(client, users):
    response = await client.post(
        f"{PREFIX}/",
        json={"title": "t", "description": "d", "category": "Parking"},
        headers=auth(users.student),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_enum_value"


async def test_status_endpoint(client, users):
    created = await create(client, users.student)
    url = f"{PREFIX}/{created['id']}/status"

    denied = await client.patch(url, json={"status": "Resolved"}, headers=auth(users.student))
    assert denied.status_code == 403

    bad_value = await client.patch(url, json={"status": "Escalated"}, headers=auth(users.staff))
    assert bad_value.status_code == 422

    resolved = await client.patch(url, json={"status": "Resolved", "expected_version": 1}, headers=auth(users.staff))
    assert resolved.status_code == 200
    body = resolved.json()
    assert body["status"] == "Resolved"
    assert body["resolved_at"] is not None
    assert body["version"] == 2

    backwards = await client.patch(url, json={"status": "In Progress"}, headers=auth(users.staff))
    assert backwards.status_code == 409
    assert backwards.json()["code"] == "invalid_transition"

    stale = await client.patch(url, json={"status": "Closed", "expected_version": 1}, headers=auth(users.admin))
    assert stale.status_code == 409
    assert stale.json()["code"] == "concurrent_modification"


async def test_priority_endpoint(client, users):
    created = await create(client, users.student)
    response = await client.patch(
        f"{PREFIX}/{created['id']}/priority", json={"priority": "Low"}, headers=auth(users.admin)
    )
    assert response.status_code == 200
    assert response.json()["priority"] == "Low"


async def test_list_scopes_students_and_filters_for_staff(client, users):
    mine = await create(client, users.student)
    theirs = await create(client, users.other_student)

    student_view = await client.get(f"{PREFIX}/", headers=auth(users.student))
    assert [c["id"] for c in student_view.json()] == [mine["id"]]

    staff_view = await client.get(f"{PREFIX}/", headers=auth(users.staff))
    assert {c["id"] for c in staff_view.json()} == {mine["id"], theirs["id"]}

    await client.post(
        f"{PREFIX}/{theirs['id']}/assign", json={"staff_id": str(users.staff.user_id)}, headers=auth(users.admin)
    )
    assigned = await client.get(
        f"{PREFIX}/", params={"assigned_to": str(users.staff.user_id)}, headers=auth(users.staff)
    )
    assert [c["id"] for c in assigned.json()] == [theirs["id"]]


async def test_assignees_and_assignment(client, users, sent_mail):
    created = await create(client, users.student)

    denied = await client.get(f"{PREFIX}/assignees", headers=auth(users.student))
    assert denied.status_code == 403

    assignees = await client.get(f"{PREFIX}/assignees", headers=auth(users.admin))
    assert assignees.status_code == 200
    assert str(users.staff.user_id) in {a["id"] for a in assignees.json()}

    response = await client.post(
        f"{PREFIX}/{created['id']}/assign",
        json={"staff_id": str(users.staff.user_id)},
        headers=auth(users.admin),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["assigned"] is True
    assert body["notified"] is True
    assert body["complaint"]["assigned_to"] == str(users.staff.user_id)
    assert len(sent_mail) == 1

    invalid = await client.post(
        f"{PREFIX}/{created['id']}/assign",
        json={"staff_id": str(users.other_student.user_id)},
        headers=auth(users.admin),
    )
    assert invalid.status_code == 422
    assert invalid.json()["code"] == "invalid_assignee"

    unassigned = await client.delete(f"{PREFIX}/{created['id']}/assign", headers=auth(users.staff))
    assert unassigned.status_code == 200
    assert unassigned.json()["assigned_to"] is None


async def test_bulk_endpoint(client, users):
    a = await create(client, users.student)
    b = await create(client, users.student)

    empty = await client.post(f"{PREFIX}/bulk", json={"ids": [], "field": "status", "value": "Resolved"}, headers=auth(users.staff))
    assert empty.status_code == 400
    assert empty.json()["code"] == "empty_batch"

    response = await client.post(
        f"{PREFIX}/bulk",
        json={"ids": [a["id"], b["id"]], "field": "status", "value": "Resolved"},
        headers=auth(users.staff),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["affected"] == 2
    assert body["selection_cleared"] is True

    partial = await client.post(
        f"{PREFIX}/bulk",
        json={"ids": [a["id"], str(uuid.uuid4())], "field": "priority", "value": "High", "atomic": False},
        headers=auth(users.staff),
    )
    body = partial.json()
    assert body["affected"] == 1
    assert body["selection_cleared"] is False


async def test_message_endpoints(client, users, channel):
    created = await create(client, users.student)
    url = f"{PREFIX}/{created['id']}/messages"

    blank = await client.post(url, json={"message": "   "}, headers=auth(users.student))
    assert blank.status_code == 204

    async with channel.subscribe(uuid.UUID(created["id"])) as sub:
        posted = await client.post(url, json={"message": "Any update?"}, headers=auth(users.student))
        assert posted.status_code == 201
        assert posted.json()["seq"] == 1
        assert posted.json()["is_staff_response"] is False
        assert (await sub.get()).message == "Any update?"

    reply = await client.post(url, json={"message": "Looking into it"}, headers=auth(users.staff))
    assert reply.json()["is_staff_response"] is True

    thread = await client.get(url, headers=auth(users.student))
    assert [m["message"] for m in thread.json()] == ["Any update?", "Looking into it"]

    newer = await client.get(url, params={"after_seq": 1}, headers=auth(users.staff))
    assert [m["seq"] for m in newer.json()] == [2]

    outsider = await client.post(url, json={"message": "hi"}, headers=auth(users.other_student))
    assert outsider.status_code == 403


class UnreachableStore:
    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


async def test_store_outage_is_reported_as_unavailable(client, users):
    async def unreachable_db():
        yield UnreachableStore()

    app.dependency_overrides[get_db] = unreachable_db

    listing = await client.get(f"{PREFIX}/", headers=auth(users.staff))
    assert listing.status_code == 503
    assert listing.json()["code"] == "store_unavailable"

    posting = await client.post(
        f"{PREFIX}/{uuid.uuid4()}/messages", json={"message": "hello"}, headers=auth(users.student)
    )
    assert posting.status_code == 503
    assert posting.json()["code"] == "store_unavailable"


async def test_complaints_carry_submitter_and_assignee_names(client, users):
    created = await create(client, users.student)
    assert created["submitter_name"] == "Asha Student"
    assert created["assignee_name"] is None

    assigned = await client.post(
        f"{PREFIX}/{created['id']}/assign",
        json={"staff_id": str(users.staff.user_id)},
        headers=auth(users.admin),
    )
    assert assigned.json()["complaint"]["assignee_name"] == "Meera Staff"

    detail = await client.get(f"{PREFIX}/{created['id']}", headers=auth(users.student))
    assert detail.json()["submitter_name"] == "Asha Student"
    assert detail.json()["assignee_name"] == "Meera Staff"

    listing = await client.get(f"{PREFIX}/", headers=auth(users.staff))
    row = next(c for c in listing.json() if c["id"] == created["id"])
    assert row["submitter_name"] == "Asha Student"
    assert row["assignee_name"] == "Meera Staff"

    unassigned = await client.delete(f"{PREFIX}/{created['id']}/assign", headers=auth(users.admin))
    assert unassigned.json()["assignee_name"] is None


async def test_unassign_honours_expected_version(client, users):
    created = await create(client, users.student)
    assigned = await client.post(
        f"{PREFIX}/{created['id']}/assign",
        json={"staff_id": str(users.staff.user_id)},
        headers=auth(users.admin),
    )
    version = assigned.json()["complaint"]["version"]

    stale = await client.delete(
        f"{PREFIX}/{created['id']}/assign", params={"expected_version": version - 1}, headers=auth(users.admin)
    )
    assert stale.status_code == 409
    assert stale.json()["code"] == "concurrent_modification"

    current = await client.delete(
        f"{PREFIX}/{created['id']}/assign", params={"expected_version": version}, headers=auth(users.admin)
    )
    assert current.status_code == 200
    assert current.json()["assigned_to"] is None
