"""
WebSocket tests run the app in TestClient's own event loop, so the store is
built and seeded through the client's portal rather than the async fixtures.
"""

import uuid

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from complaint_desk.api.v1.messages import get_live_channel
from complaint_desk.core.config import settings
from complaint_desk.core.security import create_access_token
from complaint_desk.db.init_db import init_models
from complaint_desk.db.session import build_engine, build_session_factory, get_db
from complaint_desk.main import app
from complaint_desk.models.user import AppRole, Profile, UserRole
from complaint_desk.schemas.complaint import ComplaintCreate
from complaint_desk.schemas.user import Actor
from complaint_desk.services.complaint_service import ComplaintService
from complaint_desk.services.live_channel import LiveChannel
from complaint_desk.services.message_thread import MessageThread

PREFIX = f"{settings.API_V1_STR}/complaints"


async def seed_store():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_models(engine)
    factory = build_session_factory(engine)

    student = Actor(user_id=uuid.uuid4(), role=AppRole.STUDENT)
    outsider = Actor(user_id=uuid.uuid4(), role=AppRole.STUDENT)
    staff = Actor(user_id=uuid.uuid4(), role=AppRole.STAFF)
    async with factory() as s:
        for actor, name in ((student, "Asha Student"), (outsider, "Ravi Student"), (staff, "Meera Staff")):
            s.add(Profile(id=actor.user_id, full_name=name, email=None))
            s.add(UserRole(user_id=actor.user_id, role=actor.role))
        await s.commit()

        complaint = await ComplaintService.create(
            s, ComplaintCreate(title="Hostel water leak", description="Room 12 ceiling", category="Hostel"), student
        )
        await MessageThread(s, LiveChannel(maxsize=4)).post(complaint.id, "It is getting worse", student)

    return engine, factory, complaint.id, student, outsider, staff


@pytest.fixture
def live():
    channel = LiveChannel(maxsize=16)
    with TestClient(app) as client:
        engine, factory, complaint_id, student, outsider, staff = client.portal.call(seed_store)

        async def override_get_db():
            async with factory() as session:
                yield session

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_live_channel] = lambda: channel
        try:
            yield client, complaint_id, student, outsider, staff
        finally:
            app.dependency_overrides.clear()
            client.portal.call(engine.dispose)


def socket_url(complaint_id, actor):
    return f"{PREFIX}/{complaint_id}/messages/live?token={create_access_token(actor.user_id)}"


def test_viewer_gets_history_then_live_messages(live):
    client, complaint_id, student, _, staff = live

    with client.websocket_connect(socket_url(complaint_id, student)) as ws:
        history = ws.receive_json()
        assert history["type"] == "history"
        assert [m["message"] for m in history["messages"]] == ["It is getting worse"]

        response = client.post(
            f"{PREFIX}/{complaint_id}/messages",
            json={"message": "ping"},
            headers={"Authorization": f"Bearer {create_access_token(staff.user_id)}"},
        )
        assert response.status_code == 201

        event = ws.receive_json()
        assert event["type"] == "message"
        assert event["message"]["message"] == "ping"
        assert event["message"]["seq"] == 2
        assert event["message"]["is_staff_response"] is True


def test_outsider_cannot_follow(live):
    client, complaint_id, _, outsider, _ = live

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(socket_url(complaint_id, outsider)) as ws:
            ws.receive_json()


def test_bad_token_is_refused(live):
    client, complaint_id, *_ = live

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"{PREFIX}/{complaint_id}/messages/live?token=garbage") as ws:
            ws.receive_json()
