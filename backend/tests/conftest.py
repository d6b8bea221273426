"""
Shared fixtures: an in-memory SQLite store, seeded identities and a
fresh live channel per test.
"""

import os

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RESEND_API_KEY", "")

import uuid
from types import SimpleNamespace

import pytest
import pytest_asyncio

from complaint_desk.db.init_db import init_models
from complaint_desk.db.session import build_engine, build_session_factory
from complaint_desk.models.user import AppRole, Profile, UserRole
from complaint_desk.schemas.complaint import ComplaintCreate
from complaint_desk.schemas.user import Actor
from complaint_desk.services.complaint_service import ComplaintService
from complaint_desk.services.live_channel import LiveChannel

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    engine = build_engine(TEST_DB_URL)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(session_factory):
    """
    student / other_student / staff / admin / staff_no_email as Actors.
    """
    people = {
        "student": ("Asha Student", "asha@example.edu", AppRole.STUDENT),
        "other_student": ("Ravi Student", "ravi@example.edu", AppRole.STUDENT),
        "staff": ("Meera Staff", "meera@example.edu", AppRole.STAFF),
        "admin": ("Arjun Admin", "arjun@example.edu", AppRole.ADMIN),
        "staff_no_email": ("Kiran Staff", None, AppRole.STAFF),
    }
    actors = {}
    async with session_factory() as s:
        for key, (name, email, role) in people.items():
            user_id = uuid.uuid4()
            s.add(Profile(id=user_id, full_name=name, email=email))
            s.add(UserRole(user_id=user_id, role=role))
            actors[key] = Actor(user_id=user_id, role=role)
        await s.commit()
    return SimpleNamespace(**actors)


@pytest.fixture
def make_complaint(session_factory, users):
    """
    Create a complaint owned by `owner` (default: users.student) in its own session.
    """
    async def _make(owner=None, title="Wi-Fi down in block C", category="Technical", priority=None):
        async with session_factory() as s:
            return await ComplaintService.create(
                s,
                ComplaintCreate(title=title, description="No connectivity since morning", category=category, priority=priority),
                owner or users.student,
            )
    return _make


@pytest.fixture
def channel():
    return LiveChannel(maxsize=16)
