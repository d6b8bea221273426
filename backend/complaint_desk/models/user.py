import uuid
import enum
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Enum, Uuid

from complaint_desk.db.base import Base


class AppRole(str, enum.Enum):
    STUDENT = 'student'
    STAFF = 'staff'
    ADMIN = 'admin'


STAFF_ROLES = frozenset({AppRole.STAFF, AppRole.ADMIN})

# Display name for identities without a profile row
UNKNOWN_NAME = "Unknown"


class Profile(Base):
    """
    Display data owned by the identity provider. Read-only here.
    """
    __tablename__ = "profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    avatar_url = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, unique=True, nullable=False, index=True)
    role = Column(Enum(AppRole, name="app_role", values_callable=lambda e: [m.value for m in e]), default=AppRole.STUDENT, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
