from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict

from complaint_desk.models.user import AppRole, STAFF_ROLES


class Actor(BaseModel):
    """
    The resolved caller. Passed explicitly into every service call.
    """
    model_config = ConfigDict(frozen=True)

    user_id: UUID
    role: AppRole

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class TokenPayload(BaseModel):
    sub: Optional[str] = None


class AssigneeRead(BaseModel):
    id: UUID
    full_name: str
    email: Optional[str] = None
    role: AppRole
