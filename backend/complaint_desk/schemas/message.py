from pydantic import BaseModel, ConfigDict
from typing import Optional
from uuid import UUID
from datetime import datetime


class MessageCreate(BaseModel):
    message: str


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    complaint_id: UUID
    seq: int
    user_id: UUID
    author_name: Optional[str] = None
    message: str
    is_staff_response: bool
    created_at: datetime
