from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from complaint_desk.models.complaint import ComplaintStatus, ComplaintPriority, ComplaintCategory


class ComplaintCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    category: str
    priority: Optional[str] = None


class AttachmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    file_name: str
    file_path: str
    file_size: int
    mime_type: str
    created_at: datetime


class ComplaintRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    complaint_number: str
    title: str
    description: str
    category: ComplaintCategory
    priority: ComplaintPriority
    status: ComplaintStatus
    user_id: UUID
    assigned_to: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None
    version: int
    submitter_name: Optional[str] = None
    assignee_name: Optional[str] = None


class ComplaintDetail(ComplaintRead):
    attachments: List[AttachmentRead] = []


class StatusUpdateRequest(BaseModel):
    """Values are validated by the lifecycle, not by pydantic."""
    status: str
    expected_version: Optional[int] = None


class PriorityUpdateRequest(BaseModel):
    priority: str
    expected_version: Optional[int] = None


class AssignRequest(BaseModel):
    staff_id: UUID
    expected_version: Optional[int] = None


class AssignmentResponse(BaseModel):
    complaint: ComplaintRead
    assigned: bool
    notified: Optional[bool] = None
    warning: Optional[str] = None


class BulkUpdateRequest(BaseModel):
    ids: List[UUID] = []
    field: Optional[str] = None
    value: Optional[str] = None
    atomic: bool = True


class BulkItemResult(BaseModel):
    id: UUID
    ok: bool
    error: Optional[str] = None
    code: Optional[str] = None


class BulkUpdateResponse(BaseModel):
    affected: int
    results: List[BulkItemResult]
    selection_cleared: bool
