"""
Complaint Model - one row per submitted complaint.

- complaint_number: CMP + 6 digits (unique, immutable)
- status/priority/assigned_to: mutated only through the lifecycle state machine
- resolved_at: stamped once on first entry into Resolved/Closed, never cleared
- version: optimistic concurrency counter, bumped on every UPDATE
"""

import uuid
import enum
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship

from complaint_desk.db.base import Base


def _enum_values(enum_cls):
    # Persist the display values ("In Progress"), not the member names
    return [member.value for member in enum_cls]


class ComplaintStatus(str, enum.Enum):
    OPEN = 'Open'
    IN_PROGRESS = 'In Progress'
    RESOLVED = 'Resolved'
    CLOSED = 'Closed'


class ComplaintPriority(str, enum.Enum):
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'


class ComplaintCategory(str, enum.Enum):
    TECHNICAL = 'Technical'
    ACADEMICS = 'Academics'
    HOSTEL = 'Hostel'
    CANTEEN = 'Canteen'
    LIBRARY = 'Library'
    ADMIN = 'Admin'
    OTHER = 'Other'


class Complaint(Base):
    __tablename__ = "complaints"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    complaint_number = Column(String(16), unique=True, nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)

    category = Column(Enum(ComplaintCategory, name="complaint_category", values_callable=_enum_values), nullable=False, index=True)
    priority = Column(Enum(ComplaintPriority, name="complaint_priority", values_callable=_enum_values), default=ComplaintPriority.MEDIUM, nullable=False, index=True)
    status = Column(Enum(ComplaintStatus, name="complaint_status", values_callable=_enum_values), default=ComplaintStatus.OPEN, nullable=False, index=True)

    user_id = Column(Uuid, nullable=False, index=True)
    assigned_to = Column(Uuid, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)

    # Display names filled in by ComplaintService reads, not columns
    submitter_name = None
    assignee_name = None

    messages = relationship("ComplaintMessage", back_populates="complaint", cascade="all, delete-orphan", order_by="ComplaintMessage.seq")
    attachments = relationship("ComplaintAttachment", back_populates="complaint", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}


class ComplaintAttachment(Base):
    """
    File metadata only. The blob lives in external storage.
    """
    __tablename__ = "complaint_attachments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    complaint_id = Column(Uuid, ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True)

    file_name = Column(String(255), nullable=False)
    file_path = Column(String(512), nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String(100), nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    complaint = relationship("Complaint", back_populates="attachments")


# Registers ComplaintMessage for the string relationship above
from complaint_desk.models.message import ComplaintMessage  # noqa: E402,F401
