"""
Complaint Message Model - append-only thread attached to a complaint.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, Text, Boolean, DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from complaint_desk.db.base import Base


class ComplaintMessage(Base):
    """
    Rows are never updated. seq is the 1-based position inside the thread
    and doubles as the live stream cursor.
    """
    __tablename__ = "complaint_messages"
    __table_args__ = (
        UniqueConstraint("complaint_id", "seq", name="uq_complaint_messages_complaint_seq"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    complaint_id = Column(Uuid, ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True)
    seq = Column(Integer, nullable=False)

    user_id = Column(Uuid, nullable=False)
    message = Column(Text, nullable=False)
    is_staff_response = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    complaint = relationship("Complaint", back_populates="messages")
