import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Enum as SAEnum, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class SubstituteRequestStatus(str, Enum):
    pending = "pending"
    awaiting_approval = "awaiting_approval"
    approved = "approved"
    declined = "declined"
    cancelled = "cancelled"
    completed = "completed"


OPEN_REQUEST_STATUSES = (SubstituteRequestStatus.pending, SubstituteRequestStatus.awaiting_approval)


class SubstituteRequest(Base):
    __tablename__ = "substitute_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    absence_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    lesson_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    original_teacher_id: Mapped[str] = mapped_column(String(36), nullable=False)
    substitute_teacher_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(String(36), nullable=False)
    room_id: Mapped[str] = mapped_column(String(36), nullable=False)
    instrument: Mapped[str] = mapped_column(String(100), nullable=False)
    lesson_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[SubstituteRequestStatus] = mapped_column(
        SAEnum(SubstituteRequestStatus, name="substitute_request_status"),
        nullable=False,
        default=SubstituteRequestStatus.awaiting_approval,
        index=True,
    )
    broadcast_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    approved_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_REQUEST_STATUSES
