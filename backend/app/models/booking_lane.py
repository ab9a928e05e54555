import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class BookingResource(str, Enum):
    room = "room"
    teacher = "teacher"
    student = "student"


class BookingLane(Base):
    """Lock row serializing writes to one resource on one calendar day (or weekday)."""

    __tablename__ = "booking_lanes"
    __table_args__ = (UniqueConstraint("lane", "resource_id", "slot_key", name="uq_booking_lane_identity"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lane: Mapped[BookingResource] = mapped_column(SAEnum(BookingResource, name="booking_resource"), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # ISO date for dated lessons, "dow:<n>" for recurring schedules.
    slot_key: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
