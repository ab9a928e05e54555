"""Row locks that serialize bookings touching the same resource on the same slot.

Every write path that checks for overlaps first claims one lane per resource
(room, teacher, student) for the affected day. Concurrent writers on a shared
lane queue behind ``SELECT ... FOR UPDATE`` so the check-then-insert sequence
cannot interleave. Lanes are claimed in sorted order to avoid deadlocks.
"""
from __future__ import annotations

from collections.abc import Iterable
from datetime import date
import uuid

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.models.booking_lane import BookingLane, BookingResource

LANE_IDENTITY = ("lane", "resource_id", "slot_key")


def lane_key_for_date(value: date) -> str:
    return value.isoformat()


def lane_key_for_weekday(day_of_week: int) -> str:
    return f"dow:{day_of_week}"


def booking_lanes(*, teacher_id: str, student_id: str, room_id: str) -> list[tuple[BookingResource, str]]:
    return [
        (BookingResource.room, room_id),
        (BookingResource.teacher, teacher_id),
        (BookingResource.student, student_id),
    ]


def _ensure_lane_row(db: Session, lane: BookingResource, resource_id: str, slot_key: str) -> None:
    values = {"id": str(uuid.uuid4()), "lane": lane, "resource_id": resource_id, "slot_key": slot_key}
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        db.execute(postgresql_insert(BookingLane).values(**values).on_conflict_do_nothing(index_elements=LANE_IDENTITY))
        return
    if dialect == "sqlite":
        db.execute(sqlite_insert(BookingLane).values(**values).on_conflict_do_nothing(index_elements=LANE_IDENTITY))
        return

    existing = db.execute(
        select(BookingLane.id).where(
            BookingLane.lane == lane,
            BookingLane.resource_id == resource_id,
            BookingLane.slot_key == slot_key,
        )
    ).scalar_one_or_none()
    if existing is None:
        db.add(BookingLane(**values))
        db.flush()


def lock_lanes(db: Session, slot_key: str, lanes: Iterable[tuple[BookingResource, str]]) -> None:
    ordered = sorted({(BookingResource(lane).value, resource_id) for lane, resource_id in lanes if resource_id})
    for lane_value, resource_id in ordered:
        lane = BookingResource(lane_value)
        _ensure_lane_row(db, lane, resource_id, slot_key)
        db.execute(
            select(BookingLane.id)
            .where(
                BookingLane.lane == lane,
                BookingLane.resource_id == resource_id,
                BookingLane.slot_key == slot_key,
            )
            .with_for_update()
        ).scalar_one()
