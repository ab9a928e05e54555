"""Half-open ``[start, end)`` conflict detection for lessons and recurring schedules.

Both booking surfaces (dated lessons and weekly schedules) share the same edge
policy: a lesson ending at 10:00 does not collide with one starting at 10:00.
"""
from __future__ import annotations

from datetime import date

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from app.models.booking_lane import BookingResource
from app.models.lesson import Lesson, LessonStatus
from app.models.recurring_schedule import RecurringSchedule
from app.schemas.common import normalize_time, parse_time_to_minutes


def intervals_overlap(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    return parse_time_to_minutes(start_a) < parse_time_to_minutes(end_b) and parse_time_to_minutes(
        start_b
    ) < parse_time_to_minutes(end_a)


def overlap_condition(start_col, end_col, start_time: str, end_time: str):
    """SQL criteria matching rows whose ``[start_col, end_col)`` overlaps the given window.

    Spelled as three clauses (starts during, ends during, fully contained) and
    equivalent to ``start_col < end_time AND end_col > start_time``. Stored
    times are zero-padded so string comparison preserves order.
    """
    start = normalize_time(start_time)
    end = normalize_time(end_time)
    return or_(
        and_(start_col <= start, end_col > start),
        and_(start_col < end, end_col >= end),
        and_(start_col >= start, end_col <= end),
    )


def _lesson_lane_column(resource: BookingResource):
    return {
        BookingResource.room: Lesson.room_id,
        BookingResource.teacher: Lesson.teacher_id,
        BookingResource.student: Lesson.student_id,
    }[resource]


def _schedule_lane_column(resource: BookingResource):
    return {
        BookingResource.room: RecurringSchedule.room_id,
        BookingResource.teacher: RecurringSchedule.teacher_id,
        BookingResource.student: RecurringSchedule.student_id,
    }[resource]


def find_lesson_conflict(
    db: Session,
    resource: BookingResource,
    resource_id: str,
    lesson_date: date,
    start_time: str,
    end_time: str,
    exclude_id: str | None = None,
) -> Lesson | None:
    query = select(Lesson).where(
        _lesson_lane_column(resource) == resource_id,
        Lesson.lesson_date == lesson_date,
        Lesson.status != LessonStatus.cancelled,
        overlap_condition(Lesson.start_time, Lesson.end_time, start_time, end_time),
    )
    if exclude_id:
        query = query.where(Lesson.id != exclude_id)
    return db.execute(query.order_by(Lesson.start_time).limit(1)).scalars().first()


def has_conflict(
    db: Session,
    resource: BookingResource,
    resource_id: str,
    lesson_date: date,
    start_time: str,
    end_time: str,
    exclude_id: str | None = None,
) -> bool:
    return (
        find_lesson_conflict(db, resource, resource_id, lesson_date, start_time, end_time, exclude_id=exclude_id)
        is not None
    )


def find_schedule_conflict(
    db: Session,
    resource: BookingResource,
    resource_id: str,
    day_of_week: int,
    start_time: str,
    end_time: str,
    exclude_id: str | None = None,
) -> RecurringSchedule | None:
    query = select(RecurringSchedule).where(
        _schedule_lane_column(resource) == resource_id,
        RecurringSchedule.day_of_week == day_of_week,
        RecurringSchedule.is_active.is_(True),
        overlap_condition(RecurringSchedule.start_time, RecurringSchedule.end_time, start_time, end_time),
    )
    if exclude_id:
        query = query.where(RecurringSchedule.id != exclude_id)
    return db.execute(query.order_by(RecurringSchedule.start_time).limit(1)).scalars().first()
