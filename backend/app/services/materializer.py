"""Expand weekly recurring schedules into dated lessons.

Generation is idempotent: a date that already holds the schedule's lesson, or
any lesson for the same teacher, student and room, is reported as skipped.
Per-date booking failures are collected rather than aborting the run.
"""
from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date, timedelta
import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import AppError, ValidationError
from app.models.lesson import Lesson
from app.models.recurring_schedule import RecurringSchedule
from app.services.booking import book_lesson
from app.services.booking_lanes import booking_lanes, lane_key_for_date, lock_lanes

logger = logging.getLogger(__name__)

ALREADY_EXISTS = "already exists"


@dataclass
class SkippedDate:
    lesson_date: date
    schedule_id: str
    reason: str


@dataclass
class MaterializationResult:
    created: list[Lesson] = field(default_factory=list)
    skipped: list[SkippedDate] = field(default_factory=list)

    def merge(self, other: "MaterializationResult") -> None:
        self.created.extend(other.created)
        self.skipped.extend(other.skipped)


def day_of_week_index(value: date) -> int:
    """Sunday-based weekday index (0 = Sunday ... 6 = Saturday)."""
    return (value.weekday() + 1) % 7


def schedule_dates(schedule: RecurringSchedule, from_date: date, until_date: date) -> Iterator[date]:
    if until_date < from_date:
        return
    offset = (schedule.day_of_week - day_of_week_index(from_date)) % 7
    current = from_date + timedelta(days=offset)
    while current <= until_date:
        if schedule.is_effective_on(current):
            yield current
        current += timedelta(days=7)


def validate_generation_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")
    max_days = get_settings().max_generation_range_days
    if (end_date - start_date).days > max_days:
        raise ValidationError(
            f"Date range cannot exceed {max_days} days",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def _existing_lesson(db: Session, schedule: RecurringSchedule, lesson_date: date) -> Lesson | None:
    return (
        db.execute(
            select(Lesson)
            .where(
                Lesson.lesson_date == lesson_date,
                or_(
                    Lesson.schedule_id == schedule.id,
                    (Lesson.teacher_id == schedule.teacher_id)
                    & (Lesson.student_id == schedule.student_id)
                    & (Lesson.room_id == schedule.room_id),
                ),
            )
            .limit(1)
        )
        .scalars()
        .first()
    )


def generate_lessons(
    db: Session,
    schedule: RecurringSchedule,
    from_date: date,
    until_date: date,
) -> MaterializationResult:
    if not schedule.is_active:
        raise ValidationError("Schedule is not active", details={"schedule_id": schedule.id})

    result = MaterializationResult()
    lanes = booking_lanes(teacher_id=schedule.teacher_id, student_id=schedule.student_id, room_id=schedule.room_id)
    for lesson_date in schedule_dates(schedule, from_date, until_date):
        lock_lanes(db, lane_key_for_date(lesson_date), lanes)
        if _existing_lesson(db, schedule, lesson_date) is not None:
            result.skipped.append(SkippedDate(lesson_date, schedule.id, ALREADY_EXISTS))
            continue
        try:
            lesson = book_lesson(
                db,
                teacher_id=schedule.teacher_id,
                student_id=schedule.student_id,
                room_id=schedule.room_id,
                instrument=schedule.instrument,
                lesson_date=lesson_date,
                start_time=schedule.start_time,
                end_time=schedule.end_time,
                duration=schedule.duration,
                schedule_id=schedule.id,
            )
        except AppError as exc:
            logger.info("Skipping %s for schedule %s: %s", lesson_date.isoformat(), schedule.id, exc.message)
            result.skipped.append(SkippedDate(lesson_date, schedule.id, exc.message))
            continue
        result.created.append(lesson)

    logger.info(
        "Materialized schedule %s from %s to %s: %d created, %d skipped",
        schedule.id,
        from_date.isoformat(),
        until_date.isoformat(),
        len(result.created),
        len(result.skipped),
    )
    return result


def generate_lessons_for_range(db: Session, start_date: date, end_date: date) -> MaterializationResult:
    validate_generation_range(start_date, end_date)
    schedules = db.execute(
        select(RecurringSchedule)
        .where(
            RecurringSchedule.is_active.is_(True),
            RecurringSchedule.effective_from <= end_date,
            or_(RecurringSchedule.effective_until.is_(None), RecurringSchedule.effective_until >= start_date),
        )
        .order_by(RecurringSchedule.day_of_week, RecurringSchedule.start_time)
    ).scalars()

    result = MaterializationResult()
    for schedule in schedules:
        result.merge(generate_lessons(db, schedule, start_date, end_date))
    return result
