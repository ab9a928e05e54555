from __future__ import annotations

from datetime import date
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import ConflictError, ValidationError
from app.models.booking_lane import BookingResource
from app.models.lesson import Lesson, LessonStatus
from app.models.notification import NotificationType
from app.models.recurring_schedule import RecurringSchedule
from app.models.user import User
from app.schemas.common import normalize_text, validate_time_range
from app.services.booking_lanes import booking_lanes, lane_key_for_date, lock_lanes
from app.services.directory import (
    get_room_or_404,
    get_student_or_404,
    get_teacher_or_404,
    student_name,
    student_user_id,
    teacher_name,
)
from app.services.intervals import find_lesson_conflict
from app.services.notifications import notify

logger = logging.getLogger(__name__)

CONFLICT_CHECK_ORDER = (BookingResource.room, BookingResource.teacher, BookingResource.student)
RESCHEDULE_FIELDS = ("teacher_id", "student_id", "room_id", "lesson_date", "start_time", "end_time")


def _checked_times(start_time: str, end_time: str) -> tuple[str, str]:
    try:
        return validate_time_range(start_time, end_time)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"start_time": start_time, "end_time": end_time}) from exc


def conflict_error(db: Session, resource: BookingResource, booking: Lesson | RecurringSchedule) -> ConflictError:
    """Build the per-lane conflict error for an existing lesson or schedule row."""
    booked_teacher = teacher_name(db, booking.teacher_id)
    booked_student = student_name(db, booking.student_id)
    if resource == BookingResource.room:
        room = get_room_or_404(db, booking.room_id)
        message = f'Room "{room.name}" is already booked at this time for {booked_student}'
        with_name = booked_student
        resource_id = booking.room_id
    elif resource == BookingResource.teacher:
        message = f"Teacher {booked_teacher} is already teaching {booked_student} at this time"
        with_name = booked_student
        resource_id = booking.teacher_id
    else:
        message = f"Student {booked_student} already has a lesson with {booked_teacher} at this time"
        with_name = booked_teacher
        resource_id = booking.student_id

    key = "conflicting_schedule_id" if isinstance(booking, RecurringSchedule) else "conflicting_lesson_id"
    return ConflictError(
        message,
        details={
            "resource": resource.value,
            "resource_id": resource_id,
            key: booking.id,
            "with_name": with_name,
            "start_time": booking.start_time,
            "end_time": booking.end_time,
        },
    )


def ensure_lesson_slot_free(
    db: Session,
    *,
    teacher_id: str,
    student_id: str,
    room_id: str,
    lesson_date: date,
    start_time: str,
    end_time: str,
    exclude_id: str | None = None,
) -> None:
    """Lock the three lanes for ``lesson_date`` and raise on the first overlapping lesson."""
    lock_lanes(
        db,
        lane_key_for_date(lesson_date),
        booking_lanes(teacher_id=teacher_id, student_id=student_id, room_id=room_id),
    )
    resource_ids = {
        BookingResource.room: room_id,
        BookingResource.teacher: teacher_id,
        BookingResource.student: student_id,
    }
    for resource in CONFLICT_CHECK_ORDER:
        conflict = find_lesson_conflict(
            db,
            resource,
            resource_ids[resource],
            lesson_date,
            start_time,
            end_time,
            exclude_id=exclude_id,
        )
        if conflict is not None:
            raise conflict_error(db, resource, conflict)


def book_lesson(
    db: Session,
    *,
    teacher_id: str,
    student_id: str,
    room_id: str,
    instrument: str,
    lesson_date: date,
    start_time: str,
    end_time: str,
    duration: int | None = None,
    teacher_notes: str | None = None,
    schedule_id: str | None = None,
) -> Lesson:
    start_time, end_time = _checked_times(start_time, end_time)
    instrument = normalize_text(instrument)
    if not instrument:
        raise ValidationError("Instrument is required")

    room = get_room_or_404(db, room_id)
    if not room.is_active:
        raise ValidationError(f'Room "{room.name}" is not active', details={"room_id": room_id})
    teacher = get_teacher_or_404(db, teacher_id)
    if not teacher.is_active:
        raise ValidationError("Teacher is not active", details={"teacher_id": teacher_id})
    get_student_or_404(db, student_id)

    ensure_lesson_slot_free(
        db,
        teacher_id=teacher_id,
        student_id=student_id,
        room_id=room_id,
        lesson_date=lesson_date,
        start_time=start_time,
        end_time=end_time,
    )

    lesson = Lesson(
        teacher_id=teacher_id,
        student_id=student_id,
        room_id=room_id,
        schedule_id=schedule_id,
        instrument=instrument,
        lesson_date=lesson_date,
        start_time=start_time,
        end_time=end_time,
        duration=duration or get_settings().default_lesson_duration_minutes,
        status=LessonStatus.scheduled,
        teacher_notes=normalize_text(teacher_notes),
    )
    db.add(lesson)
    db.flush()
    logger.info(
        "Booked lesson %s on %s %s-%s (teacher=%s student=%s room=%s)",
        lesson.id,
        lesson_date.isoformat(),
        start_time,
        end_time,
        teacher_id,
        student_id,
        room_id,
    )
    return lesson


def update_lesson(db: Session, lesson: Lesson, changes: dict, *, actor: User | None = None) -> Lesson:
    """Apply ``changes`` to ``lesson``, re-checking all three lanes when the slot moves.

    Reinstating a cancelled lesson counts as a move, since it re-enters the
    set of bookings the overlap rule applies to.
    """
    changes = {key: value for key, value in changes.items() if value is not None}
    merged = {field: changes.get(field, getattr(lesson, field)) for field in RESCHEDULE_FIELDS}
    merged["start_time"], merged["end_time"] = _checked_times(merged["start_time"], merged["end_time"])

    new_status = changes.get("status", lesson.status)
    slot_moved = any(merged[field] != getattr(lesson, field) for field in RESCHEDULE_FIELDS)
    reinstated = lesson.status == LessonStatus.cancelled and new_status != LessonStatus.cancelled

    if new_status != LessonStatus.cancelled and (slot_moved or reinstated):
        if merged["room_id"] != lesson.room_id:
            get_room_or_404(db, merged["room_id"])
        if merged["teacher_id"] != lesson.teacher_id:
            get_teacher_or_404(db, merged["teacher_id"])
        if merged["student_id"] != lesson.student_id:
            get_student_or_404(db, merged["student_id"])
        ensure_lesson_slot_free(db, exclude_id=lesson.id, **merged)

    if merged["teacher_id"] != lesson.teacher_id:
        lesson.version = (lesson.version or 1) + 1
    for field, value in merged.items():
        setattr(lesson, field, value)

    if "instrument" in changes:
        lesson.instrument = normalize_text(changes["instrument"]) or lesson.instrument
    if "duration" in changes:
        lesson.duration = changes["duration"]
    if "teacher_notes" in changes:
        lesson.teacher_notes = normalize_text(changes["teacher_notes"])

    if new_status != lesson.status:
        if new_status == LessonStatus.cancelled:
            lesson.cancellation_reason = normalize_text(changes.get("cancellation_reason"))
            lesson.cancelled_by_id = actor.id if actor is not None else None
        elif lesson.status == LessonStatus.cancelled:
            lesson.cancellation_reason = None
            lesson.cancelled_by_id = None
        lesson.status = new_status

    db.flush()
    logger.info("Updated lesson %s (status=%s)", lesson.id, lesson.status.value)
    return lesson


def cancel_lessons(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    teacher_id: str | None = None,
    student_id: str | None = None,
    room_id: str | None = None,
    reason: str | None = None,
    actor: User | None = None,
) -> list[Lesson]:
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")

    query = select(Lesson).where(
        Lesson.lesson_date >= start_date,
        Lesson.lesson_date <= end_date,
        Lesson.status != LessonStatus.cancelled,
    )
    if teacher_id:
        query = query.where(Lesson.teacher_id == teacher_id)
    if student_id:
        query = query.where(Lesson.student_id == student_id)
    if room_id:
        query = query.where(Lesson.room_id == room_id)

    lessons = list(db.execute(query.order_by(Lesson.lesson_date, Lesson.start_time)).scalars())
    reason = normalize_text(reason) or "Bulk cancellation"
    for lesson in lessons:
        lesson.status = LessonStatus.cancelled
        lesson.cancellation_reason = reason
        lesson.cancelled_by_id = actor.id if actor is not None else None
    db.flush()
    logger.info("Cancelled %d lessons between %s and %s", len(lessons), start_date, end_date)
    return lessons


def list_lessons(
    db: Session,
    *,
    teacher_id: str | None = None,
    student_id: str | None = None,
    room_id: str | None = None,
    status: LessonStatus | None = None,
    on_date: date | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Lesson]:
    query = select(Lesson)
    if teacher_id:
        query = query.where(Lesson.teacher_id == teacher_id)
    if student_id:
        query = query.where(Lesson.student_id == student_id)
    if room_id:
        query = query.where(Lesson.room_id == room_id)
    if status is not None:
        query = query.where(Lesson.status == status)
    if on_date is not None:
        query = query.where(Lesson.lesson_date == on_date)
    if start_date is not None:
        query = query.where(Lesson.lesson_date >= start_date)
    if end_date is not None:
        query = query.where(Lesson.lesson_date <= end_date)
    return list(db.execute(query.order_by(Lesson.lesson_date, Lesson.start_time)).scalars())


def notify_students_of_cancellation(db: Session, lessons: list[Lesson]) -> None:
    for lesson in lessons:
        user_id = student_user_id(db, lesson.student_id)
        if not user_id:
            continue
        message = f"Your {lesson.instrument} lesson on {lesson.lesson_date.isoformat()} at {lesson.start_time} was cancelled."
        if lesson.cancellation_reason:
            message += f" Reason: {lesson.cancellation_reason}"
        notify(
            db,
            user_id=user_id,
            notification_type=NotificationType.lesson_cancelled,
            title="Lesson cancelled",
            message=message,
            link=f"/lessons/{lesson.id}",
        )
