from __future__ import annotations

from datetime import date, timedelta
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import ValidationError
from app.models.booking_lane import BookingResource
from app.models.recurring_schedule import RecurringSchedule
from app.schemas.common import normalize_text, validate_time_range
from app.services.booking import conflict_error
from app.services.booking_lanes import booking_lanes, lane_key_for_weekday, lock_lanes
from app.services.directory import get_room_or_404, get_student_or_404, get_teacher_or_404
from app.services.intervals import find_schedule_conflict
from app.services.materializer import MaterializationResult, generate_lessons

logger = logging.getLogger(__name__)

SLOT_FIELDS = ("teacher_id", "student_id", "room_id", "day_of_week", "start_time", "end_time")


def _validate_window(
    day_of_week: int,
    start_time: str,
    end_time: str,
    effective_from: date,
    effective_until: date | None,
) -> tuple[str, str]:
    if not 0 <= day_of_week <= 6:
        raise ValidationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
    if effective_until is not None and effective_until < effective_from:
        raise ValidationError("effective_until must be on or after effective_from")
    try:
        return validate_time_range(start_time, end_time)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def ensure_schedule_slot_free(
    db: Session,
    *,
    teacher_id: str,
    student_id: str,
    room_id: str,
    day_of_week: int,
    start_time: str,
    end_time: str,
    exclude_id: str | None = None,
) -> None:
    lock_lanes(
        db,
        lane_key_for_weekday(day_of_week),
        booking_lanes(teacher_id=teacher_id, student_id=student_id, room_id=room_id),
    )
    resource_ids = {
        BookingResource.room: room_id,
        BookingResource.teacher: teacher_id,
        BookingResource.student: student_id,
    }
    for resource in (BookingResource.room, BookingResource.teacher, BookingResource.student):
        conflict = find_schedule_conflict(
            db,
            resource,
            resource_ids[resource],
            day_of_week,
            start_time,
            end_time,
            exclude_id=exclude_id,
        )
        if conflict is not None:
            raise conflict_error(db, resource, conflict)


def materialization_window(schedule: RecurringSchedule, today: date | None = None) -> tuple[date, date]:
    """Dates covered when a schedule is first materialized: not before today, capped by the horizon."""
    today = today or date.today()
    horizon_end = today + timedelta(days=get_settings().schedule_materialization_horizon_days)
    start = max(schedule.effective_from, today)
    until = horizon_end if schedule.effective_until is None else min(schedule.effective_until, horizon_end)
    return start, until


def create_schedule(
    db: Session,
    *,
    teacher_id: str,
    student_id: str,
    room_id: str,
    instrument: str,
    day_of_week: int,
    start_time: str,
    end_time: str,
    effective_from: date,
    effective_until: date | None = None,
    duration: int | None = None,
    notes: str | None = None,
    materialize: bool = True,
    today: date | None = None,
) -> tuple[RecurringSchedule, MaterializationResult | None]:
    start_time, end_time = _validate_window(day_of_week, start_time, end_time, effective_from, effective_until)
    instrument = normalize_text(instrument)
    if not instrument:
        raise ValidationError("Instrument is required")
    get_room_or_404(db, room_id)
    get_teacher_or_404(db, teacher_id)
    get_student_or_404(db, student_id)

    ensure_schedule_slot_free(
        db,
        teacher_id=teacher_id,
        student_id=student_id,
        room_id=room_id,
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
    )

    schedule = RecurringSchedule(
        teacher_id=teacher_id,
        student_id=student_id,
        room_id=room_id,
        instrument=instrument,
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
        duration=duration or get_settings().default_lesson_duration_minutes,
        effective_from=effective_from,
        effective_until=effective_until,
        is_active=True,
        notes=normalize_text(notes),
    )
    db.add(schedule)
    db.flush()
    logger.info("Created recurring schedule %s (day=%d %s-%s)", schedule.id, day_of_week, start_time, end_time)

    if not materialize:
        return schedule, None
    window_start, window_end = materialization_window(schedule, today)
    if window_end < window_start:
        return schedule, MaterializationResult()
    return schedule, generate_lessons(db, schedule, window_start, window_end)


def update_schedule(db: Session, schedule: RecurringSchedule, changes: dict) -> RecurringSchedule:
    # An explicit None for effective_until reopens the schedule; other Nones mean "unchanged".
    effective_until = changes["effective_until"] if "effective_until" in changes else schedule.effective_until
    changes = {key: value for key, value in changes.items() if value is not None}
    merged = {field: changes.get(field, getattr(schedule, field)) for field in SLOT_FIELDS}
    effective_from = changes.get("effective_from", schedule.effective_from)
    merged["start_time"], merged["end_time"] = _validate_window(
        merged["day_of_week"], merged["start_time"], merged["end_time"], effective_from, effective_until
    )

    becomes_active = changes.get("is_active", schedule.is_active)
    slot_moved = any(merged[field] != getattr(schedule, field) for field in SLOT_FIELDS)
    reactivated = becomes_active and not schedule.is_active
    if becomes_active and (slot_moved or reactivated):
        if merged["room_id"] != schedule.room_id:
            get_room_or_404(db, merged["room_id"])
        if merged["teacher_id"] != schedule.teacher_id:
            get_teacher_or_404(db, merged["teacher_id"])
        if merged["student_id"] != schedule.student_id:
            get_student_or_404(db, merged["student_id"])
        ensure_schedule_slot_free(db, exclude_id=schedule.id, **merged)

    for field, value in merged.items():
        setattr(schedule, field, value)
    schedule.effective_from = effective_from
    schedule.effective_until = effective_until
    schedule.is_active = becomes_active
    if "instrument" in changes:
        schedule.instrument = normalize_text(changes["instrument"]) or schedule.instrument
    if "duration" in changes:
        schedule.duration = changes["duration"]
    if "notes" in changes:
        schedule.notes = normalize_text(changes["notes"])

    db.flush()
    logger.info("Updated recurring schedule %s (active=%s)", schedule.id, schedule.is_active)
    return schedule


def deactivate_schedule(db: Session, schedule: RecurringSchedule) -> RecurringSchedule:
    schedule.is_active = False
    db.flush()
    logger.info("Deactivated recurring schedule %s", schedule.id)
    return schedule


def list_schedules(
    db: Session,
    *,
    teacher_id: str | None = None,
    student_id: str | None = None,
    room_id: str | None = None,
    day_of_week: int | None = None,
    include_inactive: bool = False,
) -> list[RecurringSchedule]:
    query = select(RecurringSchedule)
    if not include_inactive:
        query = query.where(RecurringSchedule.is_active.is_(True))
    if teacher_id:
        query = query.where(RecurringSchedule.teacher_id == teacher_id)
    if student_id:
        query = query.where(RecurringSchedule.student_id == student_id)
    if room_id:
        query = query.where(RecurringSchedule.room_id == room_id)
    if day_of_week is not None:
        query = query.where(RecurringSchedule.day_of_week == day_of_week)
    return list(db.execute(query.order_by(RecurringSchedule.day_of_week, RecurringSchedule.start_time)).scalars())
