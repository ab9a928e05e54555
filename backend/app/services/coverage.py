"""Teacher absence reporting and substitute coverage.

A reported absence exposes the teacher's scheduled lessons in its date range.
Substitute requests offer those lessons to other teachers, either one teacher
per lesson or broadcast to several at once. In broadcast mode the first
approval wins: the lesson is reassigned with a compare-and-swap on its
``teacher_id`` and the remaining open siblings are cancelled.

Callers own the transaction. Every raising path leaves the session dirty, and
``get_db`` rolls it back.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
import logging
import uuid

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    LessonAlreadyCoveredError,
    ResourceNotFoundError,
    ValidationError,
)
from app.models.booking_lane import BookingResource
from app.models.lesson import Lesson, LessonStatus
from app.models.notification import NotificationType
from app.models.substitute_request import OPEN_REQUEST_STATUSES, SubstituteRequest, SubstituteRequestStatus
from app.models.teacher import TeacherProfile
from app.models.teacher_absence import AbsenceStatus, TeacherAbsence
from app.models.user import User
from app.schemas.common import normalize_text
from app.services.booking import conflict_error
from app.services.booking_lanes import lane_key_for_date, lock_lanes
from app.services.directory import get_teacher_or_404, student_user_id, teacher_name, teacher_user_id
from app.services.intervals import find_lesson_conflict, has_conflict
from app.services.notifications import notify, notify_users

logger = logging.getLogger(__name__)

SIBLING_APPROVED_NOTE = "Auto-cancelled: another teacher was approved first"
ABSENCE_CANCELLED_NOTE = "Auto-cancelled: the absence was cancelled"
LESSON_CANCELLED_NOTE = "Auto-cancelled: the lesson was cancelled"
LESSON_RESCHEDULED_NOTE = "Auto-cancelled: the lesson was rescheduled"
COVERED_STATUSES = (SubstituteRequestStatus.approved, SubstituteRequestStatus.completed)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _absence_link(absence_id: str) -> str:
    return f"/teacher-absences/{absence_id}"


def _request_link(request_id: str) -> str:
    return f"/substitute-requests/{request_id}"


@dataclass
class SubstituteCandidate:
    teacher: TeacherProfile
    name: str
    email: str | None
    completed_lessons: int = 0


CandidateRanking = Callable[[list[SubstituteCandidate]], list[SubstituteCandidate]]


def rank_by_experience(candidates: list[SubstituteCandidate]) -> list[SubstituteCandidate]:
    return sorted(candidates, key=lambda item: (-item.completed_lessons, item.name.lower()))


@dataclass
class RespondOutcome:
    request: SubstituteRequest
    lesson: Lesson | None = None
    cancelled_siblings: list[SubstituteRequest] = field(default_factory=list)


def get_absence_or_404(db: Session, absence_id: str) -> TeacherAbsence:
    absence = db.get(TeacherAbsence, absence_id)
    if absence is None:
        raise ResourceNotFoundError("Teacher absence", absence_id)
    return absence


def get_request_or_404(db: Session, request_id: str) -> SubstituteRequest:
    request = db.get(SubstituteRequest, request_id)
    if request is None:
        raise ResourceNotFoundError("Substitute request", request_id)
    return request


def affected_lessons(db: Session, absence: TeacherAbsence) -> list[Lesson]:
    return list(
        db.execute(
            select(Lesson)
            .where(
                Lesson.teacher_id == absence.teacher_id,
                Lesson.lesson_date >= absence.start_date,
                Lesson.lesson_date <= absence.end_date,
                Lesson.status == LessonStatus.scheduled,
            )
            .order_by(Lesson.lesson_date, Lesson.start_time)
        ).scalars()
    )


def report_absence(
    db: Session,
    *,
    teacher_id: str,
    start_date: date,
    end_date: date,
    reported_by: User,
    reason: str | None = None,
    notes: str | None = None,
) -> tuple[TeacherAbsence, list[Lesson]]:
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")
    get_teacher_or_404(db, teacher_id)

    absence = TeacherAbsence(
        teacher_id=teacher_id,
        start_date=start_date,
        end_date=end_date,
        reason=normalize_text(reason),
        notes=normalize_text(notes),
        status=AbsenceStatus.pending,
        reported_by_id=reported_by.id,
    )
    db.add(absence)
    db.flush()

    lessons = affected_lessons(db, absence)
    logger.info(
        "Absence %s reported for teacher %s (%s..%s): %d lessons affected",
        absence.id,
        teacher_id,
        start_date.isoformat(),
        end_date.isoformat(),
        len(lessons),
    )
    return absence, lessons


def find_substitute_candidates(
    db: Session,
    *,
    instrument: str,
    lesson_date: date,
    start_time: str,
    end_time: str,
    original_teacher_id: str | None = None,
    rank: CandidateRanking = rank_by_experience,
) -> list[SubstituteCandidate]:
    query = (
        select(TeacherProfile, User)
        .join(User, User.id == TeacherProfile.user_id)
        .where(TeacherProfile.is_active.is_(True), User.is_active.is_(True))
    )
    if original_teacher_id:
        query = query.where(TeacherProfile.id != original_teacher_id)

    absent_teacher_ids = set(
        db.execute(
            select(TeacherAbsence.teacher_id).where(
                TeacherAbsence.status != AbsenceStatus.cancelled,
                TeacherAbsence.start_date <= lesson_date,
                TeacherAbsence.end_date >= lesson_date,
            )
        ).scalars()
    )

    candidates: list[SubstituteCandidate] = []
    for teacher, user in db.execute(query).all():
        if not teacher.teaches(instrument) or teacher.id in absent_teacher_ids:
            continue
        if has_conflict(db, BookingResource.teacher, teacher.id, lesson_date, start_time, end_time):
            continue
        candidates.append(SubstituteCandidate(teacher=teacher, name=user.name, email=user.email))

    if candidates:
        completed = dict(
            db.execute(
                select(Lesson.teacher_id, func.count(Lesson.id))
                .where(
                    Lesson.teacher_id.in_([item.teacher.id for item in candidates]),
                    Lesson.status == LessonStatus.completed,
                )
                .group_by(Lesson.teacher_id)
            ).all()
        )
        for candidate in candidates:
            candidate.completed_lessons = int(completed.get(candidate.teacher.id, 0))
    return rank(candidates)


def candidates_for_lesson(
    db: Session,
    lesson: Lesson,
    *,
    rank: CandidateRanking = rank_by_experience,
) -> list[SubstituteCandidate]:
    return find_substitute_candidates(
        db,
        instrument=lesson.instrument,
        lesson_date=lesson.lesson_date,
        start_time=lesson.start_time,
        end_time=lesson.end_time,
        original_teacher_id=lesson.teacher_id,
        rank=rank,
    )


def _approved_request_for_lesson(db: Session, lesson_id: str, *, exclude_id: str | None = None) -> SubstituteRequest | None:
    query = select(SubstituteRequest).where(
        SubstituteRequest.lesson_id == lesson_id,
        SubstituteRequest.status.in_(COVERED_STATUSES),
    )
    if exclude_id:
        query = query.where(SubstituteRequest.id != exclude_id)
    return db.execute(query.limit(1)).scalars().first()


def create_substitute_requests(
    db: Session,
    *,
    absence_id: str,
    lesson_ids: list[str],
    substitute_teacher_ids: list[str],
    broadcast: bool = False,
    notes: str | None = None,
) -> list[SubstituteRequest]:
    lesson_ids = list(dict.fromkeys(item for item in lesson_ids if item))
    teacher_ids = list(dict.fromkeys(item for item in substitute_teacher_ids if item))
    if not lesson_ids:
        raise ValidationError("At least one lesson is required")
    if not teacher_ids:
        raise ValidationError("At least one substitute teacher is required")
    if not broadcast and len(teacher_ids) > 1:
        raise ValidationError("Single-target requests take exactly one substitute teacher; use broadcast mode")

    absence = get_absence_or_404(db, absence_id)
    if absence.status == AbsenceStatus.cancelled:
        raise ValidationError("Cannot request coverage for a cancelled absence")
    if absence.teacher_id in teacher_ids:
        raise ValidationError("The absent teacher cannot substitute for their own lessons")

    teachers = {
        teacher.id: teacher
        for teacher in db.execute(select(TeacherProfile).where(TeacherProfile.id.in_(teacher_ids))).scalars()
    }
    for teacher_id in teacher_ids:
        if teacher_id not in teachers:
            raise ResourceNotFoundError("Teacher", teacher_id)
        if not teachers[teacher_id].is_active:
            raise ValidationError("Substitute teacher is not active", details={"teacher_id": teacher_id})

    lessons = {lesson.id: lesson for lesson in db.execute(select(Lesson).where(Lesson.id.in_(lesson_ids))).scalars()}
    for lesson_id in lesson_ids:
        lesson = lessons.get(lesson_id)
        if lesson is None:
            raise ResourceNotFoundError("Lesson", lesson_id)
        if lesson.teacher_id != absence.teacher_id or not absence.covers(lesson.lesson_date):
            raise ValidationError(
                "Lesson is not affected by this absence",
                details={"lesson_id": lesson_id, "absence_id": absence.id},
            )
        if lesson.status != LessonStatus.scheduled:
            raise ValidationError("Only scheduled lessons can be covered", details={"lesson_id": lesson_id})
        if _approved_request_for_lesson(db, lesson_id) is not None:
            raise LessonAlreadyCoveredError(lesson_id)

    duplicate = db.execute(
        select(SubstituteRequest)
        .where(
            SubstituteRequest.lesson_id.in_(lesson_ids),
            SubstituteRequest.substitute_teacher_id.in_(teacher_ids),
            SubstituteRequest.status.in_(OPEN_REQUEST_STATUSES),
        )
        .limit(1)
    ).scalars().first()
    if duplicate is not None:
        raise ValidationError(
            "An open request already exists for this lesson and teacher",
            details={"lesson_id": duplicate.lesson_id, "teacher_id": duplicate.substitute_teacher_id},
        )

    grouped = broadcast and len(teacher_ids) > 1
    created: list[SubstituteRequest] = []
    for lesson_id in lesson_ids:
        lesson = lessons[lesson_id]
        group_id = str(uuid.uuid4()) if grouped else None
        for teacher_id in teacher_ids:
            request = SubstituteRequest(
                absence_id=absence.id,
                lesson_id=lesson.id,
                original_teacher_id=absence.teacher_id,
                substitute_teacher_id=teacher_id,
                student_id=lesson.student_id,
                room_id=lesson.room_id,
                instrument=lesson.instrument,
                lesson_date=lesson.lesson_date,
                start_time=lesson.start_time,
                end_time=lesson.end_time,
                status=SubstituteRequestStatus.awaiting_approval,
                broadcast_group_id=group_id,
                notes=normalize_text(notes),
            )
            db.add(request)
            created.append(request)
    db.flush()

    absent_name = teacher_name(db, absence.teacher_id)
    lesson_count = len(lesson_ids)
    noun = "lesson" if lesson_count == 1 else "lessons"
    if grouped:
        message = (
            f"{lesson_count} {noun} of {absent_name} need a substitute. "
            "The first teacher to approve gets them."
        )
    else:
        message = f"You were asked to cover {lesson_count} {noun} of {absent_name}."
    for teacher_id in teacher_ids:
        notify(
            db,
            user_id=teachers[teacher_id].user_id,
            notification_type=NotificationType.substitute_request,
            title="Substitute request",
            message=message,
            link="/substitute-requests",
        )

    logger.info(
        "Created %d substitute requests for absence %s (broadcast=%s, lessons=%d, teachers=%d)",
        len(created),
        absence.id,
        grouped,
        lesson_count,
        len(teacher_ids),
    )
    return created


def _transition_open_request(db: Session, request: SubstituteRequest, status: SubstituteRequestStatus, **values) -> bool:
    """Move ``request`` out of an open state; False when another writer already did."""
    result = db.execute(
        update(SubstituteRequest)
        .where(
            SubstituteRequest.id == request.id,
            SubstituteRequest.status.in_(OPEN_REQUEST_STATUSES),
        )
        .values(status=status, **values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(request)
    return result.rowcount == 1


def _raise_resolved(db: Session, request: SubstituteRequest) -> None:
    winner = _approved_request_for_lesson(db, request.lesson_id, exclude_id=request.id)
    if winner is not None:
        raise LessonAlreadyCoveredError(request.lesson_id, details={"request_id": request.id})
    raise ConflictError(
        "Substitute request is already resolved",
        details={"request_id": request.id, "status": request.status.value},
    )


def respond_to_request(
    db: Session,
    *,
    request_id: str,
    responder: TeacherProfile | None,
    acting_user: User,
    decision: str,
    notes: str | None = None,
) -> RespondOutcome:
    request = get_request_or_404(db, request_id)
    if responder is None or responder.id != request.substitute_teacher_id:
        raise ForbiddenError("This substitute request is not addressed to you", details={"request_id": request_id})
    if decision not in (SubstituteRequestStatus.approved.value, SubstituteRequestStatus.declined.value):
        raise ValidationError("Response must be 'approved' or 'declined'")
    if not request.is_open:
        _raise_resolved(db, request)

    if decision == SubstituteRequestStatus.declined.value:
        return _decline(db, request, notes=notes)
    return _approve(db, request, acting_user=acting_user, notes=notes)


def _decline(db: Session, request: SubstituteRequest, *, notes: str | None) -> RespondOutcome:
    declined = _transition_open_request(
        db,
        request,
        SubstituteRequestStatus.declined,
        responded_at=_utc_now(),
        notes=normalize_text(notes) or request.notes,
    )
    if not declined:
        _raise_resolved(db, request)

    absence = db.get(TeacherAbsence, request.absence_id)
    if absence is not None:
        notify(
            db,
            user_id=absence.reported_by_id,
            notification_type=NotificationType.substitute_declined,
            title="Substitute request declined",
            message=(
                f"{teacher_name(db, request.substitute_teacher_id)} declined the lesson on "
                f"{request.lesson_date.isoformat()} at {request.start_time}."
            ),
            link=_absence_link(absence.id),
        )
    logger.info("Substitute request %s declined", request.id)
    return RespondOutcome(request=request)


def _same_slot(lesson: Lesson, request: SubstituteRequest) -> bool:
    return (lesson.lesson_date, lesson.start_time, lesson.end_time) == (
        request.lesson_date,
        request.start_time,
        request.end_time,
    )


def _rescheduled_error(lesson: Lesson, request: SubstituteRequest) -> ConflictError:
    return ConflictError(
        "Lesson was rescheduled after this request was sent",
        details={
            "lesson_id": lesson.id,
            "request_id": request.id,
            "lesson_date": lesson.lesson_date.isoformat(),
            "start_time": lesson.start_time,
            "end_time": lesson.end_time,
        },
    )


def _approve(db: Session, request: SubstituteRequest, *, acting_user: User, notes: str | None) -> RespondOutcome:
    lesson = db.get(Lesson, request.lesson_id)
    if lesson is None:
        raise ResourceNotFoundError("Lesson", request.lesson_id)
    if _approved_request_for_lesson(db, lesson.id, exclude_id=request.id) is not None:
        raise LessonAlreadyCoveredError(lesson.id, details={"request_id": request.id})
    if lesson.status != LessonStatus.scheduled:
        raise ConflictError("Lesson is no longer scheduled", details={"lesson_id": lesson.id, "status": lesson.status.value})
    if not _same_slot(lesson, request):
        raise _rescheduled_error(lesson, request)

    lock_lanes(db, lane_key_for_date(lesson.lesson_date), [(BookingResource.teacher, request.substitute_teacher_id)])
    clash = find_lesson_conflict(
        db,
        BookingResource.teacher,
        request.substitute_teacher_id,
        lesson.lesson_date,
        lesson.start_time,
        lesson.end_time,
        exclude_id=lesson.id,
    )
    if clash is not None:
        raise conflict_error(db, BookingResource.teacher, clash)

    # Reassign only if nobody else got there first.
    swapped = db.execute(
        update(Lesson)
        .where(
            Lesson.id == lesson.id,
            Lesson.teacher_id == request.original_teacher_id,
            Lesson.status == LessonStatus.scheduled,
            Lesson.lesson_date == request.lesson_date,
            Lesson.start_time == request.start_time,
            Lesson.end_time == request.end_time,
        )
        .values(teacher_id=request.substitute_teacher_id, version=Lesson.version + 1)
        .execution_options(synchronize_session=False)
    )
    db.refresh(lesson)
    if swapped.rowcount != 1:
        logger.info("Approval of request %s lost the race for lesson %s", request.id, lesson.id)
        if lesson.teacher_id == request.original_teacher_id and lesson.status == LessonStatus.scheduled:
            raise _rescheduled_error(lesson, request)
        raise LessonAlreadyCoveredError(lesson.id, details={"request_id": request.id})

    now = _utc_now()
    approved = _transition_open_request(
        db,
        request,
        SubstituteRequestStatus.approved,
        approved_by_id=acting_user.id,
        approved_at=now,
        responded_at=now,
        notes=normalize_text(notes) or request.notes,
    )
    if not approved:
        _raise_resolved(db, request)

    cancelled: list[SubstituteRequest] = []
    if request.broadcast_group_id:
        siblings = db.execute(
            select(SubstituteRequest).where(
                SubstituteRequest.broadcast_group_id == request.broadcast_group_id,
                SubstituteRequest.lesson_id == lesson.id,
                SubstituteRequest.id != request.id,
                SubstituteRequest.status.in_(OPEN_REQUEST_STATUSES),
            )
        ).scalars()
        for sibling in siblings:
            sibling.status = SubstituteRequestStatus.cancelled
            sibling.notes = SIBLING_APPROVED_NOTE
            sibling.responded_at = now
            cancelled.append(sibling)
        db.flush()

    substitute_name = teacher_name(db, request.substitute_teacher_id)
    when = f"{lesson.lesson_date.isoformat()} at {lesson.start_time}"
    for sibling in cancelled:
        user_id = teacher_user_id(db, sibling.substitute_teacher_id)
        if user_id:
            notify(
                db,
                user_id=user_id,
                notification_type=NotificationType.substitute_request_cancelled,
                title="Substitute request closed",
                message=f"The lesson on {when} was already taken by another teacher.",
                link=_request_link(sibling.id),
            )

    original_user_id = teacher_user_id(db, request.original_teacher_id)
    if original_user_id:
        notify(
            db,
            user_id=original_user_id,
            notification_type=NotificationType.substitute_approved,
            title="Your lesson is covered",
            message=f"{substitute_name} will teach your lesson on {when}.",
            link=_absence_link(request.absence_id),
        )
    student_user = student_user_id(db, lesson.student_id)
    if student_user:
        notify(
            db,
            user_id=student_user,
            notification_type=NotificationType.teacher_changed,
            title="Teacher changed",
            message=f"Your {lesson.instrument} lesson on {when} will be taught by {substitute_name}.",
            link=f"/lessons/{lesson.id}",
        )

    logger.info(
        "Substitute request %s approved: lesson %s reassigned to teacher %s, %d sibling(s) cancelled",
        request.id,
        lesson.id,
        request.substitute_teacher_id,
        len(cancelled),
    )
    return RespondOutcome(request=request, lesson=lesson, cancelled_siblings=cancelled)


def cancel_open_requests(
    db: Session,
    *,
    note: str,
    absence_id: str | None = None,
    lesson_ids: list[str] | None = None,
) -> list[SubstituteRequest]:
    """Cancel open requests of an absence or for the given lessons and tell their addressees."""
    query = select(SubstituteRequest).where(SubstituteRequest.status.in_(OPEN_REQUEST_STATUSES))
    if absence_id is not None:
        query = query.where(SubstituteRequest.absence_id == absence_id)
    if lesson_ids is not None:
        if not lesson_ids:
            return []
        query = query.where(SubstituteRequest.lesson_id.in_(lesson_ids))

    requests = list(db.execute(query).scalars())
    now = _utc_now()
    for request in requests:
        request.status = SubstituteRequestStatus.cancelled
        request.notes = note
        request.responded_at = now
    db.flush()

    addressees = [teacher_user_id(db, item.substitute_teacher_id) for item in requests]
    notify_users(
        db,
        user_ids=[item for item in addressees if item],
        notification_type=NotificationType.substitute_request_cancelled,
        title="Substitute request cancelled",
        message=note,
        link="/substitute-requests",
    )
    return requests


def update_absence(
    db: Session,
    absence: TeacherAbsence,
    *,
    status: AbsenceStatus | None = None,
    notes: str | None = None,
    reason: str | None = None,
) -> TeacherAbsence:
    if status is not None and status not in (AbsenceStatus.pending, AbsenceStatus.cancelled):
        raise ValidationError(
            "Coverage statuses are derived from substitute requests; only 'pending' or 'cancelled' can be set"
        )
    if notes is not None:
        absence.notes = normalize_text(notes)
    if reason is not None:
        absence.reason = normalize_text(reason)

    if status == AbsenceStatus.cancelled and absence.status != AbsenceStatus.cancelled:
        absence.status = AbsenceStatus.cancelled
        cancelled = cancel_open_requests(db, absence_id=absence.id, note=ABSENCE_CANCELLED_NOTE)
        logger.info("Absence %s cancelled, %d open request(s) withdrawn", absence.id, len(cancelled))
    elif status == AbsenceStatus.pending:
        absence.status = AbsenceStatus.pending
    db.flush()
    return absence


def delete_absence(db: Session, absence: TeacherAbsence) -> None:
    if _approved_for_absence(db, absence.id):
        raise ValidationError(
            "Cannot delete an absence with approved substitute requests; cancel it instead",
            details={"absence_id": absence.id},
        )
    db.execute(
        delete(SubstituteRequest)
        .where(SubstituteRequest.absence_id == absence.id)
        .execution_options(synchronize_session=False)
    )
    db.delete(absence)
    db.flush()
    logger.info("Deleted absence %s", absence.id)


def _approved_for_absence(db: Session, absence_id: str) -> bool:
    return (
        db.execute(
            select(SubstituteRequest.id)
            .where(
                SubstituteRequest.absence_id == absence_id,
                SubstituteRequest.status.in_(COVERED_STATUSES),
            )
            .limit(1)
        ).first()
        is not None
    )


def absence_coverage_status(db: Session, absence: TeacherAbsence) -> AbsenceStatus:
    """Coverage status computed from the absence's requests and the lessons still uncovered."""
    if absence.status == AbsenceStatus.cancelled:
        return AbsenceStatus.cancelled

    statuses = list(
        db.execute(select(SubstituteRequest.status).where(SubstituteRequest.absence_id == absence.id)).scalars()
    )
    uncovered = affected_lessons(db, absence)
    if not statuses:
        return AbsenceStatus.pending if uncovered else AbsenceStatus.fully_covered
    if not uncovered:
        return AbsenceStatus.fully_covered
    if any(item in COVERED_STATUSES for item in statuses):
        return AbsenceStatus.partially_covered
    return AbsenceStatus.coverage_needed


def request_counts(db: Session, absence_id: str) -> dict[str, int]:
    rows = db.execute(
        select(SubstituteRequest.status, func.count(SubstituteRequest.id))
        .where(SubstituteRequest.absence_id == absence_id)
        .group_by(SubstituteRequest.status)
    ).all()
    return {status.value: int(count) for status, count in rows}


def list_absences(
    db: Session,
    *,
    teacher_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[TeacherAbsence]:
    query = select(TeacherAbsence)
    if teacher_id:
        query = query.where(TeacherAbsence.teacher_id == teacher_id)
    if start_date is not None:
        query = query.where(TeacherAbsence.end_date >= start_date)
    if end_date is not None:
        query = query.where(TeacherAbsence.start_date <= end_date)
    return list(db.execute(query.order_by(TeacherAbsence.start_date.desc())).scalars())


def list_requests(
    db: Session,
    *,
    substitute_teacher_id: str | None = None,
    absence_id: str | None = None,
    status: SubstituteRequestStatus | None = None,
) -> list[SubstituteRequest]:
    query = select(SubstituteRequest)
    if substitute_teacher_id:
        query = query.where(SubstituteRequest.substitute_teacher_id == substitute_teacher_id)
    if absence_id:
        query = query.where(SubstituteRequest.absence_id == absence_id)
    if status is not None:
        query = query.where(SubstituteRequest.status == status)
    return list(
        db.execute(query.order_by(SubstituteRequest.lesson_date, SubstituteRequest.start_time)).scalars()
    )
