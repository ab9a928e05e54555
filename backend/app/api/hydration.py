"""Attach display names to ORM rows on their way out of the API."""
from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.orm import Session

from app.models.lesson import Lesson
from app.models.recurring_schedule import RecurringSchedule
from app.models.substitute_request import SubstituteRequest
from app.models.teacher_absence import TeacherAbsence
from app.schemas.absence import AbsenceOut
from app.schemas.lesson import LessonOut, MaterializationOut, SkippedLessonOut
from app.schemas.schedule import ScheduleOut
from app.schemas.substitute import CandidateOut, CandidateSearchOut, SubstituteRequestOut
from app.services.coverage import SubstituteCandidate, absence_coverage_status, request_counts
from app.services.directory import room_names, student_names, teacher_names
from app.services.materializer import MaterializationResult


def _names(db: Session, rows: Sequence, *, teacher_fields: Sequence[str] = ("teacher_id",)):
    teacher_ids = {getattr(row, name) for row in rows for name in teacher_fields}
    return (
        teacher_names(db, teacher_ids),
        student_names(db, {row.student_id for row in rows}),
        room_names(db, {row.room_id for row in rows}),
    )


def hydrate_lessons(db: Session, lessons: Sequence[Lesson]) -> list[LessonOut]:
    teachers, students, rooms = _names(db, lessons)
    return [
        LessonOut.model_validate(lesson).model_copy(
            update={
                "teacher_name": teachers.get(lesson.teacher_id),
                "student_name": students.get(lesson.student_id),
                "room_name": rooms.get(lesson.room_id),
            }
        )
        for lesson in lessons
    ]


def hydrate_schedules(db: Session, schedules: Sequence[RecurringSchedule]) -> list[ScheduleOut]:
    teachers, students, rooms = _names(db, schedules)
    return [
        ScheduleOut.model_validate(schedule).model_copy(
            update={
                "teacher_name": teachers.get(schedule.teacher_id),
                "student_name": students.get(schedule.student_id),
                "room_name": rooms.get(schedule.room_id),
            }
        )
        for schedule in schedules
    ]


def hydrate_requests(db: Session, requests: Sequence[SubstituteRequest]) -> list[SubstituteRequestOut]:
    teachers, students, rooms = _names(
        db, requests, teacher_fields=("original_teacher_id", "substitute_teacher_id")
    )
    return [
        SubstituteRequestOut.model_validate(request).model_copy(
            update={
                "original_teacher_name": teachers.get(request.original_teacher_id),
                "substitute_teacher_name": teachers.get(request.substitute_teacher_id),
                "student_name": students.get(request.student_id),
                "room_name": rooms.get(request.room_id),
            }
        )
        for request in requests
    ]


def hydrate_absence(db: Session, absence: TeacherAbsence) -> AbsenceOut:
    return AbsenceOut.model_validate(absence).model_copy(
        update={
            "teacher_name": teacher_names(db, [absence.teacher_id]).get(absence.teacher_id),
            "status": absence_coverage_status(db, absence),
            "request_counts": request_counts(db, absence.id),
        }
    )


def materialization_out(db: Session, result: MaterializationResult) -> MaterializationOut:
    return MaterializationOut(
        created_count=len(result.created),
        skipped_count=len(result.skipped),
        created=hydrate_lessons(db, result.created),
        skipped=[SkippedLessonOut.model_validate(item) for item in result.skipped],
        message=f"Created {len(result.created)} lessons, skipped {len(result.skipped)}",
    )


def candidate_search_out(candidates: Sequence[SubstituteCandidate]) -> CandidateSearchOut:
    return CandidateSearchOut(
        available_teachers=[
            CandidateOut(
                id=item.teacher.id,
                user_id=item.teacher.user_id,
                name=item.name,
                email=item.email,
                instruments=list(item.teacher.instruments or []),
                completed_lessons=item.completed_lessons,
            )
            for item in candidates
        ],
        total_found=len(candidates),
    )
