from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_student, get_current_teacher, get_current_user, get_db, require_roles
from app.api.hydration import candidate_search_out, hydrate_lessons, materialization_out
from app.models.lesson import Lesson, LessonStatus
from app.models.student import StudentProfile
from app.models.teacher import TeacherProfile
from app.models.user import User, UserRole
from app.schemas.lesson import (
    BulkCancelOut,
    BulkCancelRequest,
    GenerateLessonsRequest,
    LessonCreate,
    LessonOut,
    LessonUpdate,
    MaterializationOut,
)
from app.schemas.substitute import CandidateSearchOut
from app.services.audit import log_activity
from app.services.booking import (
    book_lesson,
    cancel_lessons,
    list_lessons,
    notify_students_of_cancellation,
    update_lesson,
)
from app.services.coverage import (
    LESSON_CANCELLED_NOTE,
    LESSON_RESCHEDULED_NOTE,
    cancel_open_requests,
    candidates_for_lesson,
)
from app.services.materializer import generate_lessons_for_range

router = APIRouter()

TEACHER_EDITABLE_FIELDS = {"status", "teacher_notes", "cancellation_reason"}


def _slot(lesson: Lesson) -> tuple:
    return (lesson.teacher_id, lesson.lesson_date, lesson.start_time, lesson.end_time)


def _get_visible_lesson(
    db: Session,
    lesson_id: str,
    current_user: User,
    teacher: TeacherProfile | None,
    student: StudentProfile | None,
) -> Lesson:
    lesson = db.get(Lesson, lesson_id)
    if lesson is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lesson not found")
    if current_user.role == UserRole.admin:
        return lesson
    if teacher is not None and lesson.teacher_id == teacher.id:
        return lesson
    if student is not None and lesson.student_id == student.id:
        return lesson
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this lesson")


@router.get("/", response_model=list[LessonOut])
def get_lessons(
    teacher_id: str | None = Query(default=None, max_length=36),
    student_id: str | None = Query(default=None, max_length=36),
    room_id: str | None = Query(default=None, max_length=36),
    lesson_status: LessonStatus | None = Query(default=None, alias="status"),
    on_date: date | None = Query(default=None, alias="date"),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    teacher: TeacherProfile | None = Depends(get_current_teacher),
    student: StudentProfile | None = Depends(get_current_student),
    db: Session = Depends(get_db),
) -> list[LessonOut]:
    # Teachers and students only ever see their own lessons.
    if current_user.role == UserRole.teacher:
        if teacher is None:
            return []
        teacher_id = teacher.id
    elif current_user.role == UserRole.student:
        if student is None:
            return []
        student_id = student.id

    lessons = list_lessons(
        db,
        teacher_id=teacher_id,
        student_id=student_id,
        room_id=room_id,
        status=lesson_status,
        on_date=on_date,
        start_date=start_date,
        end_date=end_date,
    )
    return hydrate_lessons(db, lessons)


@router.post("/", response_model=LessonOut, status_code=status.HTTP_201_CREATED)
def create_lesson(
    payload: LessonCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> LessonOut:
    lesson = book_lesson(db, **payload.model_dump())
    log_activity(
        db,
        user=current_user,
        action="lesson.create",
        entity_type="lesson",
        entity_id=lesson.id,
        details={"lesson_date": lesson.lesson_date.isoformat(), "start_time": lesson.start_time},
    )
    db.commit()
    return hydrate_lessons(db, [lesson])[0]


@router.post("/bulk-cancel", response_model=BulkCancelOut)
def bulk_cancel_lessons(
    payload: BulkCancelRequest,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> BulkCancelOut:
    lessons = cancel_lessons(
        db,
        start_date=payload.start_date,
        end_date=payload.end_date,
        teacher_id=payload.teacher_id,
        student_id=payload.student_id,
        room_id=payload.room_id,
        reason=payload.cancellation_reason,
        actor=current_user,
    )
    withdrawn = cancel_open_requests(db, lesson_ids=[lesson.id for lesson in lessons], note=LESSON_CANCELLED_NOTE)
    notify_students_of_cancellation(db, lessons)
    log_activity(
        db,
        user=current_user,
        action="lesson.bulk_cancel",
        entity_type="lesson",
        details={"count": len(lessons), "start_date": payload.start_date.isoformat(), "end_date": payload.end_date.isoformat()},
    )
    db.commit()
    return BulkCancelOut(
        cancelled=len(lessons),
        withdrawn_requests=len(withdrawn),
        message=f"Cancelled {len(lessons)} lessons",
    )


@router.post("/generate", response_model=MaterializationOut)
def generate_lessons(
    payload: GenerateLessonsRequest,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> MaterializationOut:
    result = generate_lessons_for_range(db, payload.start_date, payload.end_date)
    log_activity(
        db,
        user=current_user,
        action="lesson.generate",
        entity_type="lesson",
        details={"created": len(result.created), "skipped": len(result.skipped)},
    )
    db.commit()
    return materialization_out(db, result)


@router.get("/{lesson_id}", response_model=LessonOut)
def get_lesson(
    lesson_id: str,
    current_user: User = Depends(get_current_user),
    teacher: TeacherProfile | None = Depends(get_current_teacher),
    student: StudentProfile | None = Depends(get_current_student),
    db: Session = Depends(get_db),
) -> LessonOut:
    lesson = _get_visible_lesson(db, lesson_id, current_user, teacher, student)
    return hydrate_lessons(db, [lesson])[0]


@router.get("/{lesson_id}/substitute-candidates", response_model=CandidateSearchOut)
def get_substitute_candidates(
    lesson_id: str,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> CandidateSearchOut:
    lesson = _get_visible_lesson(db, lesson_id, current_user, None, None)
    return candidate_search_out(candidates_for_lesson(db, lesson))


@router.put("/{lesson_id}", response_model=LessonOut)
def put_lesson(
    lesson_id: str,
    payload: LessonUpdate,
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.teacher)),
    teacher: TeacherProfile | None = Depends(get_current_teacher),
    db: Session = Depends(get_db),
) -> LessonOut:
    lesson = _get_visible_lesson(db, lesson_id, current_user, teacher, None)
    changes = payload.model_dump(exclude_unset=True)
    if current_user.role != UserRole.admin and set(changes) - TEACHER_EDITABLE_FIELDS:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only administrators can reschedule lessons")

    was_cancelled = lesson.status == LessonStatus.cancelled
    slot_before = _slot(lesson)
    lesson = update_lesson(db, lesson, changes, actor=current_user)
    if lesson.status == LessonStatus.cancelled and not was_cancelled:
        cancel_open_requests(db, lesson_ids=[lesson.id], note=LESSON_CANCELLED_NOTE)
        notify_students_of_cancellation(db, [lesson])
    elif _slot(lesson) != slot_before:
        # Open offers describe the old slot.
        cancel_open_requests(db, lesson_ids=[lesson.id], note=LESSON_RESCHEDULED_NOTE)
    log_activity(
        db,
        user=current_user,
        action="lesson.update",
        entity_type="lesson",
        entity_id=lesson.id,
        details={key: str(value) for key, value in changes.items()},
    )
    db.commit()
    return hydrate_lessons(db, [lesson])[0]
