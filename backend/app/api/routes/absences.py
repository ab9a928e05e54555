from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_teacher, get_db, require_roles
from app.api.hydration import hydrate_absence, hydrate_lessons, hydrate_requests
from app.models.teacher import TeacherProfile
from app.models.teacher_absence import TeacherAbsence
from app.models.user import User, UserRole
from app.schemas.absence import AbsenceCreate, AbsenceDetailOut, AbsenceOut, AbsenceReportOut, AbsenceUpdate
from app.services.audit import log_activity
from app.services.coverage import (
    affected_lessons,
    delete_absence,
    list_absences,
    list_requests,
    report_absence,
    update_absence,
)

router = APIRouter()


def _get_absence(
    db: Session,
    absence_id: str,
    current_user: User,
    teacher: TeacherProfile | None,
) -> TeacherAbsence:
    absence = db.get(TeacherAbsence, absence_id)
    if absence is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Teacher absence not found")
    if current_user.role != UserRole.admin and (teacher is None or absence.teacher_id != teacher.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this absence")
    return absence


@router.get("/", response_model=list[AbsenceOut])
def get_absences(
    teacher_id: str | None = Query(default=None, max_length=36),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.teacher)),
    teacher: TeacherProfile | None = Depends(get_current_teacher),
    db: Session = Depends(get_db),
) -> list[AbsenceOut]:
    if current_user.role == UserRole.teacher:
        if teacher is None:
            return []
        teacher_id = teacher.id
    absences = list_absences(db, teacher_id=teacher_id, start_date=start_date, end_date=end_date)
    return [hydrate_absence(db, absence) for absence in absences]


@router.post("/", response_model=AbsenceReportOut, status_code=status.HTTP_201_CREATED)
def post_absence(
    payload: AbsenceCreate,
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.teacher)),
    teacher: TeacherProfile | None = Depends(get_current_teacher),
    db: Session = Depends(get_db),
) -> AbsenceReportOut:
    # Teachers may only report their own absences.
    if current_user.role == UserRole.teacher and (teacher is None or teacher.id != payload.teacher_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Teachers can only report their own absence")

    absence, lessons = report_absence(
        db,
        teacher_id=payload.teacher_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
        notes=payload.notes,
        reported_by=current_user,
    )
    log_activity(
        db,
        user=current_user,
        action="absence.report",
        entity_type="teacher_absence",
        entity_id=absence.id,
        details={"affected_lessons": len(lessons)},
    )
    db.commit()
    return AbsenceReportOut(
        absence=hydrate_absence(db, absence),
        affected_lessons=hydrate_lessons(db, lessons),
        message=f"Absence reported. {len(lessons)} lessons need coverage.",
    )


@router.get("/{absence_id}", response_model=AbsenceDetailOut)
def get_absence(
    absence_id: str,
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.teacher)),
    teacher: TeacherProfile | None = Depends(get_current_teacher),
    db: Session = Depends(get_db),
) -> AbsenceDetailOut:
    absence = _get_absence(db, absence_id, current_user, teacher)
    summary = hydrate_absence(db, absence)
    return AbsenceDetailOut(
        **summary.model_dump(),
        affected_lessons=hydrate_lessons(db, affected_lessons(db, absence)),
        substitute_requests=hydrate_requests(db, list_requests(db, absence_id=absence.id)),
    )


@router.put("/{absence_id}", response_model=AbsenceOut)
def put_absence(
    absence_id: str,
    payload: AbsenceUpdate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> AbsenceOut:
    absence = _get_absence(db, absence_id, current_user, None)
    absence = update_absence(db, absence, status=payload.status, notes=payload.notes, reason=payload.reason)
    log_activity(
        db,
        user=current_user,
        action="absence.update",
        entity_type="teacher_absence",
        entity_id=absence.id,
        details=payload.model_dump(mode="json", exclude_unset=True),
    )
    db.commit()
    return hydrate_absence(db, absence)


@router.delete("/{absence_id}")
def remove_absence(
    absence_id: str,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> dict:
    absence = _get_absence(db, absence_id, current_user, None)
    delete_absence(db, absence)
    log_activity(db, user=current_user, action="absence.delete", entity_type="teacher_absence", entity_id=absence_id)
    db.commit()
    return {"success": True}
