from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_current_teacher, get_current_user, get_db, require_roles
from app.api.hydration import candidate_search_out
from app.models.teacher import TeacherProfile
from app.models.user import User, UserRole
from app.schemas.substitute import CandidateSearch, CandidateSearchOut
from app.schemas.teacher import TeacherCreate, TeacherOut
from app.services.audit import log_activity
from app.services.coverage import find_substitute_candidates

router = APIRouter()


def _teacher_out(teacher: TeacherProfile, user: User | None) -> TeacherOut:
    return TeacherOut.model_validate(teacher).model_copy(
        update={
            "name": user.name if user is not None else None,
            "email": user.email if user is not None else None,
        }
    )


@router.get("/", response_model=list[TeacherOut])
def list_teachers(
    instrument: str | None = Query(default=None, max_length=100),
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[TeacherOut]:
    query = select(TeacherProfile, User).join(User, User.id == TeacherProfile.user_id).order_by(User.name)
    if not include_inactive:
        query = query.where(TeacherProfile.is_active.is_(True))
    rows = db.execute(query).all()
    return [
        _teacher_out(teacher, user)
        for teacher, user in rows
        if instrument is None or teacher.teaches(instrument)
    ]


@router.post("/", response_model=TeacherOut, status_code=status.HTTP_201_CREATED)
def create_teacher(
    payload: TeacherCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> TeacherOut:
    user = db.get(User, payload.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.role != UserRole.teacher:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User does not have the teacher role")
    existing = db.execute(select(TeacherProfile).where(TeacherProfile.user_id == user.id)).scalar_one_or_none()
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Teacher profile already exists")

    teacher = TeacherProfile(**payload.model_dump())
    db.add(teacher)
    db.flush()
    log_activity(db, user=current_user, action="teacher.create", entity_type="teacher", entity_id=teacher.id)
    db.commit()
    db.refresh(teacher)
    return _teacher_out(teacher, user)


@router.get("/me", response_model=TeacherOut)
def get_my_teacher_profile(
    current_user: User = Depends(require_roles(UserRole.teacher)),
    teacher: TeacherProfile | None = Depends(get_current_teacher),
) -> TeacherOut:
    if teacher is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Teacher profile not found")
    return _teacher_out(teacher, current_user)


@router.post("/find-substitutes", response_model=CandidateSearchOut)
def find_substitutes(
    payload: CandidateSearch,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> CandidateSearchOut:
    candidates = find_substitute_candidates(
        db,
        instrument=payload.instrument,
        lesson_date=payload.lesson_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        original_teacher_id=payload.original_teacher_id,
    )
    return candidate_search_out(candidates)
