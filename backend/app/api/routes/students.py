from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_roles
from app.models.student import StudentProfile
from app.models.user import User, UserRole
from app.schemas.student import StudentCreate, StudentOut
from app.services.audit import log_activity

router = APIRouter()


@router.get("/", response_model=list[StudentOut])
def list_students(
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.teacher)),
    db: Session = Depends(get_db),
) -> list[StudentOut]:
    rows = db.execute(
        select(StudentProfile, User)
        .join(User, User.id == StudentProfile.user_id)
        .where(StudentProfile.is_active.is_(True))
        .order_by(User.name)
    ).all()
    return [
        StudentOut.model_validate(student).model_copy(update={"name": user.name, "email": user.email})
        for student, user in rows
    ]


@router.post("/", response_model=StudentOut, status_code=status.HTTP_201_CREATED)
def create_student(
    payload: StudentCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> StudentOut:
    user = db.get(User, payload.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.role != UserRole.student:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User does not have the student role")
    existing = db.execute(select(StudentProfile).where(StudentProfile.user_id == user.id)).scalar_one_or_none()
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Student profile already exists")

    student = StudentProfile(**payload.model_dump())
    db.add(student)
    db.flush()
    log_activity(db, user=current_user, action="student.create", entity_type="student", entity_id=student.id)
    db.commit()
    db.refresh(student)
    return StudentOut.model_validate(student).model_copy(update={"name": user.name, "email": user.email})
