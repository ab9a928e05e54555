from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_teacher, get_db, require_roles
from app.api.hydration import hydrate_requests
from app.models.substitute_request import SubstituteRequestStatus
from app.models.teacher import TeacherProfile
from app.models.user import User, UserRole
from app.schemas.substitute import (
    SubstituteRequestBatchOut,
    SubstituteRequestCreate,
    SubstituteRequestOut,
    SubstituteRequestRespond,
    SubstituteResponseOut,
)
from app.services.audit import log_activity
from app.services.coverage import create_substitute_requests, list_requests, respond_to_request

router = APIRouter()


@router.get("/", response_model=list[SubstituteRequestOut])
def get_substitute_requests(
    absence_id: str | None = Query(default=None, max_length=36),
    request_status: SubstituteRequestStatus | None = Query(default=None, alias="status"),
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.teacher)),
    teacher: TeacherProfile | None = Depends(get_current_teacher),
    db: Session = Depends(get_db),
) -> list[SubstituteRequestOut]:
    substitute_teacher_id = None
    # Teachers see the requests addressed to them.
    if current_user.role == UserRole.teacher:
        if teacher is None:
            return []
        substitute_teacher_id = teacher.id
    requests = list_requests(
        db,
        substitute_teacher_id=substitute_teacher_id,
        absence_id=absence_id,
        status=request_status,
    )
    return hydrate_requests(db, requests)


@router.post("/", response_model=SubstituteRequestBatchOut, status_code=status.HTTP_201_CREATED)
def post_substitute_requests(
    payload: SubstituteRequestCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> SubstituteRequestBatchOut:
    teacher_ids = payload.teacher_ids()
    requests = create_substitute_requests(
        db,
        absence_id=payload.absence_id,
        lesson_ids=payload.lesson_ids,
        substitute_teacher_ids=teacher_ids,
        broadcast=payload.broadcast_mode,
        notes=payload.notes,
    )
    log_activity(
        db,
        user=current_user,
        action="substitute_request.create",
        entity_type="teacher_absence",
        entity_id=payload.absence_id,
        details={"count": len(requests), "broadcast_mode": payload.broadcast_mode},
    )
    db.commit()
    if payload.broadcast_mode and len(teacher_ids) > 1:
        message = f"Sent to {len(teacher_ids)} teachers. The first to approve gets the lessons."
    else:
        message = f"Created {len(requests)} substitute requests"
    return SubstituteRequestBatchOut(
        requests=hydrate_requests(db, requests),
        broadcast_mode=payload.broadcast_mode,
        message=message,
    )


@router.post("/{request_id}/respond", response_model=SubstituteResponseOut)
def respond_substitute_request(
    request_id: str,
    payload: SubstituteRequestRespond,
    current_user: User = Depends(require_roles(UserRole.teacher)),
    teacher: TeacherProfile | None = Depends(get_current_teacher),
    db: Session = Depends(get_db),
) -> SubstituteResponseOut:
    outcome = respond_to_request(
        db,
        request_id=request_id,
        responder=teacher,
        acting_user=current_user,
        decision=payload.response,
        notes=payload.notes,
    )
    log_activity(
        db,
        user=current_user,
        action=f"substitute_request.{payload.response}",
        entity_type="substitute_request",
        entity_id=request_id,
        details={"cancelled_siblings": len(outcome.cancelled_siblings)},
    )
    db.commit()
    if payload.response == "approved":
        message = "Substitute request approved"
        if outcome.cancelled_siblings:
            message += f"; {len(outcome.cancelled_siblings)} other teachers were notified"
    else:
        message = "Substitute request declined"
    return SubstituteResponseOut(
        request=hydrate_requests(db, [outcome.request])[0],
        cancelled_requests=len(outcome.cancelled_siblings),
        message=message,
    )
