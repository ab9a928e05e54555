from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_roles
from app.api.hydration import hydrate_schedules, materialization_out
from app.models.recurring_schedule import RecurringSchedule
from app.models.user import User, UserRole
from app.schemas.lesson import GenerateLessonsRequest, MaterializationOut
from app.schemas.schedule import ScheduleCreate, ScheduleCreateOut, ScheduleOut, ScheduleUpdate
from app.services.audit import log_activity
from app.services.materializer import generate_lessons, validate_generation_range
from app.services.schedules import create_schedule, deactivate_schedule, list_schedules, update_schedule

router = APIRouter()


def _get_schedule(db: Session, schedule_id: str) -> RecurringSchedule:
    schedule = db.get(RecurringSchedule, schedule_id)
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")
    return schedule


@router.get("/", response_model=list[ScheduleOut])
def get_schedules(
    teacher_id: str | None = Query(default=None, max_length=36),
    student_id: str | None = Query(default=None, max_length=36),
    room_id: str | None = Query(default=None, max_length=36),
    day_of_week: int | None = Query(default=None, ge=0, le=6),
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.teacher)),
    db: Session = Depends(get_db),
) -> list[ScheduleOut]:
    schedules = list_schedules(
        db,
        teacher_id=teacher_id,
        student_id=student_id,
        room_id=room_id,
        day_of_week=day_of_week,
        include_inactive=include_inactive,
    )
    return hydrate_schedules(db, schedules)


@router.post("/", response_model=ScheduleCreateOut, status_code=status.HTTP_201_CREATED)
def post_schedule(
    payload: ScheduleCreate,
    materialize: bool = Query(default=True),
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> ScheduleCreateOut:
    schedule, result = create_schedule(db, materialize=materialize, **payload.model_dump())
    log_activity(
        db,
        user=current_user,
        action="schedule.create",
        entity_type="recurring_schedule",
        entity_id=schedule.id,
        details={"created_lessons": len(result.created) if result is not None else 0},
    )
    db.commit()
    return ScheduleCreateOut(
        schedule=hydrate_schedules(db, [schedule])[0],
        materialization=materialization_out(db, result) if result is not None else None,
    )


@router.get("/{schedule_id}", response_model=ScheduleOut)
def get_schedule(
    schedule_id: str,
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.teacher)),
    db: Session = Depends(get_db),
) -> ScheduleOut:
    return hydrate_schedules(db, [_get_schedule(db, schedule_id)])[0]


@router.put("/{schedule_id}", response_model=ScheduleOut)
def put_schedule(
    schedule_id: str,
    payload: ScheduleUpdate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> ScheduleOut:
    schedule = update_schedule(db, _get_schedule(db, schedule_id), payload.model_dump(exclude_unset=True))
    log_activity(db, user=current_user, action="schedule.update", entity_type="recurring_schedule", entity_id=schedule.id)
    db.commit()
    return hydrate_schedules(db, [schedule])[0]


@router.delete("/{schedule_id}")
def delete_schedule(
    schedule_id: str,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> dict:
    schedule = deactivate_schedule(db, _get_schedule(db, schedule_id))
    log_activity(
        db, user=current_user, action="schedule.deactivate", entity_type="recurring_schedule", entity_id=schedule.id
    )
    db.commit()
    return {"success": True}


@router.post("/{schedule_id}/generate", response_model=MaterializationOut)
def generate_schedule_lessons(
    schedule_id: str,
    payload: GenerateLessonsRequest,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> MaterializationOut:
    schedule = _get_schedule(db, schedule_id)
    validate_generation_range(payload.start_date, payload.end_date)
    result = generate_lessons(db, schedule, payload.start_date, payload.end_date)
    log_activity(
        db,
        user=current_user,
        action="schedule.generate",
        entity_type="recurring_schedule",
        entity_id=schedule.id,
        details={"created": len(result.created), "skipped": len(result.skipped)},
    )
    db.commit()
    return materialization_out(db, result)
