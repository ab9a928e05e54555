from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, require_roles
from app.models.lesson import Lesson
from app.models.recurring_schedule import RecurringSchedule
from app.models.room import Room
from app.models.user import User, UserRole
from app.schemas.room import RoomCreate, RoomDeleteOut, RoomDetailOut, RoomOut, RoomUpdate
from app.services.audit import log_activity

router = APIRouter()


def _get_room(db: Session, room_id: str) -> Room:
    room = db.get(Room, room_id)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


def _usage(db: Session, room_id: str) -> tuple[int, int]:
    lessons = db.execute(select(func.count(Lesson.id)).where(Lesson.room_id == room_id)).scalar_one()
    schedules = db.execute(
        select(func.count(RecurringSchedule.id)).where(RecurringSchedule.room_id == room_id)
    ).scalar_one()
    return int(lessons), int(schedules)


@router.get("/", response_model=list[RoomOut])
def list_rooms(
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[RoomOut]:
    query = select(Room).order_by(Room.name)
    if not include_inactive:
        query = query.where(Room.is_active.is_(True))
    return list(db.execute(query).scalars())


@router.post("/", response_model=RoomOut, status_code=status.HTTP_201_CREATED)
def create_room(
    payload: RoomCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> RoomOut:
    existing = db.execute(select(Room).where(Room.name == payload.name)).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Room name already exists")
    room = Room(**payload.model_dump())
    db.add(room)
    db.flush()
    log_activity(db, user=current_user, action="room.create", entity_type="room", entity_id=room.id)
    db.commit()
    db.refresh(room)
    return room


@router.put("/{room_id}", response_model=RoomOut)
def update_room(
    room_id: str,
    payload: RoomUpdate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> RoomOut:
    room = _get_room(db, room_id)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data:
        existing = db.execute(select(Room).where(Room.name == data["name"], Room.id != room_id)).scalar_one_or_none()
        if existing:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Room name already exists")

    for key, value in data.items():
        setattr(room, key, value)
    if data:
        log_activity(db, user=current_user, action="room.update", entity_type="room", entity_id=room.id, details=data)
    db.commit()
    db.refresh(room)
    return room


@router.get("/{room_id}", response_model=RoomDetailOut)
def get_room(
    room_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RoomDetailOut:
    room = _get_room(db, room_id)
    lesson_count, schedule_count = _usage(db, room_id)
    return RoomDetailOut.model_validate(room).model_copy(
        update={"lesson_count": lesson_count, "schedule_count": schedule_count}
    )


@router.delete("/{room_id}", response_model=RoomDeleteOut)
def delete_room(
    room_id: str,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> RoomDeleteOut:
    room = _get_room(db, room_id)
    # Rooms referenced by lessons or schedules are only deactivated.
    if any(_usage(db, room_id)):
        room.is_active = False
        log_activity(db, user=current_user, action="room.deactivate", entity_type="room", entity_id=room.id)
        db.commit()
        return RoomDeleteOut(deleted=False, message="Room deactivated (it has lessons or schedules)")

    db.delete(room)
    log_activity(db, user=current_user, action="room.delete", entity_type="room", entity_id=room_id)
    db.commit()
    return RoomDeleteOut(deleted=True, message="Room deleted")
