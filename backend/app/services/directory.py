"""Lookups for the people and rooms that lessons reference."""
from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import ResourceNotFoundError
from app.models.room import Room
from app.models.student import StudentProfile
from app.models.teacher import TeacherProfile
from app.models.user import User

UNKNOWN_NAME = "Unknown"


def get_room_or_404(db: Session, room_id: str) -> Room:
    room = db.get(Room, room_id)
    if room is None:
        raise ResourceNotFoundError("Room", room_id)
    return room


def get_teacher_or_404(db: Session, teacher_id: str) -> TeacherProfile:
    teacher = db.get(TeacherProfile, teacher_id)
    if teacher is None:
        raise ResourceNotFoundError("Teacher", teacher_id)
    return teacher


def get_student_or_404(db: Session, student_id: str) -> StudentProfile:
    student = db.get(StudentProfile, student_id)
    if student is None:
        raise ResourceNotFoundError("Student", student_id)
    return student


def teacher_for_user(db: Session, user: User) -> TeacherProfile | None:
    return db.execute(select(TeacherProfile).where(TeacherProfile.user_id == user.id)).scalar_one_or_none()


def student_for_user(db: Session, user: User) -> StudentProfile | None:
    return db.execute(select(StudentProfile).where(StudentProfile.user_id == user.id)).scalar_one_or_none()


def teacher_user_id(db: Session, teacher_id: str) -> str | None:
    teacher = db.get(TeacherProfile, teacher_id)
    return teacher.user_id if teacher is not None else None


def student_user_id(db: Session, student_id: str) -> str | None:
    student = db.get(StudentProfile, student_id)
    return student.user_id if student is not None else None


def _names_for_profiles(db: Session, model, profile_ids: Iterable[str]) -> dict[str, str]:
    ids = {item for item in profile_ids if item}
    if not ids:
        return {}
    rows = db.execute(
        select(model.id, User.name).join(User, User.id == model.user_id).where(model.id.in_(ids))
    ).all()
    return {profile_id: name for profile_id, name in rows}


def teacher_names(db: Session, teacher_ids: Iterable[str]) -> dict[str, str]:
    return _names_for_profiles(db, TeacherProfile, teacher_ids)


def student_names(db: Session, student_ids: Iterable[str]) -> dict[str, str]:
    return _names_for_profiles(db, StudentProfile, student_ids)


def room_names(db: Session, room_ids: Iterable[str]) -> dict[str, str]:
    ids = {item for item in room_ids if item}
    if not ids:
        return {}
    return {room_id: name for room_id, name in db.execute(select(Room.id, Room.name).where(Room.id.in_(ids))).all()}


def teacher_name(db: Session, teacher_id: str) -> str:
    return teacher_names(db, [teacher_id]).get(teacher_id, UNKNOWN_NAME)


def student_name(db: Session, student_id: str) -> str:
    return student_names(db, [student_id]).get(student_id, UNKNOWN_NAME)
