import os

# The app engine is built at import time; point it at SQLite before app.main loads.
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_db
from app.core.security import create_access_token
from app.db.base import Base
from app.main import app
from app.models.lesson import Lesson, LessonStatus
from app.models.room import Room
from app.models.student import StudentProfile
from app.models.teacher import TeacherProfile
from app.models.user import User, UserRole


class Seeder:
    """Inserts fixtures directly, bypassing the booking checks."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self._counter = 0

    def _save(self, record):
        self.db.add(record)
        self.db.commit()
        return record

    def user(self, name: str, role: UserRole) -> User:
        self._counter += 1
        slug = name.lower().replace(" ", ".")
        return self._save(User(name=name, email=f"{slug}.{self._counter}@school.test", role=role))

    def admin(self, name: str = "Admin User") -> User:
        return self.user(name, UserRole.admin)

    def teacher(self, name: str, instruments=("piano",), is_active: bool = True) -> TeacherProfile:
        user = self.user(name, UserRole.teacher)
        return self._save(TeacherProfile(user_id=user.id, instruments=list(instruments), is_active=is_active))

    def student(self, name: str, instruments=("piano",)) -> StudentProfile:
        user = self.user(name, UserRole.student)
        return self._save(StudentProfile(user_id=user.id, instruments=list(instruments)))

    def room(self, name: str, is_active: bool = True) -> Room:
        return self._save(Room(name=name, capacity=2, equipment=[], is_active=is_active))

    def lesson(
        self,
        teacher: TeacherProfile,
        student: StudentProfile,
        room: Room,
        lesson_date: date,
        start_time: str,
        end_time: str,
        *,
        instrument: str = "piano",
        status: LessonStatus = LessonStatus.scheduled,
    ) -> Lesson:
        return self._save(
            Lesson(
                teacher_id=teacher.id,
                student_id=student.id,
                room_id=room.id,
                instrument=instrument,
                lesson_date=lesson_date,
                start_time=start_time,
                end_time=end_time,
                duration=35,
                status=status,
            )
        )

    def user_of(self, profile) -> User:
        return self.db.get(User, profile.user_id)

    def headers(self, user_or_profile) -> dict[str, str]:
        user_id = getattr(user_or_profile, "user_id", None) or user_or_profile.id
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture()
def engine():
    test_engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def seed(db_session) -> Seeder:
    return Seeder(db_session)


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
