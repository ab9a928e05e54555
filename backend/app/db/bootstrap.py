from __future__ import annotations

import logging

from sqlalchemy import inspect, text

from app.db.base import Base
from app.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "users": {"id", "email", "role", "is_active"},
    "teachers": {"id", "user_id", "instruments", "is_active"},
    "students": {"id", "user_id", "is_active"},
    "lessons": {
        "id",
        "teacher_id",
        "student_id",
        "room_id",
        "lesson_date",
        "start_time",
        "end_time",
        "status",
        "schedule_id",
        "version",
    },
    "recurring_schedules": {"id", "day_of_week", "start_time", "end_time", "is_active"},
    "teacher_absences": {"id", "teacher_id", "start_date", "end_date", "status"},
    "substitute_requests": {"id", "lesson_id", "status", "broadcast_group_id"},
    "booking_lanes": {"id", "lane", "resource_id", "slot_key"},
}


def _ensure_lessons_version_column() -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        if "lessons" not in set(inspector.get_table_names()):
            return
        column_names = {item["name"] for item in inspector.get_columns("lessons")}
        if "version" in column_names:
            return
        connection.execute(text("ALTER TABLE lessons ADD COLUMN version INTEGER NOT NULL DEFAULT 1"))
        logger.info("Added lessons.version column")


def _ensure_lessons_schedule_id_column() -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        if "lessons" not in set(inspector.get_table_names()):
            return
        column_names = {item["name"] for item in inspector.get_columns("lessons")}
        if "schedule_id" in column_names:
            return
        connection.execute(text("ALTER TABLE lessons ADD COLUMN schedule_id VARCHAR(36)"))
        logger.info("Added lessons.schedule_id column")


def _assert_required_columns() -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        missing_tables = [name for name in REQUIRED_COLUMNS if name not in table_names]
        if missing_tables:
            raise RuntimeError(f"Missing required tables: {', '.join(sorted(missing_tables))}")

        missing_columns: list[str] = []
        for table_name, required in REQUIRED_COLUMNS.items():
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            for column_name in sorted(required - existing):
                missing_columns.append(f"{table_name}.{column_name}")
        if missing_columns:
            raise RuntimeError(f"Missing required columns: {', '.join(missing_columns)}")


def ensure_runtime_schema_compatibility() -> None:
    import app.models  # noqa: F401

    try:
        # Create missing tables before the additive column patches run.
        Base.metadata.create_all(bind=engine)
        _ensure_lessons_version_column()
        _ensure_lessons_schedule_id_column()
        _assert_required_columns()
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema compatibility bootstrap failed")
        raise RuntimeError("Runtime schema compatibility bootstrap failed") from exc
