from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.lesson import LessonStatus
from app.schemas.common import normalize_time, parse_time_to_minutes


class LessonCreate(BaseModel):
    teacher_id: str = Field(min_length=1, max_length=36)
    student_id: str = Field(min_length=1, max_length=36)
    room_id: str = Field(min_length=1, max_length=36)
    instrument: str = Field(min_length=1, max_length=100)
    lesson_date: date
    start_time: str
    end_time: str
    duration: int | None = Field(default=None, ge=1, le=600)
    teacher_notes: str | None = Field(default=None, max_length=2000)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str) -> str:
        return normalize_time(value)

    @model_validator(mode="after")
    def validate_order(self) -> "LessonCreate":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self


class LessonUpdate(BaseModel):
    teacher_id: str | None = Field(default=None, min_length=1, max_length=36)
    student_id: str | None = Field(default=None, min_length=1, max_length=36)
    room_id: str | None = Field(default=None, min_length=1, max_length=36)
    instrument: str | None = Field(default=None, min_length=1, max_length=100)
    lesson_date: date | None = None
    start_time: str | None = None
    end_time: str | None = None
    duration: int | None = Field(default=None, ge=1, le=600)
    status: LessonStatus | None = None
    cancellation_reason: str | None = Field(default=None, max_length=1000)
    teacher_notes: str | None = Field(default=None, max_length=2000)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_time(value)


class LessonOut(BaseModel):
    id: str
    teacher_id: str
    student_id: str
    room_id: str
    schedule_id: str | None = None
    teacher_name: str | None = None
    student_name: str | None = None
    room_name: str | None = None
    instrument: str
    lesson_date: date
    start_time: str
    end_time: str
    duration: int
    status: LessonStatus
    teacher_notes: str | None = None
    cancellation_reason: str | None = None
    cancelled_by_id: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class BulkCancelRequest(BaseModel):
    start_date: date
    end_date: date
    teacher_id: str | None = Field(default=None, max_length=36)
    student_id: str | None = Field(default=None, max_length=36)
    room_id: str | None = Field(default=None, max_length=36)
    cancellation_reason: str | None = Field(default=None, max_length=1000)


class BulkCancelOut(BaseModel):
    cancelled: int
    withdrawn_requests: int = 0
    message: str


class GenerateLessonsRequest(BaseModel):
    start_date: date
    end_date: date


class SkippedLessonOut(BaseModel):
    lesson_date: date
    schedule_id: str
    reason: str

    model_config = {"from_attributes": True}


class MaterializationOut(BaseModel):
    created_count: int
    skipped_count: int
    created: list[LessonOut] = Field(default_factory=list)
    skipped: list[SkippedLessonOut] = Field(default_factory=list)
    message: str
