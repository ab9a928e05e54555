from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from app.schemas.common import normalize_time, parse_time_to_minutes
from app.schemas.lesson import MaterializationOut


class ScheduleCreate(BaseModel):
    teacher_id: str = Field(min_length=1, max_length=36)
    student_id: str = Field(min_length=1, max_length=36)
    room_id: str = Field(min_length=1, max_length=36)
    instrument: str = Field(min_length=1, max_length=100)
    day_of_week: int = Field(ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: str
    end_time: str
    duration: int | None = Field(default=None, ge=1, le=600)
    effective_from: date
    effective_until: date | None = None
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str) -> str:
        return normalize_time(value)

    @model_validator(mode="after")
    def validate_window(self) -> "ScheduleCreate":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("end_time must be after start_time")
        if self.effective_until is not None and self.effective_until < self.effective_from:
            raise ValueError("effective_until must be on or after effective_from")
        return self


class ScheduleUpdate(BaseModel):
    teacher_id: str | None = Field(default=None, min_length=1, max_length=36)
    student_id: str | None = Field(default=None, min_length=1, max_length=36)
    room_id: str | None = Field(default=None, min_length=1, max_length=36)
    instrument: str | None = Field(default=None, min_length=1, max_length=100)
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: str | None = None
    end_time: str | None = None
    duration: int | None = Field(default=None, ge=1, le=600)
    effective_from: date | None = None
    effective_until: date | None = None
    is_active: bool | None = None
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_time(value)


class ScheduleOut(BaseModel):
    id: str
    teacher_id: str
    student_id: str
    room_id: str
    teacher_name: str | None = None
    student_name: str | None = None
    room_name: str | None = None
    instrument: str
    day_of_week: int
    start_time: str
    end_time: str
    duration: int
    effective_from: date
    effective_until: date | None = None
    is_active: bool
    notes: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ScheduleCreateOut(BaseModel):
    schedule: ScheduleOut
    materialization: MaterializationOut | None = None
