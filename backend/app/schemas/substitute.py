from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.substitute_request import SubstituteRequestStatus
from app.schemas.common import normalize_time, parse_time_to_minutes


class SubstituteRequestCreate(BaseModel):
    absence_id: str = Field(min_length=1, max_length=36)
    lesson_ids: list[str] = Field(min_length=1, max_length=200)
    substitute_teacher_id: str | None = Field(default=None, max_length=36)
    substitute_teacher_ids: list[str] | None = Field(default=None, max_length=50)
    broadcast_mode: bool = False
    notes: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def require_teacher(self) -> "SubstituteRequestCreate":
        if not self.teacher_ids():
            raise ValueError("substitute_teacher_id or substitute_teacher_ids is required")
        return self

    def teacher_ids(self) -> list[str]:
        if self.broadcast_mode and self.substitute_teacher_ids:
            return list(self.substitute_teacher_ids)
        if self.substitute_teacher_id:
            return [self.substitute_teacher_id]
        return list(self.substitute_teacher_ids or [])


class SubstituteRequestRespond(BaseModel):
    response: Literal["approved", "declined"]
    notes: str | None = Field(default=None, max_length=1000)


class SubstituteRequestOut(BaseModel):
    id: str
    absence_id: str
    lesson_id: str
    original_teacher_id: str
    original_teacher_name: str | None = None
    substitute_teacher_id: str
    substitute_teacher_name: str | None = None
    student_id: str
    student_name: str | None = None
    room_id: str
    room_name: str | None = None
    instrument: str
    lesson_date: date
    start_time: str
    end_time: str
    status: SubstituteRequestStatus
    broadcast_group_id: str | None = None
    approved_by_id: str | None = None
    approved_at: datetime | None = None
    responded_at: datetime | None = None
    notes: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SubstituteRequestBatchOut(BaseModel):
    requests: list[SubstituteRequestOut]
    broadcast_mode: bool
    message: str


class SubstituteResponseOut(BaseModel):
    request: SubstituteRequestOut
    cancelled_requests: int = 0
    message: str


class CandidateSearch(BaseModel):
    instrument: str = Field(min_length=1, max_length=100)
    lesson_date: date
    start_time: str
    end_time: str
    original_teacher_id: str | None = Field(default=None, max_length=36)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str) -> str:
        return normalize_time(value)

    @model_validator(mode="after")
    def validate_order(self) -> "CandidateSearch":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self


class CandidateOut(BaseModel):
    id: str
    user_id: str
    name: str
    email: str | None = None
    instruments: list[str]
    completed_lessons: int


class CandidateSearchOut(BaseModel):
    available_teachers: list[CandidateOut]
    total_found: int
