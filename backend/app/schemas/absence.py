from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator

from app.models.teacher_absence import AbsenceStatus
from app.schemas.lesson import LessonOut
from app.schemas.substitute import SubstituteRequestOut


class AbsenceCreate(BaseModel):
    teacher_id: str = Field(min_length=1, max_length=36)
    start_date: date
    end_date: date
    reason: str | None = Field(default=None, max_length=1000)
    notes: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_range(self) -> "AbsenceCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class AbsenceUpdate(BaseModel):
    status: AbsenceStatus | None = None
    reason: str | None = Field(default=None, max_length=1000)
    notes: str | None = Field(default=None, max_length=2000)


class AbsenceOut(BaseModel):
    id: str
    teacher_id: str
    teacher_name: str | None = None
    start_date: date
    end_date: date
    reason: str | None = None
    notes: str | None = None
    status: AbsenceStatus
    reported_by_id: str
    request_counts: dict[str, int] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}


class AbsenceReportOut(BaseModel):
    absence: AbsenceOut
    affected_lessons: list[LessonOut]
    message: str


class AbsenceDetailOut(AbsenceOut):
    affected_lessons: list[LessonOut] = Field(default_factory=list)
    substitute_requests: list[SubstituteRequestOut] = Field(default_factory=list)
