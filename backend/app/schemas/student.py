from pydantic import BaseModel, Field, field_validator

from app.schemas.teacher import _clean_instruments


class StudentCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=36)
    instruments: list[str] = Field(default_factory=list, max_length=30)

    @field_validator("instruments")
    @classmethod
    def clean_instruments(cls, value: list[str]) -> list[str]:
        return _clean_instruments(value)


class StudentOut(BaseModel):
    id: str
    user_id: str
    name: str | None = None
    email: str | None = None
    instruments: list[str]
    is_active: bool

    model_config = {"from_attributes": True}
