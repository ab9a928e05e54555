from pydantic import BaseModel, Field, field_validator

from app.schemas.common import normalize_text


def _clean_instruments(values: list[str]) -> list[str]:
    cleaned = [normalize_text(item) for item in values]
    return list(dict.fromkeys(item for item in cleaned if item))


class TeacherCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=36)
    instruments: list[str] = Field(default_factory=list, max_length=30)
    bio: str | None = Field(default=None, max_length=2000)

    @field_validator("instruments")
    @classmethod
    def clean_instruments(cls, value: list[str]) -> list[str]:
        return _clean_instruments(value)


class TeacherOut(BaseModel):
    id: str
    user_id: str
    name: str | None = None
    email: str | None = None
    instruments: list[str]
    bio: str | None = None
    is_active: bool

    model_config = {"from_attributes": True}
