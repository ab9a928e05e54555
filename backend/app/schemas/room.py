from datetime import datetime

from pydantic import BaseModel, Field


class RoomBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    number: str | None = Field(default=None, max_length=20)
    capacity: int = Field(default=1, ge=1, le=200)
    equipment: list[str] = Field(default_factory=list, max_length=50)


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    number: str | None = Field(default=None, max_length=20)
    capacity: int | None = Field(default=None, ge=1, le=200)
    equipment: list[str] | None = Field(default=None, max_length=50)
    is_active: bool | None = None


class RoomOut(RoomBase):
    id: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class RoomDetailOut(RoomOut):
    lesson_count: int = 0
    schedule_count: int = 0


class RoomDeleteOut(BaseModel):
    success: bool = True
    deleted: bool
    message: str
