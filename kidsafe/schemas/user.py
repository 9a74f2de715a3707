import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class ChildCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    birthday: date | None = None
    interests: list[str] | None = None


class UserResponse(BaseModel):
    id: uuid.UUID
    family_id: uuid.UUID
    name: str
    role: str  # parent | child
    email: str | None = None
    birthday: date | None = None
    interests: list[str] | None = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
