import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ApprovedVideoCreate(BaseModel):
    youtube_id: str = Field(min_length=1, max_length=32)
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    thumbnail: str
    channel_name: str
    duration: str | None = None  # "M:SS" as delivered by YouTube
    summary: str | None = None


class ApprovedVideoResponse(BaseModel):
    id: uuid.UUID
    child_id: uuid.UUID
    youtube_id: str
    title: str
    description: str | None = None
    thumbnail: str
    channel_name: str
    duration: str | None = None
    summary: str | None = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
