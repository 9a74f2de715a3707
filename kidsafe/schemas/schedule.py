import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class ScheduleCreate(BaseModel):
    approved_video_ids: list[uuid.UUID] = Field(min_length=1)
    child_ids: list[uuid.UUID] = Field(min_length=1)
    scheduled_date: date


class ScheduledVideoResponse(BaseModel):
    id: uuid.UUID
    child_id: uuid.UUID
    approved_video_id: uuid.UUID
    scheduled_date: date
    original_date: date
    is_active: bool
    is_watched: bool
    watched_at: datetime | None = None
    carried_over: bool
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ScheduleEntryResponse(BaseModel):
    """Guardian view of one schedule joined with child and video metadata."""

    id: uuid.UUID
    child_id: uuid.UUID
    child_name: str
    approved_video_id: uuid.UUID
    youtube_id: str
    title: str
    thumbnail: str
    channel_name: str
    duration: str
    scheduled_date: date
    original_date: date
    is_watched: bool
    carried_over: bool


class KidVideoResponse(BaseModel):
    """Child view of one deliverable video."""

    scheduled_video_id: uuid.UUID
    youtube_id: str
    title: str
    description: str
    thumbnail: str
    channel_name: str
    duration: str
    summary: str | None = None
    carried_over: bool
    original_date: date


class KidScheduleResponse(BaseModel):
    videos: list[KidVideoResponse]
    total: int
    current_date: date
