import datetime
import uuid

from pydantic import BaseModel


class CarryoverRequest(BaseModel):
    date: datetime.date  # the day being closed out


class CarryoverResultResponse(BaseModel):
    date: datetime.date
    next_date: datetime.date
    unwatched_found: int
    carried_over: int
    failed: int = 0


class CarryoverCandidateResponse(BaseModel):
    scheduled_video_id: uuid.UUID
    child_id: uuid.UUID
    child_name: str
    video_title: str
    scheduled_date: datetime.date
    original_date: datetime.date
    carried_over: bool


class CarryoverPreviewResponse(BaseModel):
    date: datetime.date
    unwatched_videos: list[CarryoverCandidateResponse]
    count: int
