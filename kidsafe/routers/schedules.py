"""Schedules router (guardian view).

Create, list and remove scheduled videos for the guardian's children.
"""

import uuid
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.core.dependencies import require_parent
from kidsafe.database import get_db
from kidsafe.models.user import User
from kidsafe.schemas.schedule import (
    ScheduleCreate,
    ScheduledVideoResponse,
    ScheduleEntryResponse,
)
from kidsafe.services import schedule_service

router = APIRouter(prefix="/schedules", tags=["Schedules"])


@router.post(
    "/",
    response_model=list[ScheduledVideoResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_schedule(
    body: ScheduleCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_parent),
):
    """Schedule each approved video for each child on one date."""
    return await schedule_service.create_schedule(
        db,
        current_user,
        body.approved_video_ids,
        body.child_ids,
        body.scheduled_date,
    )


@router.get("/", response_model=list[ScheduleEntryResponse])
async def list_schedule(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_parent),
    child_id: uuid.UUID | None = None,
    day: Annotated[date | None, Query(alias="date")] = None,
):
    """List active schedules, optionally filtered by child and/or date."""
    rows = await schedule_service.list_schedule(db, current_user, child_id, day)
    return [
        ScheduleEntryResponse(
            id=schedule.id,
            child_id=child.id,
            child_name=child.name,
            approved_video_id=video.id,
            youtube_id=video.youtube_id,
            title=video.title,
            thumbnail=video.thumbnail,
            channel_name=video.channel_name,
            duration=video.duration or "0:00",
            scheduled_date=schedule.scheduled_date,
            original_date=schedule.original_date,
            is_watched=schedule.is_watched,
            carried_over=schedule.carried_over,
        )
        for schedule, child, video in rows
    ]


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_schedule(
    schedule_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_parent),
) -> None:
    """Remove a pending schedule."""
    await schedule_service.remove_schedule(db, current_user, schedule_id)
