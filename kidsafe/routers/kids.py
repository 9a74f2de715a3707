"""Kids router (child-facing).

Children do not authenticate; the child id in the path only has to
resolve to an existing child.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.config import settings
from kidsafe.core.rate_limit import limiter
from kidsafe.database import get_db
from kidsafe.schemas.schedule import (
    KidScheduleResponse,
    KidVideoResponse,
    ScheduledVideoResponse,
)
from kidsafe.services.schedule_query import get_child_or_404, get_todays_schedule
from kidsafe.services.watch_service import mark_watched

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/kids/{child_id}", tags=["Kids"])


@router.get("/scheduled-videos", response_model=KidScheduleResponse)
@limiter.limit(settings.KIDS_RATE_LIMIT)
async def get_scheduled_videos(
    request: Request,
    child_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    day: Annotated[date | None, Query(alias="date")] = None,
):
    """Return the child's videos for a day (default: today, UTC).

    Unwatched videos from earlier days are carried over first.
    """
    if day is None:
        day = datetime.now(timezone.utc).date()

    rows = await get_todays_schedule(db, child_id, day)
    videos = [
        KidVideoResponse(
            scheduled_video_id=schedule.id,
            youtube_id=video.youtube_id,
            title=video.title,
            description=video.description or "",
            thumbnail=video.thumbnail,
            channel_name=video.channel_name,
            duration=video.duration or "0:00",
            summary=video.summary,
            carried_over=schedule.carried_over,
            original_date=schedule.original_date,
        )
        for schedule, video in rows
    ]
    return KidScheduleResponse(videos=videos, total=len(videos), current_date=day)


@router.post(
    "/scheduled-videos/{scheduled_video_id}/watched",
    response_model=ScheduledVideoResponse,
)
async def mark_scheduled_video_watched(
    child_id: uuid.UUID,
    scheduled_video_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Record that the child finished a scheduled video."""
    await get_child_or_404(db, child_id)
    return await mark_watched(db, scheduled_video_id, child_id)
