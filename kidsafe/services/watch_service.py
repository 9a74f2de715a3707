"""Watch completion recorder."""

import logging
import uuid
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.models.scheduled_video import ScheduledVideo

logger = logging.getLogger(__name__)


async def mark_watched(
    db: AsyncSession,
    scheduled_video_id: uuid.UUID,
    child_id: uuid.UUID,
) -> ScheduledVideo:
    """Mark a child's scheduled video as watched.

    Idempotent: a second call keeps the first ``watched_at``. The row stays
    active; being watched is what keeps it out of future carryover.

    Raises:
        HTTPException 404: If the schedule does not exist or belongs to
            another child.
    """
    result = await db.execute(
        select(ScheduledVideo).where(
            ScheduledVideo.id == scheduled_video_id,
            ScheduledVideo.child_id == child_id,
        )
    )
    schedule = result.scalar_one_or_none()
    if schedule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Scheduled video not found",
        )

    if schedule.is_watched:
        return schedule

    if not schedule.is_active:
        logger.warning(
            "Scheduled video %s marked watched after being superseded", schedule.id,
        )

    schedule.is_watched = True
    schedule.watched_at = datetime.now(timezone.utc)
    await db.flush()
    logger.info("Child %s watched scheduled video %s", child_id, schedule.id)
    return schedule
