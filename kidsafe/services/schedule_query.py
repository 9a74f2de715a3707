"""Child-facing schedule query.

Answers "what should this child watch on this day". Every read first runs
a lazy carryover pass for the child, so stale videos reach today's list
even when no batch run happened. A failing carryover pass never fails the
read: whatever is already scheduled for the day is returned.
"""

import logging
import uuid
from datetime import date

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.models.approved_video import ApprovedVideo
from kidsafe.models.scheduled_video import ScheduledVideo
from kidsafe.models.user import User
from kidsafe.services.carryover import process_carryover

logger = logging.getLogger(__name__)


async def get_child_or_404(db: AsyncSession, child_id: uuid.UUID) -> User:
    """Resolve a child id; children do not authenticate, the id must just exist."""
    result = await db.execute(
        select(User).where(User.id == child_id, User.role == "child")
    )
    child = result.scalar_one_or_none()
    if child is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Child not found",
        )
    return child


async def get_todays_schedule(
    db: AsyncSession,
    child_id: uuid.UUID,
    day: date,
) -> list[tuple[ScheduledVideo, ApprovedVideo]]:
    """Return the pending videos of ``child_id`` for ``day``.

    Fresh schedules come before carried-over ones, each group oldest first.
    """
    await get_child_or_404(db, child_id)

    try:
        await process_carryover(db, day, child_id=child_id)
    except Exception:
        await db.rollback()
        logger.exception(
            "Lazy carryover failed for child %s on %s, serving existing schedule",
            child_id, day,
        )

    result = await db.execute(
        select(ScheduledVideo, ApprovedVideo)
        .join(ApprovedVideo, ScheduledVideo.approved_video_id == ApprovedVideo.id)
        .where(
            ScheduledVideo.child_id == child_id,
            ScheduledVideo.scheduled_date == day,
            ScheduledVideo.is_active == True,  # noqa: E712
            ScheduledVideo.is_watched == False,  # noqa: E712
        )
        .order_by(ScheduledVideo.carried_over, ScheduledVideo.created_at)
    )
    return [tuple(row) for row in result.all()]
