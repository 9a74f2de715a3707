"""Schedule repository operations used by guardians.

Creates the items x children cross-product, lists a family's active
schedules and removes pending ones. Ownership is always checked against
the guardian's family before anything is read or written.
"""

import logging
import uuid
from contextlib import AsyncExitStack
from datetime import date

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.core.locks import child_carryover_lock
from kidsafe.models.approved_video import ApprovedVideo
from kidsafe.models.scheduled_video import ScheduledVideo
from kidsafe.models.user import User
from kidsafe.services.carryover import lower_watermark

logger = logging.getLogger(__name__)


def _unique(ids: list[uuid.UUID]) -> list[uuid.UUID]:
    """Drop duplicate ids, keeping the first occurrence."""
    return list(dict.fromkeys(ids))


async def get_owned_children(
    db: AsyncSession,
    guardian: User,
    child_ids: list[uuid.UUID],
) -> list[User]:
    """Load children by id, raising 404 unless all belong to the guardian."""
    result = await db.execute(
        select(User).where(
            User.id.in_(child_ids),
            User.family_id == guardian.family_id,
            User.role == "child",
        )
    )
    children = list(result.scalars().all())
    if len(children) != len(child_ids):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="One or more children not found",
        )
    return children


async def get_owned_videos(
    db: AsyncSession,
    guardian: User,
    approved_video_ids: list[uuid.UUID],
) -> list[ApprovedVideo]:
    """Load approved videos by id, raising 404 unless all belong to the guardian."""
    result = await db.execute(
        select(ApprovedVideo)
        .join(User, ApprovedVideo.child_id == User.id)
        .where(
            ApprovedVideo.id.in_(approved_video_ids),
            User.family_id == guardian.family_id,
        )
    )
    videos = list(result.scalars().all())
    if len(videos) != len(approved_video_ids):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="One or more approved videos not found",
        )
    return videos


async def create_schedule(
    db: AsyncSession,
    guardian: User,
    approved_video_ids: list[uuid.UUID],
    child_ids: list[uuid.UUID],
    scheduled_date: date,
) -> list[ScheduledVideo]:
    """Schedule every approved video for every child on ``scheduled_date``.

    Runs under the carryover lock of each involved child (taken in id
    order) so a concurrent carryover pass cannot close out the date between
    the insert and the watermark update. Commits.
    """
    approved_video_ids = _unique(approved_video_ids)
    child_ids = _unique(child_ids)

    await get_owned_videos(db, guardian, approved_video_ids)
    await get_owned_children(db, guardian, child_ids)

    schedules: list[ScheduledVideo] = []
    async with AsyncExitStack() as stack:
        for child_id in sorted(child_ids):
            await stack.enter_async_context(child_carryover_lock(child_id))

        for child_id in child_ids:
            for approved_video_id in approved_video_ids:
                schedule = ScheduledVideo(
                    child_id=child_id,
                    approved_video_id=approved_video_id,
                    scheduled_date=scheduled_date,
                    original_date=scheduled_date,
                )
                db.add(schedule)
                schedules.append(schedule)
            await lower_watermark(db, child_id, scheduled_date)

        await db.flush()
        await db.commit()

    logger.info(
        "Guardian %s scheduled %d videos for %d children on %s",
        guardian.id, len(approved_video_ids), len(child_ids), scheduled_date,
    )
    return schedules


async def list_schedule(
    db: AsyncSession,
    guardian: User,
    child_id: uuid.UUID | None = None,
    day: date | None = None,
) -> list[tuple[ScheduledVideo, User, ApprovedVideo]]:
    """Active schedules of the guardian's children with display metadata."""
    query = (
        select(ScheduledVideo, User, ApprovedVideo)
        .join(User, ScheduledVideo.child_id == User.id)
        .join(ApprovedVideo, ScheduledVideo.approved_video_id == ApprovedVideo.id)
        .where(
            User.family_id == guardian.family_id,
            ScheduledVideo.is_active == True,  # noqa: E712
        )
        .order_by(ScheduledVideo.scheduled_date, ScheduledVideo.created_at)
    )
    if child_id is not None:
        await get_owned_children(db, guardian, [child_id])
        query = query.where(ScheduledVideo.child_id == child_id)
    if day is not None:
        query = query.where(ScheduledVideo.scheduled_date == day)

    result = await db.execute(query)
    return [tuple(row) for row in result.all()]


async def remove_schedule(
    db: AsyncSession,
    guardian: User,
    schedule_id: uuid.UUID,
) -> None:
    """Delete a schedule that is still pending.

    Raises:
        HTTPException 404: If the schedule does not exist or is not owned.
        HTTPException 409: If it was already watched or superseded by carryover.
    """
    result = await db.execute(
        select(ScheduledVideo)
        .join(User, ScheduledVideo.child_id == User.id)
        .where(
            ScheduledVideo.id == schedule_id,
            User.family_id == guardian.family_id,
        )
    )
    schedule = result.scalar_one_or_none()
    if schedule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Scheduled video not found",
        )
    if not schedule.is_active or schedule.is_watched:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Scheduled video was already watched or carried over",
        )

    await db.delete(schedule)
    await db.flush()
    logger.info("Guardian %s removed scheduled video %s", guardian.id, schedule_id)
