"""Approved videos router.

The approval workflow itself lives elsewhere; these endpoints only let a
guardian record, list and withdraw approvals so they can be scheduled.
"""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.core.dependencies import require_parent
from kidsafe.database import get_db
from kidsafe.models.approved_video import ApprovedVideo
from kidsafe.models.scheduled_video import ScheduledVideo
from kidsafe.models.user import User
from kidsafe.schemas.approved_video import ApprovedVideoCreate, ApprovedVideoResponse

router = APIRouter(tags=["Approved Videos"])


async def _verify_child_access(
    db: AsyncSession,
    child_id: uuid.UUID,
    current_user: User,
) -> User:
    """Verify the current user has guardian access to this child."""
    result = await db.execute(
        select(User).where(User.id == child_id, User.role == "child")
    )
    child = result.scalar_one_or_none()
    if child is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Child not found",
        )
    if child.family_id != current_user.family_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="No access to this child",
        )
    return child


@router.get(
    "/children/{child_id}/approved-videos/",
    response_model=list[ApprovedVideoResponse],
)
async def list_approved_videos(
    child_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_parent),
) -> list[ApprovedVideo]:
    """List all videos approved for a child, newest first."""
    await _verify_child_access(db, child_id, current_user)

    result = await db.execute(
        select(ApprovedVideo)
        .where(ApprovedVideo.child_id == child_id)
        .order_by(ApprovedVideo.created_at.desc()),
    )
    return list(result.scalars().all())


@router.post(
    "/children/{child_id}/approved-videos/",
    response_model=ApprovedVideoResponse,
    status_code=status.HTTP_201_CREATED,
)
async def approve_video(
    child_id: uuid.UUID,
    body: ApprovedVideoCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_parent),
) -> ApprovedVideo:
    """Approve a video for a child."""
    await _verify_child_access(db, child_id, current_user)

    existing = await db.execute(
        select(ApprovedVideo).where(
            and_(
                ApprovedVideo.child_id == child_id,
                ApprovedVideo.youtube_id == body.youtube_id,
            ),
        ),
    )
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Video already approved for this child",
        )

    video = ApprovedVideo(child_id=child_id, **body.model_dump())
    db.add(video)
    await db.flush()
    await db.refresh(video)
    return video


@router.delete(
    "/children/{child_id}/approved-videos/{video_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def withdraw_approval(
    child_id: uuid.UUID,
    video_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_parent),
) -> None:
    """Withdraw an approval that has only pending schedules.

    Pending schedules are removed with it. Once any of its schedules was
    watched or carried over the approval is part of the viewing history and
    cannot be withdrawn (409).
    """
    await _verify_child_access(db, child_id, current_user)

    result = await db.execute(
        select(ApprovedVideo).where(
            and_(ApprovedVideo.id == video_id, ApprovedVideo.child_id == child_id),
        ),
    )
    video = result.scalar_one_or_none()
    if video is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Approved video not found",
        )

    history = await db.execute(
        select(ScheduledVideo.id)
        .where(
            ScheduledVideo.approved_video_id == video_id,
            or_(
                ScheduledVideo.is_active == False,  # noqa: E712
                ScheduledVideo.is_watched == True,  # noqa: E712
            ),
        )
        .limit(1),
    )
    if history.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Video was already watched or carried over and cannot be withdrawn",
        )

    await db.delete(video)
    await db.flush()
