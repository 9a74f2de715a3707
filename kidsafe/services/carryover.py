"""Carryover engine.

Rolls unwatched schedules forward one calendar day at a time while keeping
the superseded rows for history. Two triggers share the same core:

- the lazy trigger (:func:`process_carryover`), run for one child whenever
  the child asks for a day's schedule, closes out every open day before the
  reference date;
- the batch trigger (:func:`run_batch_carryover`), run by cron or an
  operator, closes out exactly one explicit day for all children.

Both work child by child under :func:`child_carryover_lock` and commit
before releasing it. Both record progress in the child's
:class:`CarryoverWatermark`.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.core.locks import child_carryover_lock
from kidsafe.models.approved_video import ApprovedVideo
from kidsafe.models.scheduled_video import CarryoverWatermark, ScheduledVideo
from kidsafe.models.user import User

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


@dataclass
class CarryoverResult:
    """Outcome of closing out one day."""

    date: date
    found: int = 0
    carried: int = 0
    failed: int = 0

    @property
    def next_date(self) -> date:
        return self.date + ONE_DAY

    def add(self, other: "CarryoverResult") -> None:
        self.found += other.found
        self.carried += other.carried
        self.failed += other.failed


def _pending():
    """Filter for rows that are still waiting to be watched."""
    return (
        ScheduledVideo.is_active == True,  # noqa: E712
        ScheduledVideo.is_watched == False,  # noqa: E712
    )


# ---------------------------------------------------------------------------
# Watermark
# ---------------------------------------------------------------------------


async def get_watermark(db: AsyncSession, child_id: uuid.UUID) -> date | None:
    """Return the last day closed out for ``child_id``, if any."""
    result = await db.execute(
        select(CarryoverWatermark.closed_through).where(
            CarryoverWatermark.child_id == child_id,
        )
    )
    return result.scalar_one_or_none()


async def _set_watermark(db: AsyncSession, child_id: uuid.UUID, closed_through: date) -> None:
    watermark = await db.get(CarryoverWatermark, child_id)
    if watermark is None:
        db.add(CarryoverWatermark(child_id=child_id, closed_through=closed_through))
    else:
        watermark.closed_through = closed_through
    await db.flush()


async def lower_watermark(db: AsyncSession, child_id: uuid.UUID, day: date) -> None:
    """Reopen ``day`` for carryover after a back-dated schedule was added.

    Must be called while holding the child's carryover lock.
    """
    closed_through = await get_watermark(db, child_id)
    if closed_through is not None and closed_through >= day:
        await _set_watermark(db, child_id, day - ONE_DAY)
        logger.info(
            "Watermark for child %s lowered from %s to %s",
            child_id, closed_through, day - ONE_DAY,
        )


# ---------------------------------------------------------------------------
# Core
# ---------------------------------------------------------------------------


async def _active_schedule_exists(
    db: AsyncSession,
    child_id: uuid.UUID,
    approved_video_id: uuid.UUID,
    day: date,
) -> bool:
    result = await db.execute(
        select(ScheduledVideo.id).where(
            ScheduledVideo.child_id == child_id,
            ScheduledVideo.approved_video_id == approved_video_id,
            ScheduledVideo.scheduled_date == day,
            ScheduledVideo.is_active == True,  # noqa: E712
        ).limit(1)
    )
    return result.first() is not None


async def _carry_forward(db: AsyncSession, candidate) -> bool:
    """Move one stale schedule to the following day.

    Returns True if a new row was inserted. Returns False if an active row
    for the target day already existed (the stale row is still
    deactivated), or if the row stopped being pending after it was selected,
    e.g. the child watched it meanwhile (nothing is changed).
    """
    superseded = await db.execute(
        update(ScheduledVideo)
        .where(ScheduledVideo.id == candidate.id, *_pending())
        .values(is_active=False, updated_at=datetime.now(timezone.utc))
    )
    if superseded.rowcount == 0:
        logger.info(
            "Scheduled video %s is no longer pending, not carried over", candidate.id,
        )
        return False

    target = candidate.scheduled_date + ONE_DAY
    if await _active_schedule_exists(
        db, candidate.child_id, candidate.approved_video_id, target,
    ):
        return False

    db.add(ScheduledVideo(
        child_id=candidate.child_id,
        approved_video_id=candidate.approved_video_id,
        scheduled_date=target,
        original_date=candidate.original_date,
        is_active=True,
        is_watched=False,
        carried_over=True,
    ))
    await db.flush()
    return True


async def _close_out_day(
    db: AsyncSession,
    day: date,
    child_id: uuid.UUID,
) -> CarryoverResult:
    """Carry every pending schedule of ``child_id`` dated ``day`` to ``day + 1``.

    Each candidate runs in its own savepoint; a failing candidate is logged,
    left untouched and skipped.
    """
    result = CarryoverResult(date=day)

    candidates = (
        await db.execute(
            select(
                ScheduledVideo.id,
                ScheduledVideo.child_id,
                ScheduledVideo.approved_video_id,
                ScheduledVideo.scheduled_date,
                ScheduledVideo.original_date,
            )
            .where(
                ScheduledVideo.child_id == child_id,
                ScheduledVideo.scheduled_date == day,
                *_pending(),
            )
            .order_by(ScheduledVideo.created_at)
        )
    ).all()
    result.found = len(candidates)

    for candidate in candidates:
        try:
            async with db.begin_nested():
                if await _carry_forward(db, candidate):
                    result.carried += 1
        except SQLAlchemyError:
            result.failed += 1
            logger.exception(
                "Carryover skipped scheduled video %s (child %s, %s)",
                candidate.id, child_id, day,
            )

    if result.found:
        logger.debug(
            "Closed out %s for child %s: %d found, %d carried, %d failed",
            day, child_id, result.found, result.carried, result.failed,
        )
    return result


# ---------------------------------------------------------------------------
# Lazy trigger
# ---------------------------------------------------------------------------


async def _earliest_open_day(
    db: AsyncSession,
    child_id: uuid.UUID,
    reference_date: date,
    after: date | None,
) -> date | None:
    query = select(func.min(ScheduledVideo.scheduled_date)).where(
        ScheduledVideo.child_id == child_id,
        ScheduledVideo.scheduled_date < reference_date,
        *_pending(),
    )
    if after is not None:
        query = query.where(ScheduledVideo.scheduled_date > after)
    return (await db.execute(query)).scalar()


async def _process_child(
    db: AsyncSession,
    child_id: uuid.UUID,
    reference_date: date,
) -> int:
    async with child_carryover_lock(child_id):
        closed_through = await get_watermark(db, child_id)
        if closed_through is not None and closed_through >= reference_date - ONE_DAY:
            return 0

        carried = 0
        failed = 0
        last_day: date | None = None

        # Closing day d produces rows for d + 1, which the next round picks
        # up, so a stale row walks forward until it reaches reference_date.
        while True:
            day = await _earliest_open_day(db, child_id, reference_date, last_day)
            if day is None:
                break
            result = await _close_out_day(db, day, child_id)
            carried += result.carried
            failed += result.failed
            last_day = day

        if not failed:
            await _set_watermark(db, child_id, reference_date - ONE_DAY)
        await db.commit()

    if carried or failed:
        logger.info(
            "Carryover for child %s up to %s: %d carried over, %d failed",
            child_id, reference_date, carried, failed,
        )
    return carried


async def process_carryover(
    db: AsyncSession,
    reference_date: date,
    child_id: uuid.UUID | None = None,
) -> int:
    """Carry every pending schedule dated before ``reference_date`` forward.

    With ``child_id`` only that child is processed; otherwise every child
    with stale schedules is. Commits once per child.

    Returns the number of carried-over rows created.
    """
    if child_id is not None:
        return await _process_child(db, child_id, reference_date)

    result = await db.execute(
        select(ScheduledVideo.child_id)
        .where(ScheduledVideo.scheduled_date < reference_date, *_pending())
        .distinct()
    )
    child_ids = list(result.scalars().all())

    total = 0
    for cid in child_ids:
        total += await _process_child(db, cid, reference_date)
    return total


# ---------------------------------------------------------------------------
# Batch trigger
# ---------------------------------------------------------------------------


async def run_batch_carryover(db: AsyncSession, explicit_date: date) -> CarryoverResult:
    """Close out ``explicit_date`` for all children.

    Pending schedules dated exactly ``explicit_date`` move to the next day.
    Safe to run repeatedly for the same date. A child that fails as a whole
    (e.g. its lock cannot be taken) is logged and skipped.
    """
    total = CarryoverResult(date=explicit_date)

    rows = (
        await db.execute(
            select(ScheduledVideo.child_id, func.count(ScheduledVideo.id))
            .where(ScheduledVideo.scheduled_date == explicit_date, *_pending())
            .group_by(ScheduledVideo.child_id)
        )
    ).all()

    logger.info(
        "Batch carryover %s -> %s: %d children with pending videos",
        explicit_date, total.next_date, len(rows),
    )

    for child_id, pending_count in rows:
        try:
            async with child_carryover_lock(child_id):
                result = await _close_out_day(db, explicit_date, child_id)
                if not result.failed:
                    closed_through = await get_watermark(db, child_id)
                    if closed_through is not None and (
                        explicit_date - ONE_DAY <= closed_through < explicit_date
                    ):
                        await _set_watermark(db, child_id, explicit_date)
                await db.commit()
            total.add(result)
        except Exception:
            await db.rollback()
            total.found += pending_count
            total.failed += pending_count
            logger.exception(
                "Batch carryover failed for child %s on %s", child_id, explicit_date,
            )

    logger.info(
        "Batch carryover %s complete: %d found, %d carried over, %d failed",
        explicit_date, total.found, total.carried, total.failed,
    )
    return total


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------


async def preview_carryover(db: AsyncSession, day: date) -> list[dict]:
    """List what :func:`run_batch_carryover` would process for ``day``.

    Read-only.
    """
    result = await db.execute(
        select(ScheduledVideo, User.name, ApprovedVideo.title)
        .join(User, ScheduledVideo.child_id == User.id)
        .join(ApprovedVideo, ScheduledVideo.approved_video_id == ApprovedVideo.id)
        .where(ScheduledVideo.scheduled_date == day, *_pending())
        .order_by(User.name, ScheduledVideo.created_at)
    )
    return [
        {
            "scheduled_video_id": schedule.id,
            "child_id": schedule.child_id,
            "child_name": child_name,
            "video_title": title,
            "scheduled_date": schedule.scheduled_date,
            "original_date": schedule.original_date,
            "carried_over": schedule.carried_over,
        }
        for schedule, child_name, title in result.all()
    ]
