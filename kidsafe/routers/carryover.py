"""Carryover router (operational).

Batch carryover for cron jobs and manual backfill, plus a read-only
preview. Guarded by the operator key, not by guardian auth.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.core.dependencies import require_operator
from kidsafe.database import get_db
from kidsafe.schemas.carryover import (
    CarryoverPreviewResponse,
    CarryoverRequest,
    CarryoverResultResponse,
)
from kidsafe.services.carryover import preview_carryover, run_batch_carryover

router = APIRouter(
    prefix="/carryover",
    tags=["Carryover"],
    dependencies=[Depends(require_operator)],
)


@router.post("/", response_model=CarryoverResultResponse)
async def run_carryover(
    body: CarryoverRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Close out one day: move its unwatched videos to the next day."""
    result = await run_batch_carryover(db, body.date)
    return CarryoverResultResponse(
        date=result.date,
        next_date=result.next_date,
        unwatched_found=result.found,
        carried_over=result.carried,
        failed=result.failed,
    )


@router.get("/preview", response_model=CarryoverPreviewResponse)
async def get_carryover_preview(
    db: Annotated[AsyncSession, Depends(get_db)],
    day: Annotated[date | None, Query(alias="date")] = None,
):
    """List what a batch run for ``date`` would carry over (default: yesterday)."""
    if day is None:
        day = datetime.now(timezone.utc).date() - timedelta(days=1)

    candidates = await preview_carryover(db, day)
    return CarryoverPreviewResponse(
        date=day,
        unwatched_videos=candidates,
        count=len(candidates),
    )
