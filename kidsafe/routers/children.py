"""Children router.

Minimal child profile endpoints for guardians. Profiles are owned by the
guardian's family; children never log in.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.core.dependencies import require_parent
from kidsafe.database import get_db
from kidsafe.models.user import User
from kidsafe.schemas.user import ChildCreate, UserResponse

router = APIRouter(prefix="/children", tags=["Children"])


@router.get("/", response_model=list[UserResponse])
async def list_children(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_parent),
):
    """List all children in the guardian's family."""
    result = await db.execute(
        select(User)
        .where(
            User.family_id == current_user.family_id,
            User.role == "child",
        )
        .order_by(User.name)
    )
    return result.scalars().all()


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_child(
    body: ChildCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_parent),
):
    """Add a child to the guardian's family."""
    child = User(
        family_id=current_user.family_id,
        name=body.name,
        role="child",
        birthday=body.birthday,
        interests=body.interests,
    )
    db.add(child)
    await db.flush()
    await db.refresh(child)
    return child


@router.get("/{child_id}", response_model=UserResponse)
async def get_child(
    child_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_parent),
):
    """Get details of a specific child."""
    result = await db.execute(
        select(User).where(
            User.id == child_id,
            User.family_id == current_user.family_id,
            User.role == "child",
        )
    )
    child = result.scalar_one_or_none()

    if child is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Child not found",
        )

    return child
