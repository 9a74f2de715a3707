"""Guardian authentication.

Only guardians hold credentials. Children are created by their guardian and
reach the kids endpoints by id, so every token issued here belongs to a
``parent`` user. Refresh tokens are stored as SHA-256 digests and rotated on
every use.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.config import settings
from kidsafe.core.dependencies import require_parent
from kidsafe.core.rate_limit import limiter
from kidsafe.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from kidsafe.database import get_db
from kidsafe.models.family import Family
from kidsafe.models.user import RefreshToken, User
from kidsafe.schemas.auth import (
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from kidsafe.schemas.user import UserResponse

router = APIRouter(prefix="/auth", tags=["Auth"])


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


async def _issue_tokens(db: AsyncSession, guardian: User) -> TokenResponse:
    """Sign a token pair for ``guardian`` and store the refresh digest."""
    subject = str(guardian.id)
    refresh_token = create_refresh_token({"sub": subject, "jti": uuid.uuid4().hex})
    db.add(RefreshToken(
        user_id=guardian.id,
        token_hash=_digest(refresh_token),
        expires_at=datetime.now(timezone.utc)
        + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    ))
    await db.flush()
    return TokenResponse(
        access_token=create_access_token({"sub": subject}),
        refresh_token=refresh_token,
    )


async def _stored_refresh_token(db: AsyncSession, raw: str) -> RefreshToken | None:
    """The unrevoked stored record for ``raw``, if there is one."""
    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == _digest(raw),
            RefreshToken.revoked == False,  # noqa: E712
        )
    )
    return result.scalar_one_or_none()


@router.get("/me", response_model=UserResponse)
async def get_me(
    db: Annotated[AsyncSession, Depends(get_db)],
    guardian: User = Depends(require_parent),
):
    """Profile of the signed-in guardian."""
    await db.refresh(guardian)
    return guardian


@router.post("/register", response_model=TokenResponse)
async def register(
    body: RegisterRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create a family together with its first guardian and sign them in."""
    taken = await db.execute(select(User.id).where(User.email == body.email))
    if taken.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    family = Family(name=body.family_name)
    db.add(family)
    await db.flush()

    guardian = User(
        family_id=family.id,
        name=body.name,
        role="parent",
        email=body.email,
        password_hash=get_password_hash(body.password),
    )
    db.add(guardian)
    await db.flush()
    return await _issue_tokens(db, guardian)


@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(
    request: Request,
    body: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Sign a guardian in with email and password."""
    result = await db.execute(
        select(User).where(User.email == body.email, User.role == "parent")
    )
    guardian = result.scalar_one_or_none()
    if (
        guardian is None
        or guardian.password_hash is None
        or not verify_password(body.password, guardian.password_hash)
    ):
        raise _unauthorized("Invalid email or password")

    return await _issue_tokens(db, guardian)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Trade a refresh token for a new pair. The old one is revoked."""
    try:
        claims = decode_token(body.refresh_token)
        if claims.get("type") != "refresh":
            raise _unauthorized("Invalid refresh token")
        guardian_id = uuid.UUID(claims.get("sub") or "")
    except (JWTError, ValueError):
        raise _unauthorized("Invalid refresh token")

    stored = await _stored_refresh_token(db, body.refresh_token)
    if stored is None:
        raise _unauthorized("Refresh token not found or already revoked")

    # SQLite hands back naive datetimes
    expires_at = stored.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at < datetime.now(timezone.utc):
        raise _unauthorized("Refresh token expired")

    stored.revoked = True
    await db.flush()

    guardian = await db.get(User, guardian_id)
    if guardian is None:
        raise _unauthorized("User not found")
    return await _issue_tokens(db, guardian)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    body: RefreshRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Revoke a refresh token. Unknown tokens are accepted silently."""
    stored = await _stored_refresh_token(db, body.refresh_token)
    if stored is not None:
        stored.revoked = True
        await db.flush()
