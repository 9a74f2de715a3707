import secrets
import uuid
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.config import settings
from kidsafe.core.security import decode_token
from kidsafe.database import get_db

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Extract and validate the JWT from the Authorization header.

    Returns the User ORM instance for the authenticated user.

    Raises:
        HTTPException 401: If the token is missing, invalid, or the user
            does not exist.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_token(token)
        user_id: str | None = payload.get("sub")
        token_type: str | None = payload.get("type")
        if user_id is None or token_type != "access":
            raise credentials_exception
        user_uuid = uuid.UUID(user_id)
    except (JWTError, ValueError):
        raise credentials_exception

    # Import here to avoid circular imports (models -> database -> dependencies)
    from kidsafe.models.user import User

    result = await db.execute(select(User).where(User.id == user_uuid))
    user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception

    return user


async def require_parent(
    current_user=Depends(get_current_user),
):
    """Dependency that ensures the current user has the 'parent' role.

    Raises:
        HTTPException 403: If the user is not a parent.
    """
    if current_user.role != "parent":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Parent role required",
        )
    return current_user


async def require_operator(
    x_operator_key: Annotated[str | None, Header()] = None,
) -> None:
    """Guard for operational endpoints (batch carryover, preview).

    Raises:
        HTTPException 503: If no operator key is configured.
        HTTPException 403: If the ``X-Operator-Key`` header does not match.
    """
    if not settings.OPERATOR_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Operational endpoints are disabled",
        )
    if x_operator_key is None or not secrets.compare_digest(
        x_operator_key, settings.OPERATOR_API_KEY,
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid operator key",
        )
