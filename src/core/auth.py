"""Authentication dependencies for bearer tokens issued at login."""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.session import get_async_session
from models.user import User
from services import token_service, user_service

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def validate_bearer_token(db: AsyncSession, token: str) -> User:
    """
    Validate a bearer token and return the associated user.

    Args:
        db: Database session.
        token: The plaintext token (starts with 'bm_').

    Returns:
        User associated with the token.

    Raises:
        HTTPException: If token is malformed, invalid, expired, or revoked.
    """
    if not token.startswith("bm_"):
        raise _unauthorized("Invalid token format")

    api_token = await token_service.validate_token(db, token)
    if api_token is None:
        raise _unauthorized("Invalid or expired token")

    result = await db.execute(select(User).where(User.id == api_token.user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise _unauthorized("User not found")

    return user


async def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    """Dependency returning the raw bearer token, or 401 when absent."""
    if credentials is None:
        raise _unauthorized("Not authenticated")
    return credentials.credentials


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> User:
    """
    Dependency that validates the token and returns the current user.

    In DEV_MODE, bypasses auth and returns the local development user.
    """
    if settings.dev_mode:
        return await user_service.get_or_create_dev_user(db)

    if credentials is None:
        raise _unauthorized("Not authenticated")

    return await validate_bearer_token(db, credentials.credentials)
