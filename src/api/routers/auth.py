"""Registration, login and logout endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_bearer_token, get_current_user, get_settings
from core.config import Settings
from models.user import User
from schemas.auth import LoginRequest, LoginResponse, UserCreate, UserResponse
from services import token_service, user_service
from services.exceptions import InvalidCredentialsError, UsernameTakenError

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=UserResponse, status_code=201)
async def register(
    data: UserCreate,
    db: AsyncSession = Depends(get_async_session),
) -> UserResponse:
    """Create an account."""
    try:
        user = await user_service.register_user(db, data)
    except UsernameTakenError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return UserResponse.model_validate(user)


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> LoginResponse:
    """
    Exchange a username and password for a bearer token.

    IMPORTANT: The plaintext token is only returned once.
    """
    try:
        user = await user_service.authenticate_user(db, data.username, data.password)
    except InvalidCredentialsError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    api_token, plaintext = await token_service.create_token(
        db, user.id, name="login", expires_in_days=settings.token_expires_in_days,
    )
    return LoginResponse(token=plaintext, expires_at=api_token.expires_at)


@router.post("/logout", status_code=204)
async def logout(
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_async_session),
) -> None:
    """Revoke the token used to make this request."""
    if not await token_service.revoke_token(db, token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Get the current authenticated user."""
    return UserResponse.model_validate(current_user)
