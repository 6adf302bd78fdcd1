"""Service layer for user accounts."""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.passwords import hash_password, verify_password
from db.conflicts import UniqueConflict, write_with_recovery
from models.user import User
from schemas.auth import UserCreate
from services.exceptions import InvalidCredentialsError, UsernameTakenError

logger = logging.getLogger(__name__)

USERNAME_CONFLICT = UniqueConflict(
    name="ix_users_username",
    table="users",
    columns=("username",),
)
DEV_USERNAME = "dev-user"
# Never produced by hash_password, so the account can't be logged into
UNUSABLE_PASSWORD = "!"


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    """Look up a user by (normalized) username."""
    result = await db.execute(select(User).where(User.username == username.strip().lower()))
    return result.scalar_one_or_none()


async def register_user(db: AsyncSession, data: UserCreate) -> User:
    """
    Create an account.

    Raises:
        UsernameTakenError: If the username already exists, including when a
            concurrent registration claims it between the check and the insert.
    """
    if await get_user_by_username(db, data.username) is not None:
        raise UsernameTakenError(data.username)

    user = User(
        username=data.username,
        email=data.email,
        password_hash=hash_password(data.password),
    )
    try:
        async with db.begin_nested():
            db.add(user)
            await db.flush()
    except IntegrityError as e:
        if USERNAME_CONFLICT.matches(e):
            raise UsernameTakenError(data.username) from e
        raise
    await db.refresh(user)
    logger.info("Registered user %s", user.username)
    return user


async def authenticate_user(db: AsyncSession, username: str, password: str) -> User:
    """
    Return the user matching a username/password pair.

    Raises:
        InvalidCredentialsError: If the user doesn't exist or the password is wrong.
    """
    user = await get_user_by_username(db, username)
    if user is None or not verify_password(password, user.password_hash):
        raise InvalidCredentialsError()
    return user


async def get_or_create_user(db: AsyncSession, username: str) -> User:
    """
    Get a user by username, creating a password-less account if missing.

    Note: Uses flush(), not commit. Session generator handles commit at request end.
    """
    user = await get_user_by_username(db, username)
    if user is not None:
        return user

    async def write() -> User:
        new_user = User(username=username, password_hash=UNUSABLE_PASSWORD)
        db.add(new_user)
        await db.flush()
        await db.refresh(new_user)
        return new_user

    async def recover() -> User:
        existing = await get_user_by_username(db, username)
        if existing is None:
            raise RuntimeError(f"User '{username}' missing after conflicting insert")
        return existing

    return await write_with_recovery(db, write, recover, USERNAME_CONFLICT)


async def get_or_create_dev_user(db: AsyncSession) -> User:
    """Get or create the local user DEV_MODE requests run as."""
    return await get_or_create_user(db, DEV_USERNAME)
