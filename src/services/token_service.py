"""Service layer for bearer tokens issued at login."""
import hashlib
import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.api_token import ApiToken


def generate_token() -> tuple[str, str, str]:
    """
    Generate a secure bearer token.

    Returns:
        Tuple of (plaintext_token, token_hash, token_prefix).
        The plaintext should only be shown once, in the login response.
    """
    raw = secrets.token_urlsafe(32)
    plaintext = f"bm_{raw}"
    token_hash = hash_token(plaintext)
    token_prefix = plaintext[:12]  # "bm_" + first 9 chars of raw
    return plaintext, token_hash, token_prefix


def hash_token(token: str) -> str:
    """Hash a token for comparison against stored hashes."""
    return hashlib.sha256(token.encode()).hexdigest()


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


async def create_token(
    db: AsyncSession,
    user_id: int,
    name: str = "login",
    expires_in_days: int | None = None,
) -> tuple[ApiToken, str]:
    """
    Issue a new token for a user.

    Args:
        db: Database session.
        user_id: ID of the user the token authenticates.
        name: Where the token came from.
        expires_in_days: Lifetime in days; None for a token that never expires.

    Returns:
        Tuple of (ApiToken model, plaintext_token).

    Note:
        Does not commit. Caller (session generator) handles commit at request end.
    """
    plaintext, token_hash, token_prefix = generate_token()

    expires_at = None
    if expires_in_days is not None:
        expires_at = datetime.now(UTC) + timedelta(days=expires_in_days)

    api_token = ApiToken(
        user_id=user_id,
        name=name,
        token_hash=token_hash,
        token_prefix=token_prefix,
        expires_at=expires_at,
    )
    db.add(api_token)
    await db.flush()
    return api_token, plaintext


async def revoke_token(db: AsyncSession, plaintext_token: str) -> bool:
    """
    Delete the token matching a plaintext value.

    Returns:
        True if a token was deleted, False if none matched.
    """
    result = await db.execute(
        select(ApiToken).where(ApiToken.token_hash == hash_token(plaintext_token)),
    )
    api_token = result.scalar_one_or_none()
    if api_token is None:
        return False
    await db.delete(api_token)
    await db.flush()
    return True


async def validate_token(
    db: AsyncSession,
    plaintext_token: str,
) -> ApiToken | None:
    """
    Validate a plaintext token and return the associated ApiToken if valid.

    Hashes the input token before database lookup, so lookup time doesn't
    depend on how much of a guessed token is correct.

    Returns:
        ApiToken if valid and not expired, None otherwise.

    Note:
        Updates last_used_at on successful validation (uses flush, not commit).
    """
    result = await db.execute(
        select(ApiToken).where(ApiToken.token_hash == hash_token(plaintext_token)),
    )
    api_token = result.scalar_one_or_none()

    if api_token is None:
        return None

    now = datetime.now(UTC)
    if api_token.expires_at is not None and now > _as_aware(api_token.expires_at):
        return None

    api_token.last_used_at = now
    await db.flush()

    return api_token
