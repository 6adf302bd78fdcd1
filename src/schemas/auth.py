"""Pydantic schemas for registration and login."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserCreate(BaseModel):
    """Schema for registering a new account."""

    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=8, max_length=128)
    email: str | None = Field(default=None, max_length=255)

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str) -> str:
        """Usernames are case-insensitive and may not contain whitespace."""
        normalized = v.strip().lower()
        if any(ch.isspace() for ch in normalized):
            raise ValueError("Username cannot contain whitespace")
        return normalized


class LoginRequest(BaseModel):
    """Schema for logging in with username and password."""

    username: str
    password: str

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str) -> str:
        """Match the normalization applied at registration."""
        return v.strip().lower()


class LoginResponse(BaseModel):
    """
    Response when logging in.

    IMPORTANT: `token` is the plaintext bearer token and is only shown once.
    """

    token: str
    token_type: str = "bearer"
    expires_at: datetime | None


class UserResponse(BaseModel):
    """Response model for user info."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str | None
    created_at: datetime
