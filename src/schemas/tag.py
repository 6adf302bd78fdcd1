"""Pydantic schemas for tag endpoints."""
from pydantic import BaseModel, field_validator

from schemas.validators import validate_tag_names


class TagCount(BaseModel):
    """Schema for a tag with its usage count."""

    name: str
    count: int


class TagListResponse(BaseModel):
    """Schema for the tags list response."""

    tags: list[TagCount]


class RecentTagsResponse(BaseModel):
    """Most recently created tag names, newest first."""

    tags: list[str]


class BookmarkTagsRequest(BaseModel):
    """Tag names to add to, or replace on, a bookmark."""

    tags: list[str]

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: list[str] | None) -> list[str]:
        """Normalize tags (trim, lowercase, dedupe)."""
        if v is None:
            return []
        return validate_tag_names(v)


class BookmarkTagsResponse(BaseModel):
    """Tags currently linked to a bookmark."""

    bookmark_id: int
    tags: list[str]
