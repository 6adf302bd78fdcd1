"""Pydantic schemas for bookmark endpoints."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator

from schemas.validators import (
    validate_description_length,
    validate_tag_names,
    validate_title_length,
)


class BookmarkCreate(BaseModel):
    """Schema for creating a new bookmark."""

    # HttpUrl normalizes root domains with trailing slash (example.com -> example.com/)
    # but preserves paths as-is (example.com/page stays example.com/page)
    url: HttpUrl
    title: str = Field(..., min_length=1)
    description: str | None = None
    favicon: str | None = None
    tags: list[str] = []
    metadata: dict[str, Any] | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: list[str] | None) -> list[str]:
        """Normalize tags (trim, lowercase, dedupe)."""
        if v is None:
            return []
        return validate_tag_names(v)

    @field_validator("title")
    @classmethod
    def check_title_length(cls, v: str) -> str:
        """Validate title length."""
        return validate_title_length(v)

    @field_validator("description")
    @classmethod
    def check_description_length(cls, v: str | None) -> str | None:
        """Validate description length."""
        return validate_description_length(v)


class BookmarkUpdate(BaseModel):
    """
    Schema for updating an existing bookmark.

    Omitted fields are left unchanged. `tags: []` clears all tags while
    `tags: null` (or omitting it) leaves them alone.
    """

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    favicon: str | None = None
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: list[str] | None) -> list[str] | None:
        """Normalize tags if provided."""
        if v is None:
            return None
        return validate_tag_names(v)

    @field_validator("title")
    @classmethod
    def check_title_length(cls, v: str | None) -> str | None:
        """Validate title length."""
        return validate_title_length(v)

    @field_validator("description")
    @classmethod
    def check_description_length(cls, v: str | None) -> str | None:
        """Validate description length."""
        return validate_description_length(v)


class BookmarkResponse(BaseModel):
    """
    Schema for bookmark responses.

    Note: Uses model_validator to extract tag names from the tag_objects
    relationship when eagerly loaded.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    title: str
    description: str | None
    favicon: str | None
    metadata: dict[str, Any] | None
    tags: list[str]
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="before")
    @classmethod
    def extract_tag_names(cls, data: Any) -> Any:
        """
        Flatten a Bookmark model into a dict.

        Only accesses tag_objects if it's already loaded (not lazy) to avoid
        triggering database queries outside async context.
        """
        if hasattr(data, "__dict__") and hasattr(data, "extra_metadata"):
            data_dict = {
                key: getattr(data, key)
                for key in [
                    "id", "url", "title", "description", "favicon",
                    "created_at", "updated_at",
                ]
            }
            data_dict["metadata"] = data.extra_metadata
            # SQLAlchemy sets the __dict__ entry when the relationship is loaded
            if data.__dict__.get("tag_objects") is not None:
                data_dict["tags"] = [tag.name for tag in data.__dict__["tag_objects"]]
            else:
                data_dict["tags"] = []
            return data_dict
        return data


class BookmarkListResponse(BaseModel):
    """Schema for paginated bookmark list responses."""

    items: list[BookmarkResponse]
    total: int  # Total count of bookmarks matching the query (before pagination)
    offset: int
    limit: int
    has_more: bool


class BookmarkExportItem(BaseModel):
    """One entry of an exported bookmarks file."""

    url: str
    title: str
    description: str | None = None
    favicon: str | None = None
    tags: list[str] = []
    metadata: dict[str, Any] | None = None


class ImportResult(BaseModel):
    """Outcome of a bookmarks import."""

    imported: int
    skipped: int  # Entries rejected before reaching the create path
    failed: int  # Valid-looking entries the create path rejected
