"""SQLAlchemy models."""
from models.api_token import ApiToken
from models.base import Base, TimestampMixin
from models.tag import BookmarkTag, Tag  # Must be before bookmark due to secondary lookup
from models.bookmark import Bookmark
from models.user import User

__all__ = [
    "ApiToken",
    "Base",
    "Bookmark",
    "BookmarkTag",
    "Tag",
    "TimestampMixin",
    "User",
]
