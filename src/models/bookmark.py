"""Bookmark model for storing user bookmarks."""
from typing import TYPE_CHECKING, Any

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, JSONType, TimestampMixin

if TYPE_CHECKING:
    from models.tag import Tag
    from models.user import User


class Bookmark(Base, TimestampMixin):
    """Bookmark model - stores URLs with extracted metadata and tags."""

    __tablename__ = "bookmarks"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    favicon: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes, so the attribute is renamed
    extra_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True,
    )

    user: Mapped["User"] = relationship(back_populates="bookmarks")
    # Read-only view of linked tags; links are written by tag_service only
    tag_objects: Mapped[list["Tag"]] = relationship(
        secondary="bookmark_tags",
        order_by="BookmarkTag.id",
        viewonly=True,
    )
