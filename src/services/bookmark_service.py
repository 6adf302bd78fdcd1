"""Service layer for bookmark CRUD operations."""
import logging
from typing import Literal

from sqlalchemy import exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models.bookmark import Bookmark
from models.tag import BookmarkTag, Tag
from schemas.bookmark import BookmarkCreate, BookmarkExportItem, BookmarkUpdate
from schemas.validators import normalize_tag_names
from services.exceptions import BookmarkNotFoundError
from services.tag_service import (
    add_tags_to_bookmark,
    get_bookmark_tags_map,
    update_bookmark_tags,
)

logger = logging.getLogger(__name__)


def escape_ilike(value: str) -> str:
    r"""
    Escape special ILIKE characters for safe use in LIKE/ILIKE patterns.

    LIKE/ILIKE treats these characters specially:
    - % matches any sequence of characters
    - _ matches any single character
    - \\ is the escape character

    This function escapes them so they match literally.
    """
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def _load_for_response(db: AsyncSession, bookmark: Bookmark) -> Bookmark:
    # Server-side defaults (timestamps) and the tag view must be loaded
    # explicitly; lazy loads aren't possible under asyncio
    await db.refresh(bookmark)
    await db.refresh(bookmark, attribute_names=["tag_objects"])
    return bookmark


async def create_bookmark(
    db: AsyncSession,
    user_id: int,
    data: BookmarkCreate,
) -> Bookmark:
    """
    Create a new bookmark for a user.

    Saves exactly what is provided - no automatic URL scraping. Callers who want
    a metadata preview should use the /extract-metadata endpoint first.

    The bookmark row is written first; tags are linked afterwards and a tag
    failure is logged without failing the create.

    Args:
        db: Database session.
        user_id: User ID to create the bookmark for.
        data: Bookmark creation data.

    Returns:
        The created bookmark with its tags loaded.

    Note:
        Does not commit. Caller (session generator) handles commit at request end.
    """
    bookmark = Bookmark(
        user_id=user_id,
        url=str(data.url),
        title=data.title,
        description=data.description,
        favicon=data.favicon,
        extra_metadata=data.metadata,
    )
    db.add(bookmark)
    await db.flush()

    if data.tags and not await add_tags_to_bookmark(db, user_id, bookmark.id, data.tags):
        logger.warning("Bookmark %s was saved without its tags", bookmark.id)

    return await _load_for_response(db, bookmark)


async def get_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
) -> Bookmark | None:
    """
    Get a bookmark by ID, scoped to user.

    Returns:
        The bookmark (with tags loaded) if found, None otherwise.
    """
    result = await db.execute(
        select(Bookmark)
        .options(selectinload(Bookmark.tag_objects))
        .where(
            Bookmark.id == bookmark_id,
            Bookmark.user_id == user_id,
        ),
    )
    return result.scalar_one_or_none()


async def search_bookmarks(
    db: AsyncSession,
    user_id: int,
    query: str | None = None,
    tags: list[str] | None = None,
    sort_by: Literal["created_at", "updated_at", "title"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[Bookmark], int]:
    """
    Search and filter bookmarks for a user with pagination.

    Args:
        db: Database session.
        user_id: User ID to scope bookmarks.
        query: Case-insensitive substring search across title, description and url.
        tags: Only return bookmarks that have ALL of these tags.
        sort_by: Field to sort by.
        sort_order: Sort direction.
        offset: Pagination offset.
        limit: Pagination limit.

    Returns:
        Tuple of (list of bookmarks, total count before pagination).
    """
    base_query = (
        select(Bookmark)
        .options(selectinload(Bookmark.tag_objects))
        .where(Bookmark.user_id == user_id)
    )

    if query:
        search_pattern = f"%{escape_ilike(query)}%"
        base_query = base_query.where(
            or_(
                Bookmark.title.ilike(search_pattern, escape="\\"),
                Bookmark.description.ilike(search_pattern, escape="\\"),
                Bookmark.url.ilike(search_pattern, escape="\\"),
            ),
        )

    for tag_name in normalize_tag_names(tags):
        subq = (
            select(BookmarkTag.bookmark_id)
            .join(Tag, BookmarkTag.tag_id == Tag.id)
            .where(
                BookmarkTag.bookmark_id == Bookmark.id,
                Tag.name == tag_name,
                Tag.user_id == user_id,
            )
        )
        base_query = base_query.where(exists(subq))

    count_query = select(func.count()).select_from(base_query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    # Tiebreakers (created_at, then id) keep ordering deterministic when
    # several rows share a timestamp
    sort_columns = {
        "created_at": Bookmark.created_at,
        "updated_at": Bookmark.updated_at,
        "title": Bookmark.title,
    }
    sort_column = sort_columns[sort_by]
    if sort_order == "desc":
        base_query = base_query.order_by(
            sort_column.desc(),
            Bookmark.created_at.desc(),
            Bookmark.id.desc(),
        )
    else:
        base_query = base_query.order_by(
            sort_column.asc(),
            Bookmark.created_at.asc(),
            Bookmark.id.asc(),
        )

    result = await db.execute(base_query.offset(offset).limit(limit))
    return list(result.scalars().all()), total


async def update_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    data: BookmarkUpdate,
) -> Bookmark:
    """
    Partially update a bookmark.

    Only fields present in the request are changed. `tags` replaces the whole
    tag set when given; a tag failure is logged without failing the update.

    Raises:
        BookmarkNotFoundError: If the bookmark doesn't exist or isn't the user's.

    Note:
        Does not commit. Caller (session generator) handles commit at request end.
    """
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        raise BookmarkNotFoundError(bookmark_id)

    update_data = data.model_dump(exclude_unset=True)
    new_tags = update_data.pop("tags", None)
    if "metadata" in update_data:
        bookmark.extra_metadata = update_data.pop("metadata")
    # Title is required; an explicit null leaves it unchanged
    if update_data.get("title", "") is None:
        update_data.pop("title")

    for field, value in update_data.items():
        setattr(bookmark, field, value)

    if new_tags is not None and not await update_bookmark_tags(
        db, user_id, bookmark_id, new_tags,
    ):
        logger.warning("Tags for bookmark %s were not updated", bookmark_id)

    bookmark.updated_at = func.now()
    await db.flush()
    return await _load_for_response(db, bookmark)


async def delete_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
) -> None:
    """
    Permanently delete a bookmark. Tag links cascade; tags themselves remain.

    Raises:
        BookmarkNotFoundError: If the bookmark doesn't exist or isn't the user's.
    """
    result = await db.execute(
        select(Bookmark).where(
            Bookmark.id == bookmark_id,
            Bookmark.user_id == user_id,
        ),
    )
    bookmark = result.scalar_one_or_none()
    if bookmark is None:
        raise BookmarkNotFoundError(bookmark_id)

    await db.delete(bookmark)
    await db.flush()


async def export_bookmarks(db: AsyncSession, user_id: int) -> list[BookmarkExportItem]:
    """Return every bookmark of a user, newest first, in the export file format."""
    result = await db.execute(
        select(Bookmark)
        .where(Bookmark.user_id == user_id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc()),
    )
    bookmarks = list(result.scalars())
    tags_map = await get_bookmark_tags_map(db, [bookmark.id for bookmark in bookmarks])
    return [
        BookmarkExportItem(
            url=bookmark.url,
            title=bookmark.title,
            description=bookmark.description,
            favicon=bookmark.favicon,
            tags=tags_map[bookmark.id],
            metadata=bookmark.extra_metadata,
        )
        for bookmark in bookmarks
    ]
