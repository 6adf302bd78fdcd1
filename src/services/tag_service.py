"""
Service layer for tag operations.

The reconciler functions (add/update/remove/get tags for a bookmark) never
raise on persistence errors: failures are logged and reported as False or an
empty list, so a tagging problem never fails the bookmark write that
triggered it. Each reconciliation runs inside its own SAVEPOINT.
"""
import logging

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db.conflicts import UniqueConflict, insert_ignoring_conflicts, write_with_recovery
from models.tag import BookmarkTag, Tag
from schemas.tag import TagCount
from schemas.validators import normalize_tag_names

logger = logging.getLogger(__name__)

TAG_NAME_CONFLICT = UniqueConflict(
    name="uq_tags_user_id_name",
    table="tags",
    columns=("user_id", "name"),
)


async def _get_user_tag_ids(db: AsyncSession, user_id: int) -> dict[str, int]:
    """Return a name -> id map of every tag the user owns."""
    result = await db.execute(select(Tag.id, Tag.name).where(Tag.user_id == user_id))
    return {row.name: row.id for row in result}


async def _get_tag_ids_by_name(
    db: AsyncSession,
    user_id: int,
    names: list[str],
) -> dict[str, int]:
    result = await db.execute(
        select(Tag.id, Tag.name).where(
            Tag.user_id == user_id,
            Tag.name.in_(names),
        ),
    )
    return {row.name: row.id for row in result}


async def _create_tags(
    db: AsyncSession,
    user_id: int,
    names: list[str],
) -> dict[str, int]:
    """
    Bulk insert tags and return their ids.

    If a concurrent request created one of the tags first, the whole batch
    insert is rolled back to its savepoint; recovery then inserts whatever is
    still missing (skipping conflicts) and re-reads the ids by name.
    """
    rows = [{"user_id": user_id, "name": name} for name in names]

    async def write() -> dict[str, int]:
        result = await db.execute(
            insert(Tag).values(rows).returning(Tag.id, Tag.name),
        )
        return {row.name: row.id for row in result}

    async def recover() -> dict[str, int]:
        await insert_ignoring_conflicts(db, Tag.__table__, rows, ["user_id", "name"])
        return await _get_tag_ids_by_name(db, user_id, names)

    return await write_with_recovery(db, write, recover, TAG_NAME_CONFLICT)


async def _link_tags(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    names: list[str],
) -> None:
    tag_ids = await _get_user_tag_ids(db, user_id)
    to_create = [name for name in names if name not in tag_ids]
    if to_create:
        tag_ids.update(await _create_tags(db, user_id, to_create))

    missing = [name for name in names if name not in tag_ids]
    if missing:
        raise RuntimeError(f"Could not resolve tags after recovery: {missing}")

    await insert_ignoring_conflicts(
        db,
        BookmarkTag.__table__,
        [
            {"bookmark_id": bookmark_id, "tag_id": tag_ids[name], "user_id": user_id}
            for name in names
        ],
        ["bookmark_id", "tag_id"],
    )


async def add_tags_to_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    tag_names: list[str] | None,
) -> bool:
    """
    Link tags to a bookmark, creating any tags the user doesn't have yet.

    Names are trimmed, lowercased and deduplicated first. Links that already
    exist are left alone, so calling this twice with the same names is a
    no-op the second time.

    Args:
        db: Database session.
        user_id: Owner of the bookmark and tags.
        bookmark_id: Bookmark to tag.
        tag_names: Raw tag names.

    Returns:
        True on success (including when there was nothing to add), False if
        the tags could not be persisted.
    """
    names = normalize_tag_names(tag_names)
    if not names:
        return True

    try:
        async with db.begin_nested():
            await _link_tags(db, user_id, bookmark_id, names)
    except (SQLAlchemyError, RuntimeError):
        logger.exception("Failed to add tags %s to bookmark %s", names, bookmark_id)
        return False
    return True


async def update_bookmark_tags(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    tag_names: list[str] | None,
) -> bool:
    """
    Replace the full tag set of a bookmark.

    Existing links are deleted and the new set is linked. An empty or None
    list clears the bookmark's tags. The tags themselves are never deleted.

    Returns:
        True on success, False if the tags could not be persisted.
    """
    names = normalize_tag_names(tag_names)
    try:
        async with db.begin_nested():
            await db.execute(
                delete(BookmarkTag).where(
                    BookmarkTag.user_id == user_id,
                    BookmarkTag.bookmark_id == bookmark_id,
                ),
            )
            if names:
                await _link_tags(db, user_id, bookmark_id, names)
    except (SQLAlchemyError, RuntimeError):
        logger.exception("Failed to update tags for bookmark %s", bookmark_id)
        return False
    return True


async def remove_tags_from_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    tag_names: list[str] | None,
) -> bool:
    """
    Unlink the named tags from a bookmark.

    Names the user has no tag for are ignored.

    Returns:
        True on success, False if the links could not be deleted.
    """
    names = normalize_tag_names(tag_names)
    if not names:
        return True

    try:
        async with db.begin_nested():
            tag_ids = await _get_tag_ids_by_name(db, user_id, names)
            if tag_ids:
                await db.execute(
                    delete(BookmarkTag).where(
                        BookmarkTag.user_id == user_id,
                        BookmarkTag.bookmark_id == bookmark_id,
                        BookmarkTag.tag_id.in_(list(tag_ids.values())),
                    ),
                )
    except SQLAlchemyError:
        logger.exception("Failed to remove tags %s from bookmark %s", names, bookmark_id)
        return False
    return True


async def get_tags_for_bookmark(db: AsyncSession, bookmark_id: int) -> list[str]:
    """
    Get the tag names linked to a bookmark, in the order they were linked.

    Returns an empty list for a bookmark with no tags, an unknown bookmark,
    or when the lookup fails.
    """
    try:
        result = await db.execute(
            select(Tag.name)
            .join(BookmarkTag, BookmarkTag.tag_id == Tag.id)
            .where(BookmarkTag.bookmark_id == bookmark_id)
            .order_by(BookmarkTag.id),
        )
    except SQLAlchemyError:
        logger.exception("Failed to load tags for bookmark %s", bookmark_id)
        return []
    return list(result.scalars())


async def get_bookmark_tags_map(
    db: AsyncSession,
    bookmark_ids: list[int],
) -> dict[int, list[str]]:
    """Get tag names for many bookmarks in a single query."""
    tags_map: dict[int, list[str]] = {bookmark_id: [] for bookmark_id in bookmark_ids}
    if not bookmark_ids:
        return tags_map

    result = await db.execute(
        select(BookmarkTag.bookmark_id, Tag.name)
        .join(Tag, BookmarkTag.tag_id == Tag.id)
        .where(BookmarkTag.bookmark_id.in_(bookmark_ids))
        .order_by(BookmarkTag.id),
    )
    for row in result:
        tags_map[row.bookmark_id].append(row.name)
    return tags_map


async def get_user_tags_with_counts(
    db: AsyncSession,
    user_id: int,
    include_zero_count: bool = True,
) -> list[TagCount]:
    """
    Get all tags for a user with their usage counts.

    Args:
        db: Database session.
        user_id: User ID to scope tags.
        include_zero_count: If True, include tags not linked to any bookmark.

    Returns:
        List of TagCount objects sorted by count desc, then name asc.
    """
    # COUNT ignores NULLs, so with the outer join unused tags get count=0
    usage = func.count(BookmarkTag.id)
    stmt = (
        select(Tag.name, usage.label("count"))
        .where(Tag.user_id == user_id)
        .group_by(Tag.id, Tag.name)
        .order_by(usage.desc(), Tag.name.asc())
    )
    if include_zero_count:
        stmt = stmt.outerjoin(BookmarkTag, Tag.id == BookmarkTag.tag_id)
    else:
        stmt = stmt.join(BookmarkTag, Tag.id == BookmarkTag.tag_id)

    result = await db.execute(stmt)
    return [TagCount(name=row.name, count=row.count) for row in result]


async def get_recent_tags(
    db: AsyncSession,
    user_id: int,
    limit: int = 5,
) -> list[str]:
    """Get the user's most recently created tag names, newest first."""
    result = await db.execute(
        select(Tag.name)
        .where(Tag.user_id == user_id)
        .order_by(Tag.created_at.desc(), Tag.id.desc())
        .limit(limit),
    )
    return list(result.scalars())
