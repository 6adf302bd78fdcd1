"""Tests for the tag reconciler and tag queries."""
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from models.tag import BookmarkTag, Tag
from models.user import User
from services.tag_service import (
    add_tags_to_bookmark,
    get_bookmark_tags_map,
    get_recent_tags,
    get_tags_for_bookmark,
    get_user_tags_with_counts,
    remove_tags_from_bookmark,
    update_bookmark_tags,
)


async def _make_bookmark(
    db: AsyncSession,
    user: User,
    url: str = "https://example.com/a",
) -> Bookmark:
    bookmark = Bookmark(user_id=user.id, url=url, title="Example")
    db.add(bookmark)
    await db.flush()
    return bookmark


@pytest.fixture
async def bookmark(db_session: AsyncSession, test_user: User) -> Bookmark:
    """Create a bookmark owned by test_user."""
    return await _make_bookmark(db_session, test_user)


async def _tag_count(db: AsyncSession, user_id: int, name: str | None = None) -> int:
    query = select(func.count()).select_from(Tag).where(Tag.user_id == user_id)
    if name is not None:
        query = query.where(Tag.name == name)
    return (await db.execute(query)).scalar_one()


# =============================================================================
# add_tags_to_bookmark
# =============================================================================


async def test__add_tags_to_bookmark__links_normalized_deduplicated_tags(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    """Add then get returns the trimmed, lowercased, deduplicated names in input order."""
    ok = await add_tags_to_bookmark(
        db_session, test_user.id, bookmark.id, ["  Python ", "web", "PYTHON", "", "   "],
    )

    assert ok is True
    assert await get_tags_for_bookmark(db_session, bookmark.id) == ["python", "web"]
    assert await _tag_count(db_session, test_user.id) == 2


async def test__add_tags_to_bookmark__empty_input_is_a_successful_noop(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    assert await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, []) is True
    assert await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, None) is True
    assert await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, [" ", ""]) is True
    assert await get_tags_for_bookmark(db_session, bookmark.id) == []
    assert await _tag_count(db_session, test_user.id) == 0


async def test__add_tags_to_bookmark__is_idempotent(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    """Adding the same tags twice leaves one tag row and one link per name."""
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["a", "b"])
    ok = await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["b", "a"])

    assert ok is True
    assert await get_tags_for_bookmark(db_session, bookmark.id) == ["a", "b"]
    links = await db_session.execute(
        select(func.count())
        .select_from(BookmarkTag)
        .where(BookmarkTag.bookmark_id == bookmark.id),
    )
    assert links.scalar_one() == 2
    assert await _tag_count(db_session, test_user.id) == 2


async def test__add_tags_to_bookmark__keeps_existing_links(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["first"])
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["second"])

    assert await get_tags_for_bookmark(db_session, bookmark.id) == ["first", "second"]


async def test__add_tags_to_bookmark__reuses_tags_across_bookmarks(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    other = await _make_bookmark(db_session, test_user, "https://example.com/b")

    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["shared"])
    await add_tags_to_bookmark(db_session, test_user.id, other.id, ["shared"])

    assert await _tag_count(db_session, test_user.id, "shared") == 1
    assert await get_tags_for_bookmark(db_session, other.id) == ["shared"]


async def test__add_tags_to_bookmark__tags_are_scoped_per_user(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
    bookmark: Bookmark,
) -> None:
    """The same name owned by two users is two distinct tag rows."""
    other_bookmark = await _make_bookmark(db_session, other_user)

    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["python"])
    await add_tags_to_bookmark(db_session, other_user.id, other_bookmark.id, ["python"])

    assert await _tag_count(db_session, test_user.id, "python") == 1
    assert await _tag_count(db_session, other_user.id, "python") == 1


async def test__add_tags_to_bookmark__recovers_when_tag_was_created_concurrently(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    """
    Simulate losing the race: the tag exists but our snapshot of the user's
    tags was taken before it was created, so the insert hits the unique
    constraint and the reconciler must re-read instead of failing.
    """
    db_session.add(Tag(user_id=test_user.id, name="python"))
    await db_session.flush()

    with patch(
        "services.tag_service._get_user_tag_ids",
        new=AsyncMock(return_value={}),
    ):
        ok = await add_tags_to_bookmark(
            db_session, test_user.id, bookmark.id, ["python", "web"],
        )

    assert ok is True
    assert await _tag_count(db_session, test_user.id, "python") == 1
    assert await _tag_count(db_session, test_user.id, "web") == 1
    assert await get_tags_for_bookmark(db_session, bookmark.id) == ["python", "web"]


async def test__add_tags_to_bookmark__unresolved_tags_after_conflict_return_false(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    """The re-read after a conflict still can't find the tags: report failure, link nothing."""
    db_session.add(Tag(user_id=test_user.id, name="python"))
    await db_session.flush()

    with (
        patch("services.tag_service._get_user_tag_ids", new=AsyncMock(return_value={})),
        patch("services.tag_service._get_tag_ids_by_name", new=AsyncMock(return_value={})),
    ):
        ok = await add_tags_to_bookmark(
            db_session, test_user.id, bookmark.id, ["python", "web"],
        )

    assert ok is False
    assert await get_tags_for_bookmark(db_session, bookmark.id) == []
    assert await _tag_count(db_session, test_user.id, "python") == 1
    # Rows inserted during recovery are rolled back with the reconciler's savepoint
    assert await _tag_count(db_session, test_user.id, "web") == 0


async def test__add_tags_to_bookmark__recovery_error_returns_false(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    db_session.add(Tag(user_id=test_user.id, name="python"))
    await db_session.flush()

    with (
        patch("services.tag_service._get_user_tag_ids", new=AsyncMock(return_value={})),
        patch(
            "services.tag_service._get_tag_ids_by_name",
            new=AsyncMock(side_effect=SQLAlchemyError("re-read failed")),
        ),
    ):
        ok = await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["python"])

    assert ok is False
    assert await get_tags_for_bookmark(db_session, bookmark.id) == []


async def test__add_tags_to_bookmark__persistence_failure_returns_false(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    """A failed reconciliation is reported, not raised, and the bookmark survives."""
    with patch(
        "services.tag_service.insert_ignoring_conflicts",
        new=AsyncMock(side_effect=SQLAlchemyError("link insert failed")),
    ):
        ok = await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["python"])

    assert ok is False
    assert await get_tags_for_bookmark(db_session, bookmark.id) == []
    # The tag row created before the failure was rolled back with the savepoint
    assert await _tag_count(db_session, test_user.id) == 0
    still_there = await db_session.execute(select(Bookmark).where(Bookmark.id == bookmark.id))
    assert still_there.scalar_one_or_none() is not None


# =============================================================================
# update_bookmark_tags
# =============================================================================


async def test__update_bookmark_tags__replaces_tag_set(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["old", "keep"])

    ok = await update_bookmark_tags(db_session, test_user.id, bookmark.id, ["keep", "New"])

    assert ok is True
    assert await get_tags_for_bookmark(db_session, bookmark.id) == ["keep", "new"]


async def test__update_bookmark_tags__empty_list_clears_tags(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["a", "b"])

    assert await update_bookmark_tags(db_session, test_user.id, bookmark.id, []) is True
    assert await get_tags_for_bookmark(db_session, bookmark.id) == []


async def test__update_bookmark_tags__none_clears_tags(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["a"])

    assert await update_bookmark_tags(db_session, test_user.id, bookmark.id, None) is True
    assert await get_tags_for_bookmark(db_session, bookmark.id) == []


async def test__update_bookmark_tags__orphaned_tags_are_kept(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    """Tags are never deleted automatically, even when nothing links to them."""
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["orphan"])
    await update_bookmark_tags(db_session, test_user.id, bookmark.id, [])

    assert await _tag_count(db_session, test_user.id, "orphan") == 1


async def test__update_bookmark_tags__failure_keeps_previous_tags(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    """The delete and re-link happen atomically."""
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["before"])

    with patch(
        "services.tag_service.insert_ignoring_conflicts",
        new=AsyncMock(side_effect=SQLAlchemyError("link insert failed")),
    ):
        ok = await update_bookmark_tags(db_session, test_user.id, bookmark.id, ["after"])

    assert ok is False
    assert await get_tags_for_bookmark(db_session, bookmark.id) == ["before"]


# =============================================================================
# remove_tags_from_bookmark / get_tags_for_bookmark
# =============================================================================


async def test__remove_tags_from_bookmark__removes_named_links_only(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["a", "b", "c"])

    ok = await remove_tags_from_bookmark(
        db_session, test_user.id, bookmark.id, ["B", "unknown"],
    )

    assert ok is True
    assert await get_tags_for_bookmark(db_session, bookmark.id) == ["a", "c"]
    # The tag itself remains
    assert await _tag_count(db_session, test_user.id, "b") == 1


async def test__get_tags_for_bookmark__unknown_bookmark_returns_empty(
    db_session: AsyncSession,
) -> None:
    assert await get_tags_for_bookmark(db_session, 999_999) == []


async def test__get_tags_for_bookmark__database_error_returns_empty(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["a"])

    with patch.object(
        db_session, "execute", new=AsyncMock(side_effect=SQLAlchemyError("db down")),
    ):
        assert await get_tags_for_bookmark(db_session, bookmark.id) == []


async def test__deleting_bookmark__removes_links_but_not_tags(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["kept"])

    await db_session.delete(bookmark)
    await db_session.flush()

    links = await db_session.execute(select(func.count()).select_from(BookmarkTag))
    assert links.scalar_one() == 0
    assert await _tag_count(db_session, test_user.id, "kept") == 1


# =============================================================================
# Tag queries
# =============================================================================


async def test__get_bookmark_tags_map__groups_names_by_bookmark(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    other = await _make_bookmark(db_session, test_user, "https://example.com/b")
    untagged = await _make_bookmark(db_session, test_user, "https://example.com/c")
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["x", "y"])
    await add_tags_to_bookmark(db_session, test_user.id, other.id, ["y"])

    tags_map = await get_bookmark_tags_map(db_session, [bookmark.id, other.id, untagged.id])

    assert tags_map == {bookmark.id: ["x", "y"], other.id: ["y"], untagged.id: []}


async def test__get_bookmark_tags_map__empty_input(db_session: AsyncSession) -> None:
    assert await get_bookmark_tags_map(db_session, []) == {}


async def test__get_user_tags_with_counts__sorted_by_count_then_name(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    other = await _make_bookmark(db_session, test_user, "https://example.com/b")
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["zeta", "alpha"])
    await add_tags_to_bookmark(db_session, test_user.id, other.id, ["zeta", "beta"])
    await add_tags_to_bookmark(db_session, test_user.id, other.id, ["unused"])
    await remove_tags_from_bookmark(db_session, test_user.id, other.id, ["unused"])

    tags = await get_user_tags_with_counts(db_session, test_user.id)

    assert [(t.name, t.count) for t in tags] == [
        ("zeta", 2),
        ("alpha", 1),
        ("beta", 1),
        ("unused", 0),
    ]


async def test__get_user_tags_with_counts__can_exclude_unused(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, ["used", "unused"])
    await remove_tags_from_bookmark(db_session, test_user.id, bookmark.id, ["unused"])

    tags = await get_user_tags_with_counts(db_session, test_user.id, include_zero_count=False)

    assert [t.name for t in tags] == ["used"]


async def test__get_user_tags_with_counts__excludes_other_users(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    other_bookmark = await _make_bookmark(db_session, other_user)
    await add_tags_to_bookmark(db_session, other_user.id, other_bookmark.id, ["private"])

    assert await get_user_tags_with_counts(db_session, test_user.id) == []


async def test__get_recent_tags__newest_first_with_limit(
    db_session: AsyncSession,
    test_user: User,
    bookmark: Bookmark,
) -> None:
    for name in ["one", "two", "three", "four", "five", "six"]:
        await add_tags_to_bookmark(db_session, test_user.id, bookmark.id, [name])

    assert await get_recent_tags(db_session, test_user.id) == [
        "six", "five", "four", "three", "two",
    ]
    assert await get_recent_tags(db_session, test_user.id, limit=2) == ["six", "five"]
