"""Bookmark CRUD, tagging and import/export endpoints."""
from datetime import UTC, datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_current_user
from models.user import User
from schemas.bookmark import (
    BookmarkCreate,
    BookmarkListResponse,
    BookmarkResponse,
    BookmarkUpdate,
    ImportResult,
)
from schemas.tag import BookmarkTagsRequest, BookmarkTagsResponse
from services import bookmark_service, import_service, tag_service
from services.exceptions import BookmarkNotFoundError, ImportValidationError

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])


async def _get_owned_bookmark_id(db: AsyncSession, user_id: int, bookmark_id: int) -> int:
    bookmark = await bookmark_service.get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return bookmark.id


@router.post("", response_model=BookmarkResponse, status_code=201)
async def create_bookmark(
    data: BookmarkCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """
    Create a new bookmark.

    If the tags can't be saved the bookmark is still created (without them).
    """
    bookmark = await bookmark_service.create_bookmark(db, current_user.id, data)
    return BookmarkResponse.model_validate(bookmark)


@router.get("", response_model=BookmarkListResponse)
async def list_bookmarks(
    q: str | None = Query(default=None, description="Search query (matches title, description, url)"),  # noqa: E501
    tags: list[str] = Query(default=[], description="Only bookmarks having ALL of these tags"),
    sort_by: Literal["created_at", "updated_at", "title"] = Query(default="created_at", description="Sort field"),  # noqa: E501
    sort_order: Literal["asc", "desc"] = Query(default="desc", description="Sort order"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    limit: int = Query(default=50, ge=1, le=100, description="Pagination limit"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkListResponse:
    """
    List bookmarks for the current user, newest first by default.

    - **q**: Text search across title, description and url (case-insensitive)
    - **tags**: Filter by one or more tags (normalized to lowercase)
    - **sort_by**: Sort by created_at (default), updated_at or title
    - **sort_order**: Sort ascending or descending (default: desc)
    """
    bookmarks, total = await bookmark_service.search_bookmarks(
        db=db,
        user_id=current_user.id,
        query=q,
        tags=tags or None,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=offset,
        limit=limit,
    )
    items = [BookmarkResponse.model_validate(b) for b in bookmarks]
    return BookmarkListResponse(
        items=items,
        total=total,
        offset=offset,
        limit=limit,
        has_more=offset + len(items) < total,
    )


@router.get("/export")
async def export_bookmarks(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> JSONResponse:
    """Download every bookmark as a JSON file that /api/bookmarks/import accepts."""
    items = await bookmark_service.export_bookmarks(db, current_user.id)
    filename = f"bookmarks-export-{datetime.now(UTC).date().isoformat()}.json"
    return JSONResponse(
        content=[item.model_dump(mode="json") for item in items],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import", response_model=ImportResult)
async def import_bookmarks(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> ImportResult:
    """
    Import bookmarks from an exported JSON file.

    The body must be a JSON array. Entries that aren't objects with a string
    `url` are skipped; entries missing a title get one derived from the URL.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Import file is not valid JSON")
    try:
        return await import_service.import_bookmarks(db, current_user.id, payload)
    except ImportValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{bookmark_id}", response_model=BookmarkResponse)
async def get_bookmark(
    bookmark_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Get a single bookmark by ID."""
    bookmark = await bookmark_service.get_bookmark(db, current_user.id, bookmark_id)
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)


@router.put("/{bookmark_id}", response_model=BookmarkResponse)
@router.patch("/{bookmark_id}", response_model=BookmarkResponse)
async def update_bookmark(
    bookmark_id: int,
    data: BookmarkUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """
    Update a bookmark. Only the fields sent are changed.

    `tags` replaces the whole tag set; `[]` clears it and omitting it (or
    sending null) leaves the tags alone.
    """
    try:
        bookmark = await bookmark_service.update_bookmark(
            db, current_user.id, bookmark_id, data,
        )
    except BookmarkNotFoundError:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> None:
    """Permanently delete a bookmark."""
    try:
        await bookmark_service.delete_bookmark(db, current_user.id, bookmark_id)
    except BookmarkNotFoundError:
        raise HTTPException(status_code=404, detail="Bookmark not found")


@router.get("/{bookmark_id}/tags", response_model=BookmarkTagsResponse)
async def get_bookmark_tags(
    bookmark_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkTagsResponse:
    """Tags linked to a bookmark, in the order they were added."""
    await _get_owned_bookmark_id(db, current_user.id, bookmark_id)
    tags = await tag_service.get_tags_for_bookmark(db, bookmark_id)
    return BookmarkTagsResponse(bookmark_id=bookmark_id, tags=tags)


@router.post("/{bookmark_id}/tags", response_model=BookmarkTagsResponse)
async def add_bookmark_tags(
    bookmark_id: int,
    data: BookmarkTagsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkTagsResponse:
    """Add tags to a bookmark, keeping the ones it already has."""
    await _get_owned_bookmark_id(db, current_user.id, bookmark_id)
    if not await tag_service.add_tags_to_bookmark(db, current_user.id, bookmark_id, data.tags):
        raise HTTPException(status_code=500, detail="Failed to save tags")
    tags = await tag_service.get_tags_for_bookmark(db, bookmark_id)
    return BookmarkTagsResponse(bookmark_id=bookmark_id, tags=tags)


@router.put("/{bookmark_id}/tags", response_model=BookmarkTagsResponse)
async def replace_bookmark_tags(
    bookmark_id: int,
    data: BookmarkTagsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkTagsResponse:
    """Replace a bookmark's tags. An empty list removes all of them."""
    await _get_owned_bookmark_id(db, current_user.id, bookmark_id)
    if not await tag_service.update_bookmark_tags(db, current_user.id, bookmark_id, data.tags):
        raise HTTPException(status_code=500, detail="Failed to save tags")
    tags = await tag_service.get_tags_for_bookmark(db, bookmark_id)
    return BookmarkTagsResponse(bookmark_id=bookmark_id, tags=tags)


@router.delete("/{bookmark_id}/tags", response_model=BookmarkTagsResponse)
async def remove_bookmark_tags(
    bookmark_id: int,
    tags: list[str] = Query(default=[], description="Tags to remove"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkTagsResponse:
    """Remove tags from a bookmark. Tags it doesn't have are ignored."""
    await _get_owned_bookmark_id(db, current_user.id, bookmark_id)
    if not await tag_service.remove_tags_from_bookmark(db, current_user.id, bookmark_id, tags):
        raise HTTPException(status_code=500, detail="Failed to remove tags")
    remaining = await tag_service.get_tags_for_bookmark(db, bookmark_id)
    return BookmarkTagsResponse(bookmark_id=bookmark_id, tags=remaining)
