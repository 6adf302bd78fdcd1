"""Tag listing endpoints."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_current_user
from models.user import User
from schemas.tag import RecentTagsResponse, TagListResponse
from services.tag_service import get_recent_tags, get_user_tags_with_counts

router = APIRouter(prefix="/tags", tags=["tags"])


@router.get("", response_model=TagListResponse)
async def list_tags(
    include_inactive: bool = True,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> TagListResponse:
    """
    Get all tags for the current user with their usage counts.

    Tags that are no longer linked to any bookmark are kept (tags are never
    deleted automatically); pass include_inactive=false to hide them.

    Results are sorted by count DESC, then name ASC.
    """
    tags = await get_user_tags_with_counts(db, current_user.id, include_inactive)
    return TagListResponse(tags=tags)


@router.get("/recent", response_model=RecentTagsResponse)
async def list_recent_tags(
    limit: int = Query(default=5, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> RecentTagsResponse:
    """Most recently created tag names, for quick tagging suggestions."""
    tags = await get_recent_tags(db, current_user.id, limit)
    return RecentTagsResponse(tags=tags)
