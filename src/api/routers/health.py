"""Health check endpoint."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_metadata_extractor
from services.metadata_extractor import MetadataExtractor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    # Network tiers tried before the URL-only fallback, in order
    metadata_sources: list[str]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_async_session),
    extractor: MetadataExtractor = Depends(get_metadata_extractor),
) -> HealthResponse:
    """
    Check database connectivity and report the extraction chain.

    A database failure degrades the service rather than failing the check;
    bookmarks can't be stored but metadata extraction still works.
    """
    database = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        database = "unhealthy"

    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        database=database,
        metadata_sources=[str(source.name) for source in extractor.sources],
    )
