"""FastAPI dependencies for injection."""
from fastapi import Request

from core.auth import get_bearer_token, get_current_user
from core.config import get_settings
from db.session import get_async_session
from services.metadata_extractor import MetadataExtractor


def get_metadata_extractor(request: Request) -> MetadataExtractor:
    """The extractor built at startup, sharing the app's HTTP client."""
    return request.app.state.metadata_extractor


__all__ = [
    "get_async_session",
    "get_bearer_token",
    "get_current_user",
    "get_metadata_extractor",
    "get_settings",
]
