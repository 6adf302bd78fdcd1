"""Pydantic schemas for messages sent by the browser extension."""
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class PingMessage(BaseModel):
    """Liveness check."""

    type: Literal["PING"]


class ExtractMetadataMessage(BaseModel):
    """Extract metadata from a page DOM the extension captured."""

    type: Literal["EXTRACT_METADATA"]
    url: str = Field(..., min_length=1)
    html: str


class GetPageInfoMessage(BaseModel):
    """
    Get metadata for the page the user is on.

    Without `html` the server runs the normal fetch/fallback chain for `url`.
    """

    type: Literal["GET_PAGE_INFO"]
    url: str = Field(..., min_length=1)
    html: str | None = None


ExtensionMessage = Annotated[
    PingMessage | ExtractMetadataMessage | GetPageInfoMessage,
    Field(discriminator="type"),
]


class ExtensionResponse(BaseModel):
    """Envelope for every reply to the extension."""

    success: bool
    message: str | None = None
    metadata: dict[str, Any] | None = None
    error: str | None = None
