"""Dispatcher for browser extension messages."""
import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import TypeAdapter, ValidationError

from schemas.extension import (
    ExtensionMessage,
    ExtensionResponse,
    ExtractMetadataMessage,
    GetPageInfoMessage,
    PingMessage,
)
from services.metadata_extractor import (
    ExtractionSource,
    MetadataExtractor,
    PrimaryExtraction,
    to_response,
)
from services.url_scraper import extract_page_metadata

logger = logging.getLogger(__name__)

_message_adapter: TypeAdapter[ExtensionMessage] = TypeAdapter(ExtensionMessage)


def extract_from_page(url: str, html: str) -> dict[str, Any]:
    """Extract metadata from a captured DOM and tag it as an extension capture."""
    result = PrimaryExtraction(
        fields=extract_page_metadata(html, url),
        url=url,
        source=ExtractionSource.EXTENSION,
        extracted_at=datetime.now(UTC),
    )
    return to_response(result)


async def handle_message(
    payload: Any,
    extractor: MetadataExtractor,
) -> ExtensionResponse:
    """
    Answer one extension message.

    Never raises: malformed messages and extraction errors come back as
    `success: false` with an error string.
    """
    try:
        message = _message_adapter.validate_python(payload)
    except ValidationError as e:
        return ExtensionResponse(success=False, error=f"Invalid message: {e.errors()[0]['msg']}")

    if isinstance(message, PingMessage):
        return ExtensionResponse(success=True, message="PONG")

    try:
        if isinstance(message, ExtractMetadataMessage):
            metadata = extract_from_page(message.url, message.html)
        elif isinstance(message, GetPageInfoMessage) and message.html is not None:
            metadata = extract_from_page(message.url, message.html)
        else:
            metadata = to_response(await extractor.extract(message.url))
    except Exception as e:
        logger.exception("Extension %s message failed", message.type)
        return ExtensionResponse(success=False, error=str(e) or "Unknown error")

    return ExtensionResponse(success=True, metadata=metadata)
