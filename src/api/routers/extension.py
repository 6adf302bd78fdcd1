"""Message endpoint for the browser extension."""
from fastapi import APIRouter, Depends, Request

from api.dependencies import get_metadata_extractor
from schemas.extension import ExtensionResponse
from services.extension_messages import handle_message
from services.metadata_extractor import MetadataExtractor

router = APIRouter(prefix="/extension", tags=["extension"])


@router.post("/messages", response_model=ExtensionResponse, response_model_exclude_none=True)
async def post_message(
    request: Request,
    extractor: MetadataExtractor = Depends(get_metadata_extractor),
) -> ExtensionResponse:
    """
    Handle a `PING`, `EXTRACT_METADATA` or `GET_PAGE_INFO` message.

    Always answers 200 with `{success, ...}`; failures set `success: false`
    and an `error` string.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    return await handle_message(payload, extractor)
