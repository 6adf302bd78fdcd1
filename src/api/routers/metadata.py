"""
Metadata extraction endpoint.

Called cross-origin (browser extension, bookmarklets), so it answers every
origin and sets its CORS headers itself instead of relying on the app-wide
CORS policy.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from api.dependencies import get_metadata_extractor
from services.metadata_extractor import MetadataExtractor, to_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["metadata"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


@router.options("/extract-metadata")
async def extract_metadata_preflight() -> PlainTextResponse:
    """CORS preflight."""
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.post("/extract-metadata")
async def extract_metadata(
    request: Request,
    extractor: MetadataExtractor = Depends(get_metadata_extractor),
) -> JSONResponse:
    """
    Extract title, description, favicon and OpenGraph/Twitter card fields for a URL.

    Body: `{"url": "https://..."}`. Unreachable pages still return 200 with
    metadata guessed from the URL; `metadata.source` says which tier answered.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None
    url = body.get("url") if isinstance(body, dict) else None
    if not isinstance(url, str) or not url.strip():
        return JSONResponse({"error": "URL is required"}, status_code=400, headers=CORS_HEADERS)

    try:
        result = await extractor.extract(url.strip())
        return JSONResponse(to_response(result), headers=CORS_HEADERS)
    except Exception as e:
        logger.exception("Metadata extraction failed for %s", url)
        return JSONResponse({"error": str(e)}, status_code=500, headers=CORS_HEADERS)
