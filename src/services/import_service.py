"""Import of previously exported bookmark files."""
import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from schemas.bookmark import BookmarkCreate, ImportResult
from services.bookmark_service import create_bookmark
from services.exceptions import ImportValidationError
from services.metadata_extractor import derive_local_metadata

logger = logging.getLogger(__name__)


def is_importable(item: Any) -> bool:
    """An entry is importable when it is an object with a non-empty string url."""
    if not isinstance(item, dict):
        return False
    url = item.get("url")
    return isinstance(url, str) and bool(url.strip())


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def to_bookmark_create(item: dict[str, Any]) -> BookmarkCreate:
    """
    Build a create request from an export entry.

    Unknown keys are ignored and wrongly-typed optional fields dropped. A
    missing title is derived from the URL.

    Raises:
        ValidationError: If the entry still isn't a valid bookmark (bad URL,
            over-long title, ...).
    """
    url = item["url"].strip()
    title = _optional_str(item.get("title")) or derive_local_metadata(url).fields.title
    tags = item.get("tags")
    metadata = item.get("metadata")
    return BookmarkCreate(
        url=url,
        title=title,
        description=_optional_str(item.get("description")),
        favicon=_optional_str(item.get("favicon")),
        tags=[tag for tag in tags if isinstance(tag, str)] if isinstance(tags, list) else [],
        metadata=metadata if isinstance(metadata, dict) else None,
    )


async def import_bookmarks(
    db: AsyncSession,
    user_id: int,
    payload: Any,
) -> ImportResult:
    """
    Replay an export file through the normal create path.

    Args:
        db: Database session.
        user_id: Owner of the imported bookmarks.
        payload: Parsed JSON body of the import file.

    Returns:
        Counts of imported entries, entries skipped as malformed, and entries
        the create path rejected.

    Raises:
        ImportValidationError: If the payload isn't a list or has no importable entries.
    """
    if not isinstance(payload, list):
        raise ImportValidationError("Invalid import format. Expected an array of bookmarks.")

    candidates = [item for item in payload if is_importable(item)]
    if not candidates:
        raise ImportValidationError("No valid bookmarks found in import file")

    created: list[Bookmark] = []
    failed = 0
    for item in candidates:
        try:
            data = to_bookmark_create(item)
        except ValidationError as e:
            logger.warning("Skipping import entry %r: %s", item.get("url"), e.errors()[0]["msg"])
            failed += 1
            continue
        created.append(await create_bookmark(db, user_id, data))

    skipped = len(payload) - len(candidates)
    logger.info(
        "Imported %d bookmarks for user %s (%d skipped, %d failed)",
        len(created), user_id, skipped, failed,
    )
    return ImportResult(imported=len(created), skipped=skipped, failed=failed)
