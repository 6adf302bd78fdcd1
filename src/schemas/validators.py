"""
Shared validation functions for Pydantic schemas and services.

Tag normalization lives here because both request schemas and the tag
reconciler need exactly the same rules.
"""
from core.config import get_settings

MAX_TAG_LENGTH = 100


def normalize_tag(tag: str) -> str:
    """Trim and lowercase a single tag name."""
    return tag.strip().lower()


def normalize_tag_names(tags: list[str] | None) -> list[str]:
    """
    Normalize a list of tag names.

    Args:
        tags: Raw tag names as entered by the user.

    Returns:
        Trimmed, lowercased names with empty strings dropped and duplicates
        removed (preserving first occurrence order).
    """
    normalized: list[str] = []
    seen: set[str] = set()
    for tag in tags or []:
        name = normalize_tag(tag)
        if not name or name in seen:
            continue
        seen.add(name)
        normalized.append(name)
    return normalized


def validate_tag_names(tags: list[str]) -> list[str]:
    """
    Normalize tag names and enforce the storage length limit.

    Raises:
        ValueError: If a tag name is longer than MAX_TAG_LENGTH.
    """
    normalized = normalize_tag_names(tags)
    for name in normalized:
        if len(name) > MAX_TAG_LENGTH:
            raise ValueError(
                f"Tag '{name[:20]}...' exceeds maximum length of {MAX_TAG_LENGTH} characters.",
            )
    return normalized


def validate_title_length(title: str | None) -> str | None:
    """Validate that title doesn't exceed maximum length."""
    settings = get_settings()
    if title is not None and len(title) > settings.max_title_length:
        raise ValueError(
            f"Title exceeds maximum length of {settings.max_title_length:,} characters "
            f"(got {len(title):,} characters).",
        )
    return title


def validate_description_length(description: str | None) -> str | None:
    """Validate that description doesn't exceed maximum length."""
    settings = get_settings()
    if description is not None and len(description) > settings.max_description_length:
        max_len = settings.max_description_length
        raise ValueError(
            f"Description exceeds maximum length of {max_len:,} characters "
            f"(got {len(description):,} characters).",
        )
    return description
