"""
Metadata extraction with a fallback chain.

Sources are tried in order (direct fetch, then an optional hosted extraction
function); the first one that produces a title wins. When every source fails,
metadata is guessed from the URL itself, so `MetadataExtractor.extract`
always returns something a bookmark can be saved with.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol
from urllib.parse import unquote, urlparse

import httpx

from core.config import Settings
from services.url_scraper import DEFAULT_TIMEOUT, ExtractedMetadata, page_origin, scrape_url

logger = logging.getLogger(__name__)

_FILE_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]+$")


class ExtractionSource(StrEnum):
    """Where a piece of extracted metadata came from."""

    PRIMARY_FETCH = "primary-fetch"
    SECONDARY_FUNCTION = "secondary-function"
    LOCAL_FALLBACK = "local-fallback"
    MINIMAL_FALLBACK = "minimal-fallback"
    EXTENSION = "extension"


@dataclass(frozen=True)
class PrimaryExtraction:
    """Metadata read from the page itself."""

    fields: ExtractedMetadata
    url: str
    source: ExtractionSource = ExtractionSource.PRIMARY_FETCH
    extracted_at: datetime | None = None


@dataclass(frozen=True)
class FallbackExtraction:
    """Metadata from a degraded tier: a remote function or a guess from the URL."""

    fields: ExtractedMetadata
    url: str
    tier: ExtractionSource

    @property
    def source(self) -> ExtractionSource:
        return self.tier


ExtractionResult = PrimaryExtraction | FallbackExtraction


def url_domain(url: str) -> str | None:
    """Hostname without a leading 'www.', or None for URLs without a host."""
    hostname = urlparse(url).hostname
    if not hostname:
        return None
    return hostname.removeprefix("www.")


def to_response(result: ExtractionResult) -> dict[str, Any]:
    """
    Serialize an extraction result into the flat JSON body clients expect.

    The provenance goes under `metadata`: `source`, `url`, and `domain` when
    the URL has one (plus `extracted_at` for extension captures).
    """
    body = result.fields.to_dict()
    provenance: dict[str, Any] = {"source": str(result.source), "url": result.url}
    domain = url_domain(result.url)
    if domain is not None and result.source != ExtractionSource.MINIMAL_FALLBACK:
        provenance["domain"] = domain
    if isinstance(result, PrimaryExtraction) and result.extracted_at is not None:
        provenance["extracted_at"] = result.extracted_at.isoformat()
    body["metadata"] = provenance
    return body


def _humanize_slug(segment: str) -> str:
    """Turn 'my-cool_article.html' into 'My Cool Article'."""
    words = _FILE_EXTENSION_RE.sub("", unquote(segment)).replace("-", " ").replace("_", " ")
    return " ".join(word[:1].upper() + word[1:] for word in words.split())


def derive_local_metadata(url: str) -> FallbackExtraction:
    """
    Guess metadata from the URL alone. Pure; never raises.

    The title is the humanized last path segment when it looks like a slug
    (contains '-' or '_'), otherwise the domain. URLs without a scheme or
    host produce a minimal result titled with the raw URL.
    """
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        return FallbackExtraction(
            fields=ExtractedMetadata(title=url.strip() or "Untitled bookmark"),
            url=url,
            tier=ExtractionSource.MINIMAL_FALLBACK,
        )

    domain = parsed.hostname.removeprefix("www.")
    path = parsed.path.strip("/")

    title = domain
    last_segment = path.rsplit("/", 1)[-1]
    if "-" in last_segment or "_" in last_segment:
        title = _humanize_slug(last_segment) or domain

    description = f"Bookmark from {domain}"
    if path:
        description += f" - {path}"

    return FallbackExtraction(
        fields=ExtractedMetadata(
            title=title,
            description=description,
            favicon=f"{page_origin(url)}/favicon.ico",
        ),
        url=url,
        tier=ExtractionSource.LOCAL_FALLBACK,
    )


class MetadataSource(Protocol):
    """A tier of the extraction chain."""

    name: ExtractionSource

    async def fetch(self, url: str) -> ExtractedMetadata | None:
        """Return metadata for the URL, or None if this source has nothing."""
        ...


class PrimaryFetchSource:
    """Fetch the page directly and pattern-match its HTML."""

    name = ExtractionSource.PRIMARY_FETCH

    def __init__(self, client: httpx.AsyncClient, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.client = client
        self.timeout = timeout

    async def fetch(self, url: str) -> ExtractedMetadata | None:
        metadata, fetch_result = await scrape_url(self.client, url, self.timeout)
        if metadata is None:
            logger.warning("Fetching %s failed: %s", url, fetch_result.error)
        return metadata


class RemoteFunctionSource:
    """
    Ask a hosted extraction function for the metadata.

    The function receives `{"url": ...}` and answers with the same flat JSON
    body this service returns from /extract-metadata.
    """

    name = ExtractionSource.SECONDARY_FUNCTION

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.client = client
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout

    async def fetch(self, url: str) -> ExtractedMetadata | None:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        response = await self.client.post(
            self.endpoint,
            json={"url": url},
            headers=headers,
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            logger.warning("Extraction function returned a non-object body for %s", url)
            return None
        return ExtractedMetadata.from_dict(data)


class MetadataExtractor:
    """Runs the source chain and falls back to a guess from the URL."""

    def __init__(self, sources: list[MetadataSource]) -> None:
        self.sources = sources

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "MetadataExtractor":
        """Build the chain configured for this deployment."""
        timeout = settings.metadata_fetch_timeout
        sources: list[MetadataSource] = [PrimaryFetchSource(client, timeout)]
        if settings.metadata_secondary_url:
            sources.append(
                RemoteFunctionSource(
                    client,
                    settings.metadata_secondary_url,
                    api_key=settings.metadata_secondary_api_key or None,
                    timeout=timeout,
                ),
            )
        return cls(sources)

    async def extract(self, url: str) -> ExtractionResult:
        """
        Extract metadata for a URL. Never raises.

        Each source is isolated: an exception or a result without a title
        moves on to the next source.
        """
        for source in self.sources:
            try:
                fields = await source.fetch(url)
            except Exception:
                logger.warning("%s extraction failed for %s", source.name, url, exc_info=True)
                continue

            if fields is None or not fields.is_usable:
                logger.info("%s produced no usable metadata for %s", source.name, url)
                continue

            if source.name == ExtractionSource.PRIMARY_FETCH:
                return PrimaryExtraction(fields=fields, url=url)
            return FallbackExtraction(fields=fields, url=url, tier=source.name)

        return derive_local_metadata(url)
