"""URL scraping service for fetching pages and extracting bookmark metadata."""
import html as html_lib
import ipaddress
import re
import socket
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

USER_AGENT = 'Mozilla/5.0 (compatible; Bookmarks/1.0)'
DEFAULT_TIMEOUT = 10.0

_TITLE_RE = re.compile(r'<title[^>]*>(.*?)</title>', re.IGNORECASE | re.DOTALL)
_META_TAG_RE = re.compile(r'<meta\b[^>]*>', re.IGNORECASE)
_LINK_TAG_RE = re.compile(r'<link\b[^>]*>', re.IGNORECASE)
_ATTR_RE = re.compile(r'''([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(?:"([^"]*)"|'([^']*)')''')

FAVICON_RELS = frozenset({'icon', 'shortcut icon'})


class SSRFBlockedError(Exception):
    """Raised when a URL targets a private/internal network address."""

    pass


def is_private_ip(ip_str: str) -> bool:
    """
    Check if an IP address is private, loopback, or otherwise internal.

    Args:
        ip_str: IP address string (IPv4 or IPv6).

    Returns:
        True if the IP is private/internal, False if public.
    """
    try:
        ip = ipaddress.ip_address(ip_str)
        return (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_multicast
            or ip.is_reserved
            or ip.is_unspecified
        )
    except ValueError:
        # Unparseable addresses are treated as internal
        return True


def validate_url_not_private(url: str) -> None:
    """
    Validate that a URL does not target a private/internal network.

    Resolves the hostname to check the actual IP address, preventing
    DNS rebinding attacks where a hostname resolves to an internal IP.

    Args:
        url: The URL to validate.

    Raises:
        SSRFBlockedError: If the URL targets a private network.
        ValueError: If the URL is malformed or the hostname does not resolve.
    """
    parsed = urlparse(url)
    hostname = parsed.hostname

    if parsed.scheme not in ('http', 'https'):
        raise ValueError(f"Unsupported URL scheme: {url}")
    if not hostname:
        raise ValueError(f"Invalid URL (no hostname): {url}")

    if hostname.lower() in ('localhost', 'localhost.localdomain'):
        raise SSRFBlockedError(f"Blocked request to localhost: {url}")

    try:
        # sockaddr is (ip, port) for IPv4 or (ip, port, flow, scope) for IPv6
        addrinfo = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise ValueError(f"Could not resolve hostname: {hostname}") from e

    for _, _, _, _, sockaddr in addrinfo:
        ip_str = sockaddr[0]
        if is_private_ip(ip_str):
            raise SSRFBlockedError(
                f"Blocked request to private/internal address: {url} resolves to {ip_str}",
            )


def page_origin(url: str) -> str:
    """Return scheme://host[:port] for a URL, without any user:password@ part."""
    parsed = urlparse(url)
    host = parsed.netloc.rpartition("@")[2]
    return f"{parsed.scheme}://{host}"


@dataclass
class FetchResult:
    """Result of fetching a URL (raw HTML before extraction)."""

    html: str | None
    final_url: str
    status_code: int | None
    content_type: str | None
    error: str | None


@dataclass
class ExtractedMetadata:
    """
    Metadata extracted for a page.

    `extra` holds provider-specific fields namespaced as `og_<property>` and
    `twitter_<property>`.
    """

    title: str | None = None
    description: str | None = None
    favicon: str | None = None
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def is_usable(self) -> bool:
        """A result is usable when it carries a non-empty title."""
        return bool(self.title and self.title.strip())

    def to_dict(self) -> dict[str, Any]:
        """Flatten into the JSON shape returned to clients."""
        return {
            **self.extra,
            'title': self.title,
            'description': self.description,
            'favicon': self.favicon,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'ExtractedMetadata':
        """Build from a flat JSON object using the same contract as to_dict()."""
        extra = {
            key: value
            for key, value in data.items()
            if isinstance(value, str) and key.startswith(('og_', 'twitter_'))
        }
        return cls(
            title=_clean_str(data.get('title')),
            description=_clean_str(data.get('description')),
            favicon=_clean_str(data.get('favicon')),
            extra=extra,
        )


def _clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


async def fetch_url(
    client: httpx.AsyncClient,
    url: str,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
) -> FetchResult:
    """
    Fetch the HTML of a page.

    Best-effort fetch that returns error info on failure rather than raising.
    Follows redirects and captures the final URL.

    Security: Validates that the URL does not target private/internal networks
    to prevent SSRF attacks, both before the request and after redirects.

    Args:
        client:
            Shared HTTP client.
        url:
            The URL to fetch.
        timeout:
            Request timeout in seconds.

    Returns:
        FetchResult containing the HTML or error info.
    """
    try:
        validate_url_not_private(url)
    except (SSRFBlockedError, ValueError) as e:
        return FetchResult(
            html=None,
            final_url=url,
            status_code=None,
            content_type=None,
            error=str(e),
        )

    try:
        response = await client.get(
            url,
            headers={'User-Agent': USER_AGENT},
            follow_redirects=True,
            timeout=timeout,
        )
    except httpx.TimeoutException:
        return FetchResult(
            html=None,
            final_url=url,
            status_code=None,
            content_type=None,
            error="Request timed out",
        )
    except httpx.RequestError as e:
        return FetchResult(
            html=None,
            final_url=url,
            status_code=None,
            content_type=None,
            error=f"Request failed: {e}",
        )

    final_url = str(response.url)
    if final_url != url:
        try:
            validate_url_not_private(final_url)
        except (SSRFBlockedError, ValueError) as e:
            return FetchResult(
                html=None,
                final_url=final_url,
                status_code=response.status_code,
                content_type=None,
                error=f"Redirect blocked: {e}",
            )

    content_type = response.headers.get('content-type', '')
    if not response.is_success:
        return FetchResult(
            html=None,
            final_url=final_url,
            status_code=response.status_code,
            content_type=content_type,
            error=f"HTTP {response.status_code}",
        )
    if 'html' not in content_type.lower():
        return FetchResult(
            html=None,
            final_url=final_url,
            status_code=response.status_code,
            content_type=content_type,
            error=f"Unsupported content type: {content_type}",
        )
    return FetchResult(
        html=response.text,
        final_url=final_url,
        status_code=response.status_code,
        content_type=content_type,
        error=None,
    )


def _parse_attrs(tag: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for match in _ATTR_RE.finditer(tag):
        name = match.group(1).lower()
        value = match.group(2) if match.group(2) is not None else match.group(3)
        attrs.setdefault(name, html_lib.unescape(value).strip())
    return attrs


def extract_html_metadata(html: str, page_url: str) -> ExtractedMetadata:
    """
    Extract metadata from raw HTML with regular expressions.

    Pure function with no I/O. Tags are located by pattern and their
    attributes parsed individually, so attribute order does not matter.

    Title priority: <title>, og:title, twitter:title.
    Description priority: meta description, og:description, twitter:description.
    Favicon: <link rel="icon"> or rel="shortcut icon" resolved against the
    page origin, otherwise {origin}/favicon.ico.
    Every og:* property becomes og_<property>; every twitter:* name becomes
    twitter_<property>. When a property repeats, the first occurrence wins.

    Args:
        html:
            Raw HTML string.
        page_url:
            URL the HTML was served from (after redirects).

    Returns:
        ExtractedMetadata (fields may be None if not found).
    """
    metas = [_parse_attrs(m.group(0)) for m in _META_TAG_RE.finditer(html)]

    extra: dict[str, str] = {}
    description = None
    for attrs in metas:
        content = attrs.get('content')
        if not content:
            continue
        prop = attrs.get('property', '')
        name = attrs.get('name', '')
        if prop.lower().startswith('og:') and len(prop) > 3:
            extra.setdefault(f"og_{prop[3:]}", content)
        if name.lower().startswith('twitter:') and len(name) > 8:
            extra.setdefault(f"twitter_{name[8:]}", content)
        if description is None and name.lower() == 'description':
            description = content

    title = None
    title_match = _TITLE_RE.search(html)
    if title_match:
        title = ' '.join(html_lib.unescape(title_match.group(1)).split()) or None
    title = title or extra.get('og_title') or extra.get('twitter_title')
    description = description or extra.get('og_description') or extra.get('twitter_description')

    origin = page_origin(page_url)
    favicon = None
    for link in _LINK_TAG_RE.finditer(html):
        attrs = _parse_attrs(link.group(0))
        rel = ' '.join(attrs.get('rel', '').lower().split())
        if rel in FAVICON_RELS and attrs.get('href'):
            favicon = urljoin(f"{origin}/", attrs['href'])
            break
    if favicon is None:
        favicon = f"{origin}/favicon.ico"

    return ExtractedMetadata(
        title=title,
        description=description,
        favicon=favicon,
        extra=extra,
    )


def extract_page_metadata(html: str, page_url: str) -> ExtractedMetadata:
    """
    Extract metadata from a page DOM that is already in hand.

    Used for pages captured by the browser extension, where the full rendered
    HTML is available. Parses with BeautifulSoup and mirrors the selectors a
    content script would use on `document`.

    Args:
        html:
            Serialized page DOM.
        page_url:
            The page's location.

    Returns:
        ExtractedMetadata (fields may be None if not found).
    """
    soup = BeautifulSoup(html, 'lxml')

    title = None
    if soup.title and soup.title.string:
        title = soup.title.string.strip() or None

    description = None
    for selector in ('meta[name="description"]', 'meta[property="og:description"]'):
        tag = soup.select_one(selector)
        if tag and tag.get('content'):
            description = tag['content'].strip()
            break

    origin = page_origin(page_url)
    favicon = None
    for link in soup.find_all('link'):
        rel = ' '.join(link.get('rel') or []).lower()
        if rel in FAVICON_RELS and link.get('href'):
            favicon = urljoin(f"{origin}/", link['href'].strip())
            break
    if favicon is None:
        favicon = f"{origin}/favicon.ico"

    extra: dict[str, str] = {}
    for tag in soup.select('meta[property^="og:"]'):
        if tag.get('content'):
            key = tag['property'].replace('og:', 'og_', 1)
            extra.setdefault(key, tag['content'].strip())
    for tag in soup.select('meta[name^="twitter:"]'):
        if tag.get('content'):
            key = tag['name'].replace('twitter:', 'twitter_', 1)
            extra.setdefault(key, tag['content'].strip())

    return ExtractedMetadata(
        title=title or extra.get('og_title'),
        description=description,
        favicon=favicon,
        extra=extra,
    )


async def scrape_url(
    client: httpx.AsyncClient,
    url: str,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
) -> tuple[ExtractedMetadata | None, FetchResult]:
    """
    Fetch a URL and extract its metadata.

    Returns:
        Tuple of (metadata or None when the fetch failed, raw fetch result).
    """
    result = await fetch_url(client, url, timeout)
    if result.error or result.html is None:
        return None, result
    return extract_html_metadata(result.html, result.final_url), result
