from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol
from urllib.parse import quote, urlsplit

logger = logging.getLogger(__name__)

BLOCKED_SCHEMES = frozenset({"javascript", "data", "file"})
ALLOWED_PREFIXES = ("http://", "https://")


class SearchProvider(Protocol):
    name: str
    url_template: str


@dataclass(frozen=True, slots=True)
class SearchLink:
    provider: str
    url: str


def _encode(value: str) -> str:
    # Same unreserved set as encodeURIComponent, so spaces become %20 not +.
    return quote(value or "", safe="!~*'()")


def build_search_url(template: str, artist: str, album: str) -> Optional[str]:
    """Fill ``{artist}`` and ``{album}`` in ``template`` with percent-encoded values.

    Returns ``None`` if the result does not parse as a URL or uses a blocked
    scheme (``javascript:``, ``data:``, ``file:``).
    """
    url = template.replace("{artist}", _encode(artist)).replace("{album}", _encode(album))
    try:
        parts = urlsplit(url)
    except ValueError:
        logger.warning("Invalid URL after filling search template: %s", url)
        return None
    if parts.scheme in BLOCKED_SCHEMES:
        logger.warning("Blocked search URL with %s: scheme", parts.scheme)
        return None
    if not parts.scheme or (parts.scheme in ("http", "https") and not parts.netloc):
        logger.warning("Invalid URL after filling search template: %s", url)
        return None
    return url


def validate_url_template(template: str) -> Optional[str]:
    """Return an error message for an unusable template, ``None`` when it is fine."""
    if not template.startswith(ALLOWED_PREFIXES):
        return "URL template must start with http:// or https://"
    if build_search_url(template, "Test Artist", "Test Album") is None:
        return "URL template creates invalid URL"
    return None


def search_links(providers: Iterable[SearchProvider], artist: str, album: str) -> list[SearchLink]:
    links: list[SearchLink] = []
    for provider in providers:
        url = build_search_url(provider.url_template, artist, album)
        if url is not None:
            links.append(SearchLink(provider=provider.name, url=url))
    return links
