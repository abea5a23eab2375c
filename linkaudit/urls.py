"""URL classification and normalization helpers."""

from __future__ import annotations

import posixpath
import re
from typing import Iterable, List, Optional
from urllib.parse import urlsplit, urlunsplit

from .models import UrlKind

SKIPPABLE_PREFIXES = ("#", "mailto:", "tel:", "data:", "javascript:")
HTTP_SCHEMES = ("http", "https")
WHITESPACE_PATTERN = re.compile(r"\s")

IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "svg", "webp", "avif", "bmp", "ico", "apng"}
RESOURCE_EXTENSIONS = {
    "css",
    "js",
    "mjs",
    "json",
    "xml",
    "xsl",
    "txt",
    "woff",
    "woff2",
    "ttf",
    "otf",
    "eot",
    "map",
    "webmanifest",
    "pdf",
    "mp4",
    "webm",
    "mp3",
    "m4a",
}


def is_skippable_url(raw: str) -> bool:
    """Return True for references that are never validated."""
    if not raw:
        return True
    candidate = raw.strip().lower()
    return not candidate or candidate.startswith(SKIPPABLE_PREFIXES)


def is_http_url(value: str) -> bool:
    lowered = value.lower()
    return lowered.startswith("http://") or lowered.startswith("https://")


def is_protocol_relative(value: str) -> bool:
    return value.startswith("//")


def strip_fragment(url: str) -> str:
    return url.split("#", 1)[0]


def strip_query_and_fragment(url: str) -> str:
    return strip_fragment(url).split("?", 1)[0]


def normalize_url(raw: str) -> Optional[str]:
    """Canonicalize a reference target, returning None when it is malformed.

    Fragments are dropped, protocol-relative URLs become ``https:`` URLs, the
    scheme and host of http(s) URLs are lowercased and an empty path becomes
    ``/``. Relative paths and other schemes pass through with only the
    fragment removed.
    """
    if not raw:
        return None
    candidate = strip_fragment(raw.strip()).strip()
    if not candidate:
        return None
    if is_protocol_relative(candidate):
        candidate = "https:" + candidate
    if WHITESPACE_PATTERN.search(candidate):
        return None
    try:
        parts = urlsplit(candidate)
        if parts.scheme.lower() not in HTTP_SCHEMES:
            return candidate
        if not parts.hostname:
            return None
        parts.port  # noqa: B018 - raises ValueError for a malformed port
    except ValueError:
        return None
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", parts.query, "")
    )


def url_origin(url: str) -> Optional[str]:
    """Return ``scheme://host[:port]`` for an absolute URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def url_host(url: str) -> Optional[str]:
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def is_same_origin(url: str, origin: str) -> bool:
    candidate = url_origin(url)
    return candidate is not None and candidate == origin.lower()


def host_matches(host: Optional[str], domains: Iterable[str]) -> bool:
    """True when ``host`` equals one of ``domains`` or is a subdomain of it."""
    if not host:
        return False
    host = host.lower()
    for domain in domains:
        domain = domain.lower()
        if host == domain or host.endswith("." + domain):
            return True
    return False


def url_extension(url: str) -> Optional[str]:
    cleaned = strip_query_and_fragment(url)
    try:
        path = urlsplit(cleaned).path if "://" in cleaned else cleaned
    except ValueError:
        path = cleaned
    ext = posixpath.splitext(path)[1]
    if not ext:
        return None
    return ext[1:].lower()


def classify_by_extension(url: str, fallback: UrlKind) -> UrlKind:
    """Infer the reference kind from the file extension of its path."""
    ext = url_extension(url)
    if ext is None:
        return fallback
    if ext in IMAGE_EXTENSIONS:
        return UrlKind.IMAGE
    if ext in RESOURCE_EXTENSIONS:
        return UrlKind.RESOURCE
    if ext == "html":
        return UrlKind.LINK
    return fallback


def parse_srcset(value: str) -> List[str]:
    """Split a ``srcset`` attribute into its candidate URLs."""
    urls: List[str] = []
    for item in value.split(","):
        trimmed = item.strip()
        if not trimmed:
            continue
        urls.append(trimmed.split()[0])
    return urls
