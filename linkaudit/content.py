"""HTML reference extraction for rendered pages."""

from __future__ import annotations

import re
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup
from bs4.element import Tag

from .models import ReferenceOccurrence, UrlKind
from .urls import (
    classify_by_extension,
    is_http_url,
    is_protocol_relative,
    is_same_origin,
    is_skippable_url,
    normalize_url,
    parse_srcset,
    url_host,
    url_origin,
)

CSS_URL_PATTERN = re.compile(r"url\(\s*[\"']?([^\"')]+)[\"']?\s*\)", re.IGNORECASE)
SKIPPED_LINK_RELS = ("preconnect", "dns-prefetch")

# (tag, attribute, fixed kind or None to classify by extension, fallback, is srcset)
_ATTRIBUTE_RULES: Sequence[Tuple[str, str, Optional[UrlKind], UrlKind, bool]] = (
    ("a", "href", UrlKind.LINK, UrlKind.LINK, False),
    ("img", "src", UrlKind.IMAGE, UrlKind.IMAGE, False),
    ("img", "srcset", UrlKind.IMAGE, UrlKind.IMAGE, True),
    ("source", "src", None, UrlKind.RESOURCE, False),
    ("source", "srcset", None, UrlKind.RESOURCE, True),
    ("script", "src", UrlKind.RESOURCE, UrlKind.RESOURCE, False),
    ("iframe", "src", None, UrlKind.RESOURCE, False),
    ("video", "src", None, UrlKind.RESOURCE, False),
    ("audio", "src", None, UrlKind.RESOURCE, False),
    ("video", "poster", UrlKind.IMAGE, UrlKind.IMAGE, False),
)


def _strip_code(soup: BeautifulSoup) -> BeautifulSoup:
    """Drop code samples so URLs shown as text are not treated as references."""
    for tag in soup(["pre", "code", "samp"]):
        tag.decompose()
    return soup


def _attribute_values(tag: Tag, attribute: str, srcset: bool) -> List[str]:
    value = tag.get(attribute)
    if not value or not isinstance(value, str):
        return []
    if srcset:
        return parse_srcset(value)
    return [value]


def _iter_raw_references(soup: BeautifulSoup) -> Iterator[Tuple[str, UrlKind, str, int]]:
    """Yield ``(raw_url, kind, origin_label, line)`` for every reference."""
    for tag_name, attribute, kind, fallback, srcset in _ATTRIBUTE_RULES:
        for tag in soup.find_all(tag_name):
            for raw in _attribute_values(tag, attribute, srcset):
                resolved_kind = kind or classify_by_extension(raw, fallback)
                yield raw, resolved_kind, f"{tag_name}.{attribute}", tag.sourceline or 0

    for tag in soup.find_all("link"):
        href = tag.get("href")
        if not href or not isinstance(href, str):
            continue
        rel = " ".join(tag.get("rel") or []).lower()
        if any(skipped in rel for skipped in SKIPPED_LINK_RELS):
            continue
        yield href, classify_by_extension(href, UrlKind.RESOURCE), "link.href", tag.sourceline or 0

    for tag in soup.find_all(style=True):
        for match in CSS_URL_PATTERN.finditer(tag["style"]):
            raw = match.group(1).strip()
            yield raw, classify_by_extension(raw, UrlKind.RESOURCE), "style.url", tag.sourceline or 0

    for tag in soup.find_all("style"):
        for match in CSS_URL_PATTERN.finditer(tag.get_text()):
            raw = match.group(1).strip()
            yield raw, classify_by_extension(raw, UrlKind.RESOURCE), "style.url", tag.sourceline or 0


def rewrite_production_url(url: str, target_origin: str, production_domains: Iterable[str]) -> str:
    """Point URLs on production hosts at the origin being validated."""
    host = url_host(url)
    if not host or host.lower() not in {domain.lower() for domain in production_domains}:
        return url
    parts = urlsplit(url)
    target = urlsplit(target_origin)
    return urlunsplit((target.scheme, target.netloc, parts.path, parts.query, ""))


def resolve_reference(raw: str, page_url: str) -> Optional[str]:
    """Resolve a raw attribute value against the page it appeared on."""
    if is_skippable_url(raw):
        return None
    candidate = raw.strip()
    if is_protocol_relative(candidate):
        candidate = "https:" + candidate
    try:
        absolute = urljoin(page_url, candidate)
    except ValueError:
        return None
    normalized = normalize_url(absolute)
    if not normalized or not is_http_url(normalized):
        return None
    return normalized


def extract_html_references(
    html: str,
    page_url: str,
    production_domains: Iterable[str] = (),
) -> List[ReferenceOccurrence]:
    """Extract outbound references from a rendered page."""
    origin = url_origin(page_url) or ""
    production_domains = tuple(production_domains)
    soup = _strip_code(BeautifulSoup(html, "html.parser"))

    references: List[ReferenceOccurrence] = []
    for raw, kind, label, line in _iter_raw_references(soup):
        resolved = resolve_reference(raw, page_url)
        if not resolved:
            continue
        if production_domains:
            resolved = rewrite_production_url(resolved, origin, production_domains)
        references.append(
            ReferenceOccurrence(
                url=resolved,
                kind=kind,
                source=page_url,
                line=line,
                context=label,
                external=not is_same_origin(resolved, origin),
            )
        )
    return references
