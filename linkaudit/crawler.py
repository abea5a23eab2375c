"""Breadth-first crawl of a live site, collecting every reference it makes."""

from __future__ import annotations

import asyncio
import logging
import posixpath
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Set
from urllib.parse import urlsplit

import requests

from .config import ValidationConfig
from .content import extract_html_references
from .models import ReferenceOccurrence, UrlKind
from .urls import is_same_origin, normalize_url, url_origin

logger = logging.getLogger("linkaudit")

CRAWLABLE_EXTENSIONS = {"", ".html"}


@dataclass
class PageFetch:
    """Outcome of fetching one page for crawling."""

    url: str
    ok: bool
    status: Optional[int] = None
    html: Optional[str] = None
    error: Optional[str] = None
    # Where the page ended up after redirects; relative links resolve against it.
    final_url: Optional[str] = None


@dataclass
class CrawlResult:
    """Everything discovered while walking the site."""

    base_url: str
    references: List[ReferenceOccurrence] = field(default_factory=list)
    pages: Dict[str, PageFetch] = field(default_factory=dict)
    kind_totals: Counter = field(default_factory=Counter)

    @property
    def pages_visited(self) -> int:
        return len(self.pages)


PageFetcher = Callable[[str], PageFetch]


def should_crawl(url: str) -> bool:
    """Only extension-less or ``.html`` paths are parsed as pages."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return False
    return posixpath.splitext(path)[1].lower() in CRAWLABLE_EXTENSIONS


def fetch_page(session: requests.Session, url: str, config: ValidationConfig) -> PageFetch:
    """GET a page and return its HTML when the response is an HTML document."""
    try:
        response = session.get(
            url,
            timeout=config.timeout,
            allow_redirects=True,
            headers={"User-Agent": config.user_agent},
        )
    except requests.RequestException as exc:
        return PageFetch(url=url, ok=False, error=str(exc) or type(exc).__name__)

    with response:
        if not response.ok:
            return PageFetch(url=url, ok=False, status=response.status_code, error=f"HTTP {response.status_code}")
        content_type = response.headers.get("Content-Type", "")
        if "text/html" not in content_type.lower():
            return PageFetch(url=url, ok=True, status=response.status_code)
        final_url = normalize_url(response.url) or url
        return PageFetch(
            url=url, ok=True, status=response.status_code, html=response.text, final_url=final_url
        )


async def crawl_site(
    base_url: str,
    config: ValidationConfig,
    fetcher: Optional[PageFetcher] = None,
) -> CrawlResult:
    """Visit same-origin pages breadth-first, one page at a time."""
    start = normalize_url(base_url) or base_url
    origin = url_origin(start) or start
    result = CrawlResult(base_url=start)
    session: Optional[requests.Session] = None
    if fetcher is None:
        session = requests.Session()

        def fetcher(url: str) -> PageFetch:
            return fetch_page(session, url, config)

    queue: Deque[str] = deque([start])
    queued: Set[str] = {start}
    visited: Set[str] = set()
    try:
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            if config.max_pages is not None and len(visited) >= config.max_pages:
                logger.warning("Stopping crawl after %d pages (max_pages)", config.max_pages)
                break
            visited.add(current)

            logger.debug("Crawling %s", current)
            page = await asyncio.to_thread(fetcher, current)
            result.pages[current] = page
            if not page.ok:
                logger.warning("Failed to fetch page for crawl: %s (%s)", current, page.error)
                continue
            if page.html is None:
                logger.debug("Skipping non-HTML response from %s", current)
                continue

            page_url = page.final_url or current
            if page_url != current:
                if not is_same_origin(page_url, origin):
                    logger.info("Not crawling %s: redirected off-site to %s", current, page_url)
                    continue
                visited.add(page_url)
                queued.add(page_url)

            for reference in extract_html_references(page.html, page_url, config.production_domains):
                result.references.append(reference)
                result.kind_totals[reference.kind] += 1
                if reference.external or reference.kind is not UrlKind.LINK:
                    continue
                if should_crawl(reference.url) and reference.url not in visited and reference.url not in queued:
                    queued.add(reference.url)
                    queue.append(reference.url)
    finally:
        if session is not None:
            session.close()

    logger.info("Crawl finished: %d page(s) visited", result.pages_visited)
    return result
