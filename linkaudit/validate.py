"""High-level orchestration of content scans and live-site validation."""

from __future__ import annotations

import datetime as dt
import logging
import posixpath
import re
from collections import defaultdict
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import unquote

from .cache import (
    CacheEntry,
    CacheStore,
    load_cache,
    needs_check,
    prune_cache,
    save_cache,
    utcnow,
)
from .checker import BatchChecker, ProgressCallback, is_success_status
from .config import ValidationConfig
from .crawler import PageFetch, PageFetcher, crawl_site
from .markdown import extract_markdown_references, find_markdown_files, read_document
from .models import CheckResult, Issue, ReferenceOccurrence, UrlKind
from .report import (
    build_summary,
    log_grouped_issues,
    log_warnings,
    setup_failure_summary,
    write_summary,
)
from .urls import (
    host_matches,
    is_http_url,
    is_skippable_url,
    normalize_url,
    strip_query_and_fragment,
    url_host,
)

logger = logging.getLogger("linkaudit")

CONTENT_TOOL = "linkaudit-content"
SITE_TOOL = "linkaudit-site"
SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


@dataclass
class ExternalSummary:
    """Counts describing one pass over external URLs."""

    total: int = 0
    checked: int = 0
    from_cache: int = 0
    warnings: int = 0


@dataclass
class RunOutcome:
    """Exit code and report of a finished validation run."""

    exit_code: int
    summary: Dict[str, Any]
    summary_path: Optional[Path] = None


def needs_manual_verification(entry: CacheEntry) -> bool:
    """Accepted only on a soft signal and not yet reviewed by a human."""
    if entry.suppressed or not entry.ok or not entry.warning:
        return False
    return not is_success_status(entry.status)


async def validate_external_urls(
    urls: Iterable[str],
    store: CacheStore,
    checker: BatchChecker,
    config: ValidationConfig,
    on_progress: Optional[ProgressCallback] = None,
    now: Optional[dt.datetime] = None,
) -> Tuple[Dict[str, CheckResult], ExternalSummary]:
    """Serve fresh verdicts from the cache and check everything else."""
    unique = list(dict.fromkeys(urls))
    now = now or utcnow()
    results: Dict[str, CheckResult] = {}
    to_check: List[str] = []

    for url in unique:
        entry = store.get(url)
        if needs_check(
            entry,
            now,
            config.max_age_seconds,
            config.failure_max_age_seconds,
            force=config.force_full_check,
        ):
            to_check.append(url)
        else:
            results[url] = entry.to_result()

    hints: Dict[str, Optional[str]] = {}
    if not config.force_full_check:
        for url in to_check:
            entry = store.get(url)
            if entry is not None:
                hints[url] = entry.hint

    logger.info("External URLs: %d (cached: %d, to check: %d)", len(unique), len(results), len(to_check))
    checked = await checker.check_urls(to_check, hints=hints, on_progress=on_progress)
    checked_at = utcnow()
    for url, result in checked.items():
        store.set(url, CacheEntry.from_result(result, checked_at, store.get(url)))
        results[url] = result

    summary = ExternalSummary(
        total=len(unique),
        checked=len(checked),
        from_cache=len(unique) - len(checked),
        warnings=sum(1 for result in results.values() if result.warning),
    )
    return results, summary


def _failure_reason(result: CheckResult) -> str:
    if result.error:
        return result.error
    if result.status is not None:
        return f"HTTP {result.status}"
    return "Unreachable"


def _display_path(path: Path, root: Path) -> str:
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def _issue_for(occurrence: ReferenceOccurrence, reason: str, status: Optional[int] = None) -> Issue:
    return Issue(
        source=occurrence.source,
        url=occurrence.url,
        reason=reason,
        kind=occurrence.kind,
        external=occurrence.external,
        status=status,
        line=occurrence.line,
        context=occurrence.context,
    )


def resolve_relative_candidates(target: str, document: Path, repo_root: Path) -> List[Path]:
    """Files that would satisfy a repo-relative link, in preference order."""
    cleaned = unquote(strip_query_and_fragment(target))
    if not cleaned:
        return []
    if cleaned.startswith("/"):
        resolved = (repo_root / cleaned.lstrip("/")).resolve()
    else:
        resolved = (document.parent / cleaned).resolve()
    try:
        resolved.relative_to(repo_root)
    except ValueError:
        return []
    if posixpath.splitext(cleaned)[1]:
        return [resolved]
    return [resolved, Path(f"{resolved}.md"), resolved / "README.md"]


def _suppressed(store: CacheStore, url: str) -> bool:
    entry = store.get(url)
    return entry is not None and entry.suppressed


def _finish(summary: Dict[str, Any], config: ValidationConfig) -> RunOutcome:
    summary_path = write_summary(summary, config.summary_dir)
    exit_code = 1 if summary["status"] == "fail" else 0
    return RunOutcome(exit_code=exit_code, summary=summary, summary_path=summary_path)


def _log_banner(title: str) -> None:
    logger.info("=" * 60)
    logger.info(title)
    logger.info("=" * 60)


async def run_content_scan(
    config: ValidationConfig,
    on_progress: Optional[ProgressCallback] = None,
) -> RunOutcome:
    """Validate every reference found in the Markdown content tree."""
    _log_banner("Content Link Validation")
    logger.info("Mode: %s", "all" if config.force_full_check else "failed")
    logger.info("Scanning: %s", config.content_root)

    if not config.content_root.is_dir():
        logger.error("Content directory not found: %s", config.content_root)
        summary = setup_failure_summary(
            CONTENT_TOOL,
            "Content directory not found.",
            {"contentRoot": str(config.content_root)},
        )
        return _finish(summary, config)

    repo_root = config.repo_root.resolve()
    files = find_markdown_files(config.content_root)
    occurrences: List[ReferenceOccurrence] = []
    for path in files:
        text = read_document(path)
        if text is None:
            continue
        occurrences.extend(extract_markdown_references(text, _display_path(path, repo_root)))

    issues: List[Issue] = []
    external: Dict[str, List[ReferenceOccurrence]] = defaultdict(list)
    resolution_cache: Dict[Tuple[Path, ...], bool] = {}

    for occurrence in occurrences:
        if is_skippable_url(occurrence.url):
            continue
        normalized = normalize_url(occurrence.url)
        if occurrence.external:
            if normalized is None:
                issues.append(_issue_for(occurrence, "Malformed URL"))
            elif host_matches(url_host(normalized), config.site_domains):
                issues.append(_issue_for(occurrence, "Link to the site's own domain; use a repo-relative link"))
            else:
                external[normalized].append(occurrence)
            continue

        if normalized is None or SCHEME_PATTERN.match(normalized):
            logger.debug("Not validating %s in %s", occurrence.url, occurrence.source)
            continue
        document = repo_root / occurrence.source
        candidates = tuple(resolve_relative_candidates(normalized, document, repo_root))
        if candidates not in resolution_cache:
            resolution_cache[candidates] = any(candidate.is_file() for candidate in candidates)
        if not resolution_cache[candidates]:
            issues.append(_issue_for(occurrence, "Relative link does not resolve within repo"))

    logger.info("Markdown files scanned: %d", len(files))
    logger.info("Total links identified: %d", len(occurrences))
    logger.info("Unique external URLs: %d", len(external))

    store = load_cache(config.cache_path)
    results: Dict[str, CheckResult] = {}
    external_summary = ExternalSummary()
    if external:
        checker = BatchChecker(config)
        try:
            results, external_summary = await validate_external_urls(
                external.keys(), store, checker, config, on_progress
            )
        finally:
            await checker.close()
    else:
        logger.warning("No external links found in content.")

    removed = prune_cache(store, external.keys())
    if removed:
        logger.info("Cache pruned: %d stale entr%s removed.", removed, "y" if removed == 1 else "ies")
    if external_summary.checked or removed or store.recovered:
        save_cache(store, config.cache_path, config.site_domains)

    for url, result in sorted(results.items()):
        if result.ok or _suppressed(store, url):
            continue
        for occurrence in external[url]:
            issues.append(_issue_for(occurrence, _failure_reason(result), result.status))

    warnings = [result for url, result in sorted(results.items()) if result.warning and not _suppressed(store, url)]
    manual_pending = [
        url for url in external if store.get(url) is not None and needs_manual_verification(store.get(url))
    ]

    log_grouped_issues(issues)
    if not issues:
        logger.info("All content links resolve.")
    log_warnings(warnings)
    if manual_pending:
        logger.warning("Manual verification needed: %d", len(manual_pending))
        for url in sorted(manual_pending):
            logger.warning("  %s", url)

    counts = {
        "markdownFiles": len(files),
        "totalLinks": len(occurrences),
        "externalUrls": external_summary.total,
        "checked": external_summary.checked,
        "fromCache": external_summary.from_cache,
        "warnings": len(warnings),
        "cachePruned": removed,
    }
    summary = build_summary(CONTENT_TOOL, issues, counts, warnings, manual_pending)
    return _finish(summary, config)


def _page_result(page: PageFetch) -> CheckResult:
    return CheckResult(url=page.url, ok=page.ok, status=page.status, error=page.error)


async def run_live_site(
    base_url: str,
    config: ValidationConfig,
    on_progress: Optional[ProgressCallback] = None,
    fetcher: Optional[PageFetcher] = None,
) -> RunOutcome:
    """Crawl a deployed site and validate every page, asset and outbound link."""
    normalized_base = normalize_url(base_url) if base_url else None
    if not normalized_base or not is_http_url(normalized_base):
        logger.error("Invalid URL: %s", base_url)
        return _finish(setup_failure_summary(SITE_TOOL, f"Invalid URL: {base_url}"), config)

    _log_banner("Live Site Validation")
    logger.info("Base URL: %s", normalized_base)
    logger.info("Crawling site...")
    crawl = await crawl_site(normalized_base, config, fetcher)

    notes: List[str] = []
    root_page = crawl.pages.get(crawl.base_url)
    if root_page is None or not root_page.ok:
        logger.error("Failed to fetch base URL %s", normalized_base)
        notes.append(f"Failed to fetch base URL: {normalized_base}")

    internal: Set[str] = {ref.url for ref in crawl.references if not ref.external}
    external: Set[str] = {ref.url for ref in crawl.references if ref.external}
    logger.info("Pages visited: %d", crawl.pages_visited)
    for kind in UrlKind:
        logger.info("%s references found: %d", kind.value.capitalize(), crawl.kind_totals[kind])

    internal_results: Dict[str, CheckResult] = {
        url: _page_result(page) for url, page in crawl.pages.items() if url in internal
    }
    pending_internal = sorted(url for url in internal if url not in crawl.pages)

    internal_checker = BatchChecker(replace(config, per_host_rps=0.0, browser_fallback=False))
    try:
        internal_results.update(
            await internal_checker.check_urls(pending_internal, on_progress=on_progress)
        )
    finally:
        await internal_checker.close()

    store = load_cache(config.cache_path)
    external_checker = BatchChecker(config)
    try:
        external_results, external_summary = await validate_external_urls(
            sorted(external), store, external_checker, config, on_progress
        )
    finally:
        await external_checker.close()
    if external_summary.checked or store.recovered:
        save_cache(store, config.cache_path, config.site_domains)

    issues: List[Issue] = []
    seen: Set[Tuple[str, UrlKind, str, bool]] = set()
    for ref in crawl.references:
        if ref.external:
            result = external_results.get(ref.url)
            if result is None or result.ok or _suppressed(store, ref.url):
                continue
        else:
            result = internal_results.get(ref.url)
            if result is None or result.ok:
                continue
        key = (ref.source, ref.kind, ref.url, ref.external)
        if key in seen:
            continue
        seen.add(key)
        issues.append(
            Issue(
                source=ref.source,
                url=ref.url,
                reason=_failure_reason(result),
                kind=ref.kind,
                external=ref.external,
                status=result.status,
            )
        )

    warnings = [
        result
        for url, result in sorted(external_results.items())
        if result.warning and not _suppressed(store, url)
    ]
    log_grouped_issues(issues)
    if not issues and not notes:
        logger.info("Live site passed.")
    log_warnings(warnings)

    counts = {
        "baseUrl": normalized_base,
        "pagesVisited": crawl.pages_visited,
        "links": crawl.kind_totals[UrlKind.LINK],
        "images": crawl.kind_totals[UrlKind.IMAGE],
        "resources": crawl.kind_totals[UrlKind.RESOURCE],
        "internalUrls": len(internal),
        "externalUrls": external_summary.total,
        "checked": external_summary.checked,
        "fromCache": external_summary.from_cache,
        "warnings": len(warnings),
    }
    summary = build_summary(
        SITE_TOOL,
        issues,
        counts,
        warnings,
        notes=notes,
        failed=bool(issues or notes),
    )
    return _finish(summary, config)
