"""Command-line entry point for link validation."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Sequence

from .config import ValidationConfig
from .models import CheckProgress
from .validate import run_content_scan, run_live_site

logger = logging.getLogger("linkaudit.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return ("content",)
    first = argv[0]
    if first in commands or first in ("-h", "--help"):
        return argv
    return ("content", *argv)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--all",
        dest="force_full_check",
        action="store_true",
        help="Re-check every external URL, ignoring cached verdicts",
    )
    mode.add_argument(
        "--failed",
        dest="force_full_check",
        action="store_false",
        help="Only re-check new, stale or previously failing URLs (default)",
    )
    parser.add_argument(
        "--repo-root",
        default=".",
        type=Path,
        help="Repository root used for relative paths and defaults",
    )
    parser.add_argument(
        "--cache",
        type=Path,
        default=None,
        help="External link cache file (default: .linkaudit/external-link-cache.json)",
    )
    parser.add_argument(
        "--summary-dir",
        type=Path,
        default=None,
        help="Directory where the JSON summary is written (default: logs)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=10,
        help="Maximum number of requests in flight",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Per-request timeout in seconds",
    )
    parser.add_argument(
        "--max-age-days",
        type=float,
        default=30.0,
        help="Reuse successful cached verdicts younger than this",
    )
    parser.add_argument(
        "--failure-max-age-hours",
        type=float,
        default=12.0,
        help="Reuse failing cached verdicts younger than this",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=0,
        help="Retry transient errors with exponential backoff this many times",
    )
    parser.add_argument(
        "--browser",
        action="store_true",
        help="Fall back to headless Chromium for sites that block plain HTTP clients",
    )
    parser.add_argument(
        "--site-domain",
        action="append",
        default=[],
        help="Domain of the site itself (repeatable); never cached as external",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.set_defaults(force_full_check=False)


def _add_content_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--content-root",
        type=Path,
        default=None,
        help="Directory holding the Markdown documents (default: content)",
    )
    _add_common_arguments(parser)


def _add_site_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="Base URL of the deployed site to crawl")
    parser.add_argument(
        "--production-domain",
        action="append",
        default=[],
        help="Production host whose links are rewritten to the crawled origin (repeatable)",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Stop crawling after this many pages",
    )
    _add_common_arguments(parser)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find broken links, images and resources in Markdown content or a live site.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    content_parser = subparsers.add_parser(
        "content", help="Validate references in the Markdown content tree"
    )
    _add_content_arguments(content_parser)

    site_parser = subparsers.add_parser(
        "site", help="Crawl a deployed site and validate every reference"
    )
    _add_site_arguments(site_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ValidationConfig:
    repo_root = Path(args.repo_root).resolve()
    return ValidationConfig.for_repo(
        repo_root,
        content_root=getattr(args, "content_root", None),
        cache_path=args.cache,
        summary_dir=args.summary_dir,
        concurrency=args.concurrency,
        timeout=args.timeout,
        max_age_days=args.max_age_days,
        failure_max_age_hours=args.failure_max_age_hours,
        force_full_check=args.force_full_check,
        retries=args.retries,
        browser_fallback=args.browser,
        site_domains=tuple(args.site_domain),
        production_domains=tuple(getattr(args, "production_domain", ())),
        max_pages=getattr(args, "max_pages", None),
    )


def _log_progress(progress: CheckProgress) -> None:
    if progress.total == 0:
        return
    logger.info(
        "Progress: checked %d/%d, success %d, failed %d, in_progress %d",
        progress.checked,
        progress.total,
        progress.success,
        progress.failed,
        progress.in_progress,
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    config = build_config(args)
    overall_start = time.perf_counter()
    if args.command == "site":
        outcome = asyncio.run(run_live_site(args.url, config, on_progress=_log_progress))
    else:
        outcome = asyncio.run(run_content_scan(config, on_progress=_log_progress))
    total_elapsed = time.perf_counter() - overall_start

    logger.info(
        "Finished in %.2fs with status %s",
        total_elapsed,
        outcome.summary["status"],
    )
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
