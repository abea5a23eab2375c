"""Summary artifacts and grouped console output."""

from __future__ import annotations

import datetime as dt
import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import CheckResult, Issue

logger = logging.getLogger("linkaudit")

SCHEMA_VERSION = 1


def group_issues(issues: Iterable[Issue]) -> Dict[str, List[Issue]]:
    """Bucket issues by the document or page they were found in."""
    grouped: Dict[str, List[Issue]] = defaultdict(list)
    for issue in issues:
        grouped[issue.source].append(issue)
    return {source: grouped[source] for source in sorted(grouped)}


def _describe(issue: Issue) -> str:
    label = f"{'external' if issue.external else 'internal'}/{issue.kind.value}"
    detail = issue.reason
    if issue.status is not None and str(issue.status) not in detail:
        detail = f"{issue.status}, {detail}"
    return f"{label}: {issue.url} ({detail})"


def log_grouped_issues(issues: Sequence[Issue]) -> None:
    """Print failures grouped per source so they can be fixed file by file."""
    if not issues:
        return
    logger.error("Issues found: %d", len(issues))
    for source, source_issues in group_issues(issues).items():
        logger.error("%s - %d issue(s)", source, len(source_issues))
        for issue in source_issues:
            logger.error("  %s", _describe(issue))
            if issue.line:
                logger.info("    line %d: %s", issue.line, issue.context or "")


def log_warnings(results: Iterable[CheckResult]) -> None:
    flagged = [result for result in results if result.warning]
    if not flagged:
        return
    logger.warning("Warnings: %d", len(flagged))
    for result in flagged:
        logger.warning("  %s - %s", result.url, result.warning)


def build_summary(
    tool: str,
    issues: Sequence[Issue],
    counts: Dict[str, Any],
    warnings: Iterable[CheckResult] = (),
    manual_pending: Iterable[str] = (),
    notes: Iterable[str] = (),
    failed: Optional[bool] = None,
) -> Dict[str, Any]:
    """Assemble the machine-readable report for one run."""
    notes = list(notes)
    if failed is None:
        failed = bool(issues)
    grouped = group_issues(issues)
    return {
        "schemaVersion": SCHEMA_VERSION,
        "tool": tool,
        "status": "fail" if failed else "pass",
        "generatedAt": dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "summary": {
            "issues": len(issues),
            "filesWithIssues": len(grouped),
            **counts,
        },
        "files": [
            {"file": source, "issues": [issue.to_dict() for issue in source_issues]}
            for source, source_issues in grouped.items()
        ],
        "warnings": [
            {"url": result.url, "status": result.status, "warning": result.warning}
            for result in warnings
            if result.warning
        ],
        "manualPending": sorted(manual_pending),
        "notes": notes,
    }


def setup_failure_summary(tool: str, note: str, counts: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Summary for a run that could not start."""
    summary = build_summary(tool, [], counts or {}, notes=[note], failed=True)
    summary["summary"]["issues"] = 1
    return summary


def write_summary(summary: Dict[str, Any], summary_dir: Path) -> Path:
    """Persist the summary next to earlier runs and return its path."""
    summary_dir.mkdir(parents=True, exist_ok=True)
    stamp = dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    path = summary_dir / f"{summary['tool']}-{stamp}.summary.json"
    path.write_text(json.dumps(summary, indent=2) + "\n", encoding="utf-8")
    logger.info("Summary saved to: %s", path)
    return path
