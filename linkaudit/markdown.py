"""Reference discovery inside raw Markdown documents."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from .models import ReferenceOccurrence, UrlKind
from .urls import classify_by_extension, is_http_url, is_protocol_relative

logger = logging.getLogger("linkaudit")

FENCE_PATTERN = re.compile(r"^\s*(```+|~~~+)")
INLINE_CODE_PATTERN = re.compile(r"`[^`]*`")
INLINE_LINK_PATTERN = re.compile(r"(!?)\[[^\]]*\]\(((?:[^()]|\([^()]*\))+)\)")
REFERENCE_DEFINITION_PATTERN = re.compile(r"^\s*\[(?!\^)[^\]]+\]:\s*(.+)$")
AUTOLINK_PATTERN = re.compile(r"<([^\s>]+)>")
BARE_URL_PATTERN = re.compile(r"https?://[^\s<>()\[\]\"'`]+")
HTML_CLOSING_TAG_PATTERN = re.compile(r"^/[A-Za-z][A-Za-z0-9:-]*$")
HTML_SELF_CLOSING_TAG_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9:-]*/$")
SCHEME_PATTERN = re.compile(r"^[a-z][a-z0-9+.-]*:")

CONTEXT_MAX_LENGTH = 160
BARE_URL_TRAILING = ".,;:!?*_~"


def _normalize_target(raw_target: str) -> str:
    """Unwrap ``<...>`` and drop an optional link title."""
    trimmed = raw_target.strip()
    if not trimmed:
        return ""
    if trimmed.startswith("<") and trimmed.endswith(">"):
        trimmed = trimmed[1:-1].strip()
    tokens = trimmed.split()
    if not tokens:
        return ""
    return tokens[0].lstrip("<").rstrip(">")


def build_context_snippet(
    line: str,
    match_index: int,
    match_length: int,
    max_length: int = CONTEXT_MAX_LENGTH,
) -> str:
    """Cut a window of ``line`` centred on a match for human-readable reports."""
    if len(line.strip()) <= max_length:
        return line.strip()

    safe_index = max(0, min(match_index, len(line)))
    half = max(0, (max_length - match_length) // 2)
    start = max(0, safe_index - half)
    end = min(len(line), start + max_length)
    if end - start < max_length:
        start = max(0, end - max_length)

    snippet = line[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(line):
        snippet = snippet + "..."
    return snippet


def _is_html_tag(target: str) -> bool:
    """``</div>`` and ``<br/>`` are markup, not autolinks."""
    return bool(HTML_CLOSING_TAG_PATTERN.match(target) or HTML_SELF_CLOSING_TAG_PATTERN.match(target))


def _is_likely_autolink(target: str) -> bool:
    if target.startswith(("#", "/", "./", "../")):
        return True
    if is_http_url(target) or is_protocol_relative(target):
        return True
    if "@" in target or SCHEME_PATTERN.match(target):
        return True
    if target.startswith("www."):
        return True
    return "/" in target or "." in target


def _blank_span(text: str, start: int, end: int) -> str:
    return text[:start] + " " * (end - start) + text[end:]


def _scan_line(line: str) -> List[Tuple[str, UrlKind, int, int]]:
    """Return ``(target, kind, index, length)`` tuples for one cleaned line."""
    found: List[Tuple[str, UrlKind, int, int]] = []
    remaining = line

    for match in INLINE_LINK_PATTERN.finditer(line):
        target = _normalize_target(match.group(2))
        remaining = _blank_span(remaining, match.start(), match.end())
        if not target:
            continue
        kind = UrlKind.IMAGE if match.group(1) else classify_by_extension(target, UrlKind.LINK)
        found.append((target, kind, match.start(), len(match.group(0))))

    definition = REFERENCE_DEFINITION_PATTERN.match(remaining)
    if definition:
        target = _normalize_target(definition.group(1))
        remaining = _blank_span(remaining, definition.start(), definition.end())
        if target:
            found.append(
                (target, classify_by_extension(target, UrlKind.LINK), definition.start(), len(definition.group(0)))
            )

    for match in AUTOLINK_PATTERN.finditer(remaining):
        target = _normalize_target(match.group(1))
        if not target or _is_html_tag(target) or not _is_likely_autolink(target):
            continue
        remaining = _blank_span(remaining, match.start(), match.end())
        found.append((target, classify_by_extension(target, UrlKind.LINK), match.start(), len(match.group(0))))

    for match in BARE_URL_PATTERN.finditer(remaining):
        target = match.group(0).rstrip(BARE_URL_TRAILING)
        if not target:
            continue
        found.append((target, classify_by_extension(target, UrlKind.LINK), match.start(), len(target)))

    found.sort(key=lambda item: item[2])
    return found


def extract_markdown_references(text: str, source: str) -> List[ReferenceOccurrence]:
    """Find every link, image and autolink in a Markdown document.

    Fenced blocks and inline code spans are ignored. Line numbers are 1-based.
    """
    occurrences: List[ReferenceOccurrence] = []
    in_fence = False
    fence_char: Optional[str] = None

    for index, line in enumerate(text.splitlines(), start=1):
        fence = FENCE_PATTERN.match(line)
        if fence:
            current = fence.group(1)[0]
            if not in_fence:
                in_fence = True
                fence_char = current
                continue
            if current == fence_char:
                in_fence = False
                fence_char = None
                continue
        if in_fence:
            continue

        cleaned = INLINE_CODE_PATTERN.sub("", line)
        for target, kind, match_index, match_length in _scan_line(cleaned):
            occurrences.append(
                ReferenceOccurrence(
                    url=target,
                    kind=kind,
                    source=source,
                    line=index,
                    context=build_context_snippet(cleaned, match_index, match_length),
                    external=is_http_url(target) or is_protocol_relative(target),
                )
            )
    return occurrences


def find_markdown_files(root: Path) -> List[Path]:
    """Collect Markdown documents below ``root`` in a stable order."""
    return sorted(path for path in root.rglob("*.md") if path.is_file())


def read_document(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Skipping unreadable document %s: %s", path, exc)
        return None
