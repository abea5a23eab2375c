"""Persistent cache of external link verdicts."""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional

from .models import CheckResult, ManualState
from .urls import host_matches, url_host

logger = logging.getLogger("linkaudit")

CACHE_VERSION = 1


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def format_timestamp(value: dt.datetime) -> str:
    return value.astimezone(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[dt.datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def normalize_manual_state(raw: Any) -> ManualState:
    """Map a hand-edited ``manual`` value onto a known state."""
    if raw is None:
        return ManualState.AUTO
    if isinstance(raw, str):
        try:
            return ManualState(raw.strip().lower())
        except ValueError:
            pass
    logger.warning("Unknown manual state %r in cache; treating it as 'auto'", raw)
    return ManualState.AUTO


@dataclass
class CacheEntry:
    """Last known verdict for one external URL."""

    url: str
    ok: bool
    status: Optional[int] = None
    warning: Optional[str] = None
    error: Optional[str] = None
    checked_at: Optional[dt.datetime] = None
    manual: ManualState = ManualState.AUTO
    hint: Optional[str] = None

    @classmethod
    def from_dict(cls, url: str, payload: Dict[str, Any]) -> "CacheEntry":
        status = payload.get("status")
        return cls(
            url=url,
            ok=bool(payload.get("ok", False)),
            status=status if isinstance(status, int) else None,
            warning=payload.get("warning"),
            error=payload.get("error"),
            checked_at=parse_timestamp(payload.get("checkedAt")),
            manual=normalize_manual_state(payload.get("manual")),
            hint=payload.get("hint"),
        )

    @classmethod
    def from_result(
        cls,
        result: CheckResult,
        checked_at: dt.datetime,
        previous: Optional["CacheEntry"] = None,
    ) -> "CacheEntry":
        """Record a fresh verdict, carrying the operator's manual state over."""
        return cls(
            url=result.url,
            ok=result.ok,
            status=result.status,
            warning=result.warning,
            error=result.error,
            checked_at=checked_at,
            manual=previous.manual if previous else ManualState.AUTO,
            hint=result.hint,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "ok": self.ok,
            "warning": self.warning,
            "error": self.error,
            "checkedAt": format_timestamp(self.checked_at) if self.checked_at else None,
            "manual": self.manual.value,
            "hint": self.hint,
        }

    def to_result(self) -> CheckResult:
        return CheckResult(
            url=self.url,
            ok=self.ok,
            status=self.status,
            error=self.error,
            warning=self.warning,
            hint=self.hint,
            from_cache=True,
        )

    @property
    def suppressed(self) -> bool:
        """Entries an operator verified or ignored never need attention."""
        return self.manual in (ManualState.VERIFIED, ManualState.IGNORED)


@dataclass
class CacheStore:
    """In-memory snapshot of the cache file, keyed by normalized URL."""

    entries: Dict[str, CacheEntry] = field(default_factory=dict)
    version: int = CACHE_VERSION
    # Set when the file on disk was unreadable and must be rewritten.
    recovered: bool = False

    def get(self, url: str) -> Optional[CacheEntry]:
        return self.entries.get(url)

    def set(self, url: str, entry: CacheEntry) -> None:
        self.entries[url] = entry

    def __contains__(self, url: object) -> bool:
        return url in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)


def load_cache(path: Path) -> CacheStore:
    """Read the cache file; a missing or corrupt file yields an empty store."""
    if not path.exists():
        logger.debug("No external link cache at %s; starting empty", path)
        return CacheStore()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("External link cache %s is unreadable (%s); starting empty", path, exc)
        return CacheStore(recovered=True)

    raw_entries = payload.get("entries") if isinstance(payload, dict) else None
    if not isinstance(raw_entries, dict):
        logger.warning("External link cache %s has no entries table; starting empty", path)
        return CacheStore(recovered=True)

    store = CacheStore(version=payload.get("version", CACHE_VERSION))
    for url, raw in raw_entries.items():
        if not isinstance(raw, dict):
            logger.warning("Dropping malformed cache entry for %s", url)
            continue
        store.set(url, CacheEntry.from_dict(url, raw))
    return store


def save_cache(store: CacheStore, path: Path, exclude_domains: Iterable[str] = ()) -> None:
    """Rewrite the whole cache file atomically with sorted keys."""
    exclude_domains = tuple(exclude_domains)
    entries = {
        url: store.entries[url].to_dict()
        for url in sorted(store.entries)
        if not host_matches(url_host(url), exclude_domains)
    }
    payload = {"version": store.version, "entries": entries}

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, indent=2) + "\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.debug("Saved %d cache entries to %s", len(entries), path)


def prune_cache(store: CacheStore, live_urls: Iterable[str]) -> int:
    """Delete entries whose URL is no longer referenced; return how many."""
    live = set(live_urls)
    stale_keys = [url for url in store.entries if url not in live]
    for url in stale_keys:
        del store.entries[url]
    return len(stale_keys)


def is_stale(entry: CacheEntry, ttl: float, now: dt.datetime) -> bool:
    """True when the entry is older than ``ttl`` seconds."""
    if entry.checked_at is None:
        return True
    return (now - entry.checked_at).total_seconds() > ttl


def needs_check(
    entry: Optional[CacheEntry],
    now: dt.datetime,
    max_age: float,
    failure_max_age: float,
    force: bool = False,
) -> bool:
    """Decide whether a URL must be re-requested instead of served from cache."""
    if force or entry is None:
        return True
    if entry.ok or entry.suppressed:
        return is_stale(entry, max_age, now)
    return is_stale(entry, failure_max_age, now)
