"""Configuration objects and constants for link validation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

DEFAULT_CACHE_PATH = Path(".linkaudit") / "external-link-cache.json"
CACHE_PATH_ENV = "LINKAUDIT_CACHE_PATH"

DEFAULT_USER_AGENT = "linkaudit/0.1 (+link integrity check)"
DEFAULT_BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)

DEFAULT_NO_THROTTLE_HOSTS = (
    "github.com",
    "githubusercontent.com",
    "wikipedia.org",
    "developer.mozilla.org",
)


def resolve_cache_path(repo_root: Path) -> Path:
    """Return the cache location, honouring the environment override."""
    override = os.getenv(CACHE_PATH_ENV)
    if override:
        return Path(override).expanduser()
    return repo_root / DEFAULT_CACHE_PATH


@dataclass
class ValidationConfig:
    """Top-level settings that control discovery, checking and caching."""

    repo_root: Path
    content_root: Path
    cache_path: Path
    summary_dir: Path
    concurrency: int = 10
    timeout: float = 10.0
    max_age_days: float = 30.0
    failure_max_age_hours: float = 12.0
    force_full_check: bool = False
    per_host_rps: float = 4.0
    no_throttle_hosts: Tuple[str, ...] = DEFAULT_NO_THROTTLE_HOSTS
    retries: int = 0
    backoff_factor: float = 0.5
    browser_fallback: bool = False
    browser_concurrency: int = 2
    site_domains: Tuple[str, ...] = field(default_factory=tuple)
    production_domains: Tuple[str, ...] = field(default_factory=tuple)
    max_pages: Optional[int] = None
    progress_interval: float = 0.8
    user_agent: str = DEFAULT_USER_AGENT
    browser_user_agent: str = DEFAULT_BROWSER_USER_AGENT

    @classmethod
    def for_repo(cls, repo_root: Path, **overrides) -> "ValidationConfig":
        """Build a config with the conventional paths below ``repo_root``."""
        repo_root = Path(repo_root).resolve()
        values = {
            "repo_root": repo_root,
            "content_root": repo_root / "content",
            "cache_path": resolve_cache_path(repo_root),
            "summary_dir": repo_root / "logs",
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    @property
    def max_age_seconds(self) -> float:
        return self.max_age_days * 24 * 60 * 60

    @property
    def failure_max_age_seconds(self) -> float:
        return self.failure_max_age_hours * 60 * 60
