"""Data models used throughout the validation pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class UrlKind(str, Enum):
    """What a reference points at."""

    LINK = "link"
    IMAGE = "image"
    RESOURCE = "resource"


class ManualState(str, Enum):
    """Operator override stored next to each cached verdict."""

    AUTO = "auto"
    VERIFIED = "verified"
    IGNORED = "ignored"


@dataclass
class ReferenceOccurrence:
    """One appearance of a reference at a concrete source location."""

    url: str
    kind: UrlKind
    source: str
    line: int
    context: str
    external: bool


@dataclass
class CheckResult:
    """Verdict for a single normalized URL."""

    url: str
    ok: bool
    status: Optional[int] = None
    error: Optional[str] = None
    warning: Optional[str] = None
    hint: Optional[str] = None
    from_cache: bool = False


@dataclass
class CheckProgress:
    """Snapshot emitted while a batch is being checked."""

    total: int
    checked: int = 0
    success: int = 0
    failed: int = 0
    in_progress: int = 0


@dataclass
class Issue:
    """A reportable problem tied to the document or page it came from."""

    source: str
    url: str
    reason: str
    kind: UrlKind = UrlKind.LINK
    external: bool = False
    status: Optional[int] = None
    line: Optional[int] = None
    context: Optional[str] = None

    def to_dict(self) -> dict:
        payload = {
            "url": self.url,
            "type": "external" if self.external else "internal",
            "kind": self.kind.value,
            "reason": self.reason,
            "status": self.status,
        }
        if self.line is not None:
            payload["line"] = self.line
        if self.context is not None:
            payload["context"] = self.context
        return payload
