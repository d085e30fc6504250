from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from . import config


@dataclass(frozen=True)
class Job:
    index: int
    identifier: str


@dataclass(frozen=True)
class CacheKey:
    """Request identity of one cached response; ``offset=None`` marks a definition."""

    oid: str
    version: Optional[str] = None
    offset: Optional[int] = None
    filter_text: Optional[str] = None

    @property
    def version_label(self) -> str:
        return self.version or config.LATEST_VERSION

    @property
    def is_definition(self) -> bool:
        return self.offset is None


@dataclass(frozen=True)
class Page:
    oid: str
    version: Optional[str]
    offset: int
    payload: dict[str, Any]

    @property
    def items(self) -> list[Any]:
        expansion = self.payload.get("expansion") or {}
        return list(expansion.get("contains") or [])

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def total(self) -> Optional[int]:
        expansion = self.payload.get("expansion") or {}
        total = expansion.get("total")
        return total if isinstance(total, int) else None


@dataclass
class JobResult:
    index: int
    identifier: str
    oid: Optional[str] = None
    definition: Optional[dict[str, Any]] = None
    expansion: Optional[dict[str, Any]] = None
    version: Optional[str] = None
    pages: int = 0
    files: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def resource_for(self, post_mode: str) -> Optional[dict[str, Any]]:
        """Return the resource uploaded for ``post_mode`` (definition or expanded)."""
        if not self.ok:
            return None
        if post_mode == "definition":
            return self.definition
        return self.expansion
