from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal

CacheCategory = Literal["list", "chat", "file"]


@dataclass(slots=True)
class CacheEntry:
    timestamp: int
    payload: Any


@dataclass(slots=True)
class EvictionMeta:
    timestamp: int
    category: CacheCategory


@dataclass(slots=True)
class PendingRequest:
    id: str
    url: str
    method: str
    headers: Dict[str, str]
    body: str
    queued_at: str


@dataclass(frozen=True, slots=True)
class FetchResult:
    payload: Any
    from_cache: bool


@dataclass(frozen=True, slots=True)
class WriteResult:
    accepted: bool
    queued: bool
    payload: Any = None


@dataclass(slots=True)
class FlushResult:
    sent: list[str] = field(default_factory=list)
    retained: list[str] = field(default_factory=list)
    stopped_on_disconnect: bool = False
    skipped: bool = False
