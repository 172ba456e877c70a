"""Offline resilience layer: durable cache, pending write queue, connectivity tracking."""

from __future__ import annotations

from typing import TYPE_CHECKING

from count_review.offline.errors import CountReviewError, HttpStatusError, InvalidResponseError
from count_review.offline.models import CacheEntry, FetchResult, FlushResult, PendingRequest, WriteResult

if TYPE_CHECKING:
    from count_review.offline.client import OfflineClient
    from count_review.offline.context import OfflineContext, build_offline_context

__all__ = [
    "CacheEntry",
    "CountReviewError",
    "FetchResult",
    "FlushResult",
    "HttpStatusError",
    "InvalidResponseError",
    "OfflineClient",
    "OfflineContext",
    "PendingRequest",
    "WriteResult",
    "build_offline_context",
]


def __getattr__(name: str):
    if name == "OfflineClient":
        from count_review.offline.client import OfflineClient as _OfflineClient

        return _OfflineClient
    if name == "OfflineContext":
        from count_review.offline.context import OfflineContext as _OfflineContext

        return _OfflineContext
    if name == "build_offline_context":
        from count_review.offline.context import build_offline_context as _build_offline_context

        return _build_offline_context
    raise AttributeError(name)
