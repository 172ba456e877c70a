from __future__ import annotations

import logging
from datetime import timezone
from typing import Any, Optional, Sequence
from urllib.parse import quote

from count_review.offline.client import OfflineClient, cache_key
from count_review.offline.models import FetchResult, WriteResult
from count_review.offline.storage import SmallTier
from count_review.offline.utils import format_rfc3339, now_ms, parse_rfc3339, utc_now
from count_review.reports.local_updates import (
    append_chat_message,
    append_location_action,
    patch_cached,
    set_reviewed_flag,
    set_reviewed_in_list,
)

logger = logging.getLogger(__name__)

REPORT_EXPORTS_URL = "/api/report-exports"
REVIEWED_BATCH_URL = "/api/report-exports/reviewed-batch"
CHATLOG_URL = "/api/chatlog"
LOCATION_ACTIONS = ("recount", "question")
LAST_SEEN_PREFIX = "last_seen."


def report_export_url(file: str) -> str:
    return f"{REPORT_EXPORTS_URL}/{quote(file, safe='')}"


def _timestamp_ms(value: str) -> int:
    parsed = parse_rfc3339(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


class ReportReviewClient:
    """
    Review endpoints of the count report server, routed through the offline layer.

    Reads fall back to the last cached copy while the server is unreachable.
    Writes are queued and mirrored into the cached copies so a reload shows
    the intended change before the server has confirmed it.
    """

    def __init__(self, offline: OfflineClient, markers: SmallTier) -> None:
        self._offline = offline
        self._markers = markers

    @property
    def list_key(self) -> str:
        return cache_key("GET", REPORT_EXPORTS_URL)

    @property
    def chat_key(self) -> str:
        return cache_key("GET", CHATLOG_URL)

    def report_key(self, file: str) -> str:
        return cache_key("GET", report_export_url(file), file)

    async def list_report_exports(self) -> FetchResult:
        return await self._offline.fetch_with_cache(REPORT_EXPORTS_URL, self.list_key, category="list")

    async def get_report_export(self, file: str) -> FetchResult:
        return await self._offline.fetch_with_cache(report_export_url(file), self.report_key(file), category="file")

    async def get_chatlog(self) -> FetchResult:
        return await self._offline.fetch_with_cache(CHATLOG_URL, self.chat_key, category="chat")

    async def post_chat_message(self, sender: str, text: str) -> WriteResult:
        message = {"timestamp": format_rfc3339(utc_now()), "user": sender, "message": text}

        def apply_local() -> None:
            patch_cached(
                self._offline.cache,
                self.chat_key,
                lambda chat: append_chat_message(chat, {**message, "pending": True}),
                category="chat",
            )

        return await self._offline.queued_write(CHATLOG_URL, message, apply_local=apply_local)

    async def submit_location_action(
        self,
        file: str,
        *,
        area_num: Any,
        loc_num: Any,
        action: str,
        text: str = "",
    ) -> WriteResult:
        action_name = str(action).strip().lower()
        if action_name not in LOCATION_ACTIONS:
            raise ValueError(f"Invalid location action: {action!r}")
        body = {
            "area_num": area_num,
            "loc_num": str(loc_num).strip(),
            "action": action_name,
            "text": text,
            "timestamp": format_rfc3339(utc_now()),
        }

        def apply_local() -> None:
            patch_cached(
                self._offline.cache,
                self.report_key(file),
                lambda report: append_location_action(report, body),
                category="file",
            )

        return await self._offline.queued_write(
            f"{report_export_url(file)}/location-action",
            body,
            apply_local=apply_local,
        )

    async def set_reviewed(self, file: str, reviewed: bool) -> WriteResult:
        reviewed_at = format_rfc3339(utc_now())
        body = {"reviewed": reviewed, "reviewed_at": reviewed_at}
        return await self._offline.queued_write(
            f"{report_export_url(file)}/reviewed",
            body,
            apply_local=lambda: self._apply_reviewed([file], reviewed, reviewed_at),
        )

    async def set_reviewed_batch(self, files: Sequence[str], reviewed: bool) -> WriteResult:
        names = [str(f).strip() for f in files if str(f).strip()]
        if not names:
            raise ValueError("No report files given.")
        reviewed_at = format_rfc3339(utc_now())
        body = {"files": names, "reviewed": reviewed, "reviewed_at": reviewed_at}
        return await self._offline.queued_write(
            REVIEWED_BATCH_URL,
            body,
            apply_local=lambda: self._apply_reviewed(names, reviewed, reviewed_at),
        )

    def _apply_reviewed(self, files: Sequence[str], reviewed: bool, reviewed_at: str) -> None:
        cache = self._offline.cache
        for file in files:
            patch_cached(
                cache,
                self.report_key(file),
                lambda report: set_reviewed_flag(report, reviewed=reviewed, reviewed_at=reviewed_at),
                category="file",
            )
        patch_cached(
            cache,
            self.list_key,
            lambda rows: set_reviewed_in_list(rows, files, reviewed=reviewed, reviewed_at=reviewed_at),
            category="list",
        )

    def last_seen(self, feature: str) -> Optional[int]:
        raw = self._markers.get_item(LAST_SEEN_PREFIX + feature)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def mark_seen(self, feature: str, at_ms: Optional[int] = None) -> None:
        self._markers.set_item(LAST_SEEN_PREFIX + feature, str(now_ms() if at_ms is None else at_ms))

    def mark_chat_seen(self, at_ms: Optional[int] = None) -> None:
        self.mark_seen("chat", at_ms)

    def unread_chat_count(self, messages: Sequence[dict]) -> int:
        seen = self.last_seen("chat")
        if seen is None:
            return len(messages)
        unread = 0
        for message in messages:
            try:
                sent_ms = _timestamp_ms(str(message.get("timestamp", "")))
            except ValueError:
                continue
            if sent_ms > seen:
                unread += 1
        return unread
