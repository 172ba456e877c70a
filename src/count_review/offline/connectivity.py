from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from count_review.offline.storage import SmallTier
from count_review.offline.utils import now_ms

logger = logging.getLogger(__name__)

DISCONNECTED_SINCE_KEY = "disconnected_since"
DEFAULT_WARNING_THRESHOLD_MS = 5 * 60 * 1000

WarningListener = Callable[[bool], None]
RestoredListener = Callable[[], None]


class ConnectivityTracker:
    """
    Tracks whether the server was reachable on the last attempt.

    `disconnected_since` marks the start of a contiguous stretch of transport
    failures and is only cleared by a server contact of any status.
    """

    def __init__(
        self,
        store: SmallTier,
        *,
        threshold_ms: int = DEFAULT_WARNING_THRESHOLD_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._threshold_ms = int(threshold_ms)
        self._clock = clock
        self._disconnected_since: Optional[int] = self._load()
        self._warning_visible = False
        self._warning_listeners: list[WarningListener] = []
        self._restored_listeners: list[RestoredListener] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def _load(self) -> Optional[int]:
        raw = self._store.get_item(DISCONNECTED_SINCE_KEY)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning("Ignoring malformed disconnected-since value. value=%r", raw)
            return None

    @property
    def disconnected_since(self) -> Optional[int]:
        return self._disconnected_since

    @property
    def warning_visible(self) -> bool:
        return self._warning_visible

    def add_warning_listener(self, listener: WarningListener) -> None:
        self._warning_listeners.append(listener)

    def add_restored_listener(self, listener: RestoredListener) -> None:
        self._restored_listeners.append(listener)

    def mark_connected(self) -> None:
        was_disconnected = self._disconnected_since is not None
        self._disconnected_since = None
        if was_disconnected:
            self._store.remove_item(DISCONNECTED_SINCE_KEY)
            logger.info("Server reachable again.")
        self._set_warning(False)
        if was_disconnected:
            for listener in list(self._restored_listeners):
                try:
                    listener()
                except Exception:
                    logger.exception("Network-restored listener failed.")

    def mark_disconnected(self) -> None:
        if self._disconnected_since is not None:
            return
        self._disconnected_since = self._clock()
        self._store.set_item(DISCONNECTED_SINCE_KEY, str(self._disconnected_since))
        logger.info("Server unreachable. disconnected_since=%s", self._disconnected_since)

    def is_disconnected_past_threshold(self, now: Optional[int] = None) -> bool:
        if self._disconnected_since is None:
            return False
        current = self._clock() if now is None else now
        return current - self._disconnected_since >= self._threshold_ms

    def refresh_warning(self, now: Optional[int] = None) -> bool:
        visible = self.is_disconnected_past_threshold(now)
        self._set_warning(visible)
        return visible

    def _set_warning(self, visible: bool) -> None:
        if visible == self._warning_visible:
            return
        self._warning_visible = visible
        if visible:
            logger.warning(
                "Server unreachable past warning threshold. disconnected_since=%s threshold_ms=%s",
                self._disconnected_since,
                self._threshold_ms,
            )
        for listener in list(self._warning_listeners):
            try:
                listener(visible)
            except Exception:
                logger.exception("Disconnect warning listener failed.")

    def start_polling(self, interval_seconds: float = 2.5) -> None:
        if self._poll_task and not self._poll_task.done():
            return
        self._stop_event.clear()
        self._poll_task = asyncio.create_task(self._poll_loop(interval_seconds))

    async def stop_polling(self) -> None:
        if not self._poll_task:
            return
        self._stop_event.set()
        await self._poll_task
        self._poll_task = None

    async def _poll_loop(self, interval_seconds: float) -> None:
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.refresh_warning()
            except Exception:
                logger.exception("Disconnect warning refresh failed.")
            elapsed = time.monotonic() - started
            sleep_seconds = max(0.0, interval_seconds - elapsed)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_seconds)
            except asyncio.TimeoutError:
                continue
