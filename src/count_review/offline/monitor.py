from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from count_review.offline.connectivity import ConnectivityTracker
from count_review.offline.transport import HttpTransport, is_transport_error

logger = logging.getLogger(__name__)


class ServerHeartbeat:
    """Pings the server on a fixed interval so connectivity is tracked while idle."""

    def __init__(
        self,
        *,
        transport: HttpTransport,
        connectivity: ConnectivityTracker,
        ping_path: str = "/ping",
        interval_seconds: float = 3.0,
        timeout_seconds: float = 2.0,
    ) -> None:
        self._transport = transport
        self._connectivity = connectivity
        self._ping_path = ping_path
        self._interval_seconds = interval_seconds
        self._timeout_seconds = timeout_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def check(self) -> bool:
        try:
            await self._transport.request(
                "GET",
                self._ping_path,
                headers={"Cache-Control": "no-cache"},
                timeout_seconds=self._timeout_seconds,
            )
        except Exception as e:
            if not is_transport_error(e):
                raise
            self._connectivity.mark_disconnected()
            self._connectivity.refresh_warning()
            return False
        self._connectivity.mark_connected()
        return True

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                await self.check()
            except Exception:
                logger.exception("Server heartbeat failed.")
            elapsed = time.monotonic() - started
            sleep_seconds = max(0.0, self._interval_seconds - elapsed)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_seconds)
            except asyncio.TimeoutError:
                continue
