from __future__ import annotations

import logging

from count_review.offline.connectivity import ConnectivityTracker
from count_review.offline.models import FlushResult, PendingRequest
from count_review.offline.queue import PendingQueue
from count_review.offline.transport import HttpTransport, is_transport_error

logger = logging.getLogger(__name__)


class QueueFlusher:
    """
    Replays the pending queue in insertion order, one request at a time.

    A pass stops at the first transport failure so nothing is sent ahead of
    an earlier unsent write. Rejected (non-2xx) and unexpectedly failing items
    stay queued and are retried on the next pass.
    """

    def __init__(self, *, transport: HttpTransport, queue: PendingQueue, connectivity: ConnectivityTracker) -> None:
        self._transport = transport
        self._queue = queue
        self._connectivity = connectivity
        self._flushing = False

    @property
    def flushing(self) -> bool:
        return self._flushing

    async def flush(self) -> FlushResult:
        if self._flushing:
            logger.debug("Flush already in progress, skipping.")
            return FlushResult(skipped=True)
        self._flushing = True
        try:
            return await self._flush_once()
        finally:
            self._flushing = False

    async def _flush_once(self) -> FlushResult:
        result = FlushResult()
        snapshot = self._queue.load()
        if not snapshot:
            return result

        remaining: list[PendingRequest] = []
        for index, item in enumerate(snapshot):
            try:
                response = await self._transport.request(
                    item.method,
                    item.url,
                    headers=item.headers,
                    body=item.body,
                )
            except Exception as e:
                if is_transport_error(e):
                    self._connectivity.mark_disconnected()
                    self._connectivity.refresh_warning()
                    remaining.extend(snapshot[index:])
                    result.stopped_on_disconnect = True
                    logger.info(
                        "Queue replay stopped, server unreachable. id=%s remaining=%d",
                        item.id,
                        len(snapshot) - index,
                    )
                    break
                logger.exception("Queue replay failed unexpectedly, keeping item. id=%s url=%s", item.id, item.url)
                remaining.append(item)
                continue

            self._connectivity.mark_connected()
            if response.ok:
                result.sent.append(item.id)
                logger.info("Queued request replayed. id=%s status=%d", item.id, response.status)
            else:
                remaining.append(item)
                logger.warning(
                    "Queued request rejected by server, keeping item. id=%s url=%s status=%d",
                    item.id,
                    item.url,
                    response.status,
                )

        snapshot_ids = {item.id for item in snapshot}
        appended = [item for item in self._queue.load() if item.id not in snapshot_ids]
        self._queue.save(remaining + appended)
        result.retained = [item.id for item in remaining + appended]
        return result
