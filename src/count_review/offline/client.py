from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Mapping, Optional

from count_review.offline.connectivity import ConnectivityTracker
from count_review.offline.errors import HttpStatusError, InvalidResponseError
from count_review.offline.flusher import QueueFlusher
from count_review.offline.models import CacheCategory, FetchResult, FlushResult, WriteResult
from count_review.offline.queue import PendingQueue
from count_review.offline.storage import LargeCache
from count_review.offline.transport import HttpResponse, HttpTransport, is_transport_error

logger = logging.getLogger(__name__)

ApplyLocal = Callable[[], None]

JSON_HEADERS = {"Content-Type": "application/json"}


def cache_key(method: str, url: str, resource: Optional[str] = None) -> str:
    key = f"{method.upper()} {url}"
    if resource:
        key = f"{key}#{resource}"
    return key


def _decode_json(response: HttpResponse, url: str) -> Any:
    if response.body_error:
        raise InvalidResponseError(url=url, reason=response.body_error)
    if not response.text.strip():
        return None
    try:
        return response.json()
    except ValueError as e:
        raise InvalidResponseError(url=url, reason=str(e)) from e


class OfflineClient:
    """
    Reads served from cache and writes queued when the server is unreachable.

    Only transport failures take the offline path. A server that answers with
    any status counts as reachable, and non-2xx answers raise HttpStatusError.
    """

    def __init__(
        self,
        *,
        transport: HttpTransport,
        cache: LargeCache,
        queue: PendingQueue,
        connectivity: ConnectivityTracker,
        flusher: Optional[QueueFlusher] = None,
    ) -> None:
        self._transport = transport
        self._cache = cache
        self._queue = queue
        self._connectivity = connectivity
        self._flusher = flusher or QueueFlusher(transport=transport, queue=queue, connectivity=connectivity)
        self._flush_tasks: set[asyncio.Task] = set()

    @property
    def cache(self) -> LargeCache:
        return self._cache

    @property
    def queue(self) -> PendingQueue:
        return self._queue

    @property
    def connectivity(self) -> ConnectivityTracker:
        return self._connectivity

    async def fetch_with_cache(
        self,
        url: str,
        cache_key: str,
        *,
        category: CacheCategory = "list",
    ) -> FetchResult:
        try:
            response = await self._transport.request("GET", url)
        except Exception as e:
            if not is_transport_error(e):
                raise
            self._connectivity.mark_disconnected()
            self._connectivity.refresh_warning()
            cached = self._cache.get(cache_key)
            if cached is None:
                logger.info("Fetch failed offline with no cached copy. url=%s", url)
                raise
            logger.info("Serving cached copy while offline. url=%s key=%s", url, cache_key)
            return FetchResult(payload=cached.payload, from_cache=True)

        self._connectivity.mark_connected()
        if not response.ok:
            raise HttpStatusError(status=response.status, url=url, body=response.text)
        payload = _decode_json(response, url)
        self._cache.put(cache_key, payload, category=category)
        self.trigger_flush()
        return FetchResult(payload=payload, from_cache=False)

    async def queued_write(
        self,
        url: str,
        body: Any,
        *,
        method: str = "POST",
        headers: Optional[Mapping[str, str]] = None,
        apply_local: Optional[ApplyLocal] = None,
    ) -> WriteResult:
        serialized = json.dumps(body)
        request_headers = {**JSON_HEADERS, **dict(headers or {})}
        try:
            response = await self._transport.request(method, url, headers=request_headers, body=serialized)
        except Exception as e:
            if not is_transport_error(e):
                raise
            self._connectivity.mark_disconnected()
            self._connectivity.refresh_warning()
            if apply_local is not None:
                try:
                    apply_local()
                except Exception:
                    logger.exception("Optimistic local update failed. url=%s", url)
            self._queue.append(url=url, method=method, headers=request_headers, body=serialized)
            return WriteResult(accepted=True, queued=True)

        self._connectivity.mark_connected()
        if not response.ok:
            raise HttpStatusError(status=response.status, url=url, body=response.text)
        self.trigger_flush()
        try:
            payload = _decode_json(response, url)
        except InvalidResponseError as e:
            # A 2xx means the server stored the write.
            logger.warning("Write accepted with unreadable response body. url=%s error=%s", url, e)
            payload = None
        return WriteResult(accepted=True, queued=False, payload=payload)

    async def flush(self) -> FlushResult:
        return await self._flusher.flush()

    def trigger_flush(self) -> Optional[asyncio.Task]:
        """Schedule a queue replay in the background if anything is pending."""
        if self._flusher.flushing or not self._queue.load():
            return None
        task = asyncio.create_task(self._flusher.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._on_flush_done)
        return task

    def _on_flush_done(self, task: asyncio.Task) -> None:
        self._flush_tasks.discard(task)
        try:
            task.result()
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("Background queue flush failed.")

    async def wait_idle(self) -> None:
        while self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks), return_exceptions=True)
