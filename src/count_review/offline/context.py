from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from count_review.config.models import AppConfig
from count_review.offline.client import OfflineClient
from count_review.offline.connectivity import ConnectivityTracker
from count_review.offline.flusher import QueueFlusher
from count_review.offline.monitor import ServerHeartbeat
from count_review.offline.queue import PendingQueue
from count_review.offline.storage import (
    DirectoryBackend,
    JsonFileBackend,
    LargeCache,
    SmallTier,
    StorageTier,
    open_backend,
)
from count_review.offline.transport import AiohttpTransport, HttpTransport
from count_review.offline.utils import now_ms

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OfflineContext:
    """
    Process-wide offline state, built once at start-up and never torn down.

    A fresh data directory starts with an empty queue and no recorded
    disconnection.
    """

    small: SmallTier
    cache: LargeCache
    queue: PendingQueue
    connectivity: ConnectivityTracker
    transport: HttpTransport
    client: OfflineClient
    heartbeat: ServerHeartbeat

    async def start_background(self, *, poll_interval_seconds: float) -> None:
        self.connectivity.start_polling(poll_interval_seconds)
        self.heartbeat.start()
        self.client.trigger_flush()

    async def stop_background(self) -> None:
        await self.heartbeat.stop()
        await self.connectivity.stop_polling()
        await self.client.wait_idle()


def build_offline_context(
    config: AppConfig,
    *,
    transport: Optional[HttpTransport] = None,
    clock: Callable[[], int] = now_ms,
) -> OfflineContext:
    data_dir = Path(config.storage.data_dir)
    small_path = data_dir / config.storage.small_tier_file
    large_path = data_dir / config.storage.large_tier_dir

    small_tier = StorageTier("small", open_backend("small", lambda: JsonFileBackend(small_path)))
    large_tier = StorageTier("large", open_backend("large", lambda: DirectoryBackend(large_path)))

    small = SmallTier(small_tier)
    cache = LargeCache(large_tier, max_file_entries=config.storage.max_file_entries, clock=clock)
    queue = PendingQueue(small)
    connectivity = ConnectivityTracker(
        small,
        threshold_ms=int(config.connectivity.warning_threshold_seconds * 1000),
        clock=clock,
    )
    if transport is None:
        transport = AiohttpTransport(
            base_url=config.server.base_url,
            request_timeout_seconds=config.server.request_timeout_seconds,
        )
    flusher = QueueFlusher(transport=transport, queue=queue, connectivity=connectivity)
    client = OfflineClient(
        transport=transport,
        cache=cache,
        queue=queue,
        connectivity=connectivity,
        flusher=flusher,
    )
    connectivity.add_restored_listener(client.trigger_flush)
    heartbeat = ServerHeartbeat(
        transport=transport,
        connectivity=connectivity,
        ping_path=config.server.ping_path,
        interval_seconds=config.server.ping_interval_seconds,
        timeout_seconds=config.server.ping_timeout_seconds,
    )
    logger.info(
        "Offline context ready. data_dir=%s pending=%d small_degraded=%s large_degraded=%s",
        data_dir,
        len(queue),
        small_tier.degraded,
        large_tier.degraded,
    )
    return OfflineContext(
        small=small,
        cache=cache,
        queue=queue,
        connectivity=connectivity,
        transport=transport,
        client=client,
        heartbeat=heartbeat,
    )
