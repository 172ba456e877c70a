from __future__ import annotations

import logging
import uuid
from typing import Mapping, Optional

from count_review.offline.io import decode_queue, encode_queue
from count_review.offline.models import PendingRequest
from count_review.offline.storage import SmallTier
from count_review.offline.utils import format_rfc3339, utc_now

logger = logging.getLogger(__name__)

QUEUE_KEY = "pending_requests"


class PendingQueue:
    """Durable FIFO of writes the server has not confirmed yet."""

    def __init__(self, store: SmallTier) -> None:
        self._store = store

    def load(self) -> list[PendingRequest]:
        return decode_queue(self._store.get_item(QUEUE_KEY))

    def save(self, requests: list[PendingRequest]) -> None:
        self._store.set_item(QUEUE_KEY, encode_queue(requests))

    def append(
        self,
        *,
        url: str,
        method: str,
        body: str,
        headers: Optional[Mapping[str, str]] = None,
    ) -> PendingRequest:
        request = PendingRequest(
            id=uuid.uuid4().hex,
            url=url,
            method=method.upper(),
            headers=dict(headers or {}),
            body=body,
            queued_at=format_rfc3339(utc_now()),
        )
        requests = self.load()
        requests.append(request)
        self.save(requests)
        logger.info("Request queued for replay. id=%s method=%s url=%s depth=%d", request.id, request.method, url, len(requests))
        return request

    def __len__(self) -> int:
        return len(self.load())
