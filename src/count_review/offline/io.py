from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from count_review.offline.models import CacheEntry, EvictionMeta, PendingRequest

logger = logging.getLogger(__name__)


def atomic_write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)


def encode_entry(entry: CacheEntry) -> dict:
    return {"timestamp": entry.timestamp, "payload": entry.payload}


def decode_entry(payload: Any) -> Optional[CacheEntry]:
    if not isinstance(payload, dict) or "timestamp" not in payload:
        return None
    return CacheEntry(timestamp=int(payload["timestamp"]), payload=payload.get("payload"))


def encode_meta(meta: EvictionMeta) -> dict:
    return {"timestamp": meta.timestamp, "category": meta.category}


def decode_meta(payload: Any) -> Optional[EvictionMeta]:
    if not isinstance(payload, dict):
        return None
    category = payload.get("category")
    if category not in ("list", "chat", "file"):
        return None
    return EvictionMeta(timestamp=int(payload.get("timestamp", 0)), category=category)


def _encode_request(request: PendingRequest) -> dict:
    return {
        "id": request.id,
        "url": request.url,
        "method": request.method,
        "headers": dict(request.headers),
        "body": request.body,
        "queuedAt": request.queued_at,
    }


def _decode_request(payload: dict) -> PendingRequest:
    return PendingRequest(
        id=str(payload["id"]),
        url=str(payload["url"]),
        method=str(payload.get("method", "POST")),
        headers={str(k): str(v) for k, v in (payload.get("headers") or {}).items()},
        body=str(payload.get("body", "")),
        queued_at=str(payload.get("queuedAt", "")),
    )


def encode_queue(requests: list[PendingRequest]) -> str:
    return json.dumps([_encode_request(request) for request in requests])


def decode_queue(raw: Optional[str]) -> list[PendingRequest]:
    if not raw:
        return []
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Pending queue is not valid JSON, starting empty.")
        return []
    if not isinstance(payload, list):
        logger.warning("Pending queue is not a list, starting empty. type=%s", type(payload).__name__)
        return []
    requests: list[PendingRequest] = []
    for item in payload:
        try:
            requests.append(_decode_request(item))
        except (KeyError, TypeError, AttributeError):
            logger.warning("Dropping malformed pending request entry. entry=%r", item)
    return requests
