from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote, unquote

from count_review.offline.io import (
    atomic_write_json,
    decode_entry,
    decode_meta,
    encode_entry,
    encode_meta,
)
from count_review.offline.models import CacheCategory, CacheEntry, EvictionMeta

logger = logging.getLogger(__name__)

META_PREFIX = "meta:"
_STORAGE_ERRORS = (OSError, ValueError, TypeError)


class KeyValueBackend:
    """Raw key/value storage used by a tier. Values must be JSON-serializable."""

    def get(self, key: str) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> list[str]:
        raise NotImplementedError


class MemoryBackend(KeyValueBackend):
    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data.keys())


class JsonFileBackend(KeyValueBackend):
    """
    All keys in one JSON object on disk.

    Sized for a handful of short string values (queue, markers). The file is
    rewritten atomically on every change.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        payload = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Top-level JSON must be an object, got: {type(payload).__name__}")
        return payload

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        updated = dict(self._data)
        updated[key] = value
        atomic_write_json(self._path, updated)
        self._data = updated

    def delete(self, key: str) -> None:
        if key not in self._data:
            return
        updated = dict(self._data)
        updated.pop(key)
        atomic_write_json(self._path, updated)
        self._data = updated

    def keys(self) -> list[str]:
        return list(self._data.keys())


class DirectoryBackend(KeyValueBackend):
    """One JSON file per key, for payloads too large to rewrite together."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        return self._root / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Any:
        path = self._path_for(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def set(self, key: str, value: Any) -> None:
        atomic_write_json(self._path_for(key), value)

    def delete(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        return [unquote(path.name[: -len(".json")]) for path in self._root.glob("*.json")]


def open_backend(name: str, factory: Callable[[], KeyValueBackend]) -> Optional[KeyValueBackend]:
    """
    Create a persistent backend and test one write.

    Returns None when the backend cannot be opened or written; the tier then
    runs from memory for the rest of the process.
    """
    check_key = "__write_check__"
    try:
        backend = factory()
        backend.set(check_key, "1")
        backend.delete(check_key)
    except _STORAGE_ERRORS as e:
        logger.warning("Persistent storage unavailable, using memory only. tier=%s error=%s", name, e)
        return None
    return backend


class StorageTier:
    """
    Best-effort key/value facade over an optional persistent backend.

    Every value read or written is mirrored in memory. The first backend
    failure is logged and switches the tier to the mirror for the rest of the
    session; no storage error reaches the caller.
    """

    def __init__(self, name: str, backend: Optional[KeyValueBackend]) -> None:
        self.name = name
        self._backend = backend
        self._mirror = MemoryBackend()
        self._deleted: set[str] = set()

    @property
    def degraded(self) -> bool:
        return self._backend is None

    def _degrade(self, action: str, key: str, error: Exception) -> None:
        logger.warning(
            "Storage write failed, continuing in memory. tier=%s action=%s key=%s error=%s",
            self.name,
            action,
            key,
            error,
        )
        self._backend = None

    def get(self, key: str) -> Any:
        if key in self._deleted:
            return None
        value = self._mirror.get(key)
        if value is not None or self._backend is None:
            return value
        try:
            value = self._backend.get(key)
        except _STORAGE_ERRORS as e:
            logger.warning("Storage read failed. tier=%s key=%s error=%s", self.name, key, e)
            return None
        if value is not None:
            self._mirror.set(key, value)
        return value

    def set(self, key: str, value: Any) -> None:
        self._mirror.set(key, value)
        self._deleted.discard(key)
        if self._backend is None:
            return
        try:
            self._backend.set(key, value)
        except _STORAGE_ERRORS as e:
            self._degrade("set", key, e)

    def delete(self, key: str) -> None:
        self._mirror.delete(key)
        self._deleted.add(key)
        if self._backend is None:
            return
        try:
            self._backend.delete(key)
        except _STORAGE_ERRORS as e:
            self._degrade("delete", key, e)

    def keys(self) -> list[str]:
        names = self._mirror.keys()
        if self._backend is not None:
            try:
                names = names + [k for k in self._backend.keys() if k not in names]
            except _STORAGE_ERRORS as e:
                logger.warning("Storage listing failed. tier=%s error=%s", self.name, e)
        return [k for k in names if k not in self._deleted]


class SmallTier:
    """String values: pending queue, connectivity timestamp, last-seen markers."""

    def __init__(self, tier: StorageTier) -> None:
        self._tier = tier

    def get_item(self, key: str) -> Optional[str]:
        value = self._tier.get(key)
        return None if value is None else str(value)

    def set_item(self, key: str, value: str) -> None:
        self._tier.set(key, str(value))

    def remove_item(self, key: str) -> None:
        self._tier.delete(key)


class LargeCache:
    """
    Cached GET payloads with a cap on per-resource file entries.

    Each entry has a sibling `meta:` record holding its write timestamp and
    category; only `file` entries count toward `max_file_entries`.
    """

    def __init__(
        self,
        tier: StorageTier,
        *,
        max_file_entries: int = 60,
        clock: Callable[[], int],
    ) -> None:
        self._tier = tier
        self._max_file_entries = max(1, int(max_file_entries))
        self._clock = clock

    def get(self, key: str) -> Optional[CacheEntry]:
        return decode_entry(self._tier.get(key))

    def set(self, key: str, entry: CacheEntry, *, category: CacheCategory = "list") -> None:
        self._tier.set(key, encode_entry(entry))
        self._tier.set(META_PREFIX + key, encode_meta(EvictionMeta(timestamp=entry.timestamp, category=category)))
        if category == "file":
            self._evict_files(keep=key)

    def put(self, key: str, payload: Any, *, category: CacheCategory = "list") -> CacheEntry:
        entry = CacheEntry(timestamp=self._clock(), payload=payload)
        self.set(key, entry, category=category)
        return entry

    def delete(self, key: str) -> None:
        self._tier.delete(key)
        self._tier.delete(META_PREFIX + key)

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._tier.keys() if not k.startswith(META_PREFIX) and k.startswith(prefix)]

    def category_of(self, key: str) -> Optional[CacheCategory]:
        meta = decode_meta(self._tier.get(META_PREFIX + key))
        return meta.category if meta else None

    def _file_entries(self) -> list[tuple[int, str]]:
        entries: list[tuple[int, str]] = []
        for name in self._tier.keys():
            if not name.startswith(META_PREFIX):
                continue
            meta = decode_meta(self._tier.get(name))
            if meta is None or meta.category != "file":
                continue
            entries.append((meta.timestamp, name[len(META_PREFIX) :]))
        return entries

    def _evict_files(self, *, keep: str) -> None:
        entries = self._file_entries()
        excess = len(entries) - self._max_file_entries
        if excess <= 0:
            return
        candidates = sorted(item for item in entries if item[1] != keep)
        for timestamp, key in candidates[:excess]:
            logger.debug("Evicting cached file entry. key=%s timestamp=%s", key, timestamp)
            self.delete(key)
