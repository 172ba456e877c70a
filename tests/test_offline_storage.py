import tempfile
import unittest
from pathlib import Path

from count_review.offline.mock import FakeClock
from count_review.offline.models import CacheEntry
from count_review.offline.storage import (
    DirectoryBackend,
    JsonFileBackend,
    KeyValueBackend,
    LargeCache,
    MemoryBackend,
    SmallTier,
    StorageTier,
    open_backend,
)


class FullDiskBackend(MemoryBackend):
    """Reads work, writes fail as if the disk were full."""

    def __init__(self, initial=None) -> None:
        super().__init__()
        self.write_attempts = 0
        for key, value in (initial or {}).items():
            super().set(key, value)

    def set(self, key, value) -> None:
        self.write_attempts += 1
        raise OSError(28, "No space left on device")

    def delete(self, key) -> None:
        self.write_attempts += 1
        raise OSError(28, "No space left on device")


class BrokenBackend(KeyValueBackend):
    def __init__(self) -> None:
        raise PermissionError("storage disabled")


class StorageTierTests(unittest.TestCase):
    def test_failed_write_is_silent_and_served_from_memory(self) -> None:
        backend = FullDiskBackend()
        tier = StorageTier("small", backend)

        with self.assertLogs("count_review.offline.storage", level="WARNING") as logs:
            tier.set("a", "1")
            tier.set("b", "2")

        self.assertEqual(tier.get("a"), "1")
        self.assertEqual(tier.get("b"), "2")
        self.assertTrue(tier.degraded)
        self.assertEqual(backend.write_attempts, 1)
        self.assertEqual(len(logs.records), 1)

    def test_values_read_before_degrading_stay_available(self) -> None:
        tier = StorageTier("small", FullDiskBackend({"pending_requests": "[]"}))

        self.assertEqual(tier.get("pending_requests"), "[]")
        with self.assertLogs("count_review.offline.storage", level="WARNING"):
            tier.set("other", "x")
        self.assertEqual(tier.get("pending_requests"), "[]")

    def test_delete_hides_persisted_value(self) -> None:
        backend = MemoryBackend()
        backend.set("k", "v")
        tier = StorageTier("small", backend)

        tier.delete("k")

        self.assertIsNone(tier.get("k"))
        self.assertNotIn("k", tier.keys())

    def test_open_backend_returns_none_when_unavailable(self) -> None:
        with self.assertLogs("count_review.offline.storage", level="WARNING"):
            backend = open_backend("small", BrokenBackend)
        self.assertIsNone(backend)

        tier = SmallTier(StorageTier("small", backend))
        tier.set_item("marker", "123")
        self.assertEqual(tier.get_item("marker"), "123")


class PersistentBackendTests(unittest.TestCase):
    def test_json_file_backend_survives_reopen(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "state.json"
            JsonFileBackend(path).set("disconnected_since", "42")

            reopened = JsonFileBackend(path)

            self.assertEqual(reopened.get("disconnected_since"), "42")
            self.assertEqual(reopened.keys(), ["disconnected_since"])

    def test_directory_backend_keeps_keys_with_slashes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            backend = DirectoryBackend(Path(tmp) / "cache")
            key = "GET /api/report-exports/40051.json#40051.json"

            backend.set(key, {"timestamp": 1, "payload": {"area_num": "40051"}})

            self.assertEqual(backend.keys(), [key])
            self.assertEqual(backend.get(key)["payload"], {"area_num": "40051"})
            backend.delete(key)
            self.assertIsNone(backend.get(key))


class LargeCacheEvictionTests(unittest.TestCase):
    def _cache(self, clock: FakeClock, backend: KeyValueBackend) -> LargeCache:
        return LargeCache(StorageTier("large", backend), max_file_entries=60, clock=clock)

    def test_file_entries_capped_oldest_evicted_first(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            clock = FakeClock(start=1_000)
            cache = self._cache(clock, DirectoryBackend(Path(tmp)))

            for i in range(61):
                clock.advance(10)
                cache.put(f"file-{i}", {"i": i}, category="file")

            present = [i for i in range(61) if cache.get(f"file-{i}") is not None]
            self.assertEqual(len(present), 60)
            self.assertIsNone(cache.get("file-0"))
            self.assertEqual(cache.get("file-60").payload, {"i": 60})

    def test_list_and_chat_entries_are_exempt(self) -> None:
        clock = FakeClock(start=1_000)
        cache = self._cache(clock, MemoryBackend())
        cache.put("list", [1], category="list")
        cache.put("chat", {"messages": []}, category="chat")

        for i in range(61):
            clock.advance(1)
            cache.put(f"file-{i}", i, category="file")
        clock.advance(1)
        cache.put("list", [2], category="list")
        cache.put("chat", {"messages": ["hi"]}, category="chat")

        self.assertEqual(cache.get("list").payload, [2])
        self.assertEqual(cache.get("chat").payload, {"messages": ["hi"]})
        self.assertEqual(sum(cache.get(f"file-{i}") is not None for i in range(61)), 60)
        self.assertEqual(cache.category_of("chat"), "chat")

    def test_rewritten_file_entry_is_refreshed_not_evicted(self) -> None:
        clock = FakeClock()
        cache = LargeCache(StorageTier("large", MemoryBackend()), max_file_entries=2, clock=clock)

        cache.set("a", CacheEntry(timestamp=1, payload="a"), category="file")
        cache.set("b", CacheEntry(timestamp=2, payload="b"), category="file")
        cache.set("a", CacheEntry(timestamp=3, payload="a2"), category="file")
        cache.set("c", CacheEntry(timestamp=4, payload="c"), category="file")

        self.assertIsNone(cache.get("b"))
        self.assertEqual(cache.get("a").payload, "a2")
        self.assertEqual(cache.get("c").payload, "c")


if __name__ == "__main__":
    unittest.main()
