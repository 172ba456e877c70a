import asyncio
import json
import unittest

import aiohttp

from count_review.offline.connectivity import ConnectivityTracker
from count_review.offline.flusher import QueueFlusher
from count_review.offline.mock import FakeClock, ScriptedTransport, json_response
from count_review.offline.queue import PendingQueue
from count_review.offline.storage import MemoryBackend, SmallTier, StorageTier
from count_review.offline.transport import HttpResponse


class QueueFlusherTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.transport = ScriptedTransport()
        small = SmallTier(StorageTier("small", MemoryBackend()))
        self.queue = PendingQueue(small)
        self.clock = FakeClock()
        self.connectivity = ConnectivityTracker(small, clock=self.clock)
        self.flusher = QueueFlusher(transport=self.transport, queue=self.queue, connectivity=self.connectivity)

    def _enqueue(self, *urls: str) -> list[str]:
        return [
            self.queue.append(url=url, method="POST", headers={"Content-Type": "application/json"}, body=json.dumps({"n": i})).id
            for i, url in enumerate(urls)
        ]

    async def test_disconnect_keeps_all_items_in_order(self) -> None:
        ids = self._enqueue("/w1", "/w2", "/w3")
        self.transport.offline = True

        result = await self.flusher.flush()

        self.assertTrue(result.stopped_on_disconnect)
        self.assertEqual([item.id for item in self.queue.load()], ids)
        self.assertEqual(self.transport.sent, [])
        self.assertEqual(self.transport.attempts, 1)
        self.assertIsNotNone(self.connectivity.disconnected_since)

    async def test_long_outage_found_by_flush_shows_warning(self) -> None:
        self.connectivity.mark_disconnected()
        self.clock.advance(5 * 60 * 1000)
        shown: list[bool] = []
        self.connectivity.add_warning_listener(shown.append)
        self._enqueue("/w1")
        self.transport.offline = True

        await self.flusher.flush()

        self.assertTrue(self.connectivity.warning_visible)
        self.assertEqual(shown, [True])

    async def test_recovery_drains_queue_in_order(self) -> None:
        self._enqueue("/w1", "/w2")
        self.transport.route("POST", "/w1", json_response(200, {"success": True}))
        self.transport.route("POST", "/w2", json_response(200, {"success": True}))

        result = await self.flusher.flush()

        self.assertEqual(self.queue.load(), [])
        self.assertEqual([r.url for r in self.transport.sent], ["/w1", "/w2"])
        self.assertEqual(len(result.sent), 2)

    async def test_replay_uses_recorded_request(self) -> None:
        self.queue.append(url="/w1", method="PUT", headers={"X-Test": "1"}, body='{"a": 1}')
        self.transport.route("PUT", "/w1", json_response(200, {}))

        await self.flusher.flush()

        sent = self.transport.sent[0]
        self.assertEqual((sent.method, sent.headers, sent.body), ("PUT", {"X-Test": "1"}, '{"a": 1}'))

    async def test_rejected_item_stays_queued(self) -> None:
        self.connectivity.mark_disconnected()
        ids = self._enqueue("/bad", "/good")
        self.transport.route("POST", "/bad", HttpResponse(status=400, text="Missing loc_num or action"))
        self.transport.route("POST", "/good", json_response(200, {"success": True}))

        result = await self.flusher.flush()

        self.assertEqual([item.id for item in self.queue.load()], [ids[0]])
        self.assertEqual(result.retained, [ids[0]])
        self.assertIsNone(self.connectivity.disconnected_since)

    async def test_disconnect_midway_keeps_rest(self) -> None:
        ids = self._enqueue("/w1", "/w2", "/w3")
        self.transport.route("POST", "/w1", json_response(200, {}))
        self.transport.route("POST", "/w2", aiohttp.ServerDisconnectedError())
        self.transport.route("POST", "/w3", json_response(200, {}))

        await self.flusher.flush()

        self.assertEqual([item.id for item in self.queue.load()], ids[1:])
        self.assertEqual([r.url for r in self.transport.sent], ["/w1"])

    async def test_unexpected_error_retains_item(self) -> None:
        ids = self._enqueue("/w1", "/w2")
        self.transport.route("POST", "/w1", RuntimeError("bug"))
        self.transport.route("POST", "/w2", json_response(200, {}))

        with self.assertLogs("count_review.offline.flusher", level="ERROR"):
            await self.flusher.flush()

        self.assertEqual([item.id for item in self.queue.load()], [ids[0]])

    async def test_overlapping_flush_sends_nothing(self) -> None:
        self._enqueue("/w1")
        self.transport.route("POST", "/w1", json_response(200, {}))
        self.transport.gate = asyncio.Event()

        first = asyncio.create_task(self.flusher.flush())
        await asyncio.sleep(0)
        second = await self.flusher.flush()
        self.transport.gate.set()
        await first

        self.assertTrue(second.skipped)
        self.assertEqual(self.transport.attempts, 1)
        self.assertEqual(len(self.transport.sent), 1)
        self.assertFalse(self.flusher.flushing)

    async def test_items_queued_during_flush_are_kept(self) -> None:
        self._enqueue("/w1")
        self.transport.route("POST", "/w1", json_response(200, {}))
        self.transport.gate = asyncio.Event()

        running = asyncio.create_task(self.flusher.flush())
        await asyncio.sleep(0)
        late = self.queue.append(url="/late", method="POST", body="{}")
        self.transport.gate.set()
        await running

        self.assertEqual([item.id for item in self.queue.load()], [late.id])


if __name__ == "__main__":
    unittest.main()
