import json
import unittest

import aiohttp

from count_review.offline.client import OfflineClient, cache_key
from count_review.offline.connectivity import ConnectivityTracker
from count_review.offline.errors import HttpStatusError
from count_review.offline.mock import FakeClock, ScriptedTransport, json_response
from count_review.offline.queue import PendingQueue
from count_review.offline.storage import LargeCache, MemoryBackend, SmallTier, StorageTier
from count_review.reports import RecordBrowserClient, report_url

EMPLOYEE_ROWS = [
    {"file": "40051.json", "RECORD": 1, "EMPLOYEE": "Ana", "QTY": 4},
    {"file": "40051.json", "RECORD": 2, "EMPLOYEE": "Ana", "QTY": 7},
    {"file": "40052.json", "RECORD": 1, "EMPLOYEE": "Ana", "QTY": 9},
]


class RecordBrowserClientTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.transport = ScriptedTransport()
        small = SmallTier(StorageTier("small", MemoryBackend()))
        clock = FakeClock(start=1_000)
        self.offline = OfflineClient(
            transport=self.transport,
            cache=LargeCache(StorageTier("large", MemoryBackend()), clock=clock),
            queue=PendingQueue(small),
            connectivity=ConnectivityTracker(small, clock=clock),
        )
        self.records = RecordBrowserClient(self.offline)

        self.transport.route("GET", "/api/reports", json_response(200, ["40051.json", "40052.json"]))
        self.transport.route("GET", "/api/employees", json_response(200, [{"name": "Ana", "completed": False}]))
        self.transport.route("GET", "/api/locations", json_response(200, [{"group": "Front", "locations": ["120"]}]))
        self.transport.route("GET", "/api/records?employee=Ana", json_response(200, EMPLOYEE_ROWS))
        self.transport.route("GET", "/api/sku/12345", json_response(200, {"SKU": "12345", "DESC": "Widget"}))

    async def test_reads_fall_back_to_cache_offline(self) -> None:
        await self.records.list_reports()
        await self.records.list_employees()
        await self.records.list_locations()
        await self.records.find_records(employee="Ana")
        await self.records.lookup_sku("12345")
        self.transport.offline = True

        reports = await self.records.list_reports()
        employees = await self.records.list_employees()
        locations = await self.records.list_locations()
        rows = await self.records.find_records(employee="Ana")
        sku = await self.records.lookup_sku("12345")

        for result in (reports, employees, locations, rows, sku):
            self.assertTrue(result.from_cache)
        self.assertEqual(reports.payload, ["40051.json", "40052.json"])
        self.assertEqual(employees.payload[0]["name"], "Ana")
        self.assertEqual(locations.payload[0]["group"], "Front")
        self.assertEqual(len(rows.payload), 3)
        self.assertEqual(sku.payload["DESC"], "Widget")

    async def test_queries_and_lookups_are_cached_as_files(self) -> None:
        await self.records.find_records(employee="Ana")
        await self.records.lookup_sku("12345")
        await self.records.list_employees()

        cache = self.offline.cache
        self.assertEqual(cache.category_of(cache_key("GET", "/api/records?employee=Ana")), "file")
        self.assertEqual(cache.category_of(cache_key("GET", "/api/sku/12345")), "file")
        self.assertEqual(cache.category_of(cache_key("GET", "/api/employees")), "list")

    async def test_filter_value_is_url_encoded(self) -> None:
        self.transport.route("GET", "/api/records?location=Aisle+4%2FB", json_response(200, []))

        result = await self.records.find_records(location="Aisle 4/B")

        self.assertEqual(result.payload, [])
        self.assertEqual(len(self.transport.sent_to("/api/records?location=Aisle+4%2FB")), 1)

    async def test_records_query_needs_exactly_one_filter(self) -> None:
        with self.assertRaises(ValueError):
            await self.records.find_records()
        with self.assertRaises(ValueError):
            await self.records.find_records(employee="Ana", sku="12345")
        self.assertEqual(self.transport.attempts, 0)

    async def test_unknown_sku_raises_not_found(self) -> None:
        self.transport.route("GET", "/api/sku/999", json_response(404, {"error": "SKU not found"}))

        with self.assertRaises(HttpStatusError) as ctx:
            await self.records.lookup_sku("999")

        self.assertEqual(ctx.exception.status, 404)

    async def test_online_save_posts_records(self) -> None:
        self.transport.route("POST", report_url("40051.json"), json_response(200, {"success": True}))

        result = await self.records.save_records("40051.json", [{"RECORD": 1, "QTY": 5}])

        self.assertFalse(result.queued)
        self.assertEqual(result.payload, {"success": True})
        sent = self.transport.sent_to(report_url("40051.json"))[0]
        self.assertEqual(json.loads(sent.body), {"records": [{"RECORD": 1, "QTY": 5}]})
        self.assertIsNone(self.records.cached_saved_records("40051.json"))

    async def test_offline_save_patches_cached_queries(self) -> None:
        await self.records.find_records(employee="Ana")
        self.transport.offline = True

        result = await self.records.save_records("40051.json", [{"RECORD": 2, "QTY": 8}])
        rows = (await self.records.find_records(employee="Ana")).payload

        self.assertTrue(result.queued)
        self.assertEqual([row["QTY"] for row in rows], [4, 8, 9])
        saved = self.records.cached_saved_records("40051.json")
        self.assertEqual(saved["records"], [{"RECORD": 2, "QTY": 8}])
        self.assertTrue(saved["enabled"])
        pending = self.offline.queue.load()
        self.assertEqual(pending[0].url, "/api/reports/40051.json")
        self.assertEqual(json.loads(pending[0].body), {"records": [{"RECORD": 2, "QTY": 8}]})

    async def test_offline_complete_drops_report_from_cached_list(self) -> None:
        await self.records.list_reports()
        await self.records.find_records(employee="Ana")
        self.transport.offline = True

        result = await self.records.complete_report("40052.json", [{"RECORD": 1, "QTY": 10}])
        reports = await self.records.list_reports()
        rows = (await self.records.find_records(employee="Ana")).payload

        self.assertTrue(result.queued)
        self.assertEqual(reports.payload, ["40051.json"])
        self.assertEqual(rows[2]["QTY"], 10)
        saved = self.records.cached_saved_records("40052.json")
        self.assertFalse(saved["enabled"])
        self.assertTrue(saved["completedAt"].endswith("Z"))
        self.assertEqual(self.offline.queue.load()[0].url, "/api/reports/40052.json/complete")

    async def test_completed_reports_replay_in_order(self) -> None:
        self.transport.offline = True
        await self.records.save_records("40051.json", [{"RECORD": 1, "QTY": 5}])
        await self.records.complete_report("40051.json", [{"RECORD": 1, "QTY": 5}])
        self.transport.offline = False
        self.transport.route("POST", "/api/reports/40051.json", json_response(200, {"success": True}))
        self.transport.route("POST", "/api/reports/40051.json/complete", json_response(200, {"success": True}))

        await self.offline.flush()

        self.assertEqual(
            [r.url for r in self.transport.sent],
            ["/api/reports/40051.json", "/api/reports/40051.json/complete"],
        )
        self.assertEqual(self.offline.queue.load(), [])

    async def test_offline_read_without_cache_reraises(self) -> None:
        self.transport.offline = True

        with self.assertRaises(aiohttp.ClientConnectionError):
            await self.records.list_locations()


if __name__ == "__main__":
    unittest.main()
