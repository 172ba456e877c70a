from __future__ import annotations

import logging
from typing import Optional, Sequence
from urllib.parse import quote, urlencode

from count_review.offline.client import OfflineClient, cache_key
from count_review.offline.models import FetchResult, WriteResult
from count_review.offline.utils import format_rfc3339, utc_now
from count_review.reports.local_updates import merge_report_records, patch_cached, remove_report_name

logger = logging.getLogger(__name__)

REPORTS_URL = "/api/reports"
EMPLOYEES_URL = "/api/employees"
LOCATIONS_URL = "/api/locations"
RECORDS_URL = "/api/records"
SKU_URL = "/api/sku"
RECORD_FILTERS = ("employee", "location", "sku")


def report_url(name: str) -> str:
    return f"{REPORTS_URL}/{quote(name, safe='')}"


def records_url(field: str, value: str) -> str:
    return f"{RECORDS_URL}?{urlencode({field: value})}"


class RecordBrowserClient:
    """
    Employee, location and SKU record browsing plus count report saves.

    Query results are cached per query like per-report files, so they share
    the file entry cap. Saves made while offline are overlaid onto every
    cached record query and kept under the report's own key until replayed.
    """

    def __init__(self, offline: OfflineClient) -> None:
        self._offline = offline

    def saved_records_key(self, name: str) -> str:
        return cache_key("GET", report_url(name))

    async def list_reports(self) -> FetchResult:
        return await self._offline.fetch_with_cache(REPORTS_URL, cache_key("GET", REPORTS_URL), category="list")

    async def list_employees(self) -> FetchResult:
        return await self._offline.fetch_with_cache(EMPLOYEES_URL, cache_key("GET", EMPLOYEES_URL), category="list")

    async def list_locations(self) -> FetchResult:
        return await self._offline.fetch_with_cache(LOCATIONS_URL, cache_key("GET", LOCATIONS_URL), category="list")

    async def find_records(
        self,
        *,
        employee: Optional[str] = None,
        location: Optional[str] = None,
        sku: Optional[str] = None,
    ) -> FetchResult:
        given = {k: v for k, v in (("employee", employee), ("location", location), ("sku", sku)) if v}
        if len(given) != 1:
            raise ValueError(f"Exactly one of {', '.join(RECORD_FILTERS)} is required.")
        ((field, value),) = given.items()
        url = records_url(field, str(value))
        return await self._offline.fetch_with_cache(url, cache_key("GET", url), category="file")

    async def lookup_sku(self, sku: str) -> FetchResult:
        url = f"{SKU_URL}/{quote(str(sku), safe='')}"
        return await self._offline.fetch_with_cache(url, cache_key("GET", url), category="file")

    def cached_saved_records(self, name: str) -> Optional[dict]:
        entry = self._offline.cache.get(self.saved_records_key(name))
        return entry.payload if entry else None

    async def save_records(self, name: str, records: Sequence[dict]) -> WriteResult:
        body = {"records": list(records)}
        return await self._offline.queued_write(
            report_url(name),
            body,
            apply_local=lambda: self._apply_saved(name, body["records"]),
        )

    async def complete_report(self, name: str, records: Sequence[dict]) -> WriteResult:
        body = {"records": list(records)}
        completed_at = format_rfc3339(utc_now())

        def apply_local() -> None:
            self._apply_saved(name, body["records"], enabled=False, completed_at=completed_at)
            patch_cached(
                self._offline.cache,
                cache_key("GET", REPORTS_URL),
                lambda names: remove_report_name(names, name),
                category="list",
            )

        return await self._offline.queued_write(f"{report_url(name)}/complete", body, apply_local=apply_local)

    def _apply_saved(
        self,
        name: str,
        records: list[dict],
        *,
        enabled: bool = True,
        completed_at: Optional[str] = None,
    ) -> None:
        cache = self._offline.cache
        saved: dict = {"file": name, "records": records, "enabled": enabled}
        if completed_at:
            saved["completedAt"] = completed_at
        cache.put(self.saved_records_key(name), saved, category="file")

        patched = 0
        for key in cache.keys(cache_key("GET", RECORDS_URL + "?")):
            if patch_cached(cache, key, lambda rows: merge_report_records(rows, name, records), category="file"):
                patched += 1
        logger.debug("Saved records applied locally. report=%s queries=%d", name, patched)
