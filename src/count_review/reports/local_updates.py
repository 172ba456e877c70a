from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Sequence

from count_review.offline.storage import LargeCache

_LOC_SEPARATORS = re.compile(r",")
_LOC_TRAILING_ZEROS = re.compile(r"\.0+$")
_LOC_LEADING_ZEROS = re.compile(r"^0+(\d)")


def normalize_loc_num(value: Any) -> str:
    """`"00,120.0"` and `"120"` name the same location."""
    text = "" if value is None else str(value).strip()
    text = _LOC_SEPARATORS.sub("", text)
    text = _LOC_TRAILING_ZEROS.sub("", text)
    return _LOC_LEADING_ZEROS.sub(r"\1", text)


def _location_key(location: dict) -> str:
    for field in ("loc_num", "LOC_NUM", "locNum"):
        if location.get(field) is not None:
            return normalize_loc_num(location[field])
    return ""


def append_chat_message(chat: Any, message: dict) -> dict:
    if not isinstance(chat, dict):
        chat = {}
    messages = chat.get("messages")
    if not isinstance(messages, list):
        messages = []
    return {**chat, "messages": [*messages, message]}


def append_location_action(report: Any, action: dict) -> Optional[dict]:
    if not isinstance(report, dict):
        return None
    patched = dict(report)
    actions = patched.get("location_actions")
    patched["location_actions"] = [*(actions if isinstance(actions, list) else []), action]

    wanted = normalize_loc_num(action.get("loc_num"))
    locations = patched.get("locations")
    if isinstance(locations, list):
        updated = []
        for location in locations:
            if isinstance(location, dict) and _location_key(location) == wanted:
                location = dict(location)
                location["action"] = action.get("action")
                previous = location.get("actions")
                location["actions"] = [*(previous if isinstance(previous, list) else []), action]
            updated.append(location)
        patched["locations"] = updated
    return patched


def _reviewed_fields(reviewed: bool, reviewed_at: str) -> dict:
    # Un-reviewing keeps the previous reviewed_at.
    if reviewed:
        return {"reviewed": True, "reviewed_at": reviewed_at}
    return {"reviewed": False}


def set_reviewed_flag(report: Any, *, reviewed: bool, reviewed_at: str) -> Optional[dict]:
    if not isinstance(report, dict):
        return None
    return {**report, **_reviewed_fields(reviewed, reviewed_at)}


def set_reviewed_in_list(rows: Any, files: Iterable[str], *, reviewed: bool, reviewed_at: str) -> Optional[list]:
    if not isinstance(rows, list):
        return None
    wanted = set(files)
    return [
        {**row, **_reviewed_fields(reviewed, reviewed_at)}
        if isinstance(row, dict) and row.get("file") in wanted
        else row
        for row in rows
    ]


def patch_cached(cache: LargeCache, key: str, patch, *, category) -> bool:
    """Rewrite a cached payload in place; returns False when nothing was cached."""
    cached = cache.get(key)
    if cached is None:
        return False
    patched = patch(cached.payload)
    if patched is None:
        return False
    cache.put(key, patched, category=category)
    return True


def merge_report_records(rows: Any, file: str, records: Sequence[dict]) -> Optional[list]:
    """
    Overlay saved records onto a cached record query.

    Rows from `file` are matched to saved records by their RECORD number;
    rows from other reports and unmatched rows are left as they are.
    """
    if not isinstance(rows, list):
        return None
    by_number = {
        str(record["RECORD"]): record
        for record in records
        if isinstance(record, dict) and record.get("RECORD") is not None
    }
    merged = []
    for row in rows:
        if isinstance(row, dict) and row.get("file") == file and str(row.get("RECORD")) in by_number:
            row = {**row, **by_number[str(row.get("RECORD"))]}
        merged.append(row)
    return merged


def remove_report_name(names: Any, file: str) -> Optional[list]:
    if not isinstance(names, list):
        return None
    return [name for name in names if name != file]
