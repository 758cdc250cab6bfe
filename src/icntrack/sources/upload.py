"""Upload text to import packs, and the queue of packs awaiting apply.

An upload is a JSON array of objects, a CSV table with a header row, or
raw lines (pipe- or 2+-space-delimited). ``build_import_pack`` wraps the
parsed rows in a keyed ``icn-bulk-import-v1`` pack for one target dataset.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import re
from typing import Any

from icntrack.adapters.pack_adapter import PACK_VERSION
from icntrack.core.utils import utc_now_iso
from icntrack.errors import UploadParseError
from icntrack.merge import ApplyResult, apply_packs
from icntrack.state import QUEUE_KEY

logger = logging.getLogger(__name__)

FORMATS = ("json", "csv", "lines")

_ROOM_TOKEN_RE = re.compile(r"^\d{2,4}-?[A-Za-z0-9]*$")


def guess_format(text: str) -> str:
    """Guess 'json', 'csv' or 'lines' from the text's shape."""
    t = (text or "").strip()
    if not t:
        return "lines"
    if (t.startswith("[") and t.endswith("]")) or (t.startswith("{") and t.endswith("}")):
        return "json"
    if "," in t.splitlines()[0]:
        return "csv"
    return "lines"


def parse_json_array(text: str) -> list[dict]:
    try:
        value = json.loads(text)
    except ValueError as e:
        raise UploadParseError(f"Invalid JSON: {e}") from e
    if not isinstance(value, list):
        raise UploadParseError("JSON must be an array of objects.")
    if any(not isinstance(x, dict) for x in value):
        raise UploadParseError("JSON array must contain only objects.")
    return value


def parse_csv(text: str) -> list[dict[str, str]]:
    """Parse CSV with a header row; blank header cells become ``col_N``."""
    lines = [line for line in (text or "").splitlines() if line.strip()]
    if len(lines) < 2:
        raise UploadParseError("CSV needs a header row and at least one data row.")
    rows = [[cell.strip() for cell in row] for row in csv.reader(io.StringIO("\n".join(lines)))]
    header = rows[0]
    if not any(header):
        raise UploadParseError("CSV header row is empty.")
    keys = [h or f"col_{i + 1}" for i, h in enumerate(header)]
    return [
        {key: (row[i] if i < len(row) else "") for i, key in enumerate(keys)} for row in rows[1:]
    ]


def parse_lines(text: str) -> list[dict[str, str]]:
    """One item per non-blank line, columns as ``col1``, ``col2``, ``col3``."""
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    if not lines:
        raise UploadParseError("Paste at least one line.")
    items = []
    for line in lines:
        if "|" in line:
            parts = [p.strip() for p in line.split("|")]
            parts += [""] * (3 - len(parts))
            items.append({"col1": parts[0], "col2": parts[1], "col3": parts[2]})
            continue
        parts = [p.strip() for p in re.split(r"\s{2,}", line) if p.strip()]
        if len(parts) >= 2:
            items.append({"col1": parts[0], "col2": " ".join(parts[1:])})
        else:
            items.append({"col1": line})
    return items


def _lines_as_residents(items: list[dict[str, str]]) -> list[dict[str, str]]:
    """Name the columns of raw roster lines ("201A  Jane Doe" or "Jane Doe | 201A | Unit 2")."""
    out = []
    for item in items:
        c1, c2, c3 = item.get("col1", ""), item.get("col2", ""), item.get("col3", "")
        if _ROOM_TOKEN_RE.match(c1):
            room, name = c1, c2
        else:
            name, room = c1, c2
        out.append({"name": name, "room": room, "unit": c3})
    return out


def build_import_pack(text: str, target: str, fmt: str = "auto", source: str = "") -> dict:
    """Parse upload text into a keyed pack for ``target``.

    Raises:
        UploadParseError: if the text is empty or cannot be parsed as ``fmt``.
    """
    t = (text or "").strip()
    if not t:
        raise UploadParseError("Paste data or upload a file first.")
    fmt = guess_format(t) if fmt == "auto" else fmt
    if fmt == "json":
        records: list[Any] = parse_json_array(t)
    elif fmt == "csv":
        records = parse_csv(t)
    elif fmt == "lines":
        records = parse_lines(t)
        if target in ("residents", "census"):
            records = _lines_as_residents(records)
    else:
        raise UploadParseError(f"Unknown format {fmt!r}; expected one of {', '.join(FORMATS)}")

    pack: dict[str, Any] = {"version": PACK_VERSION, "createdAt": utc_now_iso()}
    if source.strip():
        pack["source"] = source.strip()
    pack[target] = records
    logger.debug("Built %s pack for %s with %d records", fmt, target, len(records))
    return pack


# --- Pending pack queue ---


def read_queue(store) -> list[dict]:
    """Pending packs; a missing or corrupt queue reads as empty."""
    raw = store.get(QUEUE_KEY)
    if not raw:
        return []
    try:
        queue = json.loads(raw)
    except ValueError:
        logger.warning("Import queue under %s is corrupt; treating it as empty", QUEUE_KEY)
        return []
    return queue if isinstance(queue, list) else []


def write_queue(store, packs: list[dict]) -> None:
    store.set(QUEUE_KEY, json.dumps(packs))


def enqueue_pack(store, pack: dict) -> int:
    """Append a pack to the queue and return the new queue length."""
    queue = read_queue(store)
    queue.append(pack)
    write_queue(store, queue)
    return len(queue)


def apply_queue(store, indices: list[int] | None = None, now: str | None = None) -> ApplyResult:
    """Apply the selected queued packs (all when ``indices`` is None), then dequeue them."""
    queue = read_queue(store)
    selected = set(range(len(queue))) if indices is None else {i for i in indices if 0 <= i < len(queue)}
    result = apply_packs(store, [queue[i] for i in sorted(selected)], now=now)
    write_queue(store, [p for i, p in enumerate(queue) if i not in selected])
    return result
