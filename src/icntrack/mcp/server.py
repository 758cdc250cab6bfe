"""MCP server for icntrack: Claude queries infection-control data via tools.

Run with: python -m icntrack.mcp.server
Configure env: ICNTRACK_DB=/path/to/icntrack.db
"""

from __future__ import annotations

import json
import os
from datetime import date

from mcp.server.fastmcp import FastMCP

from icntrack.db import IcnDB
from icntrack.errors import IcnTrackError
from icntrack.tracker import Tracker

DB_PATH = os.environ.get("ICNTRACK_DB", "icntrack.db")

mcp = FastMCP(
    "icntrack",
    instructions=(
        "Infection-control tracker for a long-term care facility: residents from the "
        "daily census, vaccinations, antibiotic courses and infection cases.\n\n"
        "Key capabilities:\n"
        "- get_store_summary: Record counts and the key holding the state\n"
        "- get_antibiotic_flags: Active courses with day-of-therapy, review and overdue flags\n"
        "- get_report_snapshot: Active antibiotics, active infection cases, vaccine coverage\n"
        "- get_resident / find_residents: Look up residents and their records\n"
        "- preview_census: Parse a pasted census without saving\n"
        "- preview_bulk_rows: Parse pasted vaccination/antibiotic rows without saving\n"
        "- detect_legacy_export: Identify a legacy JSON export and count what it maps to\n\n"
        "Preview tools never add records. Start with get_store_summary."
    ),
)


def _get_db() -> IcnDB:
    db = IcnDB(DB_PATH)
    db.init_schema()
    return db


def _today(today: str) -> str:
    return today or date.today().isoformat()


@mcp.tool()
def get_store_summary() -> dict:
    """Get record counts for the tracker state and the key it is stored under."""
    db = _get_db()
    try:
        return Tracker(db).summary()
    finally:
        db.close()


@mcp.tool()
def get_antibiotic_flags(today: str = "") -> list[dict]:
    """List active antibiotic courses with their day of therapy.

    Day 1 is the start date. ``review_due`` is set from day 3 and
    ``overdue`` from day 7. Overdue courses are listed first.

    Args:
        today: ISO date to evaluate against (default: today).
    """
    db = _get_db()
    try:
        return Tracker(db).antibiotic_flags(_today(today))
    finally:
        db.close()


@mcp.tool()
def get_report_snapshot(today: str = "") -> dict:
    """Get the daily report: active antibiotics, active infection cases,
    top antibiotics, vaccine coverage and the latest census counts."""
    db = _get_db()
    try:
        return Tracker(db).report(_today(today))
    finally:
        db.close()


@mcp.tool()
def get_resident(resident_id: str, today: str = "") -> dict | str:
    """Get one resident with vaccinations, antibiotic courses and infection cases."""
    db = _get_db()
    try:
        summary = Tracker(db).resident_summary(resident_id, _today(today))
        return summary if summary is not None else f"Resident not found: {resident_id}"
    finally:
        db.close()


@mcp.tool()
def find_residents(query: str = "", status: str = "") -> list[dict]:
    """Search residents by name, MRN or room (case-insensitive substring).

    Args:
        query: Text to match; empty returns every resident.
        status: Optional filter, "active" or "discharged".
    """
    db = _get_db()
    try:
        state = Tracker(db).init_state()
    finally:
        db.close()
    q = query.strip().upper()
    out = []
    for r in state.residents_by_id.values():
        if status and r.status != status:
            continue
        haystack = " ".join([r.display_name, r.mrn, r.current_room, r.id]).upper()
        if q and q not in haystack:
            continue
        out.append(r.to_dict())
    out.sort(key=lambda r: (r["status"], r["display_name"]))
    return out


@mcp.tool()
def preview_census(text: str) -> dict:
    """Parse a pasted census report without saving it.

    Returns the parsed residents (with their stable ids) and any warnings.
    """
    db = _get_db()
    try:
        snapshot = Tracker(db).parse_census(text)
    finally:
        db.close()
    return {
        "snapshot_id": snapshot.id,
        "residents": [r.to_dict() for r in snapshot.residents],
        "warnings": snapshot.warnings,
    }


@mcp.tool()
def preview_bulk_rows(text: str, dataset: str, resident: str = "") -> dict:
    """Parse pasted vaccination or antibiotic rows and resolve residents, without saving.

    Args:
        text: One row per line, tab, pipe or 2+-space delimited.
        dataset: "vaccination" or "antibiotic".
        resident: Optional resident key applied to every row (rows then omit it).
    """
    db = _get_db()
    try:
        tracker = Tracker(db)
        try:
            parsed = tracker.parse_bulk_rows(text, dataset, resident)
        except IcnTrackError as e:
            return {"error": str(e)}
        built = tracker.build_records(parsed.rows, dataset)
    finally:
        db.close()
    return {
        "rows": len(parsed.rows),
        "items": [i.to_dict() for i in built.items],
        "skipped": built.skipped,
        "errors": parsed.errors + built.errors,
    }


@mcp.tool()
def detect_legacy_export(content: str) -> dict:
    """Identify a legacy JSON export (vaccination, abt or ip) and preview its mapping.

    Nothing is saved. Returns the detected kind, record counts, residents
    that would be created, and warnings.
    """
    try:
        payload = json.loads(content)
    except ValueError as e:
        return {"error": f"Invalid JSON: {e}"}
    db = _get_db()
    try:
        result = Tracker(db).detect_and_map_legacy(payload)
    finally:
        db.close()
    return {
        "kind": result.kind,
        "counts": result.counts(),
        "new_resident_ids": result.new_resident_ids,
        "warnings": result.warnings,
    }


@mcp.tool()
def list_store_keys() -> list[dict]:
    """List every key in the store with its size and last update time."""
    db = _get_db()
    try:
        return db.summary()
    finally:
        db.close()


def main():
    mcp.run()


if __name__ == "__main__":
    main()
