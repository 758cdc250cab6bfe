"""Bulk paste parser for vaccination and antibiotic rows.

Two passes, kept separate so the caller can show both error lists together:

1. ``parse_bulk_rows`` — lexical: one draft row per line, per-line errors.
2. ``build_records`` — resolves each row's resident key against the live
   resident set and produces canonical records.

Column layouts (delimiter per line: tab, then ``|``, then 2+ spaces)::

    resident pre-selected:  Value  Date  [Indication]  Notes...
    no pre-selection:       ResidentKey  Value  Date  [Indication]  Notes...

``Indication`` applies to antibiotic rows only.
"""

from __future__ import annotations

import logging
import re

from icntrack.adapters.pack_adapter import canonical_dataset
from icntrack.core.identity import ROOM_BED_RE
from icntrack.core.utils import normalize_date_iso, utc_now_iso
from icntrack.errors import UnknownDatasetError
from icntrack.models import (
    AntibioticCourse,
    BuildResult,
    BulkAbxRow,
    BulkParseResult,
    BulkVaxRow,
    Resident,
    VaccineRecord,
    canonical_vaccine_name,
)

logger = logging.getLogger(__name__)

BULK_DATASETS = ("vaccination", "antibiotic")

_EXPECTED = {
    ("vaccination", True): "VaccineType  Date  Notes",
    ("vaccination", False): "ResidentKey  VaccineType  Date  Notes",
    ("antibiotic", True): "Medication  StartDate  Indication  Notes",
    ("antibiotic", False): "ResidentKey  Medication  StartDate  Indication  Notes",
}

_INVALID = {
    "vaccination": "invalid vaccine type or date",
    "antibiotic": "invalid medication or date",
}


def split_bulk_columns(line: str) -> list[str]:
    """Split one line into trimmed columns.

    Tab and pipe splits keep empty fields as ``""``; the 2+-space fallback
    drops them.
    """
    if "\t" in line:
        return [c.strip() for c in line.split("\t")]
    if "|" in line:
        return [c.strip() for c in line.split("|")]
    return [c for c in (p.strip() for p in re.split(r"\s{2,}", line.strip())) if c]


def _join_notes(cols: list[str]) -> str:
    return " ".join(c for c in cols if c).strip()


def _bulk_dataset(dataset: str) -> str:
    canonical = canonical_dataset(dataset)
    if canonical not in BULK_DATASETS:
        raise UnknownDatasetError(f"Bulk paste supports vaccination or antibiotic, not {dataset!r}")
    return canonical


def parse_bulk_rows(text: str, dataset: str, restrict_to_resident: str = "") -> BulkParseResult:
    """Parse pasted rows for one dataset.

    Args:
        text: Pasted text, one record per line. ``#`` lines are comments.
        dataset: ``vaccination`` or ``antibiotic`` (aliases accepted).
        restrict_to_resident: Resident key applied to every row; when set,
            rows carry no resident column.
    """
    dataset = _bulk_dataset(dataset)
    selected = (restrict_to_resident or "").strip()
    result = BulkParseResult()

    for lineno, raw_line in enumerate((text or "").splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        cols = split_bulk_columns(raw_line)

        if selected:
            resident_key, rest = selected, cols
        else:
            resident_key, rest = (cols[0] if cols else ""), cols[1:]

        if len(rest) < 2:
            result.errors.append(f'Line {lineno}: expected "{_EXPECTED[(dataset, bool(selected))]}"')
            continue

        value, date_iso = rest[0], normalize_date_iso(rest[1])
        if not value or not date_iso:
            result.errors.append(f"Line {lineno}: {_INVALID[dataset]}")
            continue

        if dataset == "vaccination":
            result.rows.append(
                BulkVaxRow(
                    resident_key=resident_key,
                    name=value,
                    date=date_iso,
                    notes=_join_notes(rest[2:]),
                )
            )
        else:
            result.rows.append(
                BulkAbxRow(
                    resident_key=resident_key,
                    antibiotic=value,
                    start_date=date_iso,
                    indication=rest[2] if len(rest) > 2 else "",
                    notes=_join_notes(rest[3:]),
                )
            )

    logger.debug("Bulk %s parse: %d rows, %d errors", dataset, len(result.rows), len(result.errors))
    return result


def match_resident_id(residents_by_id: dict[str, Resident], key: str) -> str | None:
    """Resolve a pasted resident key to a resident id.

    Tried in order: exact id, room-bed token against current or locked
    room, exact-or-substring MRN, exact then substring display name.
    Comparisons are trimmed and case-insensitive.
    """
    raw = (key or "").strip()
    if not raw:
        return None
    if raw in residents_by_id:
        return raw
    k = raw.upper()

    if ROOM_BED_RE.match(k):
        for r in residents_by_id.values():
            rooms = {(r.room or "").strip().upper(), (r.locked_room or "").strip().upper()}
            if k in rooms:
                return r.id

    for r in residents_by_id.values():
        mrn = (r.mrn or "").strip().upper()
        if mrn and (mrn == k or k in mrn):
            return r.id

    for r in residents_by_id.values():
        if (r.display_name or "").strip().upper() == k:
            return r.id
    for r in residents_by_id.values():
        name = (r.display_name or "").strip().upper()
        if name and k in name:
            return r.id

    return None


def build_records(
    rows: list[BulkVaxRow | BulkAbxRow],
    residents_by_id: dict[str, Resident],
    dataset: str,
    now: str | None = None,
) -> BuildResult:
    """Resolve residents for parsed rows and build canonical records.

    Built records carry an empty ``id``; one is assigned when they are saved.
    Rows whose resident cannot be found are skipped with an error.
    """
    dataset = _bulk_dataset(dataset)
    now = now or utc_now_iso()
    result = BuildResult()

    for row in rows:
        rid = match_resident_id(residents_by_id, row.resident_key)
        if rid is None:
            result.errors.append(f"Resident not found: {row.resident_key}")
            result.skipped += 1
            continue

        if dataset == "vaccination":
            name, other = canonical_vaccine_name(row.name)
            result.items.append(
                VaccineRecord(
                    id="",
                    resident_id=rid,
                    name=name,
                    name_other=other,
                    date=row.date,
                    notes=row.notes,
                    created=now,
                )
            )
        else:
            result.items.append(
                AntibioticCourse(
                    id="",
                    resident_id=rid,
                    antibiotic=row.antibiotic,
                    start_date=row.start_date,
                    indication=row.indication,
                    notes=row.notes,
                    created=now,
                    updated=now,
                )
            )

    logger.debug("Bulk %s build: %d items, %d skipped", dataset, len(result.items), result.skipped)
    return result
