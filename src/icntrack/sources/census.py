"""Census report parser — pasted facility census text to a CensusSnapshot.

Expected data line shape (tab-delimited, or 2+ spaces when tabs were lost
in the copy/paste):

    251-A<TAB>DOE, JOHN (LON202332)<TAB>5/12/1967<TAB>Active<TAB>Medicare A

Section headers such as ``Unit: Unit 2`` move the unit cursor for the rows
that follow. Report chrome (dates, page numbers, column labels) and
non-tabular lines are dropped silently; empty beds are skipped.
"""

from __future__ import annotations

import logging
import re

from icntrack.core.identity import resolve_resident_id
from icntrack.core.utils import normalize_date_iso, utc_now_iso
from icntrack.models import UNKNOWN_UNIT, CensusSnapshot, Resident
from icntrack.sources.base import CensusRules

logger = logging.getLogger(__name__)

_UNIT_HEADER_RE = re.compile(r"^unit:\s*unit\s*(\d)", re.IGNORECASE)
_ROOM_START_RE = re.compile(r"^(\d{2,4}-[A-Za-z0-9]+)")
_PAREN_GROUP_RE = re.compile(r"\(([^)]*)\)")
_DOB_RE = re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$")

NO_RESIDENTS_WARNING = "No residents parsed. Check formatting of the census paste."


def split_census_columns(line: str) -> list[str]:
    """Split on runs of tabs, falling back to runs of 2+ spaces."""
    cols = [c.strip() for c in re.split(r"\t+", line)]
    if len(cols) < 2:
        cols = [c.strip() for c in re.split(r"\s{2,}", line) if c.strip()]
    return cols


def split_resident_field(value: str) -> tuple[str, str]:
    """Split "DOE, JOHN (LON202332)" into ("DOE, JOHN", "LON202332")."""
    m = _PAREN_GROUP_RE.search(value)
    code = m.group(1).strip() if m else ""
    name = " ".join(_PAREN_GROUP_RE.sub(" ", value).split())
    return name, code


class CensusTextParser:
    """Unit-section-aware, facility-code-aware census parser."""

    def __init__(self, rules: CensusRules | None = None):
        self.rules = rules or CensusRules()
        self._prefixes = [p.upper() for p in self.rules.header_prefixes]

    def is_metadata_line(self, line: str) -> bool:
        t = line.strip().upper()
        if any(t.startswith(p) for p in self._prefixes):
            return True
        return all(tok in t for tok in self.rules.title_tokens)

    def infer_unit(self, room: str) -> str:
        m = re.match(r"^(\d)", room or "")
        if not m:
            return UNKNOWN_UNIT
        return self.rules.unit_aliases.get(m.group(1), UNKNOWN_UNIT)

    def parse(self, text: str, now: str | None = None) -> CensusSnapshot:
        created = now or utc_now_iso()
        warnings: list[str] = []
        residents: list[Resident] = []
        seen: set[str] = set()
        current_unit = UNKNOWN_UNIT

        for raw_line in (text or "").splitlines():
            line = raw_line.strip()
            if not line:
                continue

            header = _UNIT_HEADER_RE.match(line)
            if header:
                current_unit = f"Unit {header.group(1)}"
                continue

            if self.is_metadata_line(line):
                continue

            room_match = _ROOM_START_RE.match(line)
            if not room_match:
                continue
            room = room_match.group(1).upper()

            cols = split_census_columns(line)
            resident_field = cols[1] if len(cols) > 1 else ""
            if not resident_field or "EMPTY" in resident_field.upper():
                continue

            name, code = split_resident_field(resident_field)
            if not name:
                warnings.append(f'Skipped row with no resident name: "{line}"')
                continue

            rid = resolve_resident_id(mrn=code, room=room, name=name)
            if rid in seen:
                warnings.append(f"Duplicate census row for {name} ({room}) ignored")
                continue
            seen.add(rid)

            dob_col = cols[2] if len(cols) > 2 else ""
            dob = normalize_date_iso(dob_col) if _DOB_RE.match(dob_col) else ""

            unit = current_unit if current_unit != UNKNOWN_UNIT else self.infer_unit(room)
            residents.append(
                Resident(
                    id=rid,
                    display_name=name,
                    mrn=code,
                    room=room,
                    unit=unit,
                    status="active",
                    last_seen=created,
                    dob=dob,
                )
            )

        if not residents:
            warnings.append(NO_RESIDENTS_WARNING)

        logger.debug("Parsed census: %d residents, %d warnings", len(residents), len(warnings))
        return CensusSnapshot(
            id="c_" + re.sub(r"[:.]", "-", created),
            created=created,
            raw_text=text or "",
            residents=residents,
            warnings=warnings,
        )


def parse_census(text: str, rules: CensusRules | None = None, now: str | None = None) -> CensusSnapshot:
    """Parse census report text with the canonical parser."""
    return CensusTextParser(rules).parse(text, now=now)
