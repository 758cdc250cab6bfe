"""Resident identity: stable keys from partial signals, and resolve-or-create.

Key priority (first match wins):
1. facility code / MRN        -> "mrn_<code>"
2. room-bed token (251-A)     -> "room_<room>_<slug(name)>"
3. fallback                   -> "r_<hex(rolling_hash(name|room))>"

The same signals always produce the same key. Different signals for the
same person are not reconciled: an MRN-keyed and a hash-keyed record for
one resident stay separate until a cross-key reconciliation step exists.
"""

from __future__ import annotations

import logging
import re

from icntrack.core.utils import rolling_hash, slugify
from icntrack.models import UNKNOWN_UNIT, Resident

logger = logging.getLogger(__name__)

ROOM_BED_RE = re.compile(r"^\d{2,4}-[A-Za-z0-9]+$")


def is_room_bed(token: str) -> bool:
    return bool(ROOM_BED_RE.match((token or "").strip()))


def resolve_resident_id(mrn: str = "", room: str = "", name: str = "", unit: str = "") -> str:
    """Derive the stable resident key for a set of identity signals.

    ``unit`` is accepted for signature symmetry but never affects the key:
    units are reassigned by census sections while ids must not change.
    """
    code = (mrn or "").strip()
    if code:
        return f"mrn_{code}"
    room_token = (room or "").strip()
    if is_room_bed(room_token):
        return f"room_{room_token}_{slugify(name)}"
    base = f"{(name or '').strip().lower()}|{room_token.lower()}"
    return f"r_{rolling_hash(base):x}"


class ResidentRegistry:
    """Resolve-or-create over a mutable ``residents_by_id`` mapping.

    Call ``resolve_or_create`` exactly once per mapped record. Residents
    created through this registry are tracked in ``created_ids`` so callers
    can report resident counts independently of record counts.
    """

    def __init__(self, residents_by_id: dict[str, Resident] | None = None):
        self.residents_by_id: dict[str, Resident] = (
            residents_by_id if residents_by_id is not None else {}
        )
        self.created_ids: list[str] = []
        self.touched_ids: list[str] = []
        # foreign resident id -> resolved id, for records that reference
        # residents by an id from another system
        self.aliases: dict[str, str] = {}

    def get(self, resident_id: str) -> Resident | None:
        rid = (resident_id or "").strip()
        if not rid:
            return None
        resident = self.residents_by_id.get(rid)
        if resident is None and rid in self.aliases:
            resident = self.residents_by_id.get(self.aliases[rid])
        return resident

    def add_alias(self, foreign_id: str, resident: Resident) -> None:
        foreign_id = (foreign_id or "").strip()
        if foreign_id and foreign_id != resident.id:
            self.aliases[foreign_id] = resident.id

    def find_by_mrn(self, mrn: str) -> Resident | None:
        wanted = (mrn or "").strip().upper()
        if not wanted:
            return None
        for r in self.residents_by_id.values():
            if r.mrn and r.mrn.strip().upper() == wanted:
                return r
        return None

    def resolve_or_create(
        self,
        name: str = "",
        mrn: str = "",
        room: str = "",
        unit: str = "",
        dob: str = "",
        resident_id: str = "",
    ) -> Resident:
        """Return the resident for these signals, creating it when unseen.

        An explicit ``resident_id`` already in the registry wins over the
        other signals. Non-empty incoming fields fill blanks on an existing
        resident; they never overwrite values already recorded.
        """
        resident = self.get(resident_id)
        if resident is None:
            resident = self.find_by_mrn(mrn)
        if resident is None:
            rid = resolve_resident_id(mrn=mrn, room=room, name=name)
            resident = self.residents_by_id.get(rid)
            if resident is None:
                resident = Resident(
                    id=rid,
                    display_name=(name or "").strip() or "Unknown",
                    mrn=(mrn or "").strip(),
                    room=(room or "").strip(),
                    unit=(unit or "").strip() or UNKNOWN_UNIT,
                    dob=(dob or "").strip(),
                )
                self.residents_by_id[rid] = resident
                self.created_ids.append(rid)
                logger.debug("Created resident %s", rid)
        self._fill_blanks(resident, name=name, mrn=mrn, room=room, unit=unit, dob=dob)
        if resident.id not in self.touched_ids:
            self.touched_ids.append(resident.id)
        return resident

    @staticmethod
    def _fill_blanks(resident: Resident, name: str, mrn: str, room: str, unit: str, dob: str) -> None:
        if name and resident.display_name in ("", "Unknown"):
            resident.display_name = name.strip()
        if mrn and not resident.mrn:
            resident.mrn = mrn.strip()
        if room and not resident.room and not resident.locked_room:
            resident.room = room.strip()
        if unit and resident.unit == UNKNOWN_UNIT:
            resident.unit = unit.strip()
        if dob and not resident.dob:
            resident.dob = dob.strip()

    def created(self) -> list[Resident]:
        return [self.residents_by_id[rid] for rid in self.created_ids]

    def touched(self) -> list[Resident]:
        return [self.residents_by_id[rid] for rid in self.touched_ids]
