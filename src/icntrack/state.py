"""The persisted tracker state document.

One JSON document under the fixed key ``STATE_KEY`` holds everything:

    {
      "schemaVersion": 1,
      "residentsById": {id: Resident},
      "censusHistory": [CensusSnapshot, ...],      # most recent first
      "censusCounts": [{"date", "counts", "total"}, ...],
      "vaccinesByResidentId": {id: [VaccineRecord, ...]},
      "abxByResidentId": {id: [AntibioticCourse, ...]},
      "infectionCases": [InfectionCase, ...],
      "imports": [GenericRecord, ...],
      "migrations": {name: timestamp}
    }

Stores written by earlier tracker builds keep their state under other keys
and in other shapes (``modules.abt.courses``, zustand ``{"state": ...}``
envelopes). ``detect_state_key`` finds such blobs by scoring, and
``load_state`` migrates them through the pack mappers.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from icntrack.adapters.pack_adapter import map_abt, map_ip, map_resident, map_vax
from icntrack.core.identity import ResidentRegistry
from icntrack.core.utils import new_id, utc_now_iso
from icntrack.errors import StoreNotInitializedError
from icntrack.models import (
    UNKNOWN_UNIT,
    AntibioticCourse,
    CensusSnapshot,
    GenericRecord,
    InfectionCase,
    Resident,
    VaccineRecord,
)

logger = logging.getLogger(__name__)

STATE_KEY = "icntrack-state-v1"
SCHEMA_VERSION = 1

BACKUP_PREFIX = "icn_state_backup_"
LATEST_BACKUP_KEY = "icn_latest_backup_key_v1"
QUEUE_KEY = "icn_import_queue_v1"

DEFAULT_HISTORY_LIMIT = 120

# Values shorter than this cannot hold a tracker state
_MIN_STATE_LENGTH = 20


@dataclass
class StateKeyInfo:
    """Where a tracker state lives in the store."""

    key: str
    wrapped: bool  # payload is {"state": <state>, ...}
    score: int


@dataclass
class TrackerState:
    residents_by_id: dict[str, Resident] = field(default_factory=dict)
    census_history: list[CensusSnapshot] = field(default_factory=list)
    census_counts: list[dict[str, Any]] = field(default_factory=list)
    vaccines_by_resident_id: dict[str, list[VaccineRecord]] = field(default_factory=dict)
    abx_by_resident_id: dict[str, list[AntibioticCourse]] = field(default_factory=dict)
    infection_cases: list[InfectionCase] = field(default_factory=list)
    imports: list[GenericRecord] = field(default_factory=list)
    migrations: dict[str, str] = field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "residentsById": {rid: r.to_dict() for rid, r in self.residents_by_id.items()},
            "censusHistory": [s.to_dict() for s in self.census_history],
            "censusCounts": list(self.census_counts),
            "vaccinesByResidentId": {
                rid: [v.to_dict() for v in recs]
                for rid, recs in self.vaccines_by_resident_id.items()
            },
            "abxByResidentId": {
                rid: [c.to_dict() for c in recs] for rid, recs in self.abx_by_resident_id.items()
            },
            "infectionCases": [c.to_dict() for c in self.infection_cases],
            "imports": [g.to_dict() for g in self.imports],
            "migrations": dict(self.migrations),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> TrackerState:
        state = cls()
        for rid, r in _mapping(doc.get("residentsById")).items():
            if isinstance(r, dict):
                resident = Resident.from_dict(r)
                resident.id = resident.id or rid
                state.residents_by_id[resident.id] = resident
        state.census_history = [
            CensusSnapshot.from_dict(s) for s in _list(doc.get("censusHistory")) if isinstance(s, dict)
        ]
        state.census_counts = [c for c in _list(doc.get("censusCounts")) if isinstance(c, dict)]
        for rid, recs in _mapping(doc.get("vaccinesByResidentId")).items():
            state.vaccines_by_resident_id[rid] = [
                VaccineRecord.from_dict(v) for v in _list(recs) if isinstance(v, dict)
            ]
        for rid, recs in _mapping(doc.get("abxByResidentId")).items():
            state.abx_by_resident_id[rid] = [
                AntibioticCourse.from_dict(c) for c in _list(recs) if isinstance(c, dict)
            ]
        state.infection_cases = [
            InfectionCase.from_dict(c) for c in _list(doc.get("infectionCases")) if isinstance(c, dict)
        ]
        state.imports = [
            GenericRecord.from_dict(g) for g in _list(doc.get("imports")) if isinstance(g, dict)
        ]
        state.migrations = {str(k): str(v) for k, v in _mapping(doc.get("migrations")).items()}
        return state

    # --- record views ---

    def all_vaccines(self) -> list[VaccineRecord]:
        return [v for recs in self.vaccines_by_resident_id.values() for v in recs]

    def all_courses(self) -> list[AntibioticCourse]:
        return [c for recs in self.abx_by_resident_id.values() for c in recs]

    def vaccines_for(self, resident_id: str) -> list[VaccineRecord]:
        return sort_vaccines(self.vaccines_by_resident_id.get(resident_id, []))

    def courses_for(self, resident_id: str) -> list[AntibioticCourse]:
        return sort_courses(self.abx_by_resident_id.get(resident_id, []))

    def summary(self) -> dict[str, int]:
        """Record counts per collection."""
        residents = list(self.residents_by_id.values())
        return {
            "residents": len(residents),
            "active_residents": sum(1 for r in residents if r.status == "active"),
            "census_snapshots": len(self.census_history),
            "vaccinations": len(self.all_vaccines()),
            "antibiotic_courses": len(self.all_courses()),
            "infection_cases": len(self.infection_cases),
            "generic_imports": len(self.imports),
        }


def _mapping(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _parse_json(raw: str | None) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


# --- Sorting ---


def sort_vaccines(records: Iterable[VaccineRecord]) -> list[VaccineRecord]:
    """Newest date first; same date, newest created first."""
    return sorted(records, key=lambda v: (v.date, v.created), reverse=True)


def sort_courses(courses: Iterable[AntibioticCourse]) -> list[AntibioticCourse]:
    """Active first, then start date descending, then created descending."""
    ordered = sorted(courses, key=lambda c: (c.start_date, c.created), reverse=True)
    return sorted(ordered, key=lambda c: 0 if c.is_active else 1)


# --- State key detection (legacy stores) ---


def score_state(state: Any) -> int:
    """Confidence that a parsed value is a tracker state."""
    if not isinstance(state, dict):
        return 0
    score = 0
    modules = state.get("modules")
    if isinstance(modules, dict):
        score += 5
        for module, container in (("abt", "courses"), ("vaccinations", "records"), ("ip", "cases")):
            if isinstance(_mapping(modules.get(module)).get(container), list):
                score += 5
    if isinstance(state.get("abt"), list) or isinstance(state.get("antibiotics"), list):
        score += 3
    if isinstance(state.get("vaccinations"), list) or isinstance(state.get("vax"), list):
        score += 3
    if any(isinstance(state.get(k), list) for k in ("ipCases", "ip", "cases")):
        score += 3
    if isinstance(state.get("residentsById"), dict):
        score += 2
    if isinstance(state.get("vaccinesByResidentId"), dict):
        score += 3
    if isinstance(state.get("abxByResidentId"), dict):
        score += 3
    return score


def _unwrap(obj: Any) -> tuple[Any, bool]:
    if isinstance(obj, dict) and isinstance(obj.get("state"), dict):
        return obj["state"], True
    return obj, False


def detect_state_key(store) -> StateKeyInfo | None:
    """Scan every key for the most likely tracker state.

    Backups and the import queue are never candidates. Values that are too
    short, not JSON objects/arrays, or corrupt are skipped.
    """
    best: StateKeyInfo | None = None
    for key in store.keys():
        if key.startswith(BACKUP_PREFIX) or key in (LATEST_BACKUP_KEY, QUEUE_KEY):
            continue
        raw = store.get(key)
        if not raw or len(raw) < _MIN_STATE_LENGTH or raw[0] not in "{[":
            continue
        obj = _parse_json(raw)
        if obj is None:
            continue
        state, wrapped = _unwrap(obj)
        score = score_state(state)
        if score <= 0:
            continue
        if best is None or score > best.score:
            best = StateKeyInfo(key=key, wrapped=wrapped, score=score)
    return best


def locate_state(store) -> StateKeyInfo | None:
    """Prefer the fixed state key; fall back to detection for legacy stores."""
    obj = _parse_json(store.get(STATE_KEY))
    if isinstance(obj, dict):
        state, wrapped = _unwrap(obj)
        return StateKeyInfo(key=STATE_KEY, wrapped=wrapped, score=score_state(state))
    return detect_state_key(store)


# --- Load / save ---


def _is_canonical(state: dict) -> bool:
    return "schemaVersion" in state


def migrate_legacy_state(legacy: Any, now: str | None = None) -> TrackerState:
    """Map a legacy state blob onto a fresh TrackerState.

    Residents come first so records that reference them by MRN or id
    resolve to the same entity.
    """
    now = now or utc_now_iso()
    state = TrackerState()
    registry = ResidentRegistry(state.residents_by_id)
    warnings: list[str] = []
    legacy = _mapping(legacy)
    modules = _mapping(legacy.get("modules"))

    for raw in _mapping(legacy.get("residentsById")).values():
        map_resident(raw, registry, warnings)
    for raw in _list(legacy.get("residents")):
        map_resident(raw, registry, warnings)

    def rows(*candidates: Any) -> list:
        out: list = []
        for c in candidates:
            if isinstance(c, list):
                out.extend(c)
            elif isinstance(c, dict):
                for recs in c.values():
                    out.extend(_list(recs))
        return out

    for raw in rows(
        _mapping(modules.get("vaccinations")).get("records"),
        legacy.get("vaccinations"),
        legacy.get("vax"),
        legacy.get("vaccinesByResidentId"),
    ):
        vax = map_vax(raw, registry, warnings, now=now)
        if vax is not None:
            add_vaccines(state, [vax], now=now)
    for raw in rows(
        _mapping(modules.get("abt")).get("courses"),
        legacy.get("abt"),
        legacy.get("antibiotics"),
        legacy.get("abxByResidentId"),
    ):
        course = map_abt(raw, registry, warnings, now=now)
        if course is not None:
            add_courses(state, [course], now=now)
    for raw in rows(
        _mapping(modules.get("ip")).get("cases"),
        legacy.get("ipCases"),
        legacy.get("ip"),
        legacy.get("cases"),
    ):
        case = map_ip(raw, registry, warnings, now=now)
        if case is not None:
            case.id = case.id or new_id("ip")
            state.infection_cases.append(case)

    for w in warnings:
        logger.warning("Legacy state migration: %s", w)
    state.migrations["legacyState"] = now
    return state


def load_state(store, info: StateKeyInfo | None = None) -> tuple[TrackerState, StateKeyInfo]:
    """Load the tracker state, migrating legacy shapes.

    Raises:
        StoreNotInitializedError: if no state can be located or parsed.
    """
    info = info or locate_state(store)
    if info is None:
        raise StoreNotInitializedError()
    obj = _parse_json(store.get(info.key))
    if obj is None:
        raise StoreNotInitializedError(f"Stored state under {info.key!r} is not valid JSON.")
    state_doc, _ = _unwrap(obj) if info.wrapped else (obj, False)
    if isinstance(state_doc, dict) and _is_canonical(state_doc):
        return TrackerState.from_document(state_doc), info
    logger.info("Migrating legacy tracker state from key %s", info.key)
    state = migrate_legacy_state(state_doc)
    state.migrations["legacyStateKey"] = info.key
    return state, info


def save_state(store, state: TrackerState, info: StateKeyInfo | None = None) -> str:
    """Write the state and return the key written.

    A state read from a wrapped envelope under the fixed key is written back
    inside the same envelope. Legacy states found under other keys are
    written to the fixed key; the legacy blob is left untouched.
    """
    doc = state.to_document()
    if info is not None and info.key == STATE_KEY and info.wrapped:
        outer = _parse_json(store.get(STATE_KEY))
        outer = outer if isinstance(outer, dict) else {}
        outer["state"] = doc
        store.set(STATE_KEY, json.dumps(outer))
    else:
        store.set(STATE_KEY, json.dumps(doc))
    return STATE_KEY


def create_backup(store, raw: str, now: str | None = None) -> str:
    """Store a raw pre-change payload under a timestamped backup key.

    The key is ``icn_state_backup_YYYY-MM-DD-HH-MM-SS``, suffixed ``-1``,
    ``-2``, ... when a backup from the same second exists. The key is also
    recorded as the latest backup.
    """
    stamp = (now or utc_now_iso())[:19].replace(":", "-").replace("T", "-")
    key = BACKUP_PREFIX + stamp
    existing = set(store.keys())
    n = 1
    while key in existing:
        key = f"{BACKUP_PREFIX}{stamp}-{n}"
        n += 1
    store.set(key, raw or "")
    store.set(LATEST_BACKUP_KEY, key)
    logger.debug("Backed up state to %s", key)
    return key


def latest_backup_key(store) -> str:
    return store.get(LATEST_BACKUP_KEY) or ""


def init_state(store, now: str | None = None) -> TrackerState:
    """Open the tracker state, creating it on first use.

    A legacy state found by detection is migrated and saved under the fixed
    key. A corrupt value under the fixed key is backed up and replaced with
    an empty state.
    """
    raw = store.get(STATE_KEY)
    if raw is not None:
        if isinstance(_parse_json(raw), dict):
            return load_state(store)[0]
        backup = create_backup(store, raw, now=now)
        logger.warning("Stored state was corrupt; backed up to %s and reset", backup)
        state = TrackerState()
        save_state(store, state)
        return state

    legacy = detect_state_key(store)
    if legacy is not None:
        state, _ = load_state(store, legacy)
    else:
        state = TrackerState()
    state.migrations.setdefault("created", now or utc_now_iso())
    save_state(store, state)
    return state


# --- Census ---


def apply_census(
    state: TrackerState, snapshot: CensusSnapshot, history_limit: int = DEFAULT_HISTORY_LIMIT
) -> dict[str, int]:
    """Apply a census snapshot as the current roster.

    Active residents missing from the snapshot are discharged, keeping
    their last room/unit in the locked fields. Snapshot residents are
    upserted as active under their existing ids; a stored resident whose
    MRN matches case-insensitively counts as the same person.
    """
    registry = ResidentRegistry(state.residents_by_id)
    matched = [
        (incoming, state.residents_by_id.get(incoming.id) or registry.find_by_mrn(incoming.mrn))
        for incoming in snapshot.residents
    ]
    present = {existing.id if existing else incoming.id for incoming, existing in matched}
    stats = {"added": 0, "updated": 0, "discharged": 0}

    for resident in state.residents_by_id.values():
        if resident.id in present or resident.status != "active":
            continue
        resident.locked_room = resident.current_room
        resident.locked_unit = resident.current_unit
        resident.room = ""
        resident.unit = UNKNOWN_UNIT
        resident.status = "discharged"
        stats["discharged"] += 1

    for incoming, existing in matched:
        if existing is None:
            state.residents_by_id[incoming.id] = Resident.from_dict(incoming.to_dict())
            stats["added"] += 1
            continue
        existing.display_name = incoming.display_name or existing.display_name
        existing.mrn = existing.mrn or incoming.mrn
        existing.dob = existing.dob or incoming.dob
        existing.room = incoming.room or existing.room
        if incoming.unit != UNKNOWN_UNIT or existing.unit == UNKNOWN_UNIT:
            existing.unit = incoming.unit
        existing.status = "active"
        existing.last_seen = snapshot.created
        existing.locked_room = ""
        existing.locked_unit = ""
        stats["updated"] += 1

    state.census_history.insert(0, snapshot)
    del state.census_history[history_limit:]
    record_census_counts(state, snapshot, history_limit)
    logger.debug("Applied census %s: %s", snapshot.id, stats)
    return stats


def record_census_counts(
    state: TrackerState, snapshot: CensusSnapshot, limit: int = DEFAULT_HISTORY_LIMIT
) -> dict[str, Any]:
    """Record per-unit resident counts for the snapshot's date (same date replaces)."""
    day = snapshot.created[:10]
    counts = Counter(r.unit for r in snapshot.residents)
    entry = {"date": day, "counts": dict(sorted(counts.items())), "total": len(snapshot.residents)}
    state.census_counts = [c for c in state.census_counts if c.get("date") != day]
    state.census_counts.insert(0, entry)
    state.census_counts.sort(key=lambda c: str(c.get("date", "")), reverse=True)
    del state.census_counts[limit:]
    return entry


# --- Record operations ---


def add_vaccines(state: TrackerState, items: Iterable[VaccineRecord], now: str | None = None) -> int:
    """Attach vaccine records to their residents, assigning missing ids."""
    now = now or utc_now_iso()
    added = 0
    for v in items:
        v.id = v.id or new_id("vax")
        v.created = v.created or now
        recs = state.vaccines_by_resident_id.setdefault(v.resident_id, [])
        recs.append(v)
        added += 1
    return added


def add_courses(state: TrackerState, items: Iterable[AntibioticCourse], now: str | None = None) -> int:
    """Attach antibiotic courses to their residents, assigning missing ids."""
    now = now or utc_now_iso()
    added = 0
    for c in items:
        c.id = c.id or new_id("abt")
        c.created = c.created or now
        c.updated = c.updated or now
        state.abx_by_resident_id.setdefault(c.resident_id, []).append(c)
        added += 1
    return added


def find_course(state: TrackerState, resident_id: str, course_id: str) -> AntibioticCourse | None:
    for c in state.abx_by_resident_id.get(resident_id, []):
        if c.id == course_id:
            return c
    return None


def delete_vaccine(state: TrackerState, resident_id: str, vaccine_id: str) -> bool:
    recs = state.vaccines_by_resident_id.get(resident_id, [])
    kept = [v for v in recs if v.id != vaccine_id]
    if len(kept) == len(recs):
        return False
    state.vaccines_by_resident_id[resident_id] = kept
    return True


def delete_course(state: TrackerState, resident_id: str, course_id: str) -> bool:
    recs = state.abx_by_resident_id.get(resident_id, [])
    kept = [c for c in recs if c.id != course_id]
    if len(kept) == len(recs):
        return False
    state.abx_by_resident_id[resident_id] = kept
    return True


def add_infection_case(
    state: TrackerState, case: InfectionCase, now: str | None = None
) -> InfectionCase:
    """Record a new infection case, assigning a missing id."""
    case.id = case.id or new_id("ip")
    case.created = case.created or now or utc_now_iso()
    state.infection_cases.append(case)
    return case


def find_infection_case(state: TrackerState, case_id: str) -> InfectionCase | None:
    for case in state.infection_cases:
        if case.id == case_id:
            return case
    return None


def resolve_infection_case(
    state: TrackerState, case_id: str, resolved_date: str
) -> InfectionCase | None:
    """Set the resolved date on a case; returns None when the id is unknown."""
    case = find_infection_case(state, case_id)
    if case is not None:
        case.resolved_date = resolved_date
    return case


def delete_infection_case(state: TrackerState, case_id: str) -> bool:
    kept = [c for c in state.infection_cases if c.id != case_id]
    if len(kept) == len(state.infection_cases):
        return False
    state.infection_cases = kept
    return True
