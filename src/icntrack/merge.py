"""Merge mapped records into the persisted tracker state.

Every merge runs inside ``merge_transaction``:

1. locate the state (``StoreNotInitializedError`` when there is none)
2. back up the raw pre-merge payload, before any other write
3. load, merge, save

Dedup keys make re-applying the same pack a no-op: a record whose key is
already present is dropped, never merged or overwritten. A record with an
explicit id is matched by id; otherwise by its identifying fields.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from icntrack.adapters.pack_adapter import MAPPERS, canonical_dataset, map_resident, normalize_pack
from icntrack.core.identity import ResidentRegistry
from icntrack.core.utils import new_id, utc_now_iso
from icntrack.errors import StoreNotInitializedError
from icntrack.models import (
    AntibioticCourse,
    DatasetStats,
    GenericRecord,
    ImportPack,
    InfectionCase,
    LegacyImportResult,
    VaccineRecord,
)
from icntrack.state import (
    StateKeyInfo,
    TrackerState,
    add_courses,
    add_vaccines,
    create_backup,
    load_state,
    locate_state,
    save_state,
)

logger = logging.getLogger(__name__)

Record = VaccineRecord | AntibioticCourse | InfectionCase


def _norm(*parts: Any) -> str:
    return "|".join(str(p or "").strip().upper() for p in parts)


def field_key(dataset: str, record: Record) -> str:
    """Dedup key built from a record's identifying fields."""
    if dataset == "vaccination":
        vaccine = record.name_other if record.name == "Other" and record.name_other else record.name
        return "vax:" + _norm(record.resident_id, vaccine, record.date, record.status)
    if dataset == "antibiotic":
        return "abt:" + _norm(
            record.resident_id, record.antibiotic, record.route, record.start_date, record.stop_date
        )
    if dataset == "infection":
        return "ip:" + _norm(
            record.resident_id,
            record.precaution_type,
            record.isolation_type,
            record.onset_date,
            record.resolved_date,
            record.status,
        )
    raise ValueError(f"No dedup key for dataset {dataset!r}")


def dedup_key(dataset: str, record: Record) -> str:
    """``id:<id>`` when the record has an explicit id, else the field key."""
    if record.id.strip():
        return "id:" + record.id.strip().upper()
    return field_key(dataset, record)


@dataclass
class ApplyResult:
    """Outcome of one merge."""

    applied: list[DatasetStats] = field(default_factory=list)
    dropped: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    backup_key: str = ""
    store_key: str = ""

    @property
    def added(self) -> int:
        return sum(s["added"] for s in self.applied)

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": [dict(s) for s in self.applied],
            "added": self.added,
            "dropped": self.dropped,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "backup_key": self.backup_key,
            "store_key": self.store_key,
        }


class StateMerger:
    """Dedup-aware appends into one loaded TrackerState."""

    def __init__(self, state: TrackerState, now: str | None = None):
        self.state = state
        self.now = now or utc_now_iso()
        self.registry = ResidentRegistry(state.residents_by_id)
        self.seen: dict[str, set[str]] = {ds: set() for ds in MAPPERS}
        for v in state.all_vaccines():
            self._remember("vaccination", v)
        for c in state.all_courses():
            self._remember("antibiotic", c)
        for case in state.infection_cases:
            self._remember("infection", case)

    def _remember(self, dataset: str, record: Record) -> None:
        seen = self.seen[dataset]
        if record.id:
            seen.add(dedup_key(dataset, record))
        seen.add(field_key(dataset, record))

    def is_duplicate(self, dataset: str, record: Record) -> bool:
        return dedup_key(dataset, record) in self.seen[dataset]

    def add_record(self, dataset: str, record: Record) -> bool:
        """Append a mapped record unless it is a duplicate. Returns True if added."""
        if self.is_duplicate(dataset, record):
            return False
        if dataset == "vaccination":
            add_vaccines(self.state, [record], now=self.now)
        elif dataset == "antibiotic":
            add_courses(self.state, [record], now=self.now)
        else:
            record.id = record.id or new_id("ip")
            record.created = record.created or self.now
            self.state.infection_cases.append(record)
        self._remember(dataset, record)
        return True

    def apply_part(self, dataset_name: str, records: list[Any], result: ApplyResult) -> None:
        dataset = canonical_dataset(dataset_name)

        if dataset == "residents":
            before = len(self.registry.created_ids)
            for raw in records:
                warnings: list[str] = []
                if map_resident(raw, self.registry, warnings) is None:
                    result.skipped += 1
                    result.errors.extend(warnings)
            result.applied.append(
                DatasetStats(dataset="residents", added=len(self.registry.created_ids) - before)
            )
            return

        mapper = MAPPERS.get(dataset)
        if mapper is None:
            self.state.imports.append(
                GenericRecord(dataset=dataset_name, imported_at=self.now, records=list(records))
            )
            result.applied.append(DatasetStats(dataset=dataset_name, added=len(records)))
            logger.info("Kept %d records of unknown dataset %r verbatim", len(records), dataset_name)
            return

        added = 0
        for raw in records:
            warnings = []
            record = mapper(raw, self.registry, warnings, now=self.now)
            if record is None:
                result.skipped += 1
                result.errors.extend(warnings)
                continue
            if self.add_record(dataset, record):
                added += 1
            else:
                result.dropped += 1
        result.applied.append(DatasetStats(dataset=dataset, added=added))


@dataclass
class MergeTransaction:
    state: TrackerState
    info: StateKeyInfo
    backup_key: str
    store_key: str = ""


@contextmanager
def merge_transaction(store, now: str | None = None) -> Iterator[MergeTransaction]:
    """Back up, load, yield the state for mutation, then save it.

    Nothing is saved if the body raises; the backup is already stored.
    """
    info = locate_state(store)
    if info is None:
        raise StoreNotInitializedError()
    backup_key = create_backup(store, store.get(info.key) or "", now=now)
    state, info = load_state(store, info)
    txn = MergeTransaction(state=state, info=info, backup_key=backup_key)
    yield txn
    txn.store_key = save_state(store, state, info)


def apply_packs(store, packs: list[Any], now: str | None = None) -> ApplyResult:
    """Merge import packs (wire dicts or ImportPack objects) into the store.

    Raises:
        StoreNotInitializedError: if the store holds no tracker state.
    """
    now = now or utc_now_iso()
    result = ApplyResult()
    with merge_transaction(store, now=now) as txn:
        merger = StateMerger(txn.state, now=now)
        for pack in packs:
            normalized = pack if isinstance(pack, ImportPack) else normalize_pack(pack)
            if normalized is None:
                result.errors.append("Skipped a pack with a missing or unsupported version.")
                continue
            for part in normalized.parts:
                merger.apply_part(part.dataset, part.records, result)
        txn.state.migrations["importPacks"] = now
    result.backup_key = txn.backup_key
    result.store_key = txn.store_key
    logger.info(
        "Applied %d packs: %d added, %d dropped, %d skipped",
        len(packs), result.added, result.dropped, result.skipped,
    )
    return result


def apply_legacy(store, legacy: LegacyImportResult, now: str | None = None) -> ApplyResult:
    """Merge a mapped legacy import into the store with the same dedup rules."""
    now = now or utc_now_iso()
    result = ApplyResult(errors=list(legacy.warnings))
    with merge_transaction(store, now=now) as txn:
        merger = StateMerger(txn.state, now=now)
        for r in legacy.residents:
            merger.registry.resolve_or_create(
                name=r.display_name, mrn=r.mrn, room=r.room, unit=r.unit, dob=r.dob, resident_id=r.id
            )
        result.applied.append(
            DatasetStats(dataset="residents", added=len(merger.registry.created_ids))
        )
        for dataset, records in (
            ("vaccination", legacy.vaccinations),
            ("antibiotic", legacy.antibiotics),
            ("infection", legacy.infection_cases),
        ):
            if not records:
                continue
            added = 0
            for record in records:
                if merger.add_record(dataset, record):
                    added += 1
                else:
                    result.dropped += 1
            result.applied.append(DatasetStats(dataset=dataset, added=added))
        txn.state.migrations["legacyImport"] = now
    result.backup_key = txn.backup_key
    result.store_key = txn.store_key
    return result
