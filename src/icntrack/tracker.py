"""Tracker facade: the core operations over one injected key-value store."""

from __future__ import annotations

import logging
from typing import Any

from icntrack.analysis.reports import antibiotic_flag_rows, report_snapshot, resident_summary
from icntrack.config import TrackerConfig
from icntrack.core.utils import coerce_date_iso, utc_now_iso
from icntrack.errors import IcnTrackError
from icntrack.merge import ApplyResult, apply_legacy, apply_packs
from icntrack.models import (
    AntibioticCourse,
    BuildResult,
    BulkAbxRow,
    BulkParseResult,
    BulkVaxRow,
    CensusSnapshot,
    InfectionCase,
    LegacyImportResult,
    VaccineRecord,
    canonical_precaution,
)
from icntrack.sources import bulk, legacy
from icntrack.sources.base import CensusParser
from icntrack.sources.census import CensusTextParser
from icntrack.state import (
    STATE_KEY,
    TrackerState,
    add_courses,
    add_vaccines,
    find_course,
    init_state,
    load_state,
    save_state,
)
from icntrack.state import add_infection_case as add_case_to_state
from icntrack.state import apply_census as apply_census_to_state
from icntrack.state import delete_course as delete_course_from_state
from icntrack.state import delete_infection_case as delete_case_from_state
from icntrack.state import delete_vaccine as delete_vaccine_from_state
from icntrack.state import resolve_infection_case as resolve_case_in_state

logger = logging.getLogger(__name__)


class Tracker:
    """Parse, preview and persist infection-control data.

    Parsing methods never touch the store. Methods that change data load
    the state, apply the change and save it back under ``STATE_KEY``.
    ``census_parser`` is any ``CensusParser``; the default is the
    facility-report parser built from ``config``.
    """

    def __init__(
        self, store, config: TrackerConfig | None = None, census_parser: CensusParser | None = None
    ):
        self.store = store
        self.config = config or TrackerConfig()
        self.census_parser = census_parser or CensusTextParser(self.config.census_rules())

    # --- state ---

    def init_state(self) -> TrackerState:
        """Open (creating or migrating if needed) the persisted state."""
        return init_state(self.store)

    def state(self) -> TrackerState:
        return load_state(self.store)[0]

    def _save(self, state: TrackerState) -> None:
        save_state(self.store, state)

    def reset(self) -> None:
        """Delete every stored key, then start from an empty state."""
        for key in self.store.keys():
            self.store.delete(key)
        init_state(self.store)
        logger.info("Store reset")

    # --- census ---

    def parse_census(self, text: str, now: str | None = None) -> CensusSnapshot:
        return self.census_parser.parse(text, now=now)

    def apply_census(self, snapshot: CensusSnapshot) -> dict[str, int]:
        state = self.init_state()
        stats = apply_census_to_state(state, snapshot, self.config.history_limit)
        self._save(state)
        return stats

    # --- bulk paste ---

    def parse_bulk_rows(
        self, text: str, dataset: str, restrict_to_resident: str = ""
    ) -> BulkParseResult:
        return bulk.parse_bulk_rows(text, dataset, restrict_to_resident)

    def build_records(
        self, rows: list[BulkVaxRow | BulkAbxRow], dataset: str, now: str | None = None
    ) -> BuildResult:
        state = self.init_state()
        return bulk.build_records(rows, state.residents_by_id, dataset, now=now)

    def save_records(self, items: list[VaccineRecord | AntibioticCourse]) -> int:
        """Persist built records; returns the number saved."""
        state = self.init_state()
        now = utc_now_iso()
        saved = add_vaccines(state, [i for i in items if isinstance(i, VaccineRecord)], now=now)
        saved += add_courses(state, [i for i in items if isinstance(i, AntibioticCourse)], now=now)
        self._save(state)
        return saved

    # --- legacy and packs ---

    def detect_and_map_legacy(self, payload: Any) -> LegacyImportResult:
        state = self.init_state()
        return legacy.detect_and_map_legacy(payload, state.residents_by_id)

    def import_legacy(self, result: LegacyImportResult) -> ApplyResult:
        return apply_legacy(self.store, result)

    def apply_packs_to_store(self, packs: list[Any]) -> ApplyResult:
        return apply_packs(self.store, packs)

    # --- record operations ---

    def stop_antibiotic(self, resident_id: str, course_id: str, stop_date: str) -> AntibioticCourse:
        stop_iso = coerce_date_iso(stop_date)
        if not stop_iso:
            raise IcnTrackError(f"Invalid stop date: {stop_date!r}")
        state = self.init_state()
        course = find_course(state, resident_id, course_id)
        if course is None:
            raise IcnTrackError(f"No antibiotic course {course_id} for resident {resident_id}")
        course.stop(stop_iso, updated=utc_now_iso())
        self._save(state)
        return course

    def delete_vaccine(self, resident_id: str, vaccine_id: str) -> bool:
        state = self.init_state()
        deleted = delete_vaccine_from_state(state, resident_id, vaccine_id)
        if deleted:
            self._save(state)
        return deleted

    def delete_antibiotic(self, resident_id: str, course_id: str) -> bool:
        state = self.init_state()
        deleted = delete_course_from_state(state, resident_id, course_id)
        if deleted:
            self._save(state)
        return deleted

    # --- infection cases ---

    def add_infection_case(
        self,
        resident_id: str,
        onset_date: str,
        syndrome: str = "",
        organism: str = "",
        precautions: str = "",
        notes: str = "",
    ) -> InfectionCase:
        onset = coerce_date_iso(onset_date)
        if not onset:
            raise IcnTrackError(f"Invalid onset date: {onset_date!r}")
        state = self.init_state()
        if resident_id not in state.residents_by_id:
            raise IcnTrackError(f"Resident not found: {resident_id}")
        case = InfectionCase(
            id="",
            resident_id=resident_id,
            onset_date=onset,
            syndrome=syndrome.strip(),
            organism=organism.strip(),
            precaution_type=canonical_precaution(precautions),
            notes=notes.strip(),
        )
        add_case_to_state(state, case)
        self._save(state)
        logger.info("Added infection case %s for %s", case.id, resident_id)
        return case

    def resolve_infection_case(self, case_id: str, resolved_date: str = "") -> InfectionCase:
        """Mark a case resolved; the date defaults to today (UTC)."""
        resolved = coerce_date_iso(resolved_date) if resolved_date else utc_now_iso()[:10]
        if not resolved:
            raise IcnTrackError(f"Invalid resolved date: {resolved_date!r}")
        state = self.init_state()
        case = resolve_case_in_state(state, case_id, resolved)
        if case is None:
            raise IcnTrackError(f"No infection case {case_id}")
        self._save(state)
        return case

    def delete_infection_case(self, case_id: str) -> bool:
        state = self.init_state()
        deleted = delete_case_from_state(state, case_id)
        if deleted:
            self._save(state)
        return deleted

    def infection_cases(self, active_only: bool = True) -> list[InfectionCase]:
        """Cases ordered by onset date, newest first."""
        cases = [c for c in self.init_state().infection_cases if c.is_active or not active_only]
        return sorted(cases, key=lambda c: c.onset_date, reverse=True)

    # --- derived views ---

    def antibiotic_flags(self, today) -> list[dict[str, Any]]:
        return antibiotic_flag_rows(
            self.init_state(), today, self.config.review_day, self.config.overdue_day
        )

    def report(self, today) -> dict[str, Any]:
        return report_snapshot(self.init_state(), today, self.config)

    def resident_summary(self, resident_id: str, today) -> dict[str, Any] | None:
        return resident_summary(self.init_state(), resident_id, today, self.config)

    def summary(self) -> dict[str, Any]:
        return {"store_key": STATE_KEY, **self.init_state().summary()}
