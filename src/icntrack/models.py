"""Canonical data model for infection-control tracking records.

Each dataclass is one canonical record kind. Records serialize to plain
dicts (``to_dict``) for the persisted state document and are rebuilt with
``from_dict``, which also accepts the camelCase field names written by
earlier versions of the tracker.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, TypedDict

from icntrack.core.utils import pick

UNKNOWN_UNIT = "unknown"

VACCINE_NAMES = ("COVID", "Flu", "Pneumo", "RSV", "Shingles", "Tdap", "Other")

# Lower-cased aliases -> canonical vaccine name
_VACCINE_ALIASES: dict[str, str] = {
    "covid": "COVID",
    "covid-19": "COVID",
    "covid19": "COVID",
    "sars-cov-2": "COVID",
    "flu": "Flu",
    "influenza": "Flu",
    "flu shot": "Flu",
    "pneumo": "Pneumo",
    "pneumococcal": "Pneumo",
    "pcv": "Pneumo",
    "pcv13": "Pneumo",
    "pcv15": "Pneumo",
    "pcv20": "Pneumo",
    "ppsv23": "Pneumo",
    "rsv": "RSV",
    "shingles": "Shingles",
    "shingrix": "Shingles",
    "zoster": "Shingles",
    "tdap": "Tdap",
    "td": "Tdap",
    "other": "Other",
}

PRECAUTION_TYPES = ("contact", "droplet", "airborne", "enhanced-barrier", "standard", "unknown")

_PRECAUTION_ALIASES: dict[str, str] = {
    "contact": "contact",
    "contact plus": "contact",
    "droplet": "droplet",
    "airborne": "airborne",
    "enhanced barrier": "enhanced-barrier",
    "enhanced-barrier": "enhanced-barrier",
    "enhanced barrier precautions": "enhanced-barrier",
    "ebp": "enhanced-barrier",
    "standard": "standard",
    "unknown": "unknown",
}


def canonical_vaccine_name(value: str) -> tuple[str, str]:
    """Map free text onto the vaccine enumeration.

    Returns ``(name, name_other)``; text outside the enumeration becomes
    ``("Other", <original text>)``.
    """
    text = (value or "").strip()
    if not text:
        return "", ""
    name = _VACCINE_ALIASES.get(text.lower())
    if name is None:
        return "Other", text
    return name, ""


def canonical_precaution(value: str) -> str:
    text = " ".join((value or "").strip().lower().replace("_", " ").split())
    return _PRECAUTION_ALIASES.get(text, "unknown")


def _normalize_status(value: str) -> str:
    return "discharged" if (value or "").strip().lower() == "discharged" else "active"


def normalize_unit(value: str) -> str:
    """Accept 'Unit 2', '2' and legacy 'UNK' spellings."""
    text = (value or "").strip()
    if not text or text.upper() in ("UNK", "UNKNOWN", "UNASSIGNED"):
        return UNKNOWN_UNIT
    if text.isdigit():
        return f"Unit {text}"
    return text


@dataclass
class Resident:
    """A facility resident, keyed by a stable id (see core.identity)."""

    id: str
    display_name: str = ""
    mrn: str = ""  # facility code as printed on the census
    room: str = ""  # room-bed token, e.g. 251-A
    unit: str = UNKNOWN_UNIT  # "Unit 2" or "unknown"
    status: str = "active"  # active, discharged
    last_seen: str = ""  # ISO timestamp of the last census containing this resident
    locked_room: str = ""  # last known room once discharged
    locked_unit: str = ""
    dob: str = ""

    @property
    def current_room(self) -> str:
        return self.room or self.locked_room

    @property
    def current_unit(self) -> str:
        if self.unit and self.unit != UNKNOWN_UNIT:
            return self.unit
        return self.locked_unit or self.unit

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Resident:
        return cls(
            id=pick(d, "id", "residentId"),
            display_name=pick(d, "display_name", "displayName", "name", "residentName"),
            mrn=pick(d, "mrn", "MRN"),
            room=pick(d, "room", "roomNumber"),
            unit=normalize_unit(pick(d, "unit")),
            status=_normalize_status(pick(d, "status")),
            last_seen=pick(d, "last_seen", "lastSeenISO", "lastSeenOnCensus", "updatedAt"),
            locked_room=pick(d, "locked_room", "lockedRoom"),
            locked_unit=pick(d, "locked_unit", "lockedUnit"),
            dob=pick(d, "dob", "dateOfBirth"),
        )


@dataclass
class CensusSnapshot:
    """An immutable, timestamped parse of one census paste."""

    id: str
    created: str  # ISO timestamp
    raw_text: str = ""
    residents: list[Resident] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> CensusSnapshot:
        return cls(
            id=pick(d, "id"),
            created=pick(d, "created", "createdISO", "updatedAt", "date"),
            raw_text=str(d.get("raw_text") or d.get("rawText") or ""),
            residents=[
                Resident.from_dict(r) for r in d.get("residents") or [] if isinstance(r, dict)
            ],
            warnings=[str(w) for w in d.get("warnings") or []],
        )


@dataclass
class VaccineRecord:
    """A vaccination given to (or refused by) one resident."""

    id: str
    resident_id: str
    name: str  # one of VACCINE_NAMES
    date: str  # ISO YYYY-MM-DD
    name_other: str = ""  # free text when name == "Other"
    notes: str = ""
    status: str = "Given"  # Given, Refused, Contraindicated, Unknown
    created: str = ""
    manufacturer: str = ""
    lot: str = ""
    route: str = ""
    site: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> VaccineRecord:
        name, other = canonical_vaccine_name(pick(d, "name", "vaccineType"))
        return cls(
            id=pick(d, "id"),
            resident_id=pick(d, "resident_id", "residentId"),
            name=name,
            date=pick(d, "date", "dateISO"),
            name_other=pick(d, "name_other", "nameOther") or other,
            notes=pick(d, "notes"),
            status=pick(d, "status") or "Given",
            created=pick(d, "created", "createdISO", "createdAt"),
            manufacturer=pick(d, "manufacturer"),
            lot=pick(d, "lot"),
            route=pick(d, "route"),
            site=pick(d, "site"),
        )


@dataclass
class AntibioticCourse:
    """One antibiotic course. ``status`` always follows ``stop_date``."""

    id: str
    resident_id: str
    antibiotic: str
    start_date: str  # ISO YYYY-MM-DD
    stop_date: str = ""  # ISO YYYY-MM-DD; not validated against start_date
    indication: str = ""
    notes: str = ""
    status: str = "active"  # active, stopped
    created: str = ""
    updated: str = ""
    route: str = ""
    dose: str = ""
    frequency: str = ""
    ordered_by: str = ""

    def __post_init__(self):
        self.status = "stopped" if self.stop_date else "active"

    @property
    def is_active(self) -> bool:
        return not self.stop_date

    def stop(self, stop_date: str, updated: str = "") -> None:
        """Record a stop date. Dates before ``start_date`` are accepted."""
        self.stop_date = stop_date
        self.status = "stopped" if stop_date else "active"
        if updated:
            self.updated = updated

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AntibioticCourse:
        return cls(
            id=pick(d, "id"),
            resident_id=pick(d, "resident_id", "residentId"),
            antibiotic=pick(d, "antibiotic", "medication"),
            start_date=pick(d, "start_date", "startDateISO"),
            stop_date=pick(d, "stop_date", "stopDateISO"),
            indication=pick(d, "indication"),
            notes=pick(d, "notes"),
            created=pick(d, "created", "createdISO", "createdAt"),
            updated=pick(d, "updated", "updatedISO", "updatedAt"),
            route=pick(d, "route"),
            dose=pick(d, "dose"),
            frequency=pick(d, "frequency"),
            ordered_by=pick(d, "ordered_by", "orderedBy"),
        )


@dataclass
class InfectionCase:
    """An infection case; active until a resolved date is recorded."""

    id: str
    resident_id: str
    onset_date: str  # ISO YYYY-MM-DD
    syndrome: str = ""  # UTI, Respiratory, GI, Skin, etc.
    organism: str = ""
    precaution_type: str = "unknown"  # one of PRECAUTION_TYPES
    isolation_type: str = ""
    resolved_date: str = ""
    lab_date: str = ""
    notes: str = ""
    created: str = ""

    @property
    def is_active(self) -> bool:
        return not self.resolved_date

    @property
    def status(self) -> str:
        return "active" if self.is_active else "resolved"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> InfectionCase:
        return cls(
            id=pick(d, "id"),
            resident_id=pick(d, "resident_id", "residentId"),
            onset_date=pick(d, "onset_date", "onsetDateISO"),
            syndrome=pick(d, "syndrome"),
            organism=pick(d, "organism"),
            precaution_type=canonical_precaution(
                pick(d, "precaution_type", "precautionType", "precautions")
            ),
            isolation_type=pick(d, "isolation_type", "isolationType"),
            resolved_date=pick(d, "resolved_date", "resolvedDateISO"),
            lab_date=pick(d, "lab_date", "labDateISO"),
            notes=pick(d, "notes"),
            created=pick(d, "created", "createdAt"),
        )


@dataclass
class GenericRecord:
    """Records of a dataset kind this version does not understand, kept verbatim."""

    dataset: str
    imported_at: str
    records: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> GenericRecord:
        return cls(
            dataset=pick(d, "dataset"),
            imported_at=pick(d, "imported_at", "importedAt"),
            records=list(d.get("records") or []),
        )


@dataclass
class PackPart:
    """One dataset section of an import pack."""

    dataset: str
    records: list[Any] = field(default_factory=list)


@dataclass
class ImportPack:
    """A normalized ``icn-bulk-import-v1`` pack (transient)."""

    version: str
    created: str = ""
    source: str = ""
    parts: list[PackPart] = field(default_factory=list)

    def record_count(self) -> int:
        return sum(len(p.records) for p in self.parts)


# --- Draft rows produced by the bulk paste parser ---


@dataclass
class BulkVaxRow:
    resident_key: str
    name: str
    date: str
    notes: str = ""


@dataclass
class BulkAbxRow:
    resident_key: str
    antibiotic: str
    start_date: str
    indication: str = ""
    notes: str = ""


@dataclass
class BulkParseResult:
    """Lexical pass output: parsed rows plus per-line error strings."""

    rows: list[BulkVaxRow | BulkAbxRow] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class BuildResult:
    """Resident-resolution pass output."""

    items: list[VaccineRecord | AntibioticCourse] = field(default_factory=list)
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class LegacyImportResult:
    """Output of legacy JSON detection and mapping."""

    kind: str  # vaccination, abt, ip, unknown
    residents: list[Resident] = field(default_factory=list)
    vaccinations: list[VaccineRecord] = field(default_factory=list)
    antibiotics: list[AntibioticCourse] = field(default_factory=list)
    infection_cases: list[InfectionCase] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    new_resident_ids: list[str] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "residents": len(self.residents),
            "vaccinations": len(self.vaccinations),
            "antibiotics": len(self.antibiotics),
            "infection_cases": len(self.infection_cases),
        }


class DatasetStats(TypedDict):
    """Per-dataset merge statistics."""

    dataset: str
    added: int
