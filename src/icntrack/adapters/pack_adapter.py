"""Map raw import-pack and legacy JSON records onto canonical records.

Every output field is read through an ordered list of candidate source
keys, so the differently shaped exports of earlier tracker versions map
without special cases. Mappers validate mandatory fields first and only
then resolve (or create) the resident, so a skipped record never creates
a resident.
"""

from __future__ import annotations

from typing import Any

from icntrack.core.identity import ResidentRegistry
from icntrack.core.utils import coerce_date_iso, pick, utc_now_iso
from icntrack.models import (
    AntibioticCourse,
    ImportPack,
    InfectionCase,
    PackPart,
    Resident,
    VaccineRecord,
    canonical_precaution,
    canonical_vaccine_name,
    normalize_unit,
)

PACK_VERSION = "icn-bulk-import-v1"

# Keys of a pack object that never name a dataset
PACK_METADATA_KEYS = frozenset({"version", "createdAt", "generatedAt", "source", "recordCount"})

KNOWN_DATASETS = ("vaccination", "antibiotic", "infection", "residents")

_DATASET_ALIASES = {
    "vaccination": "vaccination",
    "vaccinations": "vaccination",
    "vax": "vaccination",
    "antibiotic": "antibiotic",
    "antibiotics": "antibiotic",
    "abt": "antibiotic",
    "abx": "antibiotic",
    "infection": "infection",
    "infections": "infection",
    "infectioncases": "infection",
    "cases": "infection",
    "ip": "infection",
    "residents": "residents",
    "census": "residents",
}

# Candidate source keys, first non-empty wins
_RESIDENT_ID_KEYS = ("resident_id", "residentId", "patientId")
_RESIDENT_NAME_KEYS = ("residentName", "name", "patientName", "Resident", "resident")
_MRN_KEYS = ("mrn", "MRN", "residentMrn")
_ROOM_KEYS = ("room", "Room", "roomNumber")
_UNIT_KEYS = ("unit", "Unit")
_DOB_KEYS = ("dob", "DOB", "dateOfBirth")

_VAX_TYPE_KEYS = ("vaccineType", "vaccine", "type", "vaxType", "Vaccine")
_VAX_DATE_KEYS = ("date", "dateISO", "givenDate", "dateGiven", "Date")

_ABT_MED_KEYS = ("antibiotic", "medication", "drug", "med", "abxName")
_ABT_START_KEYS = ("start_date", "startDateISO", "start", "startDate", "StartDate", "dateStart")
_ABT_STOP_KEYS = (
    "stop_date", "stopDateISO", "stop", "stopDate", "StopDate", "dateStop", "end", "endDate",
)

_IP_ONSET_KEYS = ("onset_date", "onsetDateISO", "onset", "onsetDate", "OnsetDate", "date")
_IP_RESOLVED_KEYS = (
    "resolved_date", "resolvedDateISO", "resolved", "resolvedDate", "resolutionDate", "ResolvedDate",
)
_IP_PRECAUTION_KEYS = (
    "precaution_type", "precautionType", "precautions", "precaution", "Precautions", "isolation",
)


def canonical_dataset(name: str) -> str:
    """Map a dataset alias to its canonical name; unknown names pass through."""
    text = (name or "").strip()
    return _DATASET_ALIASES.get(text.lower(), text)


def _has_resident_id(raw: dict) -> bool:
    return bool(pick(raw, *_RESIDENT_ID_KEYS))


def _identity(raw: dict) -> dict[str, str]:
    """Identity signals of a raw record.

    Records exported by this tool carry ``resident_id`` and use ``name`` for
    the vaccine, so ``name`` is only a resident name when no id is present.
    """
    rid = pick(raw, *_RESIDENT_ID_KEYS)
    name_keys = tuple(k for k in _RESIDENT_NAME_KEYS if k != "name") if rid else _RESIDENT_NAME_KEYS
    mrn = pick(raw, *_MRN_KEYS)
    if not mrn and rid.upper().startswith("MRN-"):
        mrn = rid[4:]
    elif not mrn and rid.startswith("mrn_"):
        mrn = rid[4:]
    unit = pick(raw, *_UNIT_KEYS)
    return {
        "resident_id": rid,
        "name": pick(raw, *name_keys),
        "mrn": mrn,
        "room": pick(raw, *_ROOM_KEYS),
        "unit": normalize_unit(unit) if unit else "",
        "dob": coerce_date_iso(pick(raw, *_DOB_KEYS)),
    }


def _resolve(ident: dict[str, str], registry: ResidentRegistry) -> Resident | None:
    if not (ident["name"] or ident["mrn"] or registry.get(ident["resident_id"])):
        return None
    return registry.resolve_or_create(
        name=ident["name"],
        mrn=ident["mrn"],
        room=ident["room"],
        unit=ident["unit"],
        dob=ident["dob"],
        resident_id=ident["resident_id"],
    )


def _label(ident: dict[str, str]) -> str:
    return ident["name"] or ident["mrn"] or ident["resident_id"] or "unknown"


def map_vax(
    raw: Any, registry: ResidentRegistry, warnings: list[str], now: str | None = None
) -> VaccineRecord | None:
    """Map one raw vaccination record. Mandatory: resident identity, type, date."""
    if not isinstance(raw, dict):
        warnings.append("Skipped a vaccination row that is not an object.")
        return None
    ident = _identity(raw)
    type_keys = _VAX_TYPE_KEYS + (("name",) if _has_resident_id(raw) else ())
    vaccine = pick(raw, *type_keys)
    date_iso = coerce_date_iso(pick(raw, *_VAX_DATE_KEYS))
    if not vaccine or not date_iso:
        warnings.append(f"Skipped a vaccination row missing type/date ({_label(ident)}).")
        return None
    resident = _resolve(ident, registry)
    if resident is None:
        warnings.append(f"Skipped a vaccination row with no resident ({vaccine} {date_iso}).")
        return None
    name, other = canonical_vaccine_name(vaccine)
    return VaccineRecord(
        id=pick(raw, "id"),
        resident_id=resident.id,
        name=name,
        name_other=pick(raw, "name_other", "nameOther") or other,
        date=date_iso,
        notes=pick(raw, "notes"),
        status=pick(raw, "status", "Status", "vaxStatus") or "Given",
        created=pick(raw, "created", "createdAt") or now or utc_now_iso(),
        manufacturer=pick(raw, "manufacturer", "mfg"),
        lot=pick(raw, "lot"),
        route=pick(raw, "route"),
        site=pick(raw, "site"),
    )


def map_abt(
    raw: Any, registry: ResidentRegistry, warnings: list[str], now: str | None = None
) -> AntibioticCourse | None:
    """Map one raw antibiotic record. Mandatory: medication, start date."""
    if not isinstance(raw, dict):
        warnings.append("Skipped an ABT row that is not an object.")
        return None
    ident = _identity(raw)
    med = pick(raw, *_ABT_MED_KEYS)
    start = coerce_date_iso(pick(raw, *_ABT_START_KEYS))
    if not med or not start:
        warnings.append(f"Skipped an ABT row missing medication/start ({_label(ident)}).")
        return None
    resident = _resolve(ident, registry)
    if resident is None:
        warnings.append(f"Skipped an ABT row with no resident ({med} {start}).")
        return None
    now = now or utc_now_iso()
    return AntibioticCourse(
        id=pick(raw, "id"),
        resident_id=resident.id,
        antibiotic=med,
        start_date=start,
        stop_date=coerce_date_iso(pick(raw, *_ABT_STOP_KEYS)),
        indication=pick(raw, "indication"),
        notes=pick(raw, "notes"),
        created=pick(raw, "created", "createdAt") or now,
        updated=pick(raw, "updated", "updatedAt") or now,
        route=pick(raw, "route"),
        dose=pick(raw, "dose"),
        frequency=pick(raw, "frequency", "freq"),
        ordered_by=pick(raw, "ordered_by", "orderedBy", "provider"),
    )


def map_ip(
    raw: Any, registry: ResidentRegistry, warnings: list[str], now: str | None = None
) -> InfectionCase | None:
    """Map one raw infection-case record. Mandatory: onset date."""
    if not isinstance(raw, dict):
        warnings.append("Skipped an IP row that is not an object.")
        return None
    ident = _identity(raw)
    onset = coerce_date_iso(pick(raw, *_IP_ONSET_KEYS))
    if not onset:
        warnings.append(f"Skipped an IP row missing onset date ({_label(ident)}).")
        return None
    resident = _resolve(ident, registry)
    if resident is None:
        warnings.append(f"Skipped an IP row with no resident (onset {onset}).")
        return None
    return InfectionCase(
        id=pick(raw, "id"),
        resident_id=resident.id,
        onset_date=onset,
        syndrome=pick(raw, "syndrome", "category", "sourceCondition"),
        organism=pick(raw, "organism", "pathogen"),
        precaution_type=canonical_precaution(pick(raw, *_IP_PRECAUTION_KEYS)),
        isolation_type=pick(raw, "isolation_type", "isolationType"),
        resolved_date=coerce_date_iso(pick(raw, *_IP_RESOLVED_KEYS)),
        lab_date=coerce_date_iso(pick(raw, "lab_date", "labDateISO", "labDate")),
        notes=pick(raw, "notes"),
        created=pick(raw, "created", "createdAt") or now or utc_now_iso(),
    )


def map_resident(raw: Any, registry: ResidentRegistry, warnings: list[str]) -> Resident | None:
    """Resolve-or-create a resident from a raw resident/census record."""
    if not isinstance(raw, dict):
        warnings.append("Skipped a resident row that is not an object.")
        return None
    ident = _identity(raw)
    ident["resident_id"] = ident["resident_id"] or pick(raw, "id")
    if not ident["name"]:
        ident["name"] = pick(raw, "display_name", "displayName", "name")
    resident = _resolve(ident, registry)
    if resident is None:
        warnings.append("Skipped a resident row with no name or MRN.")
        return None
    # later records may reference this resident by its source id
    registry.add_alias(ident["resident_id"], resident)
    return resident


MAPPERS = {
    "vaccination": map_vax,
    "antibiotic": map_abt,
    "infection": map_ip,
}


def normalize_pack(payload: Any) -> ImportPack | None:
    """Normalize any accepted pack wire form; wrong or missing version -> None.

    Accepted forms::

        {"version": ..., "dataset": "abt", "records": [...]}
        {"version": ..., "datasets": [{"dataset": ..., "records": [...]}]}
        {"version": ..., "<datasetName>": [...], ...}
    """
    if not isinstance(payload, dict) or payload.get("version") != PACK_VERSION:
        return None

    pack = ImportPack(
        version=PACK_VERSION,
        created=pick(payload, "createdAt", "generatedAt", "created"),
        source=pick(payload, "source"),
    )

    datasets = payload.get("datasets")
    if isinstance(datasets, list):
        for d in datasets:
            if not isinstance(d, dict):
                continue
            records = d.get("records")
            pack.parts.append(
                PackPart(
                    dataset=pick(d, "dataset") or "generic",
                    records=list(records) if isinstance(records, list) else [],
                )
            )
        return pack

    if "dataset" in payload or "records" in payload:
        records = payload.get("records")
        pack.parts.append(
            PackPart(
                dataset=pick(payload, "dataset") or "generic",
                records=list(records) if isinstance(records, list) else [],
            )
        )
        return pack

    for key, value in payload.items():
        if key in PACK_METADATA_KEYS or not isinstance(value, list):
            continue
        pack.parts.append(PackPart(dataset=key, records=list(value)))
    return pack


def make_pack(dataset: str, records: list[Any], source: str = "", created: str = "") -> dict:
    """Build a single-dataset pack in wire form."""
    return {
        "version": PACK_VERSION,
        "createdAt": created or utc_now_iso(),
        "source": source,
        "dataset": dataset,
        "recordCount": len(records),
        "records": records,
    }
