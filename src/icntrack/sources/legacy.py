"""Legacy JSON detection and mapping.

Older tracker exports come in many shapes: a bare array of rows, an object
holding one list (``{"antibiotics": [...]}``), or an object with several.
Detection scores the key names against per-kind needles; mapping then reads
each row through the tolerant mappers in ``adapters.pack_adapter``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from icntrack.adapters.pack_adapter import map_abt, map_ip, map_vax
from icntrack.core.identity import ResidentRegistry
from icntrack.core.utils import utc_now_iso
from icntrack.models import LegacyImportResult, Resident

logger = logging.getLogger(__name__)

LEGACY_KINDS = ("vaccination", "abt", "ip")

# Substrings of lower-cased key names that suggest a kind
KIND_NEEDLES: dict[str, tuple[str, ...]] = {
    "vaccination": ("vacc", "vax", "vaccine"),
    "abt": ("antibi", "abx", "abt", "medication", "drug"),
    "ip": ("precaution", "isolation", "organism", "case", "infection", "syndrome", "pathogen"),
}

CONTAINER_SCORE = 3
RECORD_KEY_SCORE = 1

# Candidate list-container names per kind, tried in order
_ARRAY_CANDIDATES: dict[str, tuple[str, ...]] = {
    "vaccination": ("vaccinations", "vax", "vaxlog", "vaccines", "entries", "records"),
    "abt": ("antibiotics", "abx", "abt", "courses", "entries", "records", "active"),
    "ip": ("infectionCases", "cases", "ip", "lineList", "infections", "entries", "records"),
}

UNKNOWN_WARNING = (
    "Could not confidently detect this legacy JSON format. "
    "Try exporting a tracker JSON (ABT/Vax/IP) and re-importing it here."
)


def _kinds_for_key(key: str) -> list[str]:
    k = str(key).lower()
    return [kind for kind, needles in KIND_NEEDLES.items() if any(n in k for n in needles)]


def detect_legacy_kind(payload: Any) -> tuple[str, dict[str, int]]:
    """Classify a legacy payload as vaccination, abt, ip or unknown.

    Top-level container names score 3 per match; keys of a first record
    (the first array element, or the first element of each top-level list)
    score 1 per match. Ties resolve in the order vaccination, abt, ip.
    """
    scores = {kind: 0 for kind in LEGACY_KINDS}
    first_records: list[dict] = []

    if isinstance(payload, list):
        if payload and isinstance(payload[0], dict):
            first_records.append(payload[0])
    elif isinstance(payload, dict):
        for key, value in payload.items():
            for kind in _kinds_for_key(key):
                scores[kind] += CONTAINER_SCORE
            if isinstance(value, list) and value and isinstance(value[0], dict):
                first_records.append(value[0])

    for record in first_records:
        for key in record:
            for kind in _kinds_for_key(key):
                scores[kind] += RECORD_KEY_SCORE

    best, best_score = "unknown", 0
    for kind in LEGACY_KINDS:
        if scores[kind] > best_score:
            best, best_score = kind, scores[kind]
    return best, scores


def pick_array(payload: Any, candidates: tuple[str, ...] | list[str]) -> list:
    """Find the record list in a payload.

    A list payload is its own record list. For objects, each candidate name
    is matched case-insensitively, exactly or as a substring of a key.
    """
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    for cand in candidates:
        c = cand.lower()
        for key, value in payload.items():
            k = str(key).lower()
            if (k == c or c in k) and isinstance(value, list):
                return value
    return []


def detect_and_map_legacy(
    payload: Any,
    residents_by_id: dict[str, Resident] | None = None,
    now: str | None = None,
) -> LegacyImportResult:
    """Detect the kind of a legacy payload and map its rows.

    ``residents_by_id`` is copied, never mutated; the returned ``residents``
    are every resident the kept rows resolved to, with ``new_resident_ids``
    marking the ones created by this import.
    """
    kind, scores = detect_legacy_kind(payload)
    result = LegacyImportResult(kind=kind)
    if kind == "unknown":
        result.warnings.append(UNKNOWN_WARNING)
        logger.debug("Legacy payload not recognized (scores %s)", scores)
        return result

    now = now or utc_now_iso()
    registry = ResidentRegistry({rid: replace(r) for rid, r in (residents_by_id or {}).items()})
    rows = pick_array(payload, _ARRAY_CANDIDATES[kind])
    if not rows:
        result.warnings.append(f"Detected {kind} data but found no record list to import.")

    for raw in rows:
        if kind == "vaccination":
            vax = map_vax(raw, registry, result.warnings, now=now)
            if vax is not None:
                result.vaccinations.append(vax)
        elif kind == "abt":
            course = map_abt(raw, registry, result.warnings, now=now)
            if course is not None:
                result.antibiotics.append(course)
        else:
            case = map_ip(raw, registry, result.warnings, now=now)
            if case is not None:
                result.infection_cases.append(case)

    result.residents = registry.touched()
    result.new_resident_ids = list(registry.created_ids)
    logger.debug("Legacy %s import mapped: %s", kind, result.counts())
    return result
