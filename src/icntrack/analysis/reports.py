"""Report snapshot — active antibiotics, active infection cases, vaccine coverage."""

from __future__ import annotations

from collections import Counter
from typing import Any

from icntrack.analysis.rules import (
    COVID_LOOKBACK_MONTHS,
    FLU_LOOKBACK_MONTHS,
    OVERDUE_DAY,
    REVIEW_DUE_DAY,
    DateLike,
    antibiotic_flags,
    is_covid_up_to_date,
    is_flu_up_to_date,
    summarize_resident_antibiotics,
)
from icntrack.core.utils import to_date
from icntrack.models import Resident
from icntrack.state import TrackerState, sort_courses

TOP_ANTIBIOTICS = 10


def _resident_fields(resident: Resident | None, resident_id: str) -> dict[str, str]:
    if resident is None:
        return {"resident_id": resident_id, "resident": "", "room": "", "unit": ""}
    return {
        "resident_id": resident.id,
        "resident": resident.display_name,
        "room": resident.current_room,
        "unit": resident.current_unit,
    }


def antibiotic_flag_rows(
    state: TrackerState,
    today: DateLike,
    review_day: int = REVIEW_DUE_DAY,
    overdue_day: int = OVERDUE_DAY,
) -> list[dict[str, Any]]:
    """One row per active antibiotic course with its day count and flags.

    Ordered overdue first, then review due, then by day count descending.
    """
    rows = []
    for course in state.all_courses():
        flags = antibiotic_flags(course, today, review_day, overdue_day)
        if not flags.is_active:
            continue
        row = _resident_fields(state.residents_by_id.get(course.resident_id), course.resident_id)
        row.update(
            course_id=course.id,
            antibiotic=course.antibiotic,
            start_date=course.start_date,
            indication=course.indication,
            day=flags.day,
            review_due=flags.review_due,
            overdue=flags.overdue,
        )
        rows.append(row)
    rows.sort(key=lambda r: (not r["overdue"], not r["review_due"], -r["day"], r["resident"]))
    return rows


def active_infection_rows(state: TrackerState) -> list[dict[str, Any]]:
    rows = []
    for case in state.infection_cases:
        if not case.is_active:
            continue
        row = _resident_fields(state.residents_by_id.get(case.resident_id), case.resident_id)
        row.update(
            case_id=case.id,
            onset_date=case.onset_date,
            syndrome=case.syndrome,
            organism=case.organism,
            precaution_type=case.precaution_type,
        )
        rows.append(row)
    rows.sort(key=lambda r: r["onset_date"], reverse=True)
    return rows


def vaccine_coverage(
    state: TrackerState,
    today: DateLike,
    flu_lookback_months: int = FLU_LOOKBACK_MONTHS,
    covid_lookback_months: int = COVID_LOOKBACK_MONTHS,
) -> dict[str, int]:
    """Up-to-date counts over active residents."""
    active = [r for r in state.residents_by_id.values() if r.status == "active"]
    flu = covid = 0
    for r in active:
        records = state.vaccines_by_resident_id.get(r.id, [])
        flu += is_flu_up_to_date(records, today, flu_lookback_months)
        covid += is_covid_up_to_date(records, today, covid_lookback_months)
    return {"active_residents": len(active), "flu_up_to_date": flu, "covid_up_to_date": covid}


def report_snapshot(state: TrackerState, today: DateLike, config=None) -> dict[str, Any]:
    """Build the report snapshot for one day.

    ``config`` is an optional TrackerConfig supplying rule thresholds.
    """
    review_day = config.review_day if config else REVIEW_DUE_DAY
    overdue_day = config.overdue_day if config else OVERDUE_DAY
    abt_active = antibiotic_flag_rows(state, today, review_day, overdue_day)
    top = Counter(r["antibiotic"].strip() for r in abt_active if r["antibiotic"].strip())
    ranked = sorted(top.items(), key=lambda kv: (-kv[1], kv[0]))[:TOP_ANTIBIOTICS]
    coverage = vaccine_coverage(
        state,
        today,
        config.flu_lookback_months if config else FLU_LOOKBACK_MONTHS,
        config.covid_lookback_months if config else COVID_LOOKBACK_MONTHS,
    )
    return {
        "today": to_date(today).isoformat(),
        "abt_active": abt_active,
        "ip_active": active_infection_rows(state),
        "top_antibiotics": ranked,
        "vaccine_coverage": coverage,
        "census_counts": state.census_counts[0] if state.census_counts else None,
    }


def resident_summary(
    state: TrackerState, resident_id: str, today: DateLike, config=None
) -> dict[str, Any] | None:
    """Everything tracked for one resident, with derived flags.

    ``config`` supplies rule thresholds as in ``report_snapshot``.
    """
    resident = state.residents_by_id.get(resident_id)
    if resident is None:
        return None
    review_day = config.review_day if config else REVIEW_DUE_DAY
    overdue_day = config.overdue_day if config else OVERDUE_DAY
    vaccines = state.vaccines_for(resident_id)
    courses = sort_courses(state.abx_by_resident_id.get(resident_id, []))
    return {
        "resident": resident.to_dict(),
        "flu_up_to_date": is_flu_up_to_date(
            vaccines, today, config.flu_lookback_months if config else FLU_LOOKBACK_MONTHS
        ),
        "covid_up_to_date": is_covid_up_to_date(
            vaccines, today, config.covid_lookback_months if config else COVID_LOOKBACK_MONTHS
        ),
        "antibiotics": summarize_resident_antibiotics(courses, today, review_day, overdue_day),
        "vaccines": [v.to_dict() for v in vaccines],
        "courses": [
            {**c.to_dict(), "day": antibiotic_flags(c, today, review_day, overdue_day).day}
            for c in courses
        ],
        "infection_cases": [
            c.to_dict() for c in state.infection_cases if c.resident_id == resident_id
        ],
    }
