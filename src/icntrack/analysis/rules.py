"""Clinical rules — antibiotic day counts and stewardship flags, vaccine currency.

Every function takes ``today`` explicitly (a date, datetime or ISO string)
and compares calendar days only, so time of day never shifts a result.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from icntrack.core.utils import add_months, to_date
from icntrack.models import AntibioticCourse, VaccineRecord

REVIEW_DUE_DAY = 3
OVERDUE_DAY = 7

FLU_SEASON_START = (8, 1)  # Aug 1
FLU_SEASON_END = (3, 31)  # Mar 31 of the following year
FLU_LOOKBACK_MONTHS = 10
COVID_LOOKBACK_MONTHS = 12

DateLike = date | datetime | str


def _today(today: DateLike) -> date:
    d = to_date(today)
    if d is None:
        raise ValueError(f"Unparseable date for today: {today!r}")
    return d


@dataclass
class AbxFlags:
    is_active: bool
    day: int  # 0 when the start date is unparseable
    review_due: bool
    overdue: bool


def antibiotic_day_number(start: DateLike, today: DateLike) -> int | None:
    """Day of therapy, counting the start day as day 1 (never below 1)."""
    start_day = to_date(start)
    if start_day is None:
        return None
    return max((_today(today) - start_day).days + 1, 1)


def antibiotic_flags(
    course: AntibioticCourse,
    today: DateLike,
    review_day: int = REVIEW_DUE_DAY,
    overdue_day: int = OVERDUE_DAY,
) -> AbxFlags:
    is_active = course.status == "active" and not course.stop_date
    day = antibiotic_day_number(course.start_date, today) or 0
    return AbxFlags(
        is_active=is_active,
        day=day,
        review_due=is_active and day >= review_day,
        overdue=is_active and day >= overdue_day,
    )


def summarize_resident_antibiotics(
    courses: Iterable[AntibioticCourse],
    today: DateLike,
    review_day: int = REVIEW_DUE_DAY,
    overdue_day: int = OVERDUE_DAY,
) -> dict[str, int]:
    """Count active, review-due and overdue courses."""
    summary = {"active": 0, "review_due": 0, "overdue": 0}
    for course in courses:
        flags = antibiotic_flags(course, today, review_day, overdue_day)
        if not flags.is_active:
            continue
        summary["active"] += 1
        summary["review_due"] += flags.review_due
        summary["overdue"] += flags.overdue
    return summary


def flu_season_window(today: DateLike) -> tuple[date, date]:
    """The Aug 1 .. Mar 31 season containing (or most recently before) today."""
    t = _today(today)
    start_this_year = date(t.year, *FLU_SEASON_START)
    start_year = t.year if t >= start_this_year else t.year - 1
    return date(start_year, *FLU_SEASON_START), date(start_year + 1, *FLU_SEASON_END)


def is_flu_up_to_date(
    records: Iterable[VaccineRecord],
    today: DateLike,
    lookback_months: int = FLU_LOOKBACK_MONTHS,
) -> bool:
    """A Flu dose inside the current season window and the trailing lookback."""
    t = _today(today)
    season_start, season_end = flu_season_window(t)
    earliest = add_months(t, -lookback_months)
    for r in records:
        if r.name != "Flu":
            continue
        d = to_date(r.date)
        if d is not None and season_start <= d <= season_end and earliest <= d <= t:
            return True
    return False


def is_covid_up_to_date(
    records: Iterable[VaccineRecord],
    today: DateLike,
    lookback_months: int = COVID_LOOKBACK_MONTHS,
) -> bool:
    """A COVID dose within the trailing lookback, not dated after today."""
    t = _today(today)
    earliest = add_months(t, -lookback_months)
    for r in records:
        if r.name != "COVID":
            continue
        d = to_date(r.date)
        if d is not None and earliest <= d <= t:
            return True
    return False
