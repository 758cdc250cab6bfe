"""Configuration management for icntrack.

Handles loading and generating TOML config files for facility-specific
settings such as unit labels, census header lines and rule thresholds.
"""

from __future__ import annotations

import sys
import tomllib
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from icntrack.analysis.rules import (
    COVID_LOOKBACK_MONTHS,
    FLU_LOOKBACK_MONTHS,
    OVERDUE_DAY,
    REVIEW_DUE_DAY,
)
from icntrack.models import UNKNOWN_UNIT
from icntrack.sources.base import DEFAULT_HEADER_PREFIXES, DEFAULT_UNIT_ALIASES, CensusRules
from icntrack.state import DEFAULT_HISTORY_LIMIT, TrackerState

DEFAULT_CONFIG_PATH = "icntrack.toml"

DEFAULT_CONFIG_TEMPLATE = """\
# icntrack configuration
# Edit freely; missing keys fall back to built-in defaults.

facility_name = "{facility_name}"
db_path = "{db_path}"

[units]
# First digit of a room number -> unit label, used when a census paste
# has no "Unit: Unit N" section headers.
{unit_lines}

[census]
# Number of census snapshots kept in history
history_limit = {history_limit}
# Extra report-header prefixes to ignore (in addition to the built-in list)
header_prefixes = []

[antibiotics]
# Day of therapy at which a course is flagged for review / overdue
review_day = {review_day}
overdue_day = {overdue_day}

[vaccines]
# Trailing windows for up-to-date checks
flu_lookback_months = {flu_lookback_months}
covid_lookback_months = {covid_lookback_months}
"""


@dataclass
class TrackerConfig:
    """Facility settings, merged over built-in defaults."""

    facility_name: str = ""
    db_path: str = "icntrack.db"
    unit_aliases: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_UNIT_ALIASES))
    history_limit: int = DEFAULT_HISTORY_LIMIT
    header_prefixes: list[str] = field(default_factory=list)  # extra, beyond the defaults
    review_day: int = REVIEW_DUE_DAY
    overdue_day: int = OVERDUE_DAY
    flu_lookback_months: int = FLU_LOOKBACK_MONTHS
    covid_lookback_months: int = COVID_LOOKBACK_MONTHS

    def census_rules(self) -> CensusRules:
        prefixes = list(DEFAULT_HEADER_PREFIXES)
        for p in self.header_prefixes:
            if p.upper() not in prefixes:
                prefixes.append(p.upper())
        return CensusRules(header_prefixes=prefixes, unit_aliases=dict(self.unit_aliases))


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> TrackerConfig:
    """Load configuration from a TOML file.

    Falls back to defaults if the config file doesn't exist.
    """
    path = Path(config_path)
    if not path.exists():
        print(
            f"Warning: Config file '{config_path}' not found, using defaults. "
            f"Run 'python -m icntrack init-config' to generate one.",
            file=sys.stderr,
        )
        return TrackerConfig()

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    config = TrackerConfig()
    if "facility_name" in raw:
        config.facility_name = str(raw["facility_name"])
    if "db_path" in raw:
        config.db_path = str(raw["db_path"])
    if "units" in raw:
        config.unit_aliases = {str(k): str(v) for k, v in raw["units"].items()}

    census = raw.get("census", {})
    config.history_limit = int(census.get("history_limit", config.history_limit))
    config.header_prefixes = [str(p) for p in census.get("header_prefixes", [])]

    abx = raw.get("antibiotics", {})
    config.review_day = int(abx.get("review_day", config.review_day))
    config.overdue_day = int(abx.get("overdue_day", config.overdue_day))

    vax = raw.get("vaccines", {})
    config.flu_lookback_months = int(vax.get("flu_lookback_months", config.flu_lookback_months))
    config.covid_lookback_months = int(
        vax.get("covid_lookback_months", config.covid_lookback_months)
    )
    return config


def infer_unit_aliases(state: TrackerState) -> dict[str, str]:
    """Derive room-digit -> unit labels from residents already on census.

    Each leading room digit maps to the unit most often seen with it.
    """
    by_digit: dict[str, Counter] = {}
    for r in state.residents_by_id.values():
        room, unit = r.current_room, r.current_unit
        if not room or not room[0].isdigit() or unit == UNKNOWN_UNIT:
            continue
        by_digit.setdefault(room[0], Counter())[unit] += 1
    return {d: c.most_common(1)[0][0] for d, c in sorted(by_digit.items())}


def generate_config(
    config_path: str = DEFAULT_CONFIG_PATH,
    state: TrackerState | None = None,
    facility_name: str = "",
    db_path: str = "icntrack.db",
) -> str:
    """Write a commented config file and return its path.

    When a tracker state is given, unit labels are inferred from its
    residents; otherwise the built-in labels are written.
    """
    aliases = (infer_unit_aliases(state) if state else {}) or dict(DEFAULT_UNIT_ALIASES)
    unit_lines = "\n".join(f'"{digit}" = "{label}"' for digit, label in aliases.items())
    content = DEFAULT_CONFIG_TEMPLATE.format(
        facility_name=facility_name,
        db_path=db_path,
        unit_lines=unit_lines,
        history_limit=DEFAULT_HISTORY_LIMIT,
        review_day=REVIEW_DUE_DAY,
        overdue_day=OVERDUE_DAY,
        flu_lookback_months=FLU_LOOKBACK_MONTHS,
        covid_lookback_months=COVID_LOOKBACK_MONTHS,
    )
    Path(config_path).write_text(content)
    return config_path
