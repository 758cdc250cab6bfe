"""Line-classification rules and the parser protocol shared by census parsers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from icntrack.models import CensusSnapshot

# Report-metadata line prefixes found in facility census exports
DEFAULT_HEADER_PREFIXES = [
    "DATE:",
    "TIME:",
    "USER:",
    "UNIT:",
    "FLOOR:",
    "FACILITY",
    "PAGE",
    "CENSUS",
    "ROOM-BED",
    "CARE LEVEL",
    "RESIDENT",
    "STATUS",
    "PAYOR",
    "BED",
    "CERTIFICATION",
]

# First digit of the room number -> unit label
DEFAULT_UNIT_ALIASES = {
    "2": "Unit 2",
    "3": "Unit 3",
    "4": "Unit 4",
}


@dataclass
class CensusRules:
    """Line-classification rules for census report text."""

    header_prefixes: list[str] = field(default_factory=lambda: list(DEFAULT_HEADER_PREFIXES))
    unit_aliases: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_UNIT_ALIASES))
    # Both tokens present on one line marks a report title ("... CENSUS REPORT ...")
    title_tokens: tuple[str, str] = ("REPORT", "CENSUS")


class CensusParser(Protocol):
    """Protocol for census text parsers."""

    def parse(self, text: str, now: str | None = None) -> CensusSnapshot:
        """Parse raw census text into a snapshot."""
        ...

