"""Shared utility functions for date parsing, field lookup and hashing."""

from __future__ import annotations

import calendar
import re
import uuid
from datetime import date, datetime, timezone
from typing import Any

_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_US_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_LOOSE_YMD_RE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})")
_LOOSE_MDY_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})")


def pick(d: Any, *names: str, default: str = "") -> str:
    """Return the first non-empty value among candidate keys, as a stripped string.

    Tolerates non-dict input (returns default) so callers can feed raw JSON.
    """
    if not isinstance(d, dict):
        return default
    for name in names:
        value = d.get(name)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return default


def _valid_iso(year: int, month: int, day: int) -> str:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return ""


def normalize_date_iso(value: str) -> str:
    """Strict date normalizer used by paste parsing.

    Accepts ``YYYY-MM-DD`` and ``M/D/YYYY`` (zero-padded on output).
    Returns empty string for anything else, including impossible dates.
    """
    s = (value or "").strip()
    if not s:
        return ""
    m = _ISO_RE.match(s)
    if m:
        return _valid_iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    m = _US_RE.match(s)
    if m:
        return _valid_iso(int(m.group(3)), int(m.group(1)), int(m.group(2)))
    return ""


def coerce_date_iso(value: Any) -> str:
    """Tolerant date normalizer used for legacy JSON and import packs.

    Supported formats:
    - YYYY-MM-DD, YYYY/M/D, and ISO timestamps ("2026-01-16T08:00:00Z")
    - M/D/YYYY and M-D-YYYY

    Returns empty string for empty/unparseable input.
    """
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    s = str(value).strip()
    if not s:
        return ""
    m = _LOOSE_YMD_RE.match(s)
    if m:
        return _valid_iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    m = _LOOSE_MDY_RE.match(s)
    if m:
        return _valid_iso(int(m.group(3)), int(m.group(1)), int(m.group(2)))
    return ""


def to_date(value: date | datetime | str | None) -> date | None:
    """Reduce a date, datetime or date-like string to a calendar date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    iso = coerce_date_iso(value)
    return date.fromisoformat(iso) if iso else None


def add_months(d: date, months: int) -> date:
    """Shift a date by whole months, clamping to the end of the target month."""
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def slugify(text: str) -> str:
    """Lower-case, collapse non-alphanumerics to '-', trim dashes."""
    return re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")


def rolling_hash(text: str) -> int:
    """Polynomial rolling hash (x31) over UTF-16 code units, unsigned 32-bit."""
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    return h


def new_id(prefix: str) -> str:
    """Random record id such as ``vax_3f2a9c1b04de``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
