"""Core utilities for date parsing, field lookup and identity hashing."""

from icntrack.core.utils import (
    add_months,
    coerce_date_iso,
    new_id,
    normalize_date_iso,
    pick,
    rolling_hash,
    slugify,
    to_date,
)
