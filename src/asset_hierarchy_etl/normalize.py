"""Normalization functions for asset hierarchy CSV ingestion.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re
from typing import Any

MAX_ERROR_VALUE_LENGTH = 100


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_header  (for column auto-detection)
# ---------------------------------------------------------------------------

def normalize_header(value: str | None) -> str | None:
    """Lowercase a header and collapse whitespace.

    'Parent ID ' → 'parent id'.  Used only for alias matching; the original
    header text is what gets stored in a column mapping.
    """
    v = normalize_space(value)
    if v is None:
        return None
    return v.lower()


# ---------------------------------------------------------------------------
# Rule 4: comparable  (for change detection)
# ---------------------------------------------------------------------------

def comparable(value: Any) -> str | None:
    """Return the form a stored or uploaded value is compared in.

    None and empty string compare as None; anything else is stringified
    and trimmed.  A whitespace-only value stays '' rather than None so that
    it still differs from NULL.
    """
    if value is None or value == "":
        return None
    return str(value).strip()


def values_equal(new_value: Any, old_value: Any) -> bool:
    """True when an uploaded value matches the persisted one."""
    return comparable(new_value) == comparable(old_value)


# ---------------------------------------------------------------------------
# Rule 5: truncate_value  (for error reports)
# ---------------------------------------------------------------------------

def truncate_value(value: Any, limit: int = MAX_ERROR_VALUE_LENGTH) -> str | None:
    """Stringify a value for an error record, cut to `limit` characters."""
    if value is None:
        return None
    return str(value)[:limit]
