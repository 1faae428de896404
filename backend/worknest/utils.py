from __future__ import annotations

import re
from typing import Any, List, Optional

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_identifier(value: Any) -> Optional[int]:
    """Return a canonical integer identifier from an int, numeric string or ``{"id": ...}`` mapping."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        for key in ("id", "_id", "user_id"):
            if key in value:
                return normalize_identifier(value[key])
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    text = str(value).strip()
    if not text or not text.isdigit():
        return None
    number = int(text)
    return number if number > 0 else None


def normalize_identifier_list(values: Any) -> List[int]:
    if values is None:
        return []
    if not isinstance(values, (list, tuple, set)):
        values = [values]
    seen: set[int] = set()
    normalized: List[int] = []
    for value in values:
        candidate = normalize_identifier(value)
        if candidate is None or candidate in seen:
            continue
        normalized.append(candidate)
        seen.add(candidate)
    return normalized


def normalize_label(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value.strip().lower())


def as_amount(value: Any) -> float:
    """Coerce a stored amount to float, treating missing or invalid values as zero."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def first_present(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def first_amount(*values: Any) -> float:
    """First numeric value among ``values``, or zero."""
    for value in values:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return 0.0
