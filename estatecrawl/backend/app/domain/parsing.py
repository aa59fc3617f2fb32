# app/domain/parsing.py
from __future__ import annotations

import math
import re
from typing import Any

_NON_NUMERIC = re.compile(r"[^0-9.]")
_SIZE_SQM = re.compile(r"([0-9,.]+)\s*(sqm|m2|m²|square\s*met(?:er|re)s?)")


def to_number(x: Any) -> float | None:
    """
    Numeric coercion for noisy scraped strings: '₦ 45,000,000' -> 45000000.0.
    Non-digits are stripped first; anything unparseable is None.
    """
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        return float(x) if math.isfinite(x) else None
    cleaned = _NON_NUMERIC.sub("", str(x))
    if not cleaned:
        return None
    try:
        n = float(cleaned)
    except ValueError:
        return None
    return n if math.isfinite(n) else None


def to_float(x: Any) -> float | None:
    if x is None or x == "" or isinstance(x, bool):
        return None
    try:
        n = float(x)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def parse_size_sqm(value: Any) -> float | None:
    """'120 sqm' / '85m2' -> float; otherwise fall back to the bare number."""
    if value is None:
        return None
    s = str(value).lower()
    m = _SIZE_SQM.search(s)
    if m:
        return to_number(m.group(1))
    return to_number(s)


def clean_text(x: Any) -> str | None:
    if x is None:
        return None
    s = str(x).strip()
    return s or None
