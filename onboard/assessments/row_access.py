"""
Typed access to loosely-typed import rows.

Rows come from CSV/Excel readers as {header: value} with values that may be
str, int, float, NaN, or None. Every "try this header, then that one" read in
the engine goes through first_present().
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional

Row = Mapping[str, Any]

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

DATE_FORMATS: tuple[str, ...] = (
    "%m/%d/%Y", "%Y-%m-%d", "%m-%d-%Y", "%Y/%m/%d",
    "%m/%d/%y", "%Y-%m-%d %H:%M:%S", "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M %p", "%Y-%m-%dT%H:%M:%S",
)


def is_blank(value: Any) -> bool:
    """None, NaN, and whitespace-only strings are blank."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def first_present(row: Row, keys: Iterable[str]) -> Optional[Any]:
    """Value of the first candidate key that exists in ``row`` and is not blank."""
    for key in keys:
        value = row.get(key)
        if not is_blank(value):
            return value.strip() if isinstance(value, str) else value
    return None


def first_present_key(row: Row, keys: Iterable[str]) -> Optional[str]:
    """Like first_present() but returns the key that supplied the value."""
    for key in keys:
        if not is_blank(row.get(key)):
            return key
    return None


def text(row: Row, keys: Iterable[str], default: str = "") -> str:
    value = first_present(row, keys)
    return default if value is None else str(value)


def parse_int(value: Any) -> int:
    """
    Leading-integer parse. Anything unparseable is 0.

    "85%" -> 85, "72.5" -> 72, "N/A" -> 0, None -> 0.
    """
    if is_blank(value):
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    found = _LEADING_INT.match(str(value))
    return int(found.group(1)) if found else 0


def is_numeric(value: Any) -> bool:
    """True when parse_int() found a real number rather than defaulting."""
    if is_blank(value):
        return False
    if isinstance(value, (int, float)):
        return not (isinstance(value, float) and not math.isfinite(value))
    return _LEADING_INT.match(str(value)) is not None


def parse_date(value: Any) -> Optional[date]:
    """Parse a date value tolerantly. Return None if unparseable."""
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None
