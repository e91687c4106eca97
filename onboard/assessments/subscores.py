"""
Onboard Subscore Extractor

Collects the structured sub-fields of one assessment family into a nested
dict stored on the assessment record.

RULES:
- A component is included only when at least one of its values is present
  and nonzero. Absent components are omitted, never zero-filled.
- Named fields are keyed by lowercasing, turning whitespace into "_", and
  dropping anything outside [a-z0-9_].
- Standards-code columns are kept verbatim: integer when it parses to a
  nonzero number, the original string otherwise.
- Every prefixed column with a value that no rule consumed is listed in
  _metadata["unrecognized_columns"].

Public API:
  extract_subscores(row, prefix, subject, detected_format, extracted_at) -> dict
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

from onboard.assessments.format_detector import (
    FAMILY_SEPARATOR,
    AssessmentSourceFormat,
    detect_format,
)
from onboard.assessments.row_access import Row, first_present, is_blank, parse_int

# ── ELA ─────────────────────────────────────────────────────────────────────
ELA_COMPONENTS: tuple[str, ...] = (
    "Reading - Literary Text",
    "Reading - Informational Text",
    "Reading - Vocabulary",
    "Writing - Expression",
    "Writing - Conventions",
    "Literary Text",
    "Informational Text",
    "Vocabulary",
)
START_STRONG_COMPONENTS: tuple[str, ...] = ("Literature", "Informational")
ELA_STANDARD_TOKENS: tuple[str, ...] = ("L.", "RI.", "RL.", "DOK")

# ── Mathematics ─────────────────────────────────────────────────────────────
MATH_COMPONENTS: tuple[str, ...] = (
    "Major Content",
    "Additional and Supporting Content",
    "Modeling and Application",
    "Expressing Mathematical Reasoning",
    "Number and Operations in Base Ten",
    "Number and Operations-Fractions",
    "Operations and Algebraic Thinking",
)
MATH_CONCEPTS: tuple[str, ...] = (
    "Adding and Subtracting like Fractions and Mixed Numbers",
    "Adding and Subtracting Multi-Digit Numbers",
    "Comparing Decimals to Hundredths",
    "Comparing Unlike Fractions",
    "Composing Tenths and Hundredths",
    "Multiplying a Fraction by a Whole Number",
    "Reading and Writing Whole Numbers / Comparing",
    "Rounding Whole Numbers",
    "Solving Multi-Step Problems with Whole Numbers",
    "Use Strategies to Multiply Whole Numbers",
)
DOK_LEVELS: tuple[str, ...] = ("DOK 1", "DOK 2", "DOK 3")
QUESTION_TYPES: tuple[str, ...] = (
    "Drag and Drop", "Inline Choice", "Multiple Choice", "Multi-Select", "Text Entry",
)
MATH_STANDARD_CODE = re.compile(r"\d\.[A-Z]{2,3}\.[A-Z]\.\d")

# Columns read by the score engine rather than here.
SCORE_COLUMNS: tuple[str, ...] = (
    "Result Date", "Level", "Average", "Scaled", "Percent", "Raw",
)

_WHITESPACE = re.compile(r"\s+")
_NOT_KEY_CHAR = re.compile(r"[^a-z0-9_]")


def field_key(label: str) -> str:
    """'Reading - Literary Text' -> 'reading__literary_text'"""
    return _NOT_KEY_CHAR.sub("", _WHITESPACE.sub("_", label.lower()))


def standards_key(column: str, prefix: str) -> str:
    """'<prefix> - L.RF.4.4 (%)' -> 'l_rf_4_4____'"""
    label = column.replace(f"{prefix}{FAMILY_SEPARATOR}", "", 1)
    return _NOT_KEY_CHAR.sub("_", label.lower())


class _FamilyCells:
    """Reads `<prefix> - <label>` (or the bare label) and tracks consumed columns."""

    def __init__(self, row: Row, prefix: str) -> None:
        self.row = row
        self.prefix = prefix
        self.consumed: set[str] = {self._col(label) for label in SCORE_COLUMNS}

    def _col(self, label: str) -> str:
        return f"{self.prefix}{FAMILY_SEPARATOR}{label}"

    def value(self, label: str) -> Optional[Any]:
        prefixed = self._col(label)
        self.consumed.add(prefixed)
        return first_present(self.row, [prefixed, label])

    def number(self, label: str) -> int:
        return parse_int(self.value(label))

    def columns(self) -> list[str]:
        return [str(k) for k in self.row.keys() if self.prefix in str(k) and str(k) != self.prefix]

    def verbatim(self, column: str) -> Any:
        self.consumed.add(column)
        value = self.row[column]
        number = parse_int(value)
        return number if number else (value.strip() if isinstance(value, str) else value)

    def unrecognized(self) -> list[str]:
        return [
            c for c in self.columns()
            if c not in self.consumed and not is_blank(self.row.get(c))
        ]


def _nonzero(value: int) -> Optional[int]:
    return value if value > 0 else None


def _level_components(cells: _FamilyCells, labels: tuple[str, ...], out: dict) -> None:
    for label in labels:
        level = cells.value(f"{label} (Level)")
        scaled = cells.number(f"{label} (Scaled)")
        percent = cells.number(f"{label} (%)")
        if level is not None or scaled > 0 or percent > 0:
            out[field_key(label)] = {
                "level": None if level is None else str(level),
                "scaled_score": _nonzero(scaled),
                "percent_score": _nonzero(percent),
            }


def _percent_fields(cells: _FamilyCells, labels: tuple[str, ...], out: dict) -> None:
    for label in labels:
        percent = cells.number(f"{label} (%)")
        if percent > 0:
            out[field_key(label)] = percent


def _overall_scores(cells: _FamilyCells, out: dict) -> None:
    percent = cells.number("Percent")
    raw = cells.number("Raw")
    if percent > 0:
        out["percent_score"] = percent
    if raw > 0:
        out["raw_score"] = raw


def _standards(cells: _FamilyCells, matches, out: dict) -> None:
    for column in cells.columns():
        if not matches(column):
            continue
        value = cells.row.get(column)
        if is_blank(value) or str(value).strip() == "0":
            cells.consumed.add(column)
            continue
        out[standards_key(column, cells.prefix)] = cells.verbatim(column)


def _extract_ela(cells: _FamilyCells, out: dict) -> None:
    reading = cells.number("Reading Scale Score (Scaled)")
    writing = cells.number("Writing Scale Score (Scaled)")
    if reading > 0:
        out["reading_total"] = reading
    if writing > 0:
        out["writing_total"] = writing

    _overall_scores(cells, out)
    _level_components(cells, ELA_COMPONENTS, out)

    for label in START_STRONG_COMPONENTS:
        percent = cells.number(f"{label} (Percent)")
        raw = cells.number(f"{label} (Raw)")
        if percent > 0 or raw > 0:
            out[field_key(label)] = {
                "percent_score": _nonzero(percent),
                "raw_score": _nonzero(raw),
            }

    _standards(cells, lambda c: any(token in c for token in ELA_STANDARD_TOKENS), out)


def _extract_math(cells: _FamilyCells, out: dict) -> None:
    _level_components(cells, MATH_COMPONENTS, out)
    _standards(cells, lambda c: MATH_STANDARD_CODE.search(c) is not None, out)
    _percent_fields(cells, MATH_CONCEPTS, out)
    _percent_fields(cells, DOK_LEVELS, out)
    _percent_fields(cells, QUESTION_TYPES, out)
    _overall_scores(cells, out)


_EXTRACTORS = {
    "ELA": _extract_ela,
    "Mathematics": _extract_math,
}


def extract_subscores(
    row: Row,
    prefix: str,
    subject: Optional[str],
    detected_format: Optional[AssessmentSourceFormat] = None,
    extracted_at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Pull every recognized sub-field of one family out of ``row``.

    Subjects without a dedicated extractor get only the ``_metadata`` entry,
    with all their prefixed columns listed as unrecognized.
    """
    cells = _FamilyCells(row, prefix)
    subscores: dict[str, Any] = {}

    extractor = _EXTRACTORS.get(subject or "")
    if extractor is not None:
        extractor(cells, subscores)

    if detected_format is None:
        detected_format = detect_format(row, prefix)
    extracted_at = extracted_at or datetime.now(timezone.utc)

    subscores["_metadata"] = {
        "subject": subject,
        "column_prefix": prefix,
        "extracted_at": extracted_at.isoformat(),
        "format": detected_format.value,
        "unrecognized_columns": cells.unrecognized(),
    }
    return subscores
