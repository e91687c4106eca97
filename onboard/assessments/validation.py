"""
Onboard Import Validation

Structural and per-row checks run around assessment processing.

ERROR TAXONOMY
--------------
- Mapping errors: a required target field was never matched. Raised as
  MappingError before any row is processed.
- Required-field errors: a matched field is empty in a row. Blocks that row.
- Format errors: a value fails its type check (date, numeric, uuid).
  Blocks that row's field.
- Row-level processing errors: recorded by the assembler, batch continues.

Warnings never block. is_valid is True iff errors is empty.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from onboard.assessments.column_matcher import ColumnMapping
from onboard.assessments.format_detector import detect_assessment_families
from onboard.assessments.row_access import Row, is_blank, is_numeric, parse_date

logger = logging.getLogger(__name__)

LINKIT_REQUIRED_COLUMNS: tuple[str, ...] = ("Student", "ID", "Grade")
TRADITIONAL_RESULT_COLUMNS: tuple[str, ...] = ("Result Date", "Level", "Scaled")
CURRENT_RESULT_COLUMNS: tuple[str, ...] = ("Result Date", "Level", "Percent", "Raw", "Average")


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class MappingError(Exception):
    """Structural halt: required fields have no source column."""
    reason: str
    entity: str
    missing_fields: list[str]
    operator_fix_steps: list[str]

    def __str__(self) -> str:
        lines = [
            "═" * 60,
            "ONBOARD IMPORT HALT: COLUMN MAPPING",
            "═" * 60,
            f"Reason          : {self.reason}",
            f"Entity          : {self.entity}",
        ]
        if self.missing_fields:
            lines.append(f"Missing fields  : {', '.join(self.missing_fields)}")
        lines.append("Fix Steps:")
        for i, step in enumerate(self.operator_fix_steps, 1):
            lines.append(f"  {i}. {step}")
        lines.append("═" * 60)
        return "\n".join(lines)


@dataclass
class ValidationSummary:
    total_records: int = 0
    valid_records: int = 0
    invalid_records: int = 0
    students_found: int = 0
    assessments_found: int = 0
    subjects_found: set[str] = field(default_factory=set)
    grades_found: set[str] = field(default_factory=set)


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    summary: ValidationSummary = field(default_factory=ValidationSummary)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class FieldRule:
    column: str
    required: bool = False
    kind: Optional[str] = None  # "date" | "numeric" | "uuid"


# ---------------------------------------------------------------------------
# Mapping errors
# ---------------------------------------------------------------------------


def require_mapped_fields(
    mappings: Sequence[ColumnMapping],
    required: Iterable[str],
    entity: str,
) -> None:
    """Raise MappingError if any required target has no matched source column."""
    mapped = {m.target_field for m in mappings if m.matched and m.target_field}
    missing = [f for f in required if f not in mapped]
    if missing:
        logger.warning("[validation] %s: required fields unmapped: %s", entity, missing)
        raise MappingError(
            reason="Required fields are not mapped to any column",
            entity=entity,
            missing_fields=missing,
            operator_fix_steps=[
                f"Map a column to each of: {', '.join(missing)}",
                "Use the manual override for headers the matcher did not recognize.",
                "Check that the file is the correct export for this import step.",
            ],
        )


# ---------------------------------------------------------------------------
# Structural validation
# ---------------------------------------------------------------------------


def validate_linkit_structure(headers: Sequence[str]) -> ValidationResult:
    """Check a LinkIt export has identity columns, families, and result columns."""
    result = ValidationResult()
    headers = [str(h) for h in headers]

    missing = [c for c in LINKIT_REQUIRED_COLUMNS if c not in headers]
    if missing:
        result.errors.append(f"Missing required columns: {', '.join(missing)}")

    families = detect_assessment_families(headers)
    if not families:
        result.errors.append("No assessment columns detected")
        return result
    result.warnings.append(
        f"Found {len(families)} assessment column(s): {', '.join(families)}"
    )

    def present(labels: tuple[str, ...]) -> int:
        return sum(1 for label in labels if any(label in h for h in headers))

    traditional = present(TRADITIONAL_RESULT_COLUMNS)
    current = present(CURRENT_RESULT_COLUMNS)
    if traditional < 2 and current < 3:
        result.errors.append(
            "No assessment result columns found "
            f"(expected {', '.join(TRADITIONAL_RESULT_COLUMNS)} "
            f"or {', '.join(CURRENT_RESULT_COLUMNS)})"
        )
    return result


# ---------------------------------------------------------------------------
# Row validation
# ---------------------------------------------------------------------------


def _format_problem(value, kind: str) -> Optional[str]:
    if kind == "date" and parse_date(value) is None:
        return "is not a date"
    if kind == "numeric" and not is_numeric(value):
        return "is not numeric"
    if kind == "uuid":
        try:
            uuid.UUID(str(value).strip())
        except ValueError:
            return "is not a valid UUID"
    return None


def validate_rows(rows: Sequence[Row], rules: Sequence[FieldRule]) -> ValidationResult:
    """
    Apply required and format rules to every row.

    Errors are reported as "Row {n}: ..." with n 1-indexed. Rules naming a
    column the file does not have are reported once as a warning.
    """
    result = ValidationResult()
    result.summary.total_records = len(rows)

    columns = set(rows[0].keys()) if rows else set()
    active: list[FieldRule] = []
    for rule in rules:
        if rows and rule.column not in columns:
            result.warnings.append(f"Column '{rule.column}' not present; rule skipped")
        else:
            active.append(rule)

    for n, row in enumerate(rows, 1):
        row_ok = True
        for rule in active:
            value = row.get(rule.column)
            if is_blank(value):
                if rule.required:
                    result.errors.append(f"Row {n}: required field '{rule.column}' is empty")
                    row_ok = False
                continue
            if rule.kind:
                problem = _format_problem(value, rule.kind)
                if problem:
                    result.errors.append(f"Row {n}: '{rule.column}' value '{value}' {problem}")
                    row_ok = False
        if row_ok:
            result.summary.valid_records += 1

    result.summary.invalid_records = result.summary.total_records - result.summary.valid_records
    return result
