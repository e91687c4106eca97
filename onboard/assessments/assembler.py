"""
Onboard Assessment Record Assembler

Turns parsed rows of a wide-format assessment export into canonical
StudentInfo and AssessmentRecord objects.

PIPELINE (per row, per assessment family)
-----------------------------------------
  student identity → subject/grade/config → format → score → subscores → record

RULES:
- Row numbers in messages are 1-indexed.
- An exception while assembling a row is recorded as "Row {n}: {message}";
  the remaining rows are still processed.
- Students with an empty student_id are left out of the returned student
  list and out of valid_records. Assessments already built from those rows
  are kept and flagged in warnings.
- assessment_id is f"{assessment_type}_{grade_level}_{student_id}": stable
  across re-imports, not globally unique.
- Nothing here persists data.

Public API:
  process(rows, source, ...) -> ProcessingResult
  extract_student_info(row, row_number, ...) -> StudentInfo
  derive_assessment_type(source, identity, detected_format) -> str
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Sequence, Union

from onboard.assessments.format_detector import (
    FAMILY_SEPARATOR,
    AssessmentIdentity,
    AssessmentSource,
    AssessmentSourceFormat,
    detect_assessment_families,
    detect_format,
    extract_school_year,
    identify_assessment,
)
from onboard.assessments.reference_data import (
    DEFAULT_REFERENCE,
    ConfigFormat,
    ReferenceData,
    subject_key,
)
from onboard.assessments.row_access import Row, first_present, parse_date, text
from onboard.assessments.score_resolver import ScoreResolution, resolve_score
from onboard.assessments.subscores import extract_subscores
from onboard.assessments.summary import summarize
from onboard.assessments.validation import ValidationResult, ValidationSummary

logger = logging.getLogger(__name__)

StudentResolver = Callable[[str], Optional[str]]


class StudentLookupStatus(str, Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"
    UNKNOWN = "unknown"


# Demographic attribute -> candidate source headers.
DEMOGRAPHIC_COLUMNS: dict[str, tuple[str, ...]] = {
    "race":             ("Race",),
    "gender":           ("Gender",),
    "age":              ("Age (Yrs)", "Age"),
    "zip_code":         ("ZIP Code", "Zip Code", "Zip"),
    "home_language":    ("Home Language",),
    "ethnicity":        ("Ethnicity",),
    "native_country":   ("Native Country",),
    "time_in_district": ("Time in District (Yrs)",),
    "time_in_school":   ("Time in School (Yrs)",),
}


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StudentInfo:
    id: str
    student_id: str
    first_name: str
    last_name: str
    grade: str
    school_student_id: str
    student_lookup_status: StudentLookupStatus = StudentLookupStatus.UNKNOWN
    demographics: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AssessmentRecord:
    student_id: str
    assessment_id: str
    assessment_type: str
    subject: str
    grade_level: str
    test_date: date
    scale_score: int
    performance_level_text: str
    min_possible_score: str
    max_possible_score: str
    completed_at: datetime
    school_year: Optional[str] = None
    raw_score: Optional[int] = None
    student_growth_percentile: Optional[float] = None
    subscores: dict[str, Any] = field(default_factory=dict)
    unprocessed_data: dict[str, Any] = field(default_factory=dict)

    def as_row(self) -> dict[str, Any]:
        """Column dict for the assessments table."""
        return {
            "student_id": self.student_id,
            "assessment_id": self.assessment_id,
            "assessment_type": self.assessment_type,
            "subject": self.subject,
            "grade_level": self.grade_level,
            "school_year": self.school_year,
            "test_date": self.test_date.isoformat(),
            "raw_score": self.raw_score,
            "scale_score": self.scale_score,
            "performance_level_text": self.performance_level_text,
            "min_possible_score": self.min_possible_score,
            "max_possible_score": self.max_possible_score,
            "student_growth_percentile": self.student_growth_percentile,
            "subscores": self.subscores,
            "unprocessed_data": self.unprocessed_data,
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass
class ProcessingResult:
    students: list[StudentInfo]
    assessments: list[AssessmentRecord]
    validation: ValidationResult
    summary: dict[str, Any]


def empty_result(errors: list[str]) -> ProcessingResult:
    return ProcessingResult(
        students=[],
        assessments=[],
        validation=ValidationResult(errors=list(errors)),
        summary=summarize([]),
    )


# ---------------------------------------------------------------------------
# Student identity
# ---------------------------------------------------------------------------


def _split_name(name: str) -> tuple[str, str]:
    """'Last, First' -> (first, last). 'First Last' -> (first, last)."""
    if "," in name:
        last, first = name.split(",", 1)
        return first.strip(), last.strip()
    parts = name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def extract_student_info(
    row: Row,
    row_number: int,
    resolve_student_id: Optional[StudentResolver] = None,
) -> StudentInfo:
    """
    Build the identity snapshot for one row.

    ``_student_uuid`` / ``_student_lookup_status`` annotations left on the
    row by an earlier lookup pass win. Otherwise ``resolve_student_id`` is
    asked to map the school's student number to an internal id; its
    exceptions propagate to the caller as row errors.
    """
    first_name, last_name = _split_name(text(row, ["Student", "Student Name"]))
    school_student_id = text(row, ["_school_student_id", "ID", "Student ID"])
    internal_id = text(row, ["_student_uuid"])
    status_text = text(row, ["_student_lookup_status"], StudentLookupStatus.UNKNOWN.value)
    try:
        status = StudentLookupStatus(status_text.lower())
    except ValueError:
        status = StudentLookupStatus.UNKNOWN

    if not internal_id and school_student_id and resolve_student_id is not None:
        resolved = resolve_student_id(school_student_id)
        if resolved:
            internal_id = str(resolved)
            status = StudentLookupStatus.RESOLVED
        else:
            status = StudentLookupStatus.UNRESOLVED

    student_id = internal_id or school_student_id
    demographics = {
        name: text(row, headers)
        for name, headers in DEMOGRAPHIC_COLUMNS.items()
        if first_present(row, headers) is not None
    }
    return StudentInfo(
        id=student_id or f"student_{row_number}",
        student_id=student_id,
        first_name=first_name,
        last_name=last_name,
        grade=text(row, ["Grade", "Grade Level"]),
        school_student_id=school_student_id,
        student_lookup_status=status,
        demographics=demographics,
    )


# ---------------------------------------------------------------------------
# Assessment type
# ---------------------------------------------------------------------------

_FORMAT_AS_CONFIG: dict[AssessmentSourceFormat, ConfigFormat] = {
    AssessmentSourceFormat.FORM_A: ConfigFormat.NJSLS_FORM_A,
    AssessmentSourceFormat.FORM_B: ConfigFormat.NJSLS_FORM_B,
    AssessmentSourceFormat.START_STRONG: ConfigFormat.START_STRONG,
    AssessmentSourceFormat.NJSLA: ConfigFormat.NJSLA,
}

_LINKIT_SUFFIX: dict[ConfigFormat, str] = {
    ConfigFormat.NJSLS_FORM_A: "_FORM_A",
    ConfigFormat.NJSLS_FORM_B: "_FORM_B",
    ConfigFormat.START_STRONG: "_START_STRONG",
}


def derive_assessment_type(
    source: AssessmentSource,
    identity: AssessmentIdentity,
    detected_format: Optional[AssessmentSourceFormat] = None,
) -> str:
    """
    Uppercase categorical tag for one assessment, e.g. LINKIT_NJSLS_MATH_FORM_A.

    The form comes from the matched config, else from the detected format.
    """
    token = subject_key(identity.subject or "UNKNOWN")
    if identity.config is not None:
        form = identity.config.format
    else:
        form = _FORMAT_AS_CONFIG.get(detected_format) if detected_format else None

    if source is AssessmentSource.LINKIT:
        return f"LINKIT_NJSLS_{token}{_LINKIT_SUFFIX.get(form, '')}"
    if form is ConfigFormat.NJSLA:
        return f"NJSLA_{token}"
    hint = identity.assessment_type or ""
    if hint.startswith(("NJSLA_", "START_STRONG_")):
        return hint
    if form is ConfigFormat.START_STRONG:
        return f"START_STRONG_{token}"
    return f"LINKIT_NJSLS_{token}"


# ---------------------------------------------------------------------------
# Record assembly
# ---------------------------------------------------------------------------


class _FamilySkipped(Exception):
    """The family can never produce records (unknown subject). Warned once."""


class _RowSkipped(Exception):
    """The family cannot produce a record for this row. Warned per row."""


def _build_record(
    row: Row,
    row_number: int,
    student: StudentInfo,
    prefix: str,
    detected_format: AssessmentSourceFormat,
    source: AssessmentSource,
    reference: ReferenceData,
    now: datetime,
    warnings: list[str],
) -> AssessmentRecord:
    identity = identify_assessment(prefix, reference, fallback_grade=student.grade)
    if identity.subject is None:
        raise _FamilySkipped(f"subject not recognized in '{prefix}'")
    if not identity.grade:
        raise _RowSkipped(f"no grade for '{prefix}'; assessment skipped")

    score: ScoreResolution = resolve_score(
        row,
        prefix,
        identity.config,
        subject=identity.subject,
        grade=identity.grade,
        detected_format=detected_format,
        reference=reference,
    )
    for note in score.notes:
        warnings.append(f"Row {row_number}: {note}")

    result_date_value = first_present(row, [f"{prefix}{FAMILY_SEPARATOR}Result Date", "Result Date"])
    test_date = parse_date(result_date_value)
    if test_date is None:
        if result_date_value is not None:
            warnings.append(
                f"Row {row_number}: unparseable Result Date '{result_date_value}' "
                f"for '{prefix}'; import date used"
            )
        test_date = now.date()

    subscores = extract_subscores(row, prefix, identity.subject, detected_format, now)
    school_year = extract_school_year(prefix)
    assessment_type = derive_assessment_type(source, identity, detected_format)

    unprocessed = {
        "original_row": dict(row),
        "student_demographics": {
            "student_name": text(row, ["Student", "Student Name"]),
            "student_id": student.school_student_id,
            "grade": student.grade,
            **student.demographics,
        },
        "assessment_specific_data": {
            "assessment_column": prefix,
            "result_date": None if result_date_value is None else str(result_date_value),
            "level": score.performance_level_text,
            "scale_score": score.scale_score,
            "raw_score": score.raw_score,
            "percent_score": score.percent_score,
            "reading_score": subscores.get("reading_total"),
            "writing_score": subscores.get("writing_total"),
            "score_type": score.score_type.value,
            "assessment_config": None if identity.config is None else {
                "display_name": identity.config.display_name,
                "format": identity.config.format.value,
                "scoring_method": identity.config.scoring_method.value,
            },
        },
        "metadata": {
            "processed_at": now.isoformat(),
            "school_year": school_year,
            "source": source.value,
            "format": detected_format.value,
        },
    }

    return AssessmentRecord(
        student_id=student.student_id,
        assessment_id=f"{assessment_type}_{identity.grade}_{student.student_id}",
        assessment_type=assessment_type,
        subject=identity.subject,
        grade_level=identity.grade,
        school_year=school_year,
        test_date=test_date,
        raw_score=score.raw_score,
        scale_score=score.scale_score,
        performance_level_text=score.performance_level_text,
        min_possible_score=score.min_possible_score,
        max_possible_score=score.max_possible_score,
        student_growth_percentile=None,
        subscores=subscores,
        unprocessed_data=unprocessed,
        completed_at=now,
    )


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def process(
    rows: Sequence[Row],
    source: Union[AssessmentSource, str],
    *,
    headers: Optional[Sequence[str]] = None,
    reference: ReferenceData = DEFAULT_REFERENCE,
    resolve_student_id: Optional[StudentResolver] = None,
    now: Optional[datetime] = None,
) -> ProcessingResult:
    """
    Assemble canonical assessment records from one parsed file.

    Parameters
    ----------
    rows : Sequence[Row]
        Parsed records, one mapping per student row.
    source : AssessmentSource or str
        File-level vendor from detect_assessment_source().
    headers : Sequence[str], optional
        Header order of the file. Defaults to the first row's keys.
    reference : ReferenceData
        Config and range tables.
    resolve_student_id : callable, optional
        Maps a school student number to an internal id (None if unknown).
    now : datetime, optional
        Import timestamp. Defaults to the current UTC time.

    Returns
    -------
    ProcessingResult
        Students, assessments, validation and summary. Per-row failures are
        listed in ``validation.errors``; the batch is never aborted by them.
    """
    source = AssessmentSource(source)
    now = now or datetime.now(timezone.utc)

    if not rows:
        return empty_result(["No data rows found in CSV"])

    headers = list(headers) if headers is not None else [str(k) for k in rows[0].keys()]
    families = detect_assessment_families(headers)
    if not families:
        return empty_result(["No assessment columns detected in CSV"])

    header_row = dict.fromkeys(headers)
    formats = {prefix: detect_format(header_row, prefix) for prefix in families}
    for prefix, fmt in formats.items():
        logger.info("[assembler] family '%s' → %s", prefix, fmt.value)

    errors: list[str] = []
    warnings: list[str] = []
    students: list[StudentInfo] = []
    assessments: list[AssessmentRecord] = []
    skipped_families: set[str] = set()
    orphaned = 0
    seen: set[tuple[str, str, date]] = set()

    for n, row in enumerate(rows, 1):
        try:
            student = extract_student_info(row, n, resolve_student_id)
        except Exception as e:
            errors.append(f"Row {n}: {e}")
            continue
        students.append(student)

        for prefix in families:
            try:
                record = _build_record(
                    row, n, student, prefix, formats[prefix], source, reference, now, warnings,
                )
            except _FamilySkipped as skip:
                if prefix not in skipped_families:
                    skipped_families.add(prefix)
                    warnings.append(f"Assessment column skipped: {skip}")
                continue
            except _RowSkipped as skip:
                warnings.append(f"Row {n}: {skip}")
                continue
            except Exception as e:
                errors.append(f"Row {n}: {e}")
                continue

            key = (record.student_id, record.assessment_type, record.test_date)
            if record.student_id and key in seen:
                warnings.append(
                    f"Row {n}: duplicate {record.assessment_type} for student "
                    f"{record.student_id} on {record.test_date.isoformat()}"
                )
            seen.add(key)
            if not record.student_id:
                orphaned += 1
            assessments.append(record)

        if not student.student_id:
            warnings.append(f"Row {n}: missing student ID; row excluded from student list")

    valid_students = [s for s in students if s.student_id]
    if orphaned:
        warnings.append(
            f"{orphaned} assessment(s) were built from rows without a student ID "
            "and are kept for review"
        )

    validation = ValidationResult(
        errors=errors,
        warnings=warnings,
        summary=ValidationSummary(
            total_records=len(rows),
            valid_records=len(valid_students),
            invalid_records=len(rows) - len(valid_students),
            students_found=len(valid_students),
            assessments_found=len(assessments),
            subjects_found={a.subject for a in assessments},
            grades_found={a.grade_level for a in assessments},
        ),
    )

    logger.info(
        "[assembler] %d rows → %d students, %d assessments, %d errors, %d warnings",
        len(rows), len(valid_students), len(assessments), len(errors), len(warnings),
    )
    return ProcessingResult(
        students=valid_students,
        assessments=assessments,
        validation=validation,
        summary=summarize(assessments),
    )


# ---------------------------------------------------------------------------
# CLI / direct execution
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import sys

    from onboard.assessments.file_reader import FileParseError, read_assessment_file
    from onboard.assessments.format_detector import detect_assessment_source
    from onboard.assessments.review_report import generate_import_review

    if len(sys.argv) not in (2, 3):
        print("Usage: python -m onboard.assessments.assembler <export.csv|xlsx> [header_row]")
        sys.exit(1)

    try:
        parsed = read_assessment_file(
            sys.argv[1],
            header_row=int(sys.argv[2]) if len(sys.argv) == 3 else None,
        )
    except FileParseError as e:
        print(str(e))
        sys.exit(2)

    detected = detect_assessment_source(parsed.headers)
    result = process(parsed.rows, detected, headers=parsed.headers)
    print(generate_import_review(result, file_label=sys.argv[1], source=detected))
    sys.exit(0 if result.validation.is_valid else 3)
