"""
Onboard Assessment Format Detector

Decides which vendor layout produced a wide-format assessment export.

RULES:
- A column family is every header sharing the text before the first " - ".
- Format detection is an ordered rule table. First matching rule wins; the
  order is significant because vendor layouts overlap in raw column presence.
- Detection reads column names only, so the same header set and prefix
  always produce the same format.
- Subject, grade and config are identified from the family prefix text;
  a prefix without a grade may borrow the student's grade.

Public API:
  is_assessment_header(header) -> bool
  detect_assessment_families(headers) -> list[str]
  detect_format(row, prefix) -> AssessmentSourceFormat
  detect_assessment_source(headers) -> AssessmentSource
  identify_assessment(prefix, reference, fallback_grade) -> AssessmentIdentity
  extract_school_year(prefix) -> Optional[str]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional

from onboard.assessments.reference_data import (
    DEFAULT_REFERENCE,
    SUBJECT_KEYS,
    AssessmentConfig,
    ReferenceData,
    subject_key,
)

logger = logging.getLogger(__name__)

FAMILY_SEPARATOR: str = " - "


class AssessmentSourceFormat(str, Enum):
    FORM_A = "LinkIt_NJSLS_Form_A"
    FORM_B = "LinkIt_NJSLS_Form_B"
    START_STRONG = "Start_Strong"
    NJSLA = "NJSLA"
    LINKIT_NJSLS = "LinkIt_NJSLS"
    GENERIC = "Generic"


class AssessmentSource(str, Enum):
    LINKIT = "linkit"
    GENESIS = "genesis"
    NJSLA_DIRECT = "njsla_direct"
    GENERIC = "generic"


# ---------------------------------------------------------------------------
# Header-level detection
# ---------------------------------------------------------------------------

_GRADE_PATTERN = re.compile(r"gr\s*\d+|grade\s*\d+", re.IGNORECASE)
_SUBJECT_PATTERN = re.compile(r"ela|math|science", re.IGNORECASE)
_ASSESSMENT_TOKENS: tuple[str, ...] = ("njsla", "assessment", "test")
_RESULT_TOKENS: tuple[str, ...] = ("result date", "level", "scaled", "scale score")


def is_assessment_header(header: str) -> bool:
    lowered = str(header).lower()
    if any(token in lowered for token in _ASSESSMENT_TOKENS):
        return True
    if _GRADE_PATTERN.search(lowered) and _SUBJECT_PATTERN.search(lowered):
        return True
    return any(token in lowered for token in _RESULT_TOKENS)


def family_prefix(header: str) -> str:
    return str(header).split(FAMILY_SEPARATOR, 1)[0].strip()


def detect_assessment_families(headers: Iterable[str]) -> list[str]:
    """Distinct family prefixes of assessment-shaped headers, first-seen order."""
    families: list[str] = []
    for header in headers:
        if not is_assessment_header(header):
            continue
        prefix = family_prefix(header)
        if prefix and prefix not in families:
            families.append(prefix)
    return families


# ---------------------------------------------------------------------------
# Per-family format rules
# ---------------------------------------------------------------------------

_FORM_A_CODE = re.compile(r"[A-Z]\.[A-Z]{2}\.\d|[A-Z]\.[A-Z]{2}\.[A-Z]\.\d")
_MARKERS: tuple[str, ...] = ("Result Date", "Level", "Average", "Percent", "Scaled")
_DOK_AND_QUESTION_TYPES: tuple[str, ...] = (
    "DOK", "Drag and Drop", "Inline Choice", "Multiple Choice", "Multi-Select", "Text Entry",
)


@dataclass(frozen=True)
class FamilyColumns:
    """The column names one family contributes to a row."""
    prefix: str
    keys: frozenset[str]
    prefixed: tuple[str, ...]

    @classmethod
    def of(cls, row: Mapping[str, Any], prefix: str) -> "FamilyColumns":
        keys = tuple(str(k) for k in row.keys())
        prefixed = tuple(k for k in keys if prefix in k and k != prefix)
        return cls(prefix, frozenset(keys), prefixed)

    def has(self, *labels: str) -> bool:
        """True if `<prefix> - <label>` or the bare label is a column."""
        return any(
            f"{self.prefix}{FAMILY_SEPARATOR}{label}" in self.keys or label in self.keys
            for label in labels
        )

    def any_contains(self, *tokens: str) -> bool:
        return any(token in column for column in self.prefixed for token in tokens)


def _has_form_b_signal(cols: FamilyColumns) -> bool:
    if not cols.any_contains("Percent", "Raw"):
        return False
    return any(
        "Form B" in c or "NJSLS" in c or ("Percent" in c and "Raw" in c)
        for c in cols.prefixed
    )


def _format_from_prefix_text(cols: FamilyColumns) -> AssessmentSourceFormat:
    lowered = cols.prefix.lower()
    if "form a" in lowered or "form_a" in lowered:
        return AssessmentSourceFormat.FORM_A
    if "form b" in lowered or "form_b" in lowered:
        return AssessmentSourceFormat.FORM_B
    if "start strong" in lowered or "startstrong" in lowered:
        return AssessmentSourceFormat.START_STRONG
    if "njsla" in lowered:
        return AssessmentSourceFormat.NJSLA
    return AssessmentSourceFormat.LINKIT_NJSLS


FormatRule = tuple[
    str,
    Callable[[FamilyColumns], bool],
    Callable[[FamilyColumns], AssessmentSourceFormat],
]

# Ordered. First match wins.
FORMAT_RULES: tuple[FormatRule, ...] = (
    (
        "njsla_scale_scores",
        lambda c: c.has("Reading Scale Score (Scaled)", "Writing Scale Score (Scaled)"),
        lambda c: AssessmentSourceFormat.NJSLA,
    ),
    (
        "start_strong_components",
        lambda c: c.has(
            "Literature (Percent)", "Literature (Raw)",
            "Informational (Percent)", "Informational (Raw)",
        ),
        lambda c: AssessmentSourceFormat.START_STRONG,
    ),
    (
        "form_a_standards_codes",
        lambda c: any(_FORM_A_CODE.search(col) for col in c.prefixed),
        lambda c: AssessmentSourceFormat.FORM_A,
    ),
    (
        "form_b_percent_raw",
        _has_form_b_signal,
        lambda c: AssessmentSourceFormat.FORM_B,
    ),
    (
        "generic_markers",
        lambda c: c.any_contains(*_MARKERS),
        _format_from_prefix_text,
    ),
    (
        "dok_or_question_types",
        lambda c: c.any_contains(*_DOK_AND_QUESTION_TYPES),
        lambda c: AssessmentSourceFormat.LINKIT_NJSLS,
    ),
    (
        "any_family_column",
        lambda c: bool(c.prefixed),
        lambda c: AssessmentSourceFormat.LINKIT_NJSLS,
    ),
)


def detect_format(
    row: Mapping[str, Any],
    prefix: str,
    rules: tuple[FormatRule, ...] = FORMAT_RULES,
) -> AssessmentSourceFormat:
    """
    Detect the vendor layout of one assessment family.

    Parameters
    ----------
    row : Mapping[str, Any]
        Any row of the file. Only its keys are inspected.
    prefix : str
        The family prefix, e.g. "2022-23 Gr 3 ELA NJSLA".

    Returns
    -------
    AssessmentSourceFormat
        Outcome of the first matching rule, or GENERIC when none match.
    """
    cols = FamilyColumns.of(row, prefix)
    for name, predicate, outcome in rules:
        if predicate(cols):
            detected = outcome(cols)
            logger.debug("[format_detector] '%s' → %s (rule %s)", prefix, detected.value, name)
            return detected
    return AssessmentSourceFormat.GENERIC


# ---------------------------------------------------------------------------
# File-level source detection
# ---------------------------------------------------------------------------

_LINKIT_FORMAT_INDICATORS: tuple[str, ...] = (
    "selected tests", "result date", "scale score", "performance level",
    "percent", "form b", "form a", "start strong", "startstrong",
)
_SIS_TOKEN = re.compile(r"\bsis\b")


def _has_demographics(header_text: str) -> bool:
    return "student" in header_text and "id" in header_text and "grade" in header_text


def detect_assessment_source(headers: Iterable[str]) -> AssessmentSource:
    """Which vendor exported the file, judged from its headers alone."""
    headers = [str(h) for h in headers]
    header_text = " ".join(headers).lower()
    demographics = _has_demographics(header_text)

    if "linkit" in header_text:
        source = AssessmentSource.LINKIT
    elif demographics and any(t in header_text for t in ("njsla", "njsls", "ela", "math")):
        source = AssessmentSource.LINKIT
    elif demographics and (
        any(t in header_text for t in _LINKIT_FORMAT_INDICATORS)
        or ("literature" in header_text and "informational" in header_text)
    ):
        source = AssessmentSource.LINKIT
    elif demographics and any(
        re.search(r"[A-Z]\.[A-Z]{2}\.\d", h) or "DOK" in h
        or (("Literary Text" in h or "Informational Text" in h) and "%" in h)
        for h in headers
    ):
        source = AssessmentSource.LINKIT
    elif "genesis" in header_text or _SIS_TOKEN.search(header_text):
        source = AssessmentSource.GENESIS
    elif "njsla" in header_text and "scale" in header_text:
        source = AssessmentSource.NJSLA_DIRECT
    else:
        source = AssessmentSource.GENERIC

    logger.info("[format_detector] source detected: %s", source.value)
    return source


# ---------------------------------------------------------------------------
# Subject / grade / config identification
# ---------------------------------------------------------------------------

# Ordered. First match wins.
_SUBJECT_RULES: tuple[tuple[str, Callable[[str], bool]], ...] = (
    ("ELA",                       lambda s: bool(re.search(r"\bela\b", s)) or "english" in s),
    ("Mathematics",               lambda s: "math" in s and "replacement" not in s),
    ("Science",                   lambda s: "science" in s),
    ("Replacement Mathematics",   lambda s: "replacement math" in s),
    ("Replacement Language Arts", lambda s: "replacement language arts" in s),
    ("LA",                        lambda s: "language arts" in s or bool(re.search(r"\bla\b", s))),
    ("Spanish",                   lambda s: "spanish" in s),
    ("Technology Education",      lambda s: "technology" in s),
    ("Social Studies",            lambda s: "social studies" in s),
    ("Physical Education",        lambda s: "physical education" in s),
    ("Music",                     lambda s: "music" in s),
    ("Health",                    lambda s: "health" in s),
    ("Art",                       lambda s: bool(re.search(r"\bart\b", s))),
    ("Band",                      lambda s: bool(re.search(r"\bband\b", s))),
    ("SEL",                       lambda s: bool(re.search(r"\bsel\b|\dsel\b", s))),
)

_GRADE_CAPTURE = re.compile(r"(?:gr|grade)\s*(\d+)", re.IGNORECASE)
_COURSES: tuple[tuple[str, str], ...] = (
    ("algebra ii", "Algebra II"),
    ("algebra i", "Algebra I"),
    ("geometry", "Geometry"),
)
_SCHOOL_YEAR = re.compile(r"(\d{4}-\d{2})")


class FamilyKind(str, Enum):
    START_STRONG = "start_strong"
    NJSLS_FORM_B = "njsls_form_b"
    NJSLS_FORM_A = "njsls_form_a"
    NJSLS = "njsls"
    NJSLA = "njsla"
    OTHER = "other"


@dataclass(frozen=True)
class AssessmentIdentity:
    subject: Optional[str]
    grade: Optional[str]
    kind: FamilyKind
    config_key: Optional[str]
    config: Optional[AssessmentConfig]
    assessment_type: Optional[str]


def detect_subject(prefix: str) -> Optional[str]:
    lowered = prefix.lower()
    for subject, predicate in _SUBJECT_RULES:
        if predicate(lowered):
            return subject
    return None


def normalize_grade(value: Any) -> Optional[str]:
    """'04' -> '4', 'K' -> 'K', blank -> None."""
    if value is None:
        return None
    grade = str(value).strip()
    if not grade or grade.lower() == "nan":
        return None
    if grade.endswith(".0") and grade[:-2].isdigit():
        grade = grade[:-2]
    if grade.isdigit():
        return grade.lstrip("0") or "0"
    return grade


def detect_grade(prefix: str) -> Optional[str]:
    found = _GRADE_CAPTURE.search(prefix)
    if found:
        return normalize_grade(found.group(1))
    lowered = prefix.lower()
    for token, course in _COURSES:
        if token in lowered:
            return course
    return None


def detect_family_kind(prefix: str) -> FamilyKind:
    lowered = prefix.lower()
    if "start strong" in lowered or "startstrong" in lowered:
        return FamilyKind.START_STRONG
    if "njsls" in lowered:
        if "form b" in lowered:
            return FamilyKind.NJSLS_FORM_B
        if "form a" in lowered:
            return FamilyKind.NJSLS_FORM_A
        return FamilyKind.NJSLS
    if "njsla" in lowered:
        return FamilyKind.NJSLA
    return FamilyKind.OTHER


def _config_key(kind: FamilyKind, subject: Optional[str], grade: Optional[str]) -> Optional[str]:
    if subject not in SUBJECT_KEYS or not grade:
        return None
    token = SUBJECT_KEYS[subject]
    if kind is FamilyKind.START_STRONG:
        return f"START_STRONG_{token}_{grade}"
    if kind is FamilyKind.NJSLS_FORM_B:
        return f"LINKIT_NJSLS_{token}_{grade}_FORM_B"
    if kind in (FamilyKind.NJSLS_FORM_A, FamilyKind.NJSLS):
        return f"LINKIT_NJSLS_{token}_{grade}_FORM_A"
    if kind is FamilyKind.NJSLA:
        return f"NJSLA_{token}_{grade}"
    return None


def identify_assessment(
    prefix: str,
    reference: ReferenceData = DEFAULT_REFERENCE,
    fallback_grade: Any = None,
) -> AssessmentIdentity:
    """
    Work out subject, grade and reference config for one family prefix.

    ``fallback_grade`` (typically the student's Grade column) is used only
    when the prefix itself carries no grade, as with "Start Strong ELA".
    """
    subject = detect_subject(prefix)
    grade = detect_grade(prefix) or normalize_grade(fallback_grade)
    kind = detect_family_kind(prefix)
    key = _config_key(kind, subject, grade)
    config = reference.config(key)

    assessment_type: Optional[str] = None
    if config is not None:
        assessment_type = config.assessment_type
    elif subject is not None:
        token = subject_key(subject)
        assessment_type = {
            FamilyKind.START_STRONG: f"START_STRONG_{token}",
            FamilyKind.NJSLS_FORM_A: f"LINKIT_NJSLS_{token}",
            FamilyKind.NJSLS_FORM_B: f"LINKIT_NJSLS_{token}",
            FamilyKind.NJSLS: f"LINKIT_NJSLS_{token}",
            FamilyKind.NJSLA: f"NJSLA_{token}",
        }.get(kind, f"LINKIT_{token}")

    return AssessmentIdentity(
        subject=subject,
        grade=grade,
        kind=kind,
        config_key=key if config is not None else None,
        config=config,
        assessment_type=assessment_type,
    )


def extract_school_year(prefix: str) -> Optional[str]:
    found = _SCHOOL_YEAR.search(prefix)
    return found.group(1) if found else None
