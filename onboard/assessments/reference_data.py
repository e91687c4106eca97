"""
Onboard Assessment Reference Data

Static, read-only lookup tables for assessment ingestion:
  - ASSESSMENT_CONFIGS: config key -> AssessmentConfig
  - SCORE_RANGES: (grade, subject) -> (min, max) for state scale scores
  - PERCENT_BASED_SUBJECTS: subjects always reported on 0–100

Everything here is built once at import and never mutated. Components take
a ReferenceData bundle as a parameter (DEFAULT_REFERENCE unless a caller
injects its own), so tests can run against reduced tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class ScoringMethod(str, Enum):
    SCALE_SCORE = "scale_score"
    PERCENT_SCORE = "percent_score"
    MIXED = "mixed"


class ConfigFormat(str, Enum):
    NJSLA = "NJSLA"
    NJSLS_FORM_A = "NJSLS_Form_A"
    NJSLS_FORM_B = "NJSLS_Form_B"
    START_STRONG = "Start_Strong"


@dataclass(frozen=True)
class AssessmentConfig:
    key: str
    assessment_type: str
    display_name: str
    subject: str
    grade: str
    format: ConfigFormat
    scoring_method: ScoringMethod
    score_range: tuple[int, int]


# ---------------------------------------------------------------------------
# Subject vocabulary
# ---------------------------------------------------------------------------

# Canonical subject -> token used in config keys and assessment types.
SUBJECT_KEYS: Mapping[str, str] = MappingProxyType({
    "ELA": "ELA",
    "Mathematics": "MATH",
    "Science": "SCIENCE",
})

# Subjects reported as percentages regardless of any config.
PERCENT_BASED_SUBJECTS: frozenset[str] = frozenset({
    "Spanish",
    "Technology Education",
    "Social Studies",
    "Physical Education",
    "Music",
    "Health",
    "Art",
    "Band",
    "SEL",
    "LA",
    "Replacement Mathematics",
    "Replacement Language Arts",
})

START_STRONG_RANGE_TEXT: str = "Not scored with numerical values"


# ---------------------------------------------------------------------------
# Assessment configs
# ---------------------------------------------------------------------------

_SUBJECT_NAMES = {"ELA": "ELA", "Mathematics": "Mathematics"}


def _njsla(subject: str, grade: str) -> AssessmentConfig:
    token = SUBJECT_KEYS[subject]
    return AssessmentConfig(
        key=f"NJSLA_{token}_{grade}",
        assessment_type=f"NJSLA_{token}",
        display_name=f"NJSLA {_SUBJECT_NAMES[subject]} Grade {grade}",
        subject=subject,
        grade=grade,
        format=ConfigFormat.NJSLA,
        scoring_method=ScoringMethod.SCALE_SCORE,
        score_range=(650, 850),
    )


def _linkit(subject: str, grade: str, form: str) -> AssessmentConfig:
    token = SUBJECT_KEYS[subject]
    form_b = form == "B"
    return AssessmentConfig(
        key=f"LINKIT_NJSLS_{token}_{grade}_FORM_{form}",
        assessment_type=f"LINKIT_NJSLS_{token}",
        display_name=f"LinkIt! NJSLS {_SUBJECT_NAMES[subject]} Grade {grade} Form {form}",
        subject=subject,
        grade=grade,
        format=ConfigFormat.NJSLS_FORM_B if form_b else ConfigFormat.NJSLS_FORM_A,
        scoring_method=ScoringMethod.PERCENT_SCORE if form_b else ScoringMethod.MIXED,
        score_range=(0, 100),
    )


def _start_strong(subject: str, grade: str) -> AssessmentConfig:
    token = SUBJECT_KEYS[subject]
    return AssessmentConfig(
        key=f"START_STRONG_{token}_{grade}",
        assessment_type=f"START_STRONG_{token}",
        display_name=f"Start Strong {_SUBJECT_NAMES[subject]} Grade {grade}",
        subject=subject,
        grade=grade,
        format=ConfigFormat.START_STRONG,
        scoring_method=ScoringMethod.PERCENT_SCORE,
        score_range=(0, 100),
    )


def _build_configs() -> Mapping[str, AssessmentConfig]:
    configs: list[AssessmentConfig] = []
    for subject in ("ELA", "Mathematics"):
        configs += [_njsla(subject, grade) for grade in ("3", "4", "5")]
        for grade in ("4", "5"):
            configs += [
                _linkit(subject, grade, "A"),
                _linkit(subject, grade, "B"),
                _start_strong(subject, grade),
            ]
    table: dict[str, AssessmentConfig] = {}
    for config in configs:
        if config.key in table:
            raise ValueError(f"Duplicate assessment config key '{config.key}'")
        table[config.key] = config
    return MappingProxyType(table)


ASSESSMENT_CONFIGS: Mapping[str, AssessmentConfig] = _build_configs()

# State scale-score ranges by grade and subject.
SCORE_RANGES: Mapping[tuple[str, str], tuple[int, int]] = MappingProxyType({
    (grade, subject): (650, 850)
    for grade in ("3", "4", "5")
    for subject in ("ELA", "Mathematics", "Science")
})


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReferenceData:
    configs: Mapping[str, AssessmentConfig] = field(default_factory=lambda: ASSESSMENT_CONFIGS)
    score_ranges: Mapping[tuple[str, str], tuple[int, int]] = field(
        default_factory=lambda: SCORE_RANGES
    )
    percent_based_subjects: frozenset[str] = PERCENT_BASED_SUBJECTS

    def config(self, key: Optional[str]) -> Optional[AssessmentConfig]:
        if not key:
            return None
        return self.configs.get(key)

    def score_range(self, grade: str, subject: str) -> Optional[tuple[int, int]]:
        return self.score_ranges.get((grade, subject))


DEFAULT_REFERENCE = ReferenceData()


def subject_key(subject: str) -> str:
    """
    Uppercase token for a subject inside config keys and assessment types.

    >>> subject_key("Mathematics")
    'MATH'
    >>> subject_key("Replacement Language Arts")
    'REPLACEMENT_LANGUAGE_ARTS'
    """
    if subject in SUBJECT_KEYS:
        return SUBJECT_KEYS[subject]
    token = subject.strip().replace(" ", "_")
    token = "".join(ch for ch in token if ch.isalnum() or ch == "_")
    return token.upper()
