"""
Onboard Score Resolution Engine

Picks the primary score for one assessment family, resolves its possible
score range, and passes the vendor's performance level through.

RULES:
- A matched config dispatches on its scoring method:
    percent_score  Percent, else Raw (Start Strong layout), type percent_score
    scale_score    Scaled, type scale_score
    mixed          Scaled, else Percent with the type switched
- Without a config: Scaled, then Percent, then Raw; first nonzero wins.
- Raw score is always extracted on its own, whichever score is primary.
- Range resolution is an ordered rule table (RANGE_RULES). Bounds are
  strings: Start Strong has no numeric range.
- Performance level text is copied verbatim from Level/Average columns.
  It is never derived from the score.
- Integer parse yields 0 on failure. A non-empty value that fails to parse
  is reported in ScoreResolution.notes.

Public API:
  resolve_score(row, prefix, config, ...) -> ScoreResolution
  resolve_range(subject, grade, config, detected_format, reference) -> tuple[str, str]
  performance_level(row, prefix) -> str
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from onboard.assessments.format_detector import FAMILY_SEPARATOR, AssessmentSourceFormat
from onboard.assessments.reference_data import (
    DEFAULT_REFERENCE,
    START_STRONG_RANGE_TEXT,
    AssessmentConfig,
    ReferenceData,
    ScoringMethod,
)
from onboard.assessments.row_access import (
    Row,
    first_present,
    first_present_key,
    is_numeric,
    parse_int,
)


class ScoreType(str, Enum):
    SCALE_SCORE = "scale_score"
    PERCENT_SCORE = "percent_score"
    RAW_SCORE = "raw_score"


@dataclass(frozen=True)
class ScoreResolution:
    scale_score: int
    score_type: ScoreType
    min_possible_score: str
    max_possible_score: str
    performance_level_text: str
    raw_score: Optional[int] = None
    percent_score: Optional[int] = None
    notes: tuple[str, ...] = ()


def _col(prefix: str, label: str) -> str:
    return f"{prefix}{FAMILY_SEPARATOR}{label}"


class _Reader:
    """Reads integer score cells for one family and records parse problems."""

    def __init__(self, row: Row, prefix: str) -> None:
        self.row = row
        self.prefix = prefix
        self.notes: list[str] = []

    def read(self, label: str, bare: bool = False) -> Optional[int]:
        keys = [_col(self.prefix, label)] + ([label] if bare else [])
        key = first_present_key(self.row, keys)
        if key is None:
            return None
        value = self.row[key]
        if not is_numeric(value):
            self.notes.append(f"non-numeric value '{value}' in '{key}' read as 0")
        return parse_int(value)

    def start_strong_raw(self) -> Optional[int]:
        """Literature + Informational raw points, when the family has no overall Raw."""
        parts = [self.read(f"{part} (Raw)", bare=True) for part in ("Literature", "Informational")]
        present = [p for p in parts if p is not None]
        return sum(present) if present else None


# ---------------------------------------------------------------------------
# Primary score selection
# ---------------------------------------------------------------------------


def _percent_method(reader: _Reader) -> tuple[int, ScoreType, Optional[int]]:
    percent = reader.read("Percent", bare=True)
    if percent is not None:
        return percent, ScoreType.PERCENT_SCORE, percent
    raw = reader.read("Raw", bare=True)
    if raw is None:
        raw = reader.start_strong_raw()
    if raw is None:
        reader.notes.append(f"no Percent or Raw value for '{reader.prefix}'; score recorded as 0")
    return raw or 0, ScoreType.PERCENT_SCORE, None


def _scale_method(reader: _Reader) -> tuple[int, ScoreType, Optional[int]]:
    scaled = reader.read("Scaled", bare=True)
    if scaled is None:
        reader.notes.append(f"no Scaled value for '{reader.prefix}'; score recorded as 0")
    return scaled or 0, ScoreType.SCALE_SCORE, None


def _mixed_method(reader: _Reader) -> tuple[int, ScoreType, Optional[int]]:
    scaled = reader.read("Scaled", bare=True)
    if scaled is not None:
        return scaled, ScoreType.SCALE_SCORE, None
    percent = reader.read("Percent", bare=True)
    if percent is not None:
        return percent, ScoreType.PERCENT_SCORE, percent
    reader.notes.append(f"no Scaled or Percent value for '{reader.prefix}'; score recorded as 0")
    return 0, ScoreType.SCALE_SCORE, None


def _unconfigured(reader: _Reader) -> tuple[int, ScoreType, Optional[int]]:
    percent = reader.read("Percent")
    for label, score_type in (
        ("Scaled", ScoreType.SCALE_SCORE),
        ("Percent", ScoreType.PERCENT_SCORE),
        ("Raw", ScoreType.RAW_SCORE),
    ):
        value = reader.read(label)
        if value:
            return value, score_type, percent
    if percent is None:
        reader.notes.append(f"no score value for '{reader.prefix}'; score recorded as 0")
    return 0, ScoreType.SCALE_SCORE, percent


_METHODS: dict[ScoringMethod, Callable[[_Reader], tuple[int, ScoreType, Optional[int]]]] = {
    ScoringMethod.PERCENT_SCORE: _percent_method,
    ScoringMethod.SCALE_SCORE: _scale_method,
    ScoringMethod.MIXED: _mixed_method,
}


# ---------------------------------------------------------------------------
# Range resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RangeContext:
    subject: Optional[str]
    grade: Optional[str]
    config: Optional[AssessmentConfig]
    detected_format: Optional[AssessmentSourceFormat]
    reference: ReferenceData


def _bounds(low: int, high: int) -> tuple[str, str]:
    return str(low), str(high)


RangeRule = tuple[str, Callable[[RangeContext], bool], Callable[[RangeContext], tuple[str, str]]]

# Ordered. First match wins.
RANGE_RULES: tuple[RangeRule, ...] = (
    (
        "percent_based_subject",
        lambda c: c.subject in c.reference.percent_based_subjects,
        lambda c: _bounds(0, 100),
    ),
    (
        "linkit_form",
        lambda c: c.detected_format in (AssessmentSourceFormat.FORM_A, AssessmentSourceFormat.FORM_B),
        lambda c: _bounds(0, 100),
    ),
    (
        "start_strong",
        lambda c: c.detected_format is AssessmentSourceFormat.START_STRONG,
        lambda c: (START_STRONG_RANGE_TEXT, START_STRONG_RANGE_TEXT),
    ),
    (
        "config_range",
        lambda c: c.config is not None,
        lambda c: _bounds(*c.config.score_range),
    ),
    (
        "state_range_table",
        lambda c: c.reference.score_range(c.grade or "", c.subject or "") is not None,
        lambda c: _bounds(*c.reference.score_range(c.grade or "", c.subject or "")),
    ),
)


def resolve_range(
    subject: Optional[str],
    grade: Optional[str],
    config: Optional[AssessmentConfig] = None,
    detected_format: Optional[AssessmentSourceFormat] = None,
    reference: ReferenceData = DEFAULT_REFERENCE,
) -> tuple[str, str]:
    context = RangeContext(subject, grade, config, detected_format, reference)
    for _name, predicate, outcome in RANGE_RULES:
        if predicate(context):
            return outcome(context)
    return _bounds(0, 0)


def performance_level(row: Row, prefix: str) -> str:
    value = first_present(
        row, [_col(prefix, "Level"), _col(prefix, "Average"), "Level", "Average"],
    )
    return "" if value is None else str(value)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def resolve_score(
    row: Row,
    prefix: str,
    config: Optional[AssessmentConfig] = None,
    *,
    subject: Optional[str] = None,
    grade: Optional[str] = None,
    detected_format: Optional[AssessmentSourceFormat] = None,
    reference: ReferenceData = DEFAULT_REFERENCE,
) -> ScoreResolution:
    """
    Resolve the primary score, range and level for one family in one row.

    Parameters
    ----------
    row : Row
        One input record.
    prefix : str
        Family prefix shared by the score columns.
    config : AssessmentConfig, optional
        Matched reference config. Its subject and grade are used when
        ``subject``/``grade`` are not given.
    detected_format : AssessmentSourceFormat, optional
        Output of detect_format(). Start Strong families score by percent
        even without a config.

    Returns
    -------
    ScoreResolution
    """
    reader = _Reader(row, prefix)
    subject = subject or (config.subject if config else None)
    grade = grade or (config.grade if config else None)

    if config is not None:
        method = _METHODS[config.scoring_method]
    elif detected_format is AssessmentSourceFormat.START_STRONG:
        method = _percent_method
    else:
        method = _unconfigured
    scale_score, score_type, percent_score = method(reader)

    raw_score = reader.read("Raw", bare=True)
    min_score, max_score = resolve_range(subject, grade, config, detected_format, reference)

    return ScoreResolution(
        scale_score=scale_score,
        score_type=score_type,
        min_possible_score=min_score,
        max_possible_score=max_score,
        performance_level_text=performance_level(row, prefix),
        raw_score=raw_score,
        percent_score=percent_score,
        notes=tuple(dict.fromkeys(reader.notes)),
    )
