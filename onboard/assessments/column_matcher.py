"""
Onboard Column Matcher

Maps arbitrary import-file headers onto canonical target fields.

RULES:
- One ColumnMapping per source column, in input order. Never fewer, never more.
- School identifiers are structural: any school/campus column maps to
  school_id with confidence 1.0 and is never fuzzy-scored.
- Exact or alias hits always win with confidence 1.0, regardless of threshold.
- Otherwise the first applicable score per target: alias containment 0.9,
  substring 0.85, shared word 0.7, string similarity. Max wins, ties go to
  the earliest target.
- Manual (operator) mappings are never discarded by re-matching.
- Same input always produces same output.

Public API:
  match(source_columns, target_columns, threshold) -> list[ColumnMapping]
  rematch(existing, source_columns, target_columns, threshold) -> list[ColumnMapping]
  apply_manual_overrides(mappings, overrides) -> list[ColumnMapping]
  targets_for_entity(entity) -> list[str]
  mapping_dict(mappings) -> dict[str, str]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Optional

import textdistance

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD: float = 0.4

# Sørensen–Dice over character bigram multisets.
_BIGRAM_DICE = textdistance.Sorensen(qval=2, as_set=False)

SCHOOL_TARGET: str = "school_id"
SCHOOL_FIELDS: frozenset[str] = frozenset({"school_id", "school_name", "school_code"})

# ---------------------------------------------------------------------------
# Alias library
# ---------------------------------------------------------------------------
# Canonical target field -> known header synonyms. Synonyms are compared in
# normalized form (see normalize_column_name). An alias may belong to only
# one target; _build_alias_lookup() enforces this at import time.
# ---------------------------------------------------------------------------

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    # identity
    "first_name":             ("firstname", "fname", "first", "givenname", "given_name", "first name"),
    "last_name":              ("lastname", "lname", "last", "surname", "familyname", "family_name", "last name"),
    "email":                  ("emailaddress", "mail", "email_address", "student_email", "teacher_email",
                               "student email", "studentemail"),
    "phone":                  ("phonenumber", "telephone", "contact", "mobile", "cell", "phone_number"),
    "grade_level":            ("grade", "class", "year", "level", "student_grade", "current_grade"),
    "school_id":              ("schoolid", "school_number", "schoolnumber", "school_code", "current school"),
    "school_student_id":      ("studentid", "learnerid", "student_number", "student_code", "id",
                               "student id", "student"),
    "teacher_id":             ("teacherid", "instructor_id", "staff_id", "teacher_code"),
    "school_teacher_id":      ("teacher_number", "staff_number"),
    "state_id":               ("state_student_id", "state_identifier", "state_number"),
    # demographics
    "dob":                    ("dateofbirth", "birthdate", "birth_date", "date_of_birth"),
    "gender":                 ("sex", "gender_identity"),
    "ethnicity":              ("race", "ethnic_group", "ethnic_background", "racial_group"),
    "street_address":         ("address", "address 1", "address1", "home_address", "street"),
    "city":                   ("town", "locality"),
    "zip":                    ("zipcode", "postal_code", "postcode"),
    # guardians
    "guardian1_name":         ("parent1_name", "primary_guardian", "guardian_name", "parent1", "guardian1"),
    "guardian2_name":         ("parent2_name", "secondary_guardian", "guardian2", "parent2"),
    "guardian1_email":        ("parent1_email", "primary_guardian_email", "guardian1email", "parent1email",
                               "guardian 1 email address", "guardian1 email address"),
    "guardian2_email":        ("parent2_email", "secondary_guardian_email", "guardian2email", "parent2email",
                               "guardian 2 email address", "guardian2 email address"),
    "guardian1_relationship": ("parent1_relationship", "primary_guardian_relation", "guardian1relation"),
    "guardian2_relationship": ("parent2_relationship", "secondary_guardian_relation", "guardian2relation"),
    # academics
    "current_gpa":            ("gpa", "grade_point_average", "current_grade_point_average"),
    "academic_status":        ("status", "enrollment_status", "student_status", "enrollment"),
    "graduation_year":        ("grad_year", "expected_graduation", "year_of_graduation"),
    # staff credentials
    "qualification1":         ("qualification", "degree1", "primary_qualification"),
    "qualification2":         ("degree2", "secondary_qualification"),
    "qualification3":         ("degree3", "tertiary_qualification"),
    "certification1":         ("certification", "license1", "primary_certification"),
    "certification2":         ("license2", "secondary_certification"),
    "certification3":         ("license3", "tertiary_certification"),
    # attendance
    "record_date":            ("result date", "date", "export date", "result_date"),
    "total_days_present":     ("total days present", "days present", "present days", "days_present"),
    "total_days_possible":    ("total days possible", "days possible", "possible days", "days_possible"),
    "fy_absences_total":      ("fy absences (total days)", "total absences", "absences total", "absences_total"),
    "fy_absences_excused":    ("fy absences (excused days)", "excused absences", "absences_excused"),
    "fy_absences_unexcused":  ("fy absences (unexcused days)", "unexcused absences", "absences_unexcused"),
    "fy_tardies_total":       ("fy tardies (total days)", "total tardies", "tardies", "tardies_total"),
    "daily_attendance_rate":  ("daily attendance rate", "daily rate", "attendance_rate"),
    "mp1_attendance_rate":    ("mp1 (daily attendance rate)", "mp1 attendance rate", "mp1 rate"),
    "mp2_attendance_rate":    ("mp2 (daily attendance rate)", "mp2 attendance rate", "mp2 rate"),
    "mp3_attendance_rate":    ("mp3 (daily attendance rate)", "mp3 attendance rate", "mp3 rate"),
    "mp4_attendance_rate":    ("mp4 (daily attendance rate)", "mp4 attendance rate", "mp4 rate"),
}

# ── Entity scopes ───────────────────────────────────────────────────────────
# Targets offered for each bulk-import entity. Matching against the full
# alias library would let attendance headers land on student fields.
ENTITY_TARGET_FIELDS: dict[str, tuple[str, ...]] = {
    "students": (
        "school_student_id", "first_name", "last_name", "grade_level", "dob",
        "gender", "ethnicity", "email", "phone", "street_address", "city", "zip",
        "guardian1_name", "guardian1_email", "guardian1_relationship",
        "guardian2_name", "guardian2_email", "guardian2_relationship",
        "current_gpa", "academic_status", "graduation_year", "state_id",
        "school_id",
    ),
    "teachers": (
        "school_teacher_id", "first_name", "last_name", "email", "phone",
        "qualification1", "qualification2", "qualification3",
        "certification1", "certification2", "certification3", "school_id",
    ),
    "attendance": (
        "school_student_id", "first_name", "last_name", "record_date",
        "total_days_present", "total_days_possible", "fy_absences_total",
        "fy_absences_excused", "fy_absences_unexcused", "fy_tardies_total",
        "daily_attendance_rate", "mp1_attendance_rate", "mp2_attendance_rate",
        "mp3_attendance_rate", "mp4_attendance_rate",
    ),
}

REQUIRED_TARGET_FIELDS: dict[str, tuple[str, ...]] = {
    "students": ("school_student_id", "first_name", "last_name"),
    "teachers": ("first_name", "last_name"),
    "attendance": ("school_student_id",),
}


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ColumnMapping:
    source_column: str
    target_field: Optional[str]
    confidence: float
    matched: bool
    manual: bool = False


# ---------------------------------------------------------------------------
# Normalization + alias lookup
# ---------------------------------------------------------------------------

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_column_name(name: str) -> str:
    """Lowercase, trim, collapse non-alphanumeric runs to '_', strip '_'."""
    return _NON_ALNUM.sub("_", str(name).strip().lower()).strip("_")


def _build_alias_lookup() -> dict[str, str]:
    """
    Flatten COLUMN_ALIASES into {normalized_alias: target}.

    Raises ValueError if one normalized alias is claimed by two targets.
    """
    lookup: dict[str, str] = {}
    for target, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            key = normalize_column_name(alias)
            existing = lookup.get(key)
            if existing is not None and existing != target:
                raise ValueError(
                    f"Alias library conflict: '{alias}' (normalized: '{key}') maps to "
                    f"'{target}' but was already mapped to '{existing}'."
                )
            lookup[key] = target
    return lookup


# Module-level alias lookup: built once, never mutated.
_ALIAS_LOOKUP: dict[str, str] = _build_alias_lookup()

# Per-target normalized aliases, kept with their lowercase raw form.
_TARGET_ALIASES: dict[str, tuple[tuple[str, str], ...]] = {
    target: tuple((normalize_column_name(a), a.strip().lower()) for a in aliases)
    for target, aliases in COLUMN_ALIASES.items()
}


def _check_alias(column: str, target: str) -> bool:
    """True if `column` equals, contains, or is contained in an alias of `target`."""
    if not column:
        return False
    for normalized_alias, lower_alias in _TARGET_ALIASES.get(target, ()):
        if (
            normalized_alias == column
            or lower_alias == column
            or normalized_alias in column
            or column in normalized_alias
        ):
            return True
    return False


def _is_school_field(column: str) -> bool:
    lowered = column.lower()
    return (
        normalize_column_name(column) in SCHOOL_FIELDS
        or "school" in lowered
        or "campus" in lowered
    )


def _similarity(source: str, target: str) -> float:
    """Score one source column against one target. First applicable rule wins."""
    norm_source = normalize_column_name(source)
    norm_target = normalize_column_name(target)

    if _check_alias(norm_source, target):
        return 0.9

    raw_source = source.strip().lower()
    raw_target = target.strip().lower()
    if norm_source and norm_target and (
        norm_target in norm_source
        or norm_source in norm_target
        or raw_target in raw_source
        or raw_source in raw_target
    ):
        return 0.85

    source_words = {w for w in norm_source.split("_") if w}
    target_words = {w for w in norm_target.split("_") if w}
    if source_words & target_words:
        return 0.7

    return _bigram_similarity(norm_source, norm_target)


def _bigram_similarity(a: str, b: str) -> float:
    """Dice coefficient of the two strings' bigrams. Under two characters scores 0."""
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0
    return float(_BIGRAM_DICE.normalized_similarity(a, b))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def match(
    source_columns: list[str],
    target_columns: list[str],
    threshold: float = DEFAULT_THRESHOLD,
) -> list[ColumnMapping]:
    """
    Match every source column to its best canonical target.

    Parameters
    ----------
    source_columns : list[str]
        Raw headers from the import file.
    target_columns : list[str]
        Canonical field names to match against. Scope these to the entity
        being imported (see targets_for_entity).
    threshold : float
        Minimum fuzzy score for ``matched=True``. Exact and alias hits ignore it.

    Returns
    -------
    list[ColumnMapping]
        Exactly one mapping per source column, in input order.
    """
    if not target_columns:
        logger.warning(
            "[column_matcher] no target fields supplied; %d column(s) left unmatched",
            len(source_columns),
        )

    mappings: list[ColumnMapping] = []
    for column in source_columns:
        column = str(column)

        if _is_school_field(column):
            mappings.append(ColumnMapping(column, SCHOOL_TARGET, 1.0, True))
            logger.info("[column_matcher] '%s' → '%s' (school field)", column, SCHOOL_TARGET)
            continue

        if not target_columns:
            mappings.append(ColumnMapping(column, None, 0.0, False))
            continue

        norm_column = normalize_column_name(column)
        exact = next(
            (
                target for target in target_columns
                if normalize_column_name(target) == norm_column
                or _check_alias(norm_column, target)
                or _check_alias(column.strip().lower(), target)
            ),
            None,
        )
        if exact is not None:
            mappings.append(ColumnMapping(column, exact, 1.0, True))
            logger.info("[column_matcher] '%s' → '%s' (exact/alias)", column, exact)
            continue

        best_target = target_columns[0]
        best_score = -1.0
        for target in target_columns:
            score = _similarity(column, target)
            if score > best_score:
                best_target, best_score = target, score

        matched = best_score >= threshold
        mappings.append(ColumnMapping(column, best_target, round(best_score, 4), matched))
        if matched:
            logger.info(
                "[column_matcher] '%s' → '%s' (score %.2f)", column, best_target, best_score,
            )
        else:
            logger.info(
                "[column_matcher] '%s' unmatched (best '%s' at %.2f)", column, best_target, best_score,
            )

    return mappings


def apply_manual_overrides(
    mappings: list[ColumnMapping],
    overrides: dict[str, str],
) -> list[ColumnMapping]:
    """
    Replace mappings for the given source columns with operator choices.

    Overrides for columns not present in ``mappings`` are ignored and logged.
    """
    known = {m.source_column for m in mappings}
    for column in overrides:
        if column not in known:
            logger.warning("[column_matcher] override for unknown column '%s' ignored", column)

    result: list[ColumnMapping] = []
    for mapping in mappings:
        if mapping.source_column in overrides:
            target = overrides[mapping.source_column]
            result.append(ColumnMapping(mapping.source_column, target, 1.0, True, manual=True))
            logger.info(
                "[column_matcher] '%s' → '%s' (operator override)", mapping.source_column, target,
            )
        else:
            result.append(mapping)
    return result


def rematch(
    existing: list[ColumnMapping],
    source_columns: list[str],
    target_columns: list[str],
    threshold: float = DEFAULT_THRESHOLD,
) -> list[ColumnMapping]:
    """Re-run automatic matching, keeping every manual mapping verbatim."""
    manual = {m.source_column: m for m in existing if m.manual}
    fresh = match(source_columns, target_columns, threshold)
    return [manual.get(m.source_column, m) for m in fresh]


def targets_for_entity(entity: str) -> list[str]:
    """Canonical target fields offered for one import entity."""
    try:
        return list(ENTITY_TARGET_FIELDS[entity])
    except KeyError:
        raise ValueError(
            f"Unknown import entity '{entity}'. "
            f"Expected one of: {', '.join(sorted(ENTITY_TARGET_FIELDS))}"
        ) from None


def mapping_dict(mappings: list[ColumnMapping]) -> dict[str, str]:
    """{source_column: target_field} for matched mappings only."""
    return {
        m.source_column: m.target_field
        for m in mappings
        if m.matched and m.target_field
    }


def unmatched_columns(mappings: list[ColumnMapping]) -> list[str]:
    """Source columns the operator still has to map or confirm as ignored."""
    return [m.source_column for m in mappings if not m.matched]


def with_threshold(mappings: list[ColumnMapping], threshold: float) -> list[ColumnMapping]:
    """Recompute ``matched`` for fuzzy mappings under a new threshold."""
    return [
        m if m.manual or m.confidence == 1.0
        else replace(m, matched=m.confidence >= threshold)
        for m in mappings
    ]
