"""
Column Matcher Test Suite

Tests cover:
- Alias library integrity
- Exact and alias hits (confidence 1.0, threshold ignored)
- School identifier forcing
- Fuzzy score precedence and tie-breaking
- One mapping per source column, determinism
- Manual override preservation
"""

import pytest

from onboard.assessments.column_matcher import (
    COLUMN_ALIASES,
    ENTITY_TARGET_FIELDS,
    REQUIRED_TARGET_FIELDS,
    SCHOOL_TARGET,
    _ALIAS_LOOKUP,
    ColumnMapping,
    apply_manual_overrides,
    mapping_dict,
    match,
    normalize_column_name,
    rematch,
    targets_for_entity,
    unmatched_columns,
    with_threshold,
)


STUDENT_TARGETS = ["school_student_id", "first_name", "last_name", "grade_level"]


# ---------------------------------------------------------------------------
# Library integrity
# ---------------------------------------------------------------------------

class TestLibraryIntegrity:
    def test_alias_lookup_is_not_empty(self):
        assert len(_ALIAS_LOOKUP) > 0

    def test_lookup_values_are_alias_targets(self):
        for alias, target in _ALIAS_LOOKUP.items():
            assert target in COLUMN_ALIASES, f"'{alias}' maps to unknown target '{target}'"

    def test_lookup_keys_are_normalized(self):
        for key in _ALIAS_LOOKUP:
            assert key == normalize_column_name(key)

    def test_entity_targets_are_known_fields(self):
        for entity, targets in ENTITY_TARGET_FIELDS.items():
            for target in targets:
                assert target in COLUMN_ALIASES, f"{entity}: '{target}' has no alias entry"

    def test_required_fields_are_offered_for_entity(self):
        for entity, required in REQUIRED_TARGET_FIELDS.items():
            assert set(required) <= set(ENTITY_TARGET_FIELDS[entity])


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

class TestNormalization:
    @pytest.mark.parametrize("raw, expected", [
        ("First Name", "first_name"),
        ("  Student  ID ", "student_id"),
        ("FY Absences (Total Days)", "fy_absences_total_days"),
        ("__Grade__", "grade"),
        ("E-mail/Address", "e_mail_address"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_column_name(raw) == expected


# ---------------------------------------------------------------------------
# Exact / alias matching
# ---------------------------------------------------------------------------

class TestExactMatch:
    def test_roster_headers_all_match_exactly(self):
        headers = ["Student ID", "First Name", "Last Name", "Grade"]
        result = match(headers, STUDENT_TARGETS)
        assert [m.target_field for m in result] == STUDENT_TARGETS
        assert all(m.matched for m in result)
        assert all(m.confidence == 1.0 for m in result)
        assert not any(m.manual for m in result)

    def test_alias_hit_ignores_threshold(self):
        result = match(["First Name"], ["first_name"], threshold=0.99)
        assert result[0].confidence == 1.0
        assert result[0].matched is True

    def test_alias_synonym(self):
        result = match(["Surname"], STUDENT_TARGETS)
        assert result[0].target_field == "last_name"
        assert result[0].confidence == 1.0

    def test_identical_normalized_names(self):
        result = match(["GRADE_LEVEL"], STUDENT_TARGETS)
        assert result[0].target_field == "grade_level"
        assert result[0].confidence == 1.0


# ---------------------------------------------------------------------------
# School identifier
# ---------------------------------------------------------------------------

class TestSchoolField:
    @pytest.mark.parametrize("header", ["School Name", "Current School", "Campus", "school_code"])
    def test_school_columns_forced_to_school_id(self, header):
        result = match([header], STUDENT_TARGETS)
        assert result[0].target_field == SCHOOL_TARGET
        assert result[0].confidence == 1.0
        assert result[0].matched is True

    def test_school_forced_even_without_targets(self):
        result = match(["Campus"], [])
        assert result[0].target_field == SCHOOL_TARGET


# ---------------------------------------------------------------------------
# Fuzzy scoring
# ---------------------------------------------------------------------------

class TestFuzzyScoring:
    def test_substring_scores_085(self):
        result = match(["Phone"], ["phone_number_primary"])
        assert result[0].confidence == 0.85
        assert result[0].matched is True

    def test_shared_word_scores_07(self):
        result = match(["Home Room"], ["room_assignment"])
        assert result[0].confidence == 0.7
        assert result[0].target_field == "room_assignment"

    def test_dissimilar_column_unmatched(self):
        result = match(["Bldg Nmbr"], ["zzz"])
        assert result[0].matched is False
        assert result[0].confidence < 0.4

    def test_bigram_dice_below_threshold(self):
        # nickname / first_name share na, am, me: 2*3 / (7+9)
        result = match(["Nickname"], ["first_name"])
        assert result[0].confidence == pytest.approx(0.375)
        assert result[0].matched is False

    def test_bigram_dice_above_threshold(self):
        # 8 shared bigrams: 2*8 / (9+13)
        result = match(["Guardnotes"], ["guardian_notes"])
        assert result[0].confidence == pytest.approx(0.7273)
        assert result[0].matched is True

    def test_tie_goes_to_first_target(self):
        result = match(["Room"], ["room_a", "room_b"])
        assert result[0].target_field == "room_a"

    def test_threshold_controls_matched(self):
        strict = match(["Home Room"], ["room_assignment"], threshold=0.8)
        loose = match(["Home Room"], ["room_assignment"], threshold=0.5)
        assert strict[0].matched is False
        assert loose[0].matched is True

    def test_similarity_in_unit_interval(self):
        result = match(["Attendance Pct", "Xyz"], ["daily_attendance_rate", "city"])
        for m in result:
            assert 0.0 <= m.confidence <= 1.0


# ---------------------------------------------------------------------------
# Coverage + determinism
# ---------------------------------------------------------------------------

class TestCoverage:
    def test_one_mapping_per_source_column(self):
        headers = ["Student ID", "Nickname", "Locker", "Bus Route", "First Name"]
        result = match(headers, STUDENT_TARGETS)
        assert len(result) == len(headers)
        assert [m.source_column for m in result] == headers

    def test_empty_sources(self):
        assert match([], STUDENT_TARGETS) == []

    def test_empty_targets_leave_columns_unmatched(self):
        result = match(["Nickname", "Locker"], [])
        assert len(result) == 2
        assert all(not m.matched for m in result)
        assert all(m.target_field is None for m in result)

    def test_deterministic(self):
        headers = ["Student Number", "Given Name", "Family Name", "Yr", "Mystery"]
        assert match(headers, STUDENT_TARGETS) == match(headers, STUDENT_TARGETS)


# ---------------------------------------------------------------------------
# Manual overrides
# ---------------------------------------------------------------------------

class TestManualOverrides:
    def test_override_marks_manual(self):
        mappings = match(["Nickname"], STUDENT_TARGETS)
        result = apply_manual_overrides(mappings, {"Nickname": "first_name"})
        assert result[0] == ColumnMapping("Nickname", "first_name", 1.0, True, manual=True)

    def test_override_for_unknown_column_ignored(self):
        mappings = match(["First Name"], STUDENT_TARGETS)
        result = apply_manual_overrides(mappings, {"Not There": "last_name"})
        assert result == mappings

    def test_rematch_preserves_manual(self):
        headers = ["First Name", "Last Name"]
        overridden = apply_manual_overrides(match(headers, STUDENT_TARGETS), {"First Name": "last_name"})
        result = rematch(overridden, headers, STUDENT_TARGETS, threshold=0.9)
        assert result[0].target_field == "last_name"
        assert result[0].manual is True
        assert result[1].target_field == "last_name"
        assert result[1].manual is False

    def test_with_threshold_keeps_manual_and_exact(self):
        mappings = apply_manual_overrides(
            match(["Home Room", "First Name", "Phone"], ["room_assignment", "first_name", "phone_number_primary"]),
            {"Phone": "phone_number_primary"},
        )
        result = with_threshold(mappings, 0.95)
        assert [m.matched for m in result] == [False, True, True]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_targets_for_entity(self):
        assert "record_date" in targets_for_entity("attendance")
        assert "school_student_id" in targets_for_entity("students")

    def test_unknown_entity_raises(self):
        with pytest.raises(ValueError, match="Unknown import entity"):
            targets_for_entity("buses")

    def test_mapping_dict_and_unmatched(self):
        result = match(["Student ID", "Bldg Nmbr"], ["school_student_id", "zzz"])
        assert mapping_dict(result) == {"Student ID": "school_student_id"}
        assert unmatched_columns(result) == ["Bldg Nmbr"]
