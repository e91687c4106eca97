"""
Import Validation Test Suite
"""

import pytest

from onboard.assessments.column_matcher import match
from onboard.assessments.validation import (
    FieldRule,
    MappingError,
    ValidationResult,
    require_mapped_fields,
    validate_linkit_structure,
    validate_rows,
)

ELA = "2023-24 Gr 4 ELA NJSLA"


class TestMappingErrors:
    def test_all_required_mapped(self):
        mappings = match(["Student ID", "First Name", "Last Name"],
                         ["school_student_id", "first_name", "last_name"])
        require_mapped_fields(mappings, ["school_student_id", "first_name"], "students")

    def test_missing_required_raises(self):
        mappings = match(["First Name"], ["school_student_id", "first_name"])
        with pytest.raises(MappingError) as exc:
            require_mapped_fields(mappings, ["school_student_id", "first_name"], "students")
        assert exc.value.missing_fields == ["school_student_id"]
        text = str(exc.value)
        assert "IMPORT HALT" in text
        assert "school_student_id" in text
        assert "Fix Steps:" in text


class TestLinkitStructure:
    def test_valid_traditional(self):
        headers = ["Student", "ID", "Grade", f"{ELA} - Result Date", f"{ELA} - Level", f"{ELA} - Scaled"]
        result = validate_linkit_structure(headers)
        assert result.is_valid
        assert result.warnings == [f"Found 1 assessment column(s): {ELA}"]

    def test_valid_current(self):
        prefix = "2023-24 NJSLS Math Gr 4 Form B"
        headers = ["Student", "ID", "Grade", f"{prefix} - Percent", f"{prefix} - Raw", f"{prefix} - Average"]
        assert validate_linkit_structure(headers).is_valid

    def test_missing_identity_columns(self):
        headers = ["Student", f"{ELA} - Result Date", f"{ELA} - Level"]
        result = validate_linkit_structure(headers)
        assert "Missing required columns: ID, Grade" in result.errors

    def test_no_families(self):
        result = validate_linkit_structure(["Student", "ID", "Grade"])
        assert result.errors == ["No assessment columns detected"]

    def test_no_result_columns(self):
        headers = ["Student", "ID", "Grade", "Grade 4 ELA Unit 1"]
        result = validate_linkit_structure(headers)
        assert any(e.startswith("No assessment result columns found") for e in result.errors)


class TestRowValidation:
    RULES = [
        FieldRule("ID", required=True),
        FieldRule("Test Date", kind="date"),
        FieldRule("Score", kind="numeric"),
        FieldRule("Student UUID", kind="uuid"),
    ]

    def row(self, **overrides):
        base = {
            "ID": "1001",
            "Test Date": "05/15/2024",
            "Score": "745",
            "Student UUID": "6f1c2a9e-6a0b-4d0e-9a8b-1f2e3d4c5b6a",
        }
        base.update(overrides)
        return base

    def test_clean_rows(self):
        result = validate_rows([self.row(), self.row(ID="1002")], self.RULES)
        assert result.is_valid
        assert result.summary.valid_records == 2

    def test_required_field_empty(self):
        result = validate_rows([self.row(), self.row(ID="  ")], self.RULES)
        assert result.errors == ["Row 2: required field 'ID' is empty"]
        assert result.summary.invalid_records == 1

    def test_format_errors(self):
        result = validate_rows(
            [self.row(**{"Test Date": "someday", "Score": "N/A", "Student UUID": "nope"})],
            self.RULES,
        )
        assert result.errors == [
            "Row 1: 'Test Date' value 'someday' is not a date",
            "Row 1: 'Score' value 'N/A' is not numeric",
            "Row 1: 'Student UUID' value 'nope' is not a valid UUID",
        ]

    def test_optional_blank_passes(self):
        result = validate_rows([self.row(Score="")], self.RULES)
        assert result.is_valid

    def test_missing_rule_column_warned(self):
        rows = [{"ID": "1001"}]
        result = validate_rows(rows, [FieldRule("ID", required=True), FieldRule("Grade", required=True)])
        assert result.is_valid
        assert result.warnings == ["Column 'Grade' not present; rule skipped"]


class TestValidationResult:
    def test_warnings_do_not_block(self):
        assert ValidationResult(warnings=["heads up"]).is_valid
        assert not ValidationResult(errors=["bad"]).is_valid
