"""
Assessment Record Assembler Test Suite

Tests cover:
- End-to-end assembly of a two-family LinkIt export
- Student identity (name split, lookup annotations, resolver)
- Rows without a student ID (dropped from students, assessments kept)
- Row errors recorded without aborting the batch
- Assessment type tags per source
- Warnings: unknown subject, bad dates, non-numeric scores, duplicates
- Import review report
"""

from datetime import date, datetime, timezone

import pytest

from onboard.assessments.assembler import (
    StudentLookupStatus,
    derive_assessment_type,
    extract_student_info,
    process,
)
from onboard.assessments.format_detector import AssessmentSource, identify_assessment
from onboard.assessments.reference_data import START_STRONG_RANGE_TEXT
from onboard.assessments.review_report import generate_import_review

NOW = datetime(2024, 6, 1, 9, 30, tzinfo=timezone.utc)
ELA = "2023-24 Gr 4 ELA NJSLA"
MATH = "2023-24 LinkIt! NJSLS Math Gr 4 Form B"


def linkit_row(student="Rivera, Ana", sid="1001", grade="4", ela_scaled="745",
               ela_date="05/15/2024", ela_level="Meeting Expectations",
               math_pct="82", math_raw="33", math_level="Proficient"):
    return {
        "Student": student,
        "ID": sid,
        "Grade": grade,
        "Gender": "F",
        f"{ELA} - Result Date": ela_date,
        f"{ELA} - Level": ela_level,
        f"{ELA} - Scaled": ela_scaled,
        f"{ELA} - Reading Scale Score (Scaled)": "48",
        f"{MATH} - Result Date": "2024-03-01",
        f"{MATH} - Level": math_level,
        f"{MATH} - Percent": math_pct,
        f"{MATH} - Raw": math_raw,
    }


def run(rows, source=AssessmentSource.LINKIT, **kwargs):
    return process(rows, source, now=NOW, **kwargs)


# ---------------------------------------------------------------------------
# End-to-end
# ---------------------------------------------------------------------------

class TestProcess:
    def test_two_students_two_families(self):
        rows = [linkit_row(), linkit_row(student="Chen, Wei", sid="1002", ela_scaled="760")]
        result = run(rows)
        assert result.validation.is_valid
        assert result.validation.warnings == []
        assert len(result.students) == 2
        assert len(result.assessments) == 4
        assert result.validation.summary.subjects_found == {"ELA", "Mathematics"}
        assert result.summary["total_students"] == 2
        assert result.summary["total_assessments"] == 4

    def test_ela_record(self):
        ela = run([linkit_row()]).assessments[0]
        assert ela.assessment_type == "LINKIT_NJSLS_ELA"
        assert ela.assessment_id == "LINKIT_NJSLS_ELA_4_1001"
        assert ela.subject == "ELA"
        assert ela.grade_level == "4"
        assert ela.school_year == "2023-24"
        assert ela.test_date == date(2024, 5, 15)
        assert ela.scale_score == 745
        assert ela.performance_level_text == "Meeting Expectations"
        assert (ela.min_possible_score, ela.max_possible_score) == ("650", "850")
        assert ela.subscores["reading_total"] == 48
        assert ela.unprocessed_data["metadata"]["format"] == "NJSLA"
        assert ela.unprocessed_data["student_demographics"]["gender"] == "F"
        assert ela.completed_at == NOW

    def test_form_b_record(self):
        math = run([linkit_row()]).assessments[1]
        assert math.assessment_type == "LINKIT_NJSLS_MATH_FORM_B"
        assert math.scale_score == 82
        assert math.raw_score == 33
        assert (math.min_possible_score, math.max_possible_score) == ("0", "100")
        assert math.unprocessed_data["assessment_specific_data"]["score_type"] == "percent_score"

    def test_njsla_direct_type(self):
        ela = run([linkit_row()], source="njsla_direct").assessments[0]
        assert ela.assessment_type == "NJSLA_ELA"

    def test_as_row_is_serializable_shape(self):
        row = run([linkit_row()]).assessments[0].as_row()
        assert row["test_date"] == "2024-05-15"
        assert row["completed_at"] == NOW.isoformat()
        assert row["student_growth_percentile"] is None

    def test_start_strong_uses_student_grade(self):
        row = {
            "Student": "Rivera, Ana",
            "ID": "1001",
            "Grade": "04",
            "Start Strong ELA - Level": "Strong",
            "Start Strong ELA - Literature (Raw)": "18",
        }
        record = run([row]).assessments[0]
        assert record.grade_level == "4"
        assert record.scale_score == 18
        assert record.assessment_type == "LINKIT_NJSLS_ELA_START_STRONG"
        assert record.min_possible_score == START_STRONG_RANGE_TEXT
        assert record.test_date == NOW.date()


# ---------------------------------------------------------------------------
# Empty inputs
# ---------------------------------------------------------------------------

class TestEmptyInputs:
    def test_no_rows(self):
        result = run([])
        assert result.validation.errors == ["No data rows found in CSV"]
        assert result.students == []
        assert result.assessments == []

    def test_no_assessment_columns(self):
        result = run([{"Student": "Rivera, Ana", "ID": "1001", "Grade": "4"}])
        assert result.validation.errors == ["No assessment columns detected in CSV"]
        assert not result.validation.is_valid


# ---------------------------------------------------------------------------
# Student identity
# ---------------------------------------------------------------------------

class TestStudentInfo:
    def test_name_split(self):
        student = extract_student_info(linkit_row(), 1)
        assert (student.first_name, student.last_name) == ("Ana", "Rivera")
        assert student.student_id == "1001"
        assert student.student_lookup_status is StudentLookupStatus.UNKNOWN

    def test_lookup_annotations_win(self):
        row = {**linkit_row(), "_student_uuid": "abc-123", "_student_lookup_status": "resolved"}
        student = extract_student_info(row, 1, resolve_student_id=lambda sid: "ignored")
        assert student.student_id == "abc-123"
        assert student.student_lookup_status is StudentLookupStatus.RESOLVED

    def test_resolver(self):
        student = extract_student_info(linkit_row(), 1, resolve_student_id=lambda sid: f"uuid-{sid}")
        assert student.student_id == "uuid-1001"
        assert student.school_student_id == "1001"
        assert student.student_lookup_status is StudentLookupStatus.RESOLVED

    def test_resolver_miss(self):
        student = extract_student_info(linkit_row(), 1, resolve_student_id=lambda sid: None)
        assert student.student_id == "1001"
        assert student.student_lookup_status is StudentLookupStatus.UNRESOLVED

    def test_empty_id_gets_placeholder_id(self):
        student = extract_student_info(linkit_row(sid=""), 3)
        assert student.student_id == ""
        assert student.id == "student_3"


# ---------------------------------------------------------------------------
# Row-level failures
# ---------------------------------------------------------------------------

class TestRowFailures:
    def test_missing_student_id_dropped_from_students(self):
        rows = [linkit_row(), linkit_row(sid="1002"), linkit_row(student="Doe, Jo", sid="")]
        result = run(rows)
        summary = result.validation.summary
        assert len(result.students) == 2
        assert summary.total_records == 3
        assert summary.valid_records == 2
        assert summary.invalid_records == 1
        assert len(result.assessments) == 6
        assert any("Row 3: missing student ID" in w for w in result.validation.warnings)
        assert any("without a student ID" in w for w in result.validation.warnings)

    def test_row_error_does_not_abort_batch(self):
        def resolver(sid):
            if sid == "bad":
                raise LookupError("student lookup failed")
            return f"uuid-{sid}"

        rows = [linkit_row(sid="1001"), linkit_row(sid="bad"), linkit_row(sid="1003")]
        result = run(rows, resolve_student_id=resolver)
        assert result.validation.errors == ["Row 2: student lookup failed"]
        assert [s.student_id for s in result.students] == ["uuid-1001", "uuid-1003"]
        assert len(result.assessments) == 4

    def test_unknown_subject_warned_once(self):
        rows = [
            {**linkit_row(), "2023-24 Gr 4 Robotics Assessment - Level": "Gold"},
            {**linkit_row(sid="1002"), "2023-24 Gr 4 Robotics Assessment - Level": "Silver"},
        ]
        result = run(rows)
        skipped = [w for w in result.validation.warnings if "Robotics" in w]
        assert len(skipped) == 1
        assert len(result.assessments) == 4

    def test_unparseable_date_uses_import_date(self):
        result = run([linkit_row(ela_date="sometime in May")])
        assert result.assessments[0].test_date == NOW.date()
        assert any("unparseable Result Date" in w for w in result.validation.warnings)

    def test_non_numeric_score_warned(self):
        result = run([linkit_row(ela_scaled="N/A")])
        assert result.assessments[0].scale_score == 0
        assert any("N/A" in w for w in result.validation.warnings)

    def test_duplicate_assessment_warned(self):
        result = run([linkit_row(), linkit_row()])
        assert len(result.assessments) == 4
        assert any("duplicate" in w for w in result.validation.warnings)


# ---------------------------------------------------------------------------
# Assessment type
# ---------------------------------------------------------------------------

class TestAssessmentType:
    @pytest.mark.parametrize("source, prefix, expected", [
        (AssessmentSource.LINKIT, "2023-24 NJSLS Math Gr 4", "LINKIT_NJSLS_MATH_FORM_A"),
        (AssessmentSource.LINKIT, "2023-24 Gr 4 ELA NJSLA", "LINKIT_NJSLS_ELA"),
        (AssessmentSource.NJSLA_DIRECT, "2023-24 Gr 4 ELA NJSLA", "NJSLA_ELA"),
        (AssessmentSource.GENERIC, "Start Strong ELA", "START_STRONG_ELA"),
        (AssessmentSource.GENERIC, "2023-24 Gr 3 Art", "LINKIT_NJSLS_ART"),
    ])
    def test_derive(self, source, prefix, expected):
        assert derive_assessment_type(source, identify_assessment(prefix)) == expected


# ---------------------------------------------------------------------------
# Review report
# ---------------------------------------------------------------------------

class TestReviewReport:
    def test_ready_report(self):
        result = run([linkit_row()])
        report = generate_import_review(result, "scores.csv", AssessmentSource.LINKIT, NOW)
        assert "ASSESSMENT IMPORT REVIEW" in report
        assert "Status: READY" in report
        assert "Source: linkit" in report
        assert "Meeting Expectations: 1 (50.0%)" in report

    def test_blocked_report(self):
        result = run([])
        report = generate_import_review(result, "empty.csv")
        assert "Status: BLOCKED" in report
        assert "✖ No data rows found in CSV" in report
