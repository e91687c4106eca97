"""
Plain-text import review report shown to the operator before records are
written. The Streamlit app renders it on screen and as a PDF.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any, Optional

RULE = "═" * 75
THIN = "─" * 75


def _section(title: str) -> list[str]:
    return [RULE, title, RULE, ""]


def _distribution_lines(distribution: dict[str, int], indent: str = "  ") -> list[str]:
    if not distribution:
        return [f"{indent}No performance levels reported"]
    total = sum(distribution.values())
    return [
        f"{indent}{label}: {count} ({count / total * 100:.1f}%)"
        for label, count in sorted(distribution.items(), key=lambda kv: (-kv[1], kv[0]))
    ]


def data_hash(result: Any) -> str:
    ids = "\n".join(sorted(a.assessment_id for a in result.assessments))
    return hashlib.md5(ids.encode()).hexdigest()[:8]


def generate_import_review(
    result: Any,
    file_label: str = "upload",
    source: Optional[Any] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """Render a ProcessingResult as the boxed review report."""
    validation = result.validation
    counts = validation.summary
    summary = result.summary
    generated_at = generated_at or datetime.now()

    lines = _section("ASSESSMENT IMPORT REVIEW")
    lines += [
        f"File: {file_label}",
        f"Source: {getattr(source, 'value', source) or 'not detected'}",
        f"Status: {'READY' if validation.is_valid else 'BLOCKED'}",
        f"Data Hash: {data_hash(result)}",
        f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        "",
    ]

    lines += _section("RECORD COUNTS")
    lines += [
        f"Total Rows: {counts.total_records}",
        f"Valid Student Rows: {counts.valid_records}",
        f"Invalid Rows: {counts.invalid_records}",
        f"Students Found: {counts.students_found}",
        f"Assessments Found: {counts.assessments_found}",
        f"Subjects: {', '.join(sorted(counts.subjects_found)) or 'none'}",
        f"Grades: {', '.join(sorted(counts.grades_found)) or 'none'}",
        "",
    ]

    lines += _section("SCORE SUMMARY")
    lines += [
        f"Students With Assessments: {summary['total_students']}",
        f"Total Assessments: {summary['total_assessments']}",
        f"Average Score: {summary['average_scale_score']:.2f}",
        "",
        "Performance Levels:",
    ]
    lines += _distribution_lines(summary["performance_level_distribution"])
    lines.append("")

    for kind in ("subject", "grade"):
        breakdown = summary.get(f"{kind}_breakdown", {})
        if not breakdown:
            continue
        lines += _section(f"{kind.upper()} BREAKDOWN")
        for key, stats in breakdown.items():
            lines.append(
                f"{kind.title()} {key}: {stats['total_assessments']} assessments, "
                f"{stats['total_students']} students, average {stats['average_scale_score']:.2f}"
            )
            lines += _distribution_lines(stats["performance_level_distribution"], indent="    ")
        lines.append("")

    lines += _section("ERRORS")
    lines += [f"  ✖ {e}" for e in validation.errors] or ["  None"]
    lines.append("")
    lines += _section("WARNINGS")
    lines += [f"  ⚑ {w}" for w in validation.warnings] or ["  None"]
    lines += ["", RULE]
    return "\n".join(lines)
