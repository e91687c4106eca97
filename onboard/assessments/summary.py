"""
Onboard Summary Aggregator

Roll-up statistics over assembled assessment records, for operator review.

- total_students counts distinct student ids among the assessments only.
- Averages are rounded to 2 decimal places.
- Performance level buckets use the verbatim label text; "Meeting" and
  "meeting " are different buckets. Blank labels are not counted.
- Subject and grade breakdowns repeat the same shape on their subset.
"""

from __future__ import annotations

from typing import Any, Iterable

import pandas as pd

_COLUMNS = ["student_id", "subject", "grade_level", "scale_score", "performance_level_text"]


def _frame(assessments: Iterable[Any]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "student_id": a.student_id,
                "subject": a.subject,
                "grade_level": a.grade_level,
                "scale_score": a.scale_score,
                "performance_level_text": a.performance_level_text,
            }
            for a in assessments
        ],
        columns=_COLUMNS,
    )


def _level_distribution(df: pd.DataFrame) -> dict[str, int]:
    labels = df["performance_level_text"].fillna("")
    labels = labels[labels.str.strip() != ""]
    return {str(label): int(count) for label, count in labels.value_counts(sort=False).items()}


def _aggregate(df: pd.DataFrame) -> dict[str, Any]:
    if df.empty:
        return {
            "total_students": 0,
            "total_assessments": 0,
            "average_scale_score": 0.0,
            "performance_level_distribution": {},
        }
    return {
        "total_students": int(df["student_id"].nunique()),
        "total_assessments": int(len(df)),
        "average_scale_score": round(float(df["scale_score"].astype(float).mean()), 2),
        "performance_level_distribution": _level_distribution(df),
    }


def _breakdown(df: pd.DataFrame, column: str) -> dict[str, dict[str, Any]]:
    return {
        str(key): _aggregate(group)
        for key, group in df.groupby(column, sort=True)
    }


def summarize(assessments: Iterable[Any]) -> dict[str, Any]:
    """
    Aggregate counts, averages and level distributions.

    Returns
    -------
    dict
        total_students, total_assessments, average_scale_score,
        performance_level_distribution, subject_breakdown, grade_breakdown
    """
    df = _frame(assessments)
    summary = _aggregate(df)
    summary["subject_breakdown"] = _breakdown(df, "subject") if not df.empty else {}
    summary["grade_breakdown"] = _breakdown(df, "grade_level") if not df.empty else {}
    return summary


def breakdown_frame(summary: dict[str, Any], kind: str = "subject") -> pd.DataFrame:
    """Flatten a subject/grade breakdown into a table for display."""
    rows = [
        {
            kind.title(): key,
            "Students": stats["total_students"],
            "Assessments": stats["total_assessments"],
            "Average Score": stats["average_scale_score"],
        }
        for key, stats in summary.get(f"{kind}_breakdown", {}).items()
    ]
    return pd.DataFrame(rows, columns=[kind.title(), "Students", "Assessments", "Average Score"])
