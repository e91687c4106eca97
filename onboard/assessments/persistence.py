"""
Chunked hand-off of assembled records to a persistence writer.

The engine never talks to a database. Callers pass a writer callable that
inserts one list of row dicts (a Supabase/SQL client wrapper, or a list's
extend in tests). Each chunk is independent: a failing chunk is retried up
to ``retries`` times, then recorded, and the next chunk still runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Sequence

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE: int = 100

RowWriter = Callable[[list[dict[str, Any]]], Any]


@dataclass
class BatchFailure:
    batch_index: int
    row_count: int
    error: str


@dataclass
class BatchWriteReport:
    total_rows: int = 0
    written_rows: int = 0
    batches: int = 0
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def failed_rows(self) -> int:
        return sum(f.row_count for f in self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures


def chunked(rows: Sequence[dict[str, Any]], size: int) -> Iterator[list[dict[str, Any]]]:
    if size < 1:
        raise ValueError(f"batch size must be positive, got {size}")
    for start in range(0, len(rows), size):
        yield list(rows[start:start + size])


def assessment_rows(assessments: Iterable[Any]) -> list[dict[str, Any]]:
    """Rows for the assessments table. Records must expose as_row()."""
    return [a.as_row() for a in assessments]


def student_rows(students: Iterable[Any]) -> list[dict[str, Any]]:
    return [
        {
            "school_student_id": s.school_student_id,
            "student_id": s.student_id or None,
            "first_name": s.first_name,
            "last_name": s.last_name,
            "grade_level": s.grade,
            "lookup_status": s.student_lookup_status.value,
            **s.demographics,
        }
        for s in students
    ]


def write_in_batches(
    writer: RowWriter,
    rows: Sequence[dict[str, Any]],
    batch_size: int = DEFAULT_BATCH_SIZE,
    retries: int = 1,
) -> BatchWriteReport:
    """
    Send ``rows`` to ``writer`` in chunks of ``batch_size``.

    Returns a BatchWriteReport; exceptions from the writer never escape.
    """
    report = BatchWriteReport(total_rows=len(rows))
    for index, chunk in enumerate(chunked(rows, batch_size)):
        report.batches += 1
        last_error = ""
        for attempt in range(retries + 1):
            try:
                writer(chunk)
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "[persistence] batch %d attempt %d failed: %s", index, attempt + 1, last_error,
                )
                continue
            report.written_rows += len(chunk)
            last_error = ""
            break
        if last_error:
            report.failures.append(BatchFailure(index, len(chunk), last_error))

    logger.info(
        "[persistence] wrote %d/%d rows in %d batch(es), %d failed",
        report.written_rows, report.total_rows, report.batches, len(report.failures),
    )
    return report
