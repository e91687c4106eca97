"""
Onboard Assessment File Reader

Reads a CSV or the first worksheet of an Excel workbook into headers and
string-valued rows for the assembler.

LAYOUTS
-------
- standard : first row is the header row.
- offset   : LinkIt exports open with a title block (report name, filters,
             "Powered by LinkIt!") and put the real header a few rows down,
             followed by a sub-header row (Result Date, Level, Percent, ...)
             under each assessment. Assessment headers are combined as
             "{assessment} - {sub-header}". The header row index is detected,
             or forced with header_row. Unbranded NJSLS-era and Start
             Strong exports are recognised by their assessment headers.

CSV is read through the csv module into a raw grid rather than
pd.read_csv: title-block rows are ragged (one or two cells above a wide
header), and pandas infers the column count from the first lines and
rejects the wider rows that follow. Excel sheets have a fixed width, so
pandas reads those.

Mechanical cleanup only: BOM and zero-width characters removed, cells
trimmed. Fully empty rows dropped. Nothing else is changed.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES: tuple[str, ...] = (".xlsx", ".xls", ".xlsm")
LINKIT_SIGNATURES: tuple[str, ...] = ("powered by linkit", "linkit", "selected tests")
ASSESSMENT_INDICATORS: tuple[str, ...] = ("ela", "math", "njsla", "njsls")
ASSESSMENT_HEADER_TOKENS: tuple[str, ...] = ("njsla", "njsls", "assessment", "start strong")
HEADER_SEARCH_ROWS: range = range(3, 6)
SUB_HEADER_TOKENS: tuple[str, ...] = ("result date", "level", "percent", "raw", "scaled", "average")

_INVISIBLE = re.compile(r"[\u200b\u200c\u200d\ufeff]")
_YEAR = re.compile(r"\d{4}-\d{2}")

Source = Union[str, Path, bytes, BinaryIO]


@dataclass
class FileParseError(Exception):
    reason: str
    affected_file: str
    detail: str = ""

    def __str__(self) -> str:
        text = f"Could not read '{self.affected_file}': {self.reason}"
        return f"{text} ({self.detail})" if self.detail else text


@dataclass
class ParsedFile:
    headers: list[str]
    rows: list[dict[str, str]]
    layout: str = "standard"
    header_row: int = 0
    metadata: dict[str, str] = field(default_factory=dict)

    def frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows, columns=self.headers)


# ---------------------------------------------------------------------------
# Raw grid loading
# ---------------------------------------------------------------------------


def _clean(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:
        return ""
    return _INVISIBLE.sub("", str(value)).strip()


def _read_bytes(source: Source) -> tuple[bytes, str]:
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileParseError("file not found", str(path))
        return path.read_bytes(), path.name
    if isinstance(source, bytes):
        return source, ""
    name = getattr(source, "name", "") or ""
    data = source.getvalue() if hasattr(source, "getvalue") else source.read()
    return data, Path(str(name)).name


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.warning("[file_reader] file is not UTF-8; decoding as cp1252")
        return data.decode("cp1252", errors="replace")


def load_grid(source: Source, filename: Optional[str] = None) -> list[list[str]]:
    """Every cell of the file as trimmed strings, rows padded to equal width."""
    data, detected_name = _read_bytes(source)
    label = filename or detected_name or "<upload>"

    if Path(label).suffix.lower() in EXCEL_SUFFIXES:
        try:
            df = pd.read_excel(io.BytesIO(data), sheet_name=0, header=None, dtype=str)
        except Exception as e:
            raise FileParseError("Excel workbook is not readable", label, str(e)) from e
        grid = [[_clean(v) for v in row] for row in df.itertuples(index=False, name=None)]
    else:
        try:
            grid = [[_clean(v) for v in row] for row in csv.reader(io.StringIO(_decode(data)))]
        except csv.Error as e:
            raise FileParseError("CSV is not parseable", label, str(e)) from e

    grid = [row for row in grid if any(row)]
    if not grid:
        raise FileParseError("file contains no data", label)
    width = max(len(row) for row in grid)
    return [row + [""] * (width - len(row)) for row in grid]


# ---------------------------------------------------------------------------
# Header layout
# ---------------------------------------------------------------------------


def _is_student_header(row: list[str]) -> bool:
    text = " ".join(row).lower()
    return "student" in text and "id" in text and "grade" in text


def _has_linkit_signal(opening_rows: list[str]) -> bool:
    opening = " ".join(opening_rows)
    if any(sig in opening for sig in LINKIT_SIGNATURES):
        return True
    # NJSLS-era exports drop the branding; the assessment headers give them away.
    if any(_YEAR.search(row) for row in opening_rows) and any(
        tok in row for row in opening_rows for tok in ASSESSMENT_INDICATORS
    ):
        return True
    return any(
        "start strong" in row
        or "startstrong" in row
        or ("literature" in row and "informational" in row and "percent" in row)
        for row in opening_rows
    )


def detect_linkit_layout(grid: list[list[str]]) -> Optional[int]:
    """
    Index of the main header row of a LinkIt title-block export, else None.

    Any one signal in the first five rows qualifies: LinkIt branding, a school
    year ("2023-24") alongside ELA/Math/NJSLA/NJSLS, or Start Strong. A
    Student/ID/Grade header must also sit at row 3, 4 or 5.
    """
    if len(grid) < 6:
        return None
    opening_rows = [" ".join(row).lower() for row in grid[:5]]
    if not _has_linkit_signal(opening_rows):
        return None
    for index in HEADER_SEARCH_ROWS:
        if index < len(grid) and _is_student_header(grid[index]):
            return index
    return None


def _looks_like_sub_header(row: list[str]) -> bool:
    return any(any(tok in cell.lower() for tok in SUB_HEADER_TOKENS) for cell in row if cell)


def _assessment_start(main: list[str]) -> int:
    for i, header in enumerate(main):
        lowered = header.lower()
        if any(tok in lowered for tok in ASSESSMENT_HEADER_TOKENS) or _YEAR.search(header):
            return i
    return len(main)


def combine_headers(main: list[str], sub: list[str]) -> list[str]:
    """
    Merge a main header row with the sub-header row beneath it.

    Assessment headers span several columns with the title only in the first
    cell, so the title is carried right across empty cells.
    """
    start = _assessment_start(main)
    combined: list[str] = []
    current = ""
    for i, header in enumerate(main):
        sub_header = sub[i] if i < len(sub) else ""
        if i < start:
            combined.append(header)
            continue
        current = header or current
        if sub_header and sub_header != current:
            combined.append(f"{current} - {sub_header}" if current else sub_header)
        else:
            combined.append(current)
    return combined


def _unique(headers: list[str]) -> list[str]:
    seen: dict[str, int] = {}
    result: list[str] = []
    for i, header in enumerate(headers):
        header = header or f"Column_{i + 1}"
        if header in seen:
            seen[header] += 1
            result.append(f"{header}.{seen[header]}")
        else:
            seen[header] = 0
            result.append(header)
    return result


def _metadata(grid: list[list[str]], header_row: int) -> dict[str, str]:
    meta: dict[str, str] = {}
    for row in grid[:header_row]:
        if len(row) >= 2 and row[0] and row[1]:
            meta[row[0].rstrip(":")] = row[1]
    return meta


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def read_assessment_file(
    source: Source,
    filename: Optional[str] = None,
    *,
    header_row: Optional[int] = None,
) -> ParsedFile:
    """
    Parse an assessment export.

    Parameters
    ----------
    source : str, Path, bytes or file-like
        Path or uploaded file (anything with getvalue()/read()).
    filename : str, optional
        Used for the CSV/Excel decision and in messages when ``source`` has no name.
    header_row : int, optional
        0-based index of the real header row, counted after blank rows are
        dropped. Forces offset mode.

    Raises
    ------
    FileParseError
        Unreadable file, or no data rows after the header.
    """
    grid = load_grid(source, filename)
    if filename:
        label = filename
    elif isinstance(source, (str, Path)):
        label = Path(source).name
    else:
        label = getattr(source, "name", None) or "<upload>"

    if header_row is None:
        header_row = detect_linkit_layout(grid)
        layout = "offset" if header_row is not None else "standard"
    else:
        layout = "offset"
    header_row = header_row or 0

    if header_row >= len(grid):
        raise FileParseError(f"header row {header_row} is beyond the end of the file", str(label))

    main = grid[header_row]
    data_start = header_row + 1
    if layout == "offset" and data_start < len(grid) and _looks_like_sub_header(grid[data_start]):
        headers = combine_headers(main, grid[data_start])
        data_start += 1
    else:
        headers = list(main)
    headers = _unique(headers)

    rows = [dict(zip(headers, row)) for row in grid[data_start:]]
    if not rows:
        raise FileParseError("no data rows found", str(label))

    logger.info(
        "[file_reader] %s: %s layout, header row %d, %d columns, %d rows",
        label, layout, header_row, len(headers), len(rows),
    )
    return ParsedFile(
        headers=headers,
        rows=rows,
        layout=layout,
        header_row=header_row,
        metadata=_metadata(grid, header_row),
    )
