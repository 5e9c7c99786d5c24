from __future__ import annotations

import datetime as dt
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.grid import RawGrid

"""Spreadsheet reader.

Reads one sheet of a report workbook into a RawGrid (header=None, no type
inference on headers). NaN cells become None and trailing empty cells are
dropped, so rows are ragged the way the report looks on screen.

Also extracts the report period and store name from the first rows.
"""

__all__ = [
    "ReportReadError",
    "ReportSheet",
    "SHEET_PREFERENCES",
    "choose_sheet",
    "read_report_grid",
    "extract_report_period",
    "extract_report_start_date",
    "extract_store_name",
]

SHEET_PREFERENCES: dict[str, tuple[str, ...]] = {
    "csr_productivity": ("All Repair Orders", "Summary", "Service Advisor", "Data"),
    "technician_hours": ("tech", "hour", "productivity"),
}

METADATA_SCAN_ROWS = 10
STORE_NAME_SCAN_ROWS = 5

_DATE_RANGE_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})\s*[-–]\s*(\d{1,2})/(\d{1,2})/(\d{4})")
_MONTH_YEAR_RE = re.compile(
    r"(January|February|March|April|May|June|July|August|September|October|November|December)\s+(\d{4})",
    re.IGNORECASE,
)
_MONTH_NAMES = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
)
_DEALERSHIP_RE = re.compile(
    r"chevrolet|ford|toyota|honda|dodge|chrysler|jeep|ram|gmc|buick|cadillac|nissan|hyundai|kia|"
    r"mazda|subaru|volkswagen|bmw|mercedes|audi|lexus|infiniti|acura|volvo|lincoln|mitsubishi|"
    r"fiat|alfa|maserati|porsche|jaguar|land rover|mini|smart|dealership|motors|automotive|auto group",
    re.IGNORECASE,
)


class ReportReadError(Exception):
    """Raised when the workbook cannot be opened or has no usable sheet."""


@dataclass(frozen=True)
class ReportSheet:
    file_name: str
    sheet_name: str
    grid: RawGrid


def choose_sheet(sheet_names: Sequence[str], report_type: str = "csr_productivity") -> str:
    """First sheet whose name contains a preferred keyword, else the first sheet."""
    if not sheet_names:
        raise ReportReadError("workbook has no sheets")
    for preferred in SHEET_PREFERENCES.get(report_type, ()):
        for name in sheet_names:
            if preferred.lower() in name.lower():
                return name
    return sheet_names[0]


def _cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if pd.isna(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if hasattr(value, "item"):  # numpy scalar -> python scalar
        return value.item()
    return value


def read_report_grid(
    path: Path,
    report_type: str = "csr_productivity",
    sheet_name: str | None = None,
) -> ReportSheet:
    """Read the report sheet of ``path`` as a raw grid.

    Raises:
        ReportReadError: the file cannot be opened, or ``sheet_name`` does not exist.
    """
    try:
        xls = pd.ExcelFile(path)
    except (OSError, ValueError) as e:
        raise ReportReadError(f"cannot open {path.name}: {e}") from e

    names = [str(n) for n in xls.sheet_names]
    if sheet_name is not None:
        if sheet_name not in names:
            raise ReportReadError(f"sheet '{sheet_name}' not found in {path.name}: {names}")
        target = sheet_name
    else:
        target = choose_sheet(names, report_type)

    # keep_default_na=False: "NA" etc. stay text, only empty cells become NaN
    df = xls.parse(target, header=None, keep_default_na=False, na_values=[""])
    grid: RawGrid = []
    for raw in df.itertuples(index=False, name=None):
        row = [_cell(v) for v in raw]
        while row and (row[-1] is None or (isinstance(row[-1], str) and not row[-1].strip())):
            row.pop()
        grid.append(row)
    return ReportSheet(file_name=path.name, sheet_name=target, grid=grid)


def extract_report_period(grid: RawGrid, max_rows: int = METADATA_SCAN_ROWS) -> str | None:
    """``YYYY-MM`` from a date range (start month) or a ``Month YYYY`` cell in the first rows."""
    for row in grid[:max_rows]:
        for cell in row:
            if isinstance(cell, (dt.datetime, dt.date)):
                continue
            if not isinstance(cell, str):
                continue
            match = _DATE_RANGE_RE.search(cell)
            if match:
                month, day, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
                try:
                    dt.date(year, month, day)
                except ValueError:
                    continue
                return f"{year:04d}-{month:02d}"
            match = _MONTH_YEAR_RE.search(cell)
            if match:
                month = _MONTH_NAMES.index(match.group(1).lower()) + 1
                return f"{int(match.group(2)):04d}-{month:02d}"
    return None


def extract_report_start_date(grid: RawGrid, max_rows: int = METADATA_SCAN_ROWS) -> str | None:
    """ISO start date of the first ``MM/DD/YYYY - MM/DD/YYYY`` range in the first rows."""
    for row in grid[:max_rows]:
        for cell in row:
            if not isinstance(cell, str):
                continue
            match = _DATE_RANGE_RE.search(cell)
            if not match:
                continue
            try:
                start = dt.date(int(match.group(3)), int(match.group(1)), int(match.group(2)))
            except ValueError:
                continue
            return start.isoformat()
    return None


def extract_store_name(grid: RawGrid, max_rows: int = STORE_NAME_SCAN_ROWS) -> str | None:
    for row in grid[:max_rows]:
        for cell in row:
            if isinstance(cell, str) and 5 < len(cell) < 100 and _DEALERSHIP_RE.search(cell):
                return cell.strip()
    return None
