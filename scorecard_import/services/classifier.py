from __future__ import annotations

import datetime as dt
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..models.grid import (
    ClassifiedGrid,
    DataRow,
    EntityId,
    EntityRow,
    EntitySegment,
    HeaderRow,
    RawGrid,
)

"""Header/row classifier.

Scans the raw grid top-down for the column-header row, then splits the rows
after it into entity segments (advisor / technician marker rows plus the data
rows that follow them). Rows above the header are metadata; data rows before
the first marker are department-level.

Two report layouts are supported:

- csr_productivity: "Advisor 1099 - Kayla Bender" marker rows, pay type column
  (Customer / Warranty / Internal / Total) on each data row.
- technician_hours: the header is the first row with at least 3 calendar
  dates (one column per day); a technician name opens each block and the
  rows under it are labelled in the first column ("Sold Hrs",
  "Clocked In Hrs").
"""

__all__ = [
    "HeaderNotFound",
    "ReportFormat",
    "CSR_PRODUCTIVITY",
    "TECHNICIAN_HOURS",
    "REPORT_FORMATS",
    "DEFAULT_TOTALS_PATTERNS",
    "get_report_format",
    "SOLD_HOURS_ROW",
    "CLOCKED_IN_ROW",
    "find_header_row",
    "find_date_header_row",
    "parse_header_date",
    "classify_grid",
    "is_totals_name",
    "cell_text",
]

CSR_HEADER_FRAGMENTS = ("pay type", "#so", "sold hrs", "lab sold", "e.l.r.", "parts sold", "elr")

MIN_HEADER_CELLS = 3
MIN_HEADER_MATCHES = 2
MIN_HEADER_DATES = 3
DATE_HEADER_SCAN_ROWS = 30
MARKER_SCAN_COLUMNS = 5

SOLD_HOURS_ROW = "sold hrs"
CLOCKED_IN_ROW = "clocked in hrs"
_SOLD_LABELS = (
    "sold hrs", "sold hours", "clsd hrs", "closed hrs", "closed hours", "open and closed", "open  closed",
)
_CLOCKED_LABELS = ("clocked in", "clock in", "avail")

ADVISOR_MARKER_RE = re.compile(r"^Advisor\s+(\d+)\s*[-–—]\s*(\S.*)$", re.IGNORECASE)

# 部門合計セクションの開始行
SECTION_TOTALS_RE = re.compile(r"all\s+repair\s+orders|department\s+total|grand\s+total", re.IGNORECASE)

DEFAULT_TOTALS_PATTERNS = (
    r"^all\s+repair\s+orders$",
    r"^total$",
    r"^grand\s+total$",
    r"^department\s+total$",
)

_TECH_EXCLUDED_WORDS = (
    "technician", "tech", "advisor", "date", "day", "week", "month", "total",
    "sold hrs", "clocked", "available", "productive", "efficiency", "hours",
    "name", "employee", "store", "department", "grand total", "dept total",
)
_DATE_LIKE_RE = re.compile(r"^\d{1,2}[/-]\d{1,2}[/-]\d{2,4}$")
_US_DATE_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[ T].*)?$")
_MONTH_PREFIX_RE = re.compile(r"^(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)", re.IGNORECASE)


class HeaderNotFound(Exception):
    """Raised when no row reaches the header-match threshold."""


MarkerParser = Callable[[str, Sequence[Any]], tuple[str, str | None] | None]
PayTypeReader = Callable[[Sequence[Any], int], str | None]


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:  # NaN
        return ""
    return str(value).strip()


def _trim_trailing_empty(row: Sequence[Any]) -> list[Any]:
    cells = list(row or [])
    while cells and cell_text(cells[-1]) == "":
        cells.pop()
    return cells


def _parse_advisor_marker(text: str, row: Sequence[Any]) -> tuple[str, str | None] | None:
    match = ADVISOR_MARKER_RE.match(text)
    if not match:
        return None
    return match.group(2).strip(), match.group(1)


def _normalise_label(text: str) -> str:
    return re.sub(r"[^a-z0-9 ]", "", text.lower()).strip()


def _row_kind(label: str) -> str | None:
    if any(k in label for k in _SOLD_LABELS):
        return SOLD_HOURS_ROW
    if any(k in label for k in _CLOCKED_LABELS):
        return CLOCKED_IN_ROW
    return None


def _looks_like_technician_name(text: str, row: Sequence[Any]) -> tuple[str, str | None] | None:
    first = row[0] if row else None
    # the name is always in column A
    if isinstance(first, (int, float)) or cell_text(first) != text:
        return None
    if len(text) < 2 or len(text) > 60:
        return None
    low = text.lower()
    if any(low == w or low.startswith(w + " ") or low.endswith(" " + w) for w in _TECH_EXCLUDED_WORDS):
        return None
    if _row_kind(_normalise_label(text)) is not None:
        return None
    if not re.search(r"[a-zA-Z]", text):
        return None
    if _DATE_LIKE_RE.match(text):
        return None
    if _MONTH_PREFIX_RE.match(text) and len(text) < 12:
        return None
    return text, None


def _csr_pay_type(row: Sequence[Any], pay_type_index: int) -> str | None:
    value = cell_text(row[pay_type_index]).lower() if pay_type_index < len(row) else ""
    if "customer" in value or value == "cp":
        return "customer"
    if "warranty" in value:
        return "warranty"
    if "internal" in value:
        return "internal"
    if "total" in value:
        return "total"
    return None


def _technician_row_label(row: Sequence[Any], pay_type_index: int) -> str | None:
    raw = cell_text(row[pay_type_index]) if pay_type_index < len(row) else ""
    label = _normalise_label(raw)
    if not label:
        return None
    return _row_kind(label) or label


@dataclass(frozen=True)
class ReportFormat:
    name: str
    header_fragments: tuple[str, ...]
    parse_marker: MarkerParser
    read_pay_type: PayTypeReader
    pay_type_header: str | None = "pay type"
    totals_patterns: tuple[str, ...] = field(default=DEFAULT_TOTALS_PATTERNS)
    # header is a row of calendar dates rather than named columns
    date_header: bool = False


CSR_PRODUCTIVITY = ReportFormat(
    name="csr_productivity",
    header_fragments=CSR_HEADER_FRAGMENTS,
    parse_marker=_parse_advisor_marker,
    read_pay_type=_csr_pay_type,
)

TECHNICIAN_HOURS = ReportFormat(
    name="technician_hours",
    header_fragments=(),
    parse_marker=_looks_like_technician_name,
    read_pay_type=_technician_row_label,
    pay_type_header=None,
    date_header=True,
)

REPORT_FORMATS = {f.name: f for f in (CSR_PRODUCTIVITY, TECHNICIAN_HOURS)}


def get_report_format(name: str | None) -> ReportFormat:
    if not name:
        return CSR_PRODUCTIVITY
    try:
        return REPORT_FORMATS[name]
    except KeyError:
        raise ValueError(f"unknown report type: {name}") from None


def is_totals_name(name: str, patterns: Iterable[str] = DEFAULT_TOTALS_PATTERNS) -> bool:
    text = " ".join(name.split())
    return any(re.search(p, text, re.IGNORECASE) for p in patterns)


def find_header_row(
    grid: RawGrid,
    fragments: Sequence[str] = CSR_HEADER_FRAGMENTS,
    pay_type_header: str | None = "pay type",
    max_scan_rows: int | None = None,
) -> HeaderRow:
    """Return the first row (top-down) containing >= 2 expected header fragments.

    Rows with fewer than 3 cells (after trailing blanks) are skipped.
    """
    limit = len(grid) if max_scan_rows is None else min(max_scan_rows, len(grid))
    for i in range(limit):
        row = _trim_trailing_empty(grid[i])
        if len(row) < MIN_HEADER_CELLS:
            continue
        lowered = [cell_text(c).lower() for c in row]
        matched = tuple(f for f in fragments if any(f in cell for cell in lowered if cell))
        if len(matched) < MIN_HEADER_MATCHES:
            continue
        pay_type_index = 0
        if pay_type_header is not None:
            for idx, cell in enumerate(lowered):
                if pay_type_header in cell or cell == "type":
                    pay_type_index = idx
                    break
        return HeaderRow(
            row_index=i,
            headers=tuple(cell_text(c) for c in row),
            pay_type_index=pay_type_index,
            matched_fragments=matched,
        )
    raise HeaderNotFound(
        f"no header row matched at least {MIN_HEADER_MATCHES} of {list(fragments)} "
        f"in the first {limit} rows"
    )


def parse_header_date(value: Any) -> str | None:
    """ISO ``YYYY-MM-DD`` for a date-valued header cell, else None.

    Accepts datetime/date objects (pandas Timestamps included) and
    ``M/D/YYYY``, ``M/D/YY`` or ``YYYY-MM-DD`` strings. Bare numbers are
    never dates here; they are the hours under the header.
    """
    if isinstance(value, dt.datetime):
        return value.date().isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        m = _US_DATE_RE.match(text)
        if m:
            month, day, year = (int(g) for g in m.groups())
            if year < 100:
                year += 2000
            return dt.date(year, month, day).isoformat()
        m = _ISO_DATE_RE.match(text)
        if m:
            return dt.date(*(int(g) for g in m.groups())).isoformat()
    except ValueError:
        # 2/30/2025 のような存在しない日付
        return None
    return None


def find_date_header_row(
    grid: RawGrid,
    min_dates: int = MIN_HEADER_DATES,
    max_scan_rows: int | None = None,
) -> HeaderRow:
    """Return the first row with at least ``min_dates`` date cells after column A."""
    scan = DATE_HEADER_SCAN_ROWS if max_scan_rows is None else max_scan_rows
    limit = min(scan, len(grid))
    for i in range(limit):
        row = list(grid[i] or [])
        parsed = ((ci, parse_header_date(v)) for ci, v in enumerate(row) if ci >= 1)
        dates = tuple((ci, iso) for ci, iso in parsed if iso)
        if len(dates) < min_dates:
            continue
        by_index = dict(dates)
        return HeaderRow(
            row_index=i,
            headers=tuple(by_index.get(ci, cell_text(v)) for ci, v in enumerate(row)),
            pay_type_index=0,
            date_columns=dates,
        )
    raise HeaderNotFound(f"no date header row with at least {min_dates} daily date columns in the first {limit} rows")


def _marker_cell(row: Sequence[Any]) -> str:
    for value in list(row)[:MARKER_SCAN_COLUMNS]:
        text = cell_text(value)
        if text:
            return text
    return ""


def classify_grid(
    grid: RawGrid,
    report_format: ReportFormat = CSR_PRODUCTIVITY,
    header_fragments: Sequence[str] | None = None,
    totals_patterns: Sequence[str] | None = None,
    max_scan_rows: int | None = None,
) -> ClassifiedGrid:
    """Classify a raw grid into header, metadata, department rows and entity segments.

    Raises:
        HeaderNotFound: no row qualifies as the column-header row.
    """
    if report_format.date_header:
        header = find_date_header_row(grid, max_scan_rows=max_scan_rows)
    else:
        header = find_header_row(
            grid,
            fragments=tuple(header_fragments) if header_fragments else report_format.header_fragments,
            pay_type_header=report_format.pay_type_header,
            max_scan_rows=max_scan_rows,
        )
    patterns = tuple(totals_patterns) if totals_patterns else report_format.totals_patterns

    metadata_rows = tuple(tuple(r or []) for r in grid[: header.row_index])
    department_rows: list[DataRow] = []
    segments: list[EntitySegment] = []
    current: EntityRow | None = None
    current_rows: list[DataRow] = []
    minted = 0

    def _close() -> None:
        if current is not None:
            segments.append(EntitySegment(entity=current, rows=tuple(current_rows)))

    for i in range(header.row_index + 1, len(grid)):
        row = list(grid[i] or [])
        if not any(cell_text(c) for c in row):
            continue

        text = _marker_cell(row)
        parsed = report_format.parse_marker(text, row) if text else None
        opens_totals = parsed is None and bool(text) and SECTION_TOTALS_RE.search(text) is not None

        if parsed is not None or opens_totals:
            _close()
            minted += 1
            if parsed is not None:
                display_name, employee_id = parsed
            else:
                display_name, employee_id = text, None
            current = EntityRow(
                entity_id=EntityId(f"entity-{minted}"),
                row_index=i,
                raw_text=text,
                display_name=display_name,
                employee_id=employee_id,
                is_totals_row=opens_totals or is_totals_name(display_name, patterns),
            )
            current_rows = []
            continue

        data_row = DataRow(
            row_index=i,
            pay_type=report_format.read_pay_type(row, header.pay_type_index),
            cells=tuple(row),
        )
        if current is None:
            department_rows.append(data_row)
        else:
            current_rows.append(data_row)

    _close()

    return ClassifiedGrid(
        header=header,
        metadata_rows=metadata_rows,
        department_rows=tuple(department_rows),
        segments=tuple(segments),
        report_type=report_format.name,
    )
