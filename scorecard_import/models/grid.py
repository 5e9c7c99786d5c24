from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NewType

"""Classification results for a raw spreadsheet grid.

Rows are identified by minted ``EntityId`` values rather than by their raw row
index so downstream state does not shift when rows are filtered or reordered.
``row_index`` is kept only for display/diagnostics.
"""

__all__ = [
    "RawGrid",
    "EntityId",
    "ColumnId",
    "HeaderRow",
    "EntityRow",
    "DataRow",
    "EntitySegment",
    "ClassifiedGrid",
]

RawGrid = list[list[Any]]

EntityId = NewType("EntityId", str)


@dataclass(frozen=True)
class ColumnId:
    index: int
    header: str


@dataclass(frozen=True)
class HeaderRow:
    row_index: int
    headers: tuple[str, ...]
    pay_type_index: int
    matched_fragments: tuple[str, ...] = ()
    # technician reports: (column index, ISO date) per daily column
    date_columns: tuple[tuple[int, str], ...] = ()

    @property
    def columns(self) -> tuple[ColumnId, ...]:
        """Data-bearing columns (pay type column and blank headers excluded)."""
        return tuple(
            ColumnId(index=i, header=h)
            for i, h in enumerate(self.headers)
            if i != self.pay_type_index and h.strip() and h.strip().lower() != "pay type"
        )


@dataclass(frozen=True)
class EntityRow:
    entity_id: EntityId
    row_index: int
    raw_text: str
    display_name: str
    employee_id: str | None = None
    is_totals_row: bool = False


@dataclass(frozen=True)
class DataRow:
    row_index: int
    pay_type: str | None
    cells: tuple[Any, ...]

    def cell(self, column_index: int) -> Any:
        if column_index < 0 or column_index >= len(self.cells):
            return None
        return self.cells[column_index]


@dataclass(frozen=True)
class EntitySegment:
    """An entity marker row and the data rows up to the next marker."""
    entity: EntityRow
    rows: tuple[DataRow, ...] = ()


@dataclass(frozen=True)
class ClassifiedGrid:
    header: HeaderRow
    metadata_rows: tuple[tuple[Any, ...], ...]
    department_rows: tuple[DataRow, ...]  # rows before the first entity boundary
    segments: tuple[EntitySegment, ...] = field(default_factory=tuple)
    report_type: str = "csr_productivity"

    @property
    def entities(self) -> tuple[EntityRow, ...]:
        return tuple(s.entity for s in self.segments)

    @property
    def no_entities_detected(self) -> bool:
        return not any(not s.entity.is_totals_row for s in self.segments)

    def segment_for(self, entity_id: EntityId) -> EntitySegment | None:
        for segment in self.segments:
            if segment.entity.entity_id == entity_id:
                return segment
        return None
