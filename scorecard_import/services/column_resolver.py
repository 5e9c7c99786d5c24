from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..models.entries import EntrySource, ResolvedEntry
from ..models.grid import ClassifiedGrid, DataRow, EntityId, HeaderRow
from ..models.mapping import AbsoluteMapping, ColumnMapping, RelativeMapping
from .context import ReconciliationContext

"""Column mapping resolver and value extraction.

Resolution order for one (owner, column) pair:

1. relative mapping for (profile, owner, column) -> its KPI id
2. absolute mappings for the column -> KPI by name, scoped to the owner with
   fallback to the unowned KPI of the same name; ``is_per_user=False``
   attributes the value to the department-level KPI
3. nothing -> the pair is unresolved (skipped silently, counted)

Department-level rows (before the first entity, or in a totals segment nobody
was assigned to) only resolve through absolute mappings to unowned KPIs.
"""

__all__ = [
    "ColumnResolution",
    "ExtractionResult",
    "ColumnResolver",
    "parse_numeric_value",
    "extract_entries",
    "STANDARD_COLUMN_MAPPINGS",
    "standard_mappings",
]

logger = logging.getLogger(__name__)

_NUMBER_PREFIX_RE = re.compile(r"^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")


def parse_numeric_value(value: Any) -> float | None:
    """Parse a report cell into a number.

    Numbers pass through. Strings lose ``$``, ``,`` and whitespace; ``(x)`` is
    negative; empty and ``-`` are absent. Anything else is absent.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return float(value)
    if not isinstance(value, str):
        return None
    cleaned = re.sub(r"[$,\s]", "", value)
    if cleaned in ("", "-"):
        return None
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    if negative:
        cleaned = cleaned[1:-1]
    match = _NUMBER_PREFIX_RE.match(cleaned)
    if not match:
        return None
    number = float(match.group(0))
    return -number if negative else number


@dataclass(frozen=True)
class ColumnResolution:
    column_index: int
    kpi_id: str
    kpi_name: str
    owner_user_id: str | None  # None = department level
    mapping: ColumnMapping

    @property
    def is_relative(self) -> bool:
        return isinstance(self.mapping, RelativeMapping)


@dataclass(frozen=True)
class ExtractionResult:
    entries: tuple[ResolvedEntry, ...] = ()
    unresolved_columns: int = 0
    # (entity, column index) pairs that had no mapping
    unresolved: tuple[tuple[EntityId, int], ...] = field(default_factory=tuple)


class ColumnResolver:
    """Resolves columns against a context plus mappings saved during review.

    ``pending`` relative mappings replace stored ones with the same
    (profile, owner, column) key.
    """

    def __init__(self, context: ReconciliationContext, pending: Iterable[RelativeMapping] = ()) -> None:
        self._context = context
        self._relative: dict[tuple[str, int], RelativeMapping] = {}
        for mapping in context.relative_mappings:
            if mapping.profile_id == context.profile_id:
                self._relative[(mapping.owner_user_id, mapping.column_index)] = mapping
        for mapping in pending:
            self._relative[(mapping.owner_user_id, mapping.column_index)] = mapping

    def relative_mapping(self, owner_user_id: str, column_index: int) -> RelativeMapping | None:
        return self._relative.get((owner_user_id, column_index))

    def resolve(self, owner_user_id: str | None, column_index: int) -> tuple[ColumnResolution, ...]:
        """All resolutions for one (owner, column); empty when unresolved."""
        if owner_user_id is not None:
            relative = self.relative_mapping(owner_user_id, column_index)
            if relative is not None:
                return (
                    ColumnResolution(
                        column_index=column_index,
                        kpi_id=relative.kpi_id,
                        kpi_name=relative.kpi_name,
                        owner_user_id=owner_user_id,
                        mapping=relative,
                    ),
                )

        resolutions = []
        for mapping in self._context.absolute_mappings_for(column_index):
            resolution = self._resolve_absolute(mapping, owner_user_id)
            if resolution is not None:
                resolutions.append(resolution)
        return tuple(resolutions)

    def _resolve_absolute(self, mapping: AbsoluteMapping, owner_user_id: str | None) -> ColumnResolution | None:
        ctx = self._context
        if owner_user_id is None or not mapping.is_per_user:
            kpi = ctx.kpi_by_name(mapping.kpi_name, None)
        else:
            kpi = ctx.kpi_by_name(mapping.kpi_name, owner_user_id) or ctx.kpi_by_name(mapping.kpi_name, None)
        if kpi is None:
            logger.debug("absolute mapping col=%d kpi=%r has no KPI for owner=%s",
                         mapping.column_index, mapping.kpi_name, owner_user_id)
            return None
        return ColumnResolution(
            column_index=mapping.column_index,
            kpi_id=kpi.id,
            kpi_name=kpi.name,
            owner_user_id=kpi.assigned_to,
            mapping=mapping,
        )


def _relative_value(rows: Sequence[DataRow], column_index: int) -> float | None:
    for row in rows:
        if row.pay_type == "total":
            value = parse_numeric_value(row.cell(column_index))
            if value is not None:
                return value
    for row in rows:
        value = parse_numeric_value(row.cell(column_index))
        if value is not None:
            return value
    return None


def _absolute_value(rows: Sequence[DataRow], mapping: AbsoluteMapping) -> float | None:
    # Later rows with the same pay type overwrite earlier ones
    found = None
    for row in rows:
        if not mapping.matches_pay_type(row.pay_type):
            continue
        value = parse_numeric_value(row.cell(mapping.column_index))
        if value is not None:
            found = value
    return found


def _read_value(rows: Sequence[DataRow], resolution: ColumnResolution) -> float | None:
    if isinstance(resolution.mapping, RelativeMapping):
        return _relative_value(rows, resolution.column_index)
    return _absolute_value(rows, resolution.mapping)


def extract_entries(
    grid: ClassifiedGrid,
    owners: Mapping[EntityId, str],
    context: ReconciliationContext,
    pending_mappings: Iterable[RelativeMapping] = (),
) -> ExtractionResult:
    """Turn the classified grid into resolved (kpi, period) values.

    ``owners`` maps each committable entity to its user id; entities not in
    it contribute nothing, except totals segments which are read as
    department-level rows. Department-level values coming from several
    entities are summed; values read from department-level rows replace that
    sum.
    """
    resolver = ColumnResolver(context, pending_mappings)
    columns = grid.header.columns

    owned: dict[str, ResolvedEntry] = {}
    summed: dict[str, ResolvedEntry] = {}
    explicit: dict[str, ResolvedEntry] = {}
    unresolved: list[tuple[EntityId, int]] = []

    def _entry(resolution: ColumnResolution, value: float) -> ResolvedEntry:
        return ResolvedEntry(
            kpi_id=resolution.kpi_id,
            period=context.period,
            value=value,
            entry_type=context.entry_type,
            owner_user_id=resolution.owner_user_id,
            source=EntrySource.COLUMN,
            column_index=resolution.column_index,
        )

    department_row_sets: list[Sequence[DataRow]] = []
    if grid.department_rows:
        department_row_sets.append(grid.department_rows)

    for segment in grid.segments:
        entity_id = segment.entity.entity_id
        owner = owners.get(entity_id)
        if owner is None:
            if segment.entity.is_totals_row:
                department_row_sets.append(segment.rows)
            continue
        for column in columns:
            resolutions = resolver.resolve(owner, column.index)
            if not resolutions:
                unresolved.append((entity_id, column.index))
                continue
            for resolution in resolutions:
                value = _read_value(segment.rows, resolution)
                if value is None:
                    continue
                if resolution.owner_user_id is None:
                    previous = summed.get(resolution.kpi_id)
                    total = value if previous is None else previous.value + value
                    summed[resolution.kpi_id] = _entry(resolution, total)
                else:
                    owned[resolution.kpi_id] = _entry(resolution, value)

    for rows in department_row_sets:
        for column in columns:
            for resolution in resolver.resolve(None, column.index):
                value = _read_value(rows, resolution)
                if value is not None:
                    explicit[resolution.kpi_id] = _entry(resolution, value)

    department = {**summed, **explicit}
    entries = tuple(owned.values()) + tuple(department.values())
    logger.debug("extracted %d entries (%d owned, %d department), %d unresolved columns",
                 len(entries), len(owned), len(department), len(unresolved))
    return ExtractionResult(
        entries=entries,
        unresolved_columns=len(unresolved),
        unresolved=tuple(unresolved),
    )



# Report column -> KPI name per pay type for the stock CSR productivity layout.
STANDARD_COLUMN_MAPPINGS: dict[str, dict[str, str]] = {
    "total": {
        "sold hrs": "Total Hours",
        "#so": "Total RO's",
        "lab sold": "Total Labour Sales",
        "e.l.r.": "Total ELR",
    },
    "customer": {
        "sold hrs": "CP Hours",
        "#so": "CP RO's",
        "lab sold": "CP Labour Sales",
        "e.l.r.": "CP ELR",
        "parts sold": "CP Parts Sales",
    },
    "warranty": {
        "sold hrs": "Warranty Hours",
        "#so": "Warranty RO's",
        "lab sold": "Warranty Labour Sales",
    },
    "internal": {
        "sold hrs": "Internal Hours",
        "#so": "Internal RO's",
        "lab sold": "Internal Labour Sales",
    },
}


def standard_mappings(profile_id: str, header: HeaderRow) -> tuple[AbsoluteMapping, ...]:
    """Absolute mappings for the stock CSR columns found in ``header``."""
    mappings = []
    for column in header.columns:
        key = column.header.strip().lower()
        for pay_type, names in STANDARD_COLUMN_MAPPINGS.items():
            kpi_name = names.get(key)
            if kpi_name is None:
                continue
            mappings.append(
                AbsoluteMapping(
                    profile_id=profile_id,
                    column_index=column.index,
                    kpi_name=kpi_name,
                    pay_type_filter=pay_type,
                )
            )
    return tuple(mappings)
