from __future__ import annotations

import datetime as dt
import logging
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from ..models.entries import EntrySource, ResolvedEntry
from ..models.grid import ClassifiedGrid, DataRow, EntityId
from .classifier import CLOCKED_IN_ROW, SOLD_HOURS_ROW
from .column_resolver import ExtractionResult, parse_numeric_value
from .context import ReconciliationContext

"""Technician hours extraction.

Daily sold and clocked-in hours are summed per technician into Monday-start
weeks (``entry_type`` weekly, period = ISO Monday) or calendar months
(monthly, period = ``YYYY-MM``). Each bucket yields three entries on the
technician's own KPIs:

    Available Hours      clocked-in hours
    Closed Hours         sold hours ("Open and Closed Hours" when configured)
    Productive           sold / clocked-in as a percentage, 2 decimals

Productive is omitted for a bucket with no clocked-in hours. Blocks that
repeat a technician are merged because values are summed per owner.
"""

__all__ = [
    "AVAILABLE_HOURS_KPI",
    "PRODUCTIVE_KPI",
    "SOLD_HOURS_KPIS",
    "HoursTotal",
    "week_start",
    "period_bucket",
    "dominant_month",
    "bucket_hours",
    "extract_technician_entries",
]

logger = logging.getLogger(__name__)

AVAILABLE_HOURS_KPI = "Available Hours"
PRODUCTIVE_KPI = "Productive"
SOLD_HOURS_KPIS = {
    "closed_hours": "Closed Hours",
    "open_and_closed_hours": "Open and Closed Hours",
}


@dataclass(frozen=True)
class HoursTotal:
    period: str
    sold_hours: float = 0.0
    clocked_in_hours: float = 0.0

    @property
    def productive(self) -> float | None:
        """Sold / clocked-in as a percentage, None when nobody clocked in."""
        if self.clocked_in_hours == 0:
            return None
        return round(self.sold_hours / self.clocked_in_hours * 100, 2)


def week_start(iso_date: str) -> str:
    """ISO date of the Monday on or before ``iso_date``."""
    day = dt.date.fromisoformat(iso_date[:10])
    return (day - dt.timedelta(days=day.weekday())).isoformat()


def period_bucket(iso_date: str, entry_type: str) -> str:
    if entry_type == "weekly":
        return week_start(iso_date)
    return iso_date[:7]


def dominant_month(dates: Iterable[str]) -> str | None:
    """Most frequent ``YYYY-MM`` among ``dates``; the earlier month wins a tie."""
    counts = Counter(d[:7] for d in dates)
    if not counts:
        return None
    return max(sorted(counts), key=lambda m: counts[m])


def bucket_hours(
    rows: Sequence[DataRow],
    date_columns: Sequence[tuple[int, str]],
    entry_type: str = "monthly",
) -> tuple[HoursTotal, ...]:
    """Sum the sold/clocked-in rows of one technician into period buckets.

    Rows with any other label are ignored; blank or non-numeric cells count as 0.
    """
    sold: dict[str, float] = {}
    clocked: dict[str, float] = {}
    for row in rows:
        if row.pay_type == SOLD_HOURS_ROW:
            target = sold
        elif row.pay_type == CLOCKED_IN_ROW:
            target = clocked
        else:
            continue
        for column_index, iso in date_columns:
            bucket = period_bucket(iso, entry_type)
            value = parse_numeric_value(row.cell(column_index)) or 0.0
            target[bucket] = target.get(bucket, 0.0) + value
    return tuple(
        HoursTotal(period=p, sold_hours=sold.get(p, 0.0), clocked_in_hours=clocked.get(p, 0.0))
        for p in sorted(set(sold) | set(clocked))
    )


def _merge(totals: Iterable[HoursTotal]) -> tuple[HoursTotal, ...]:
    merged: dict[str, HoursTotal] = {}
    for total in totals:
        previous = merged.get(total.period)
        if previous is not None:
            total = HoursTotal(
                period=total.period,
                sold_hours=previous.sold_hours + total.sold_hours,
                clocked_in_hours=previous.clocked_in_hours + total.clocked_in_hours,
            )
        merged[total.period] = total
    return tuple(merged[p] for p in sorted(merged))


def extract_technician_entries(
    grid: ClassifiedGrid,
    owners: Mapping[EntityId, str],
    context: ReconciliationContext,
    sold_hours_label: str = "closed_hours",
) -> ExtractionResult:
    """Per-technician Available / Closed / Productive entries for every period bucket.

    KPIs are looked up by name among the owner's own KPIs; an owner missing
    one of the three counts once towards ``unresolved_columns``.
    """
    try:
        sold_kpi_name = SOLD_HOURS_KPIS[sold_hours_label]
    except KeyError:
        raise ValueError(f"unknown sold hours label: {sold_hours_label}") from None

    date_columns = grid.header.date_columns
    per_owner: dict[str, list[HoursTotal]] = {}
    for segment in grid.segments:
        owner = owners.get(segment.entity.entity_id)
        if owner is None or segment.entity.is_totals_row:
            continue
        per_owner.setdefault(owner, []).extend(bucket_hours(segment.rows, date_columns, context.entry_type))

    entries: list[ResolvedEntry] = []
    unresolved = 0
    for owner, totals in per_owner.items():
        kpis = {
            name: context.kpi_by_name(name, owner)
            for name in (AVAILABLE_HOURS_KPI, sold_kpi_name, PRODUCTIVE_KPI)
        }
        missing = [name for name, kpi in kpis.items() if kpi is None]
        if missing:
            unresolved += len(missing)
            logger.debug("owner=%s has no KPI for %s", owner, ", ".join(missing))

        for total in _merge(totals):
            values = {
                AVAILABLE_HOURS_KPI: total.clocked_in_hours,
                sold_kpi_name: total.sold_hours,
                PRODUCTIVE_KPI: total.productive,
            }
            for name, value in values.items():
                kpi = kpis[name]
                if kpi is None or value is None:
                    continue
                entries.append(
                    ResolvedEntry(
                        kpi_id=kpi.id,
                        period=total.period,
                        value=value,
                        entry_type=context.entry_type,
                        owner_user_id=owner,
                        source=EntrySource.COLUMN,
                    )
                )

    logger.debug("extracted %d technician entries for %d owners", len(entries), len(per_owner))
    return ExtractionResult(entries=tuple(entries), unresolved_columns=unresolved)
