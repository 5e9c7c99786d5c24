"""Factories shared by the test modules."""
from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Any

import pandas as pd

from scorecard_import.models import KPIDefinition, MetricType, RelativeMapping, RosterUser
from scorecard_import.services.context import ReconciliationContext

STORE_ID = "S1"
PROFILE_ID = "P1"
DEPARTMENT_ID = "D1"
PERIOD = "2025-03"

ROSTER = (
    RosterUser(id="U1", display_name="Kayla Bender"),
    RosterUser(id="U2", display_name="Marcus Lee"),
    RosterUser(id="U3", display_name="Priya Raman"),
)

KPI_NAMES = (
    ("CP Hours", MetricType.UNIT),
    ("CP RO's", MetricType.UNIT),
    ("CP Labour Sales", MetricType.DOLLAR),
    ("CP ELR", MetricType.DOLLAR),
    ("CP Hours Per RO", MetricType.UNIT),
    ("CP Labour Sales Per RO", MetricType.DOLLAR),
)

DEPARTMENT_KPIS = (
    KPIDefinition(id="D-total-labour", name="Total Labour Sales", metric_type=MetricType.DOLLAR),
    KPIDefinition(id="D-total-ros", name="Total RO's"),
)


def owner_kpis(owner: str, prefix: str) -> list[KPIDefinition]:
    """The CP KPI set for one owner, ids like ``U1-cp-hours``."""
    kpis = []
    for name, metric_type in KPI_NAMES:
        slug = name.lower().replace("'", "").replace(" ", "-")
        kpis.append(KPIDefinition(id=f"{prefix}-{slug}", name=name, metric_type=metric_type, assigned_to=owner))
    return kpis


def all_kpis() -> tuple[KPIDefinition, ...]:
    return tuple(owner_kpis("U1", "U1") + owner_kpis("U2", "U2")) + DEPARTMENT_KPIS


def make_context(**overrides: Any) -> ReconciliationContext:
    values: dict[str, Any] = dict(
        store_id=STORE_ID,
        profile_id=PROFILE_ID,
        department_id=DEPARTMENT_ID,
        period=PERIOD,
        roster=ROSTER,
        kpis=all_kpis(),
    )
    values.update(overrides)
    return ReconciliationContext(**values)


def csr_grid() -> list[list[Any]]:
    """CSR productivity layout: two advisors and an 'All Repair Orders' totals section."""
    return [
        ["Sunrise Ford Service"],
        ["CSR Productivity 03/01/2025 - 03/31/2025"],
        ["Pay Type", "#SO", "Sold Hrs", "Lab Sold", "E.L.R."],
        ["Advisor 1099 - Kayla Bender"],
        ["Customer", 40, 100.0, 10000, 100],
        ["Warranty", 5, 10.0, 1000, 100],
        ["Total", 45, 110.0, 11000, 100],
        [],
        ["Advisor 2001 - Marcus Lee"],
        ["Customer", 20, 50.0, "$4,000.00", 80],
        ["Total", 20, 50.0, "$4,000.00", 80],
        ["All Repair Orders"],
        ["Customer", 60, 150.0, 14000, 93.33],
        ["Total", 65, 160.0, 15250, 93.75],
    ]


def relative_mappings_for(owner: str, prefix: str) -> list[RelativeMapping]:
    """Columns 1-3 of the CSR layout: CP RO's, CP Hours, CP Labour Sales."""
    return [
        RelativeMapping(PROFILE_ID, owner, 1, f"{prefix}-cp-ros", "CP RO's"),
        RelativeMapping(PROFILE_ID, owner, 2, f"{prefix}-cp-hours", "CP Hours"),
        RelativeMapping(PROFILE_ID, owner, 3, f"{prefix}-cp-labour-sales", "CP Labour Sales"),
    ]


def write_report(path: Path, rows: list[list[Any]], sheet_name: str = "All Repair Orders") -> Path:
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return path


TECH_ROSTER = (
    RosterUser(id="T1", display_name="Sam Porter"),
    RosterUser(id="T2", display_name="Dana Kim"),
)


def technician_kpis(owner: str, sold_name: str = "Closed Hours") -> list[KPIDefinition]:
    """Available / sold / Productive for one technician, ids like ``T1-available-hours``."""
    specs = (
        ("Available Hours", MetricType.UNIT),
        (sold_name, MetricType.UNIT),
        ("Productive", MetricType.PERCENTAGE),
    )
    return [
        KPIDefinition(
            id=f"{owner}-{name.lower().replace(' ', '-')}",
            name=name,
            metric_type=metric_type,
            assigned_to=owner,
        )
        for name, metric_type in specs
    ]


def technician_grid() -> list[list[Any]]:
    """Technician hours layout: one column per day from Fri 2025-03-28 to Thu 2025-04-03.

    Sam Porter appears twice; the second block adds one sold hour on 03-28.
    """
    days = [dt.datetime(2025, 3, 28) + dt.timedelta(days=i) for i in range(7)]
    return [
        ["Sunrise Ford Service"],
        ["Technician Hours"],
        ["Technician", *days],
        ["Sam Porter"],
        ["Sold Hrs", 8, 7, None, 9, 6, 10, 5],
        ["Clocked In Hrs", 8, 8, None, 8, 8, 8, 8],
        ["Dana Kim"],
        ["Clsd Hrs", 5, 5, 5, 5, 5, 5, 5],
        ["Available", 10, 10, 10, 10, 10, 10, 10],
        ["Sam Porter"],
        ["Sold Hrs", 1],
        ["Grand Total"],
        ["Sold Hrs", 14, 12, 5, 14, 11, 15, 10],
    ]
