from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .kpi import EntryStatus

"""Output records of a reconciliation pass.

ResolvedEntry is the raw (kpi, period) -> value result. ScorecardEntry adds
variance/status and is what gets upserted on (kpi_id, period, entry_type).
A new pass for the same period supersedes the previous values, it does not
merge with them.
"""

__all__ = [
    "EntrySource",
    "ResolvedEntry",
    "ScorecardEntry",
    "ImportStatus",
    "ImportLogRecord",
]


class EntrySource(Enum):
    COLUMN = "column"
    DERIVED = "derived"


@dataclass(frozen=True)
class ResolvedEntry:
    kpi_id: str
    period: str  # "YYYY-MM" for monthly, ISO week start for weekly
    value: float
    entry_type: str = "monthly"
    owner_user_id: str | None = None
    source: EntrySource = EntrySource.COLUMN
    column_index: int | None = None

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (self.kpi_id, self.period, self.entry_type)


@dataclass(frozen=True)
class ScorecardEntry:
    kpi_id: str
    period: str
    entry_type: str
    actual_value: float
    variance: float | None = None
    status: EntryStatus | None = None

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (self.kpi_id, self.period, self.entry_type)


class ImportStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class ImportLogRecord:
    """Audit row written once per import invocation (``scorecard_import_logs``)."""
    store_id: str
    profile_id: str
    department_id: str | None
    file_name: str
    period: str
    entry_count: int
    user_mappings: dict[str, str] = field(default_factory=dict)  # report name -> user id
    match_outcomes: dict[str, str] = field(default_factory=dict)  # report name -> MatchStatus value
    unmatched_users: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    status: ImportStatus = ImportStatus.SUCCESS
    import_source: str = "drop_zone"
