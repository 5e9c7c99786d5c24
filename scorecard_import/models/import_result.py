from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .entries import ImportLogRecord, ScorecardEntry
from .mapping import ColumnTemplate, RelativeMapping
from .roster import Alias

"""Commit plan and result models.

A CommitPlan is everything a reconciliation pass proposes to write. Nothing
reaches the store until ``execute_commit`` is called with it, so discarding
the plan is the cancel path.
"""

__all__ = [
    "CommitPlan",
    "RecordFailure",
    "CommitResult",
    "TemplateApplicationResult",
    "FileStatus",
    "FileOutcome",
    "RunResult",
]


@dataclass(frozen=True)
class CommitPlan:
    aliases: tuple[Alias, ...] = ()
    entries: tuple[ScorecardEntry, ...] = ()
    relative_mappings: tuple[RelativeMapping, ...] = ()
    templates: tuple[ColumnTemplate, ...] = ()
    import_log: ImportLogRecord | None = None
    unresolved_columns: int = 0  # (entity, column) pairs with no mapping
    derivations_skipped: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.aliases or self.entries or self.relative_mappings or self.templates)


@dataclass(frozen=True)
class RecordFailure:
    record_type: str
    record_key: str
    message: str


@dataclass(frozen=True)
class CommitResult:
    aliases_written: int
    entries_written: int
    mappings_written: int
    templates_written: int
    import_log_written: bool
    failures: tuple[RecordFailure, ...] = ()
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def elapsed_seconds(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


@dataclass(frozen=True)
class TemplateApplicationResult:
    owners_linked: tuple[str, ...] = ()
    mappings_created: tuple[RelativeMapping, ...] = ()
    failures: tuple[RecordFailure, ...] = field(default_factory=tuple)


class FileStatus(Enum):
    SUCCESS = "success"  # every entity resolved, every record saved
    PARTIAL = "partial"  # read, but entities/columns need review or records failed
    FAILED = "failed"  # could not read the file at all


@dataclass(frozen=True)
class FileOutcome:
    file_name: str
    status: FileStatus
    period: str | None = None
    entities: int = 0
    matched: int = 0
    unmatched: tuple[str, ...] = ()
    entries_planned: int = 0
    entries_written: int = 0
    unresolved_columns: int = 0
    derivations_skipped: int = 0
    record_failures: int = 0
    message: str = ""
    committed: bool = False


@dataclass(frozen=True)
class RunResult:
    files: tuple[FileOutcome, ...] = ()
    start_time: datetime | None = None
    end_time: datetime | None = None

    def count(self, status: FileStatus) -> int:
        return sum(1 for f in self.files if f.status == status)

    @property
    def success_files(self) -> int:
        return self.count(FileStatus.SUCCESS)

    @property
    def partial_files(self) -> int:
        return self.count(FileStatus.PARTIAL)

    @property
    def failed_files(self) -> int:
        return self.count(FileStatus.FAILED)

    @property
    def total_entries(self) -> int:
        return sum(f.entries_written for f in self.files)

    @property
    def elapsed_seconds(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()
