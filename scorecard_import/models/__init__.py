"""Domain models for the scorecard import reconciliation engine."""

from .entries import EntrySource, ImportLogRecord, ImportStatus, ResolvedEntry, ScorecardEntry
from .grid import ClassifiedGrid, ColumnId, DataRow, EntityId, EntityRow, EntitySegment, HeaderRow, RawGrid
from .import_result import CommitPlan, CommitResult, FileOutcome, FileStatus, RecordFailure, RunResult, TemplateApplicationResult
from .kpi import EntryStatus, KPIDefinition, MetricType, TargetDirection
from .mapping import AbsoluteMapping, ColumnMapping, ColumnTemplate, RelativeMapping
from .match_result import EntityMatch, MatchCandidate, MatchStatus, MatchTier, MatchType
from .roster import Alias, RosterUser

__all__ = [
    # Snapshot records
    "Alias",
    "RosterUser",
    "KPIDefinition",
    "MetricType",
    "TargetDirection",
    "EntryStatus",
    "AbsoluteMapping",
    "RelativeMapping",
    "ColumnTemplate",
    "ColumnMapping",
    # Classification
    "RawGrid",
    "EntityId",
    "ColumnId",
    "HeaderRow",
    "EntityRow",
    "DataRow",
    "EntitySegment",
    "ClassifiedGrid",
    # Matching
    "EntityMatch",
    "MatchCandidate",
    "MatchStatus",
    "MatchTier",
    "MatchType",
    # Output
    "EntrySource",
    "ResolvedEntry",
    "ScorecardEntry",
    "ImportLogRecord",
    "ImportStatus",
    # Commit / run results
    "CommitPlan",
    "CommitResult",
    "RecordFailure",
    "TemplateApplicationResult",
    "FileStatus",
    "FileOutcome",
    "RunResult",
]
