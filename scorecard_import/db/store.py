from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from ..models.entries import ImportLogRecord, ScorecardEntry
from ..models.import_result import RecordFailure
from ..models.kpi import KPIDefinition
from ..models.mapping import AbsoluteMapping, ColumnTemplate, RelativeMapping
from ..models.roster import Alias, RosterUser

"""Persistence protocol consumed by the reconciliation engine.

Fetch methods return snapshots; upsert methods write on the natural keys and
return one RecordFailure per record that could not be written, leaving the
other records in place. ``insert_import_log`` raises on failure.
"""

__all__ = [
    "ScorecardStore",
    "StoreError",
    "alias_key",
    "entry_key",
    "mapping_key",
    "template_key",
]


class ScorecardStore(Protocol):
    def fetch_roster(self, store_id: str) -> list[RosterUser]: ...

    def fetch_aliases(self, store_id: str) -> list[Alias]: ...

    def fetch_absolute_mappings(self, profile_id: str) -> list[AbsoluteMapping]: ...

    def fetch_relative_mappings(self, profile_id: str) -> list[RelativeMapping]: ...

    def fetch_templates(self, profile_id: str) -> list[ColumnTemplate]: ...

    def fetch_kpis(self, department_id: str | None) -> list[KPIDefinition]: ...

    def fetch_entry_values(
        self, kpi_ids: Iterable[str], period: str, entry_type: str
    ) -> dict[str, float]: ...

    def upsert_aliases(self, aliases: Sequence[Alias]) -> list[RecordFailure]: ...

    def upsert_entries(self, entries: Sequence[ScorecardEntry]) -> list[RecordFailure]: ...

    def upsert_relative_mappings(self, mappings: Sequence[RelativeMapping]) -> list[RecordFailure]: ...

    def upsert_templates(self, templates: Sequence[ColumnTemplate]) -> list[RecordFailure]: ...

    def insert_import_log(self, record: ImportLogRecord) -> None: ...


def alias_key(alias: Alias) -> str:
    return f"{alias.store_id}/{alias.normalized_name}"


def entry_key(entry: ScorecardEntry) -> str:
    return "/".join(entry.natural_key)


def mapping_key(mapping: RelativeMapping) -> str:
    return f"{mapping.profile_id}/{mapping.owner_user_id}/{mapping.column_index}"


def template_key(template: ColumnTemplate) -> str:
    return f"{template.profile_id}/{template.column_index}/{template.kpi_name}"


class StoreError(Exception):
    """A store call failed as a whole (connection lost, statement rejected)."""
