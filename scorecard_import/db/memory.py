from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from ..models.entries import ImportLogRecord, ScorecardEntry
from ..models.import_result import RecordFailure
from ..models.kpi import KPIDefinition
from ..models.mapping import AbsoluteMapping, ColumnTemplate, RelativeMapping
from ..models.roster import Alias, RosterUser
from .store import StoreError, alias_key, entry_key, mapping_key, template_key

"""In-memory ScorecardStore.

Used in mock mode (``DISABLE_DB_CONNECT=1``) and by the tests. Upserts replace
records on the same natural keys as the PostgreSQL tables. Keys listed in
``reject_keys`` fail with a RecordFailure, which lets tests drive the
per-record failure path.
"""

__all__ = [
    "InMemoryScorecardStore",
]


@dataclass
class InMemoryScorecardStore:
    roster: dict[str, list[RosterUser]] = field(default_factory=dict)  # store_id -> users
    kpis: dict[str | None, list[KPIDefinition]] = field(default_factory=dict)  # department_id -> KPIs
    aliases: dict[tuple[str, str], Alias] = field(default_factory=dict)
    absolute_mappings: list[AbsoluteMapping] = field(default_factory=list)
    relative_mappings: dict[tuple[str, str, int], RelativeMapping] = field(default_factory=dict)
    templates: dict[tuple[str, int, str], ColumnTemplate] = field(default_factory=dict)
    entries: dict[tuple[str, str, str], ScorecardEntry] = field(default_factory=dict)
    import_logs: list[ImportLogRecord] = field(default_factory=list)
    reject_keys: set[str] = field(default_factory=set)
    fail_import_log: bool = False
    upsert_calls: int = 0

    # -- seeding helpers ----------------------------------------------------

    def add_alias(self, alias: Alias) -> None:
        self.aliases[(alias.store_id, alias.normalized_name)] = alias

    def add_relative_mapping(self, mapping: RelativeMapping) -> None:
        self.relative_mappings[mapping.natural_key] = mapping

    def add_template(self, template: ColumnTemplate) -> None:
        self.templates[template.natural_key] = template

    # -- snapshot -----------------------------------------------------------

    def fetch_roster(self, store_id: str) -> list[RosterUser]:
        return list(self.roster.get(store_id, []))

    def fetch_aliases(self, store_id: str) -> list[Alias]:
        return [a for a in self.aliases.values() if a.store_id == store_id]

    def fetch_absolute_mappings(self, profile_id: str) -> list[AbsoluteMapping]:
        return [m for m in self.absolute_mappings if m.profile_id == profile_id]

    def fetch_relative_mappings(self, profile_id: str) -> list[RelativeMapping]:
        return [m for m in self.relative_mappings.values() if m.profile_id == profile_id]

    def fetch_templates(self, profile_id: str) -> list[ColumnTemplate]:
        return sorted(
            (t for t in self.templates.values() if t.profile_id == profile_id),
            key=lambda t: t.column_index,
        )

    def fetch_kpis(self, department_id: str | None) -> list[KPIDefinition]:
        return list(self.kpis.get(department_id, []))

    def fetch_entry_values(self, kpi_ids: Iterable[str], period: str, entry_type: str) -> dict[str, float]:
        wanted = set(kpi_ids)
        return {
            e.kpi_id: e.actual_value
            for e in self.entries.values()
            if e.kpi_id in wanted and e.period == period and e.entry_type == entry_type
        }

    # -- writes -------------------------------------------------------------

    def _put(self, record_type, records, key_fn, store_fn) -> list[RecordFailure]:
        self.upsert_calls += 1
        failures = []
        for record in records:
            key = key_fn(record)
            if key in self.reject_keys:
                failures.append(RecordFailure(record_type, key, "rejected by store"))
                continue
            store_fn(record)
        return failures

    def upsert_aliases(self, aliases: Sequence[Alias]) -> list[RecordFailure]:
        return self._put("alias", aliases, alias_key, self.add_alias)

    def upsert_entries(self, entries: Sequence[ScorecardEntry]) -> list[RecordFailure]:
        return self._put("entry", entries, entry_key, lambda e: self.entries.__setitem__(e.natural_key, e))

    def upsert_relative_mappings(self, mappings: Sequence[RelativeMapping]) -> list[RecordFailure]:
        return self._put("relative_mapping", mappings, mapping_key, self.add_relative_mapping)

    def upsert_templates(self, templates: Sequence[ColumnTemplate]) -> list[RecordFailure]:
        return self._put("template", templates, template_key, self.add_template)

    def insert_import_log(self, record: ImportLogRecord) -> None:
        if self.fail_import_log:
            raise StoreError("import log table unavailable")
        self.import_logs.append(record)
