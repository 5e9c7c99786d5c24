from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from ..db.store import ScorecardStore
from ..models.kpi import KPIDefinition
from ..models.mapping import AbsoluteMapping, ColumnTemplate, RelativeMapping
from ..models.roster import Alias, RosterUser
from .name_matcher import normalize_name

"""Reconciliation context: the frozen snapshot one import works against.

Built once per invocation from the store and passed by reference through
every stage. Roster or mapping changes made while a review is open are only
seen by the next invocation.
"""

__all__ = [
    "ReconciliationContext",
    "build_context",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationContext:
    store_id: str
    profile_id: str
    department_id: str | None
    period: str
    entry_type: str = "monthly"
    roster: tuple[RosterUser, ...] = ()
    aliases: tuple[Alias, ...] = ()
    absolute_mappings: tuple[AbsoluteMapping, ...] = ()
    relative_mappings: tuple[RelativeMapping, ...] = ()
    templates: tuple[ColumnTemplate, ...] = ()
    kpis: tuple[KPIDefinition, ...] = ()
    # kpi_id -> stored value for (period, entry_type) before this import
    existing_values: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    def alias_for(self, name: str) -> Alias | None:
        key = normalize_name(name)
        for alias in self.aliases:
            if alias.store_id == self.store_id and alias.normalized_name == key:
                return alias
        return None

    def user(self, user_id: str) -> RosterUser | None:
        for user in self.roster:
            if user.id == user_id:
                return user
        return None

    def kpi(self, kpi_id: str) -> KPIDefinition | None:
        for kpi in self.kpis:
            if kpi.id == kpi_id:
                return kpi
        return None

    def kpis_for_owner(self, owner_user_id: str | None) -> tuple[KPIDefinition, ...]:
        return tuple(k for k in self.kpis if k.is_owned_by(owner_user_id))

    def kpi_by_name(self, name: str, owner_user_id: str | None) -> KPIDefinition | None:
        """KPI named ``name`` owned by ``owner_user_id`` (None = department level)."""
        key = normalize_name(name)
        for kpi in self.kpis:
            if kpi.is_owned_by(owner_user_id) and kpi.normalized_name == key:
                return kpi
        return None

    def has_relative_mappings(self, owner_user_id: str) -> bool:
        return any(
            m.profile_id == self.profile_id and m.owner_user_id == owner_user_id
            for m in self.relative_mappings
        )

    def absolute_mappings_for(self, column_index: int) -> tuple[AbsoluteMapping, ...]:
        return tuple(
            m for m in self.absolute_mappings
            if m.profile_id == self.profile_id and m.column_index == column_index
        )


async def build_context(
    store: ScorecardStore,
    *,
    store_id: str,
    profile_id: str,
    department_id: str | None,
    period: str,
    entry_type: str = "monthly",
) -> ReconciliationContext:
    """Fetch the snapshot for one reconciliation.

    The independent fetches run concurrently; existing entry values depend on
    the KPI list and are fetched afterwards.
    """
    roster, aliases, absolute, relative, templates, kpis = await asyncio.gather(
        asyncio.to_thread(store.fetch_roster, store_id),
        asyncio.to_thread(store.fetch_aliases, store_id),
        asyncio.to_thread(store.fetch_absolute_mappings, profile_id),
        asyncio.to_thread(store.fetch_relative_mappings, profile_id),
        asyncio.to_thread(store.fetch_templates, profile_id),
        asyncio.to_thread(store.fetch_kpis, department_id),
    )
    existing = await asyncio.to_thread(
        store.fetch_entry_values, [k.id for k in kpis], period, entry_type
    )
    logger.debug(
        "context store=%s profile=%s roster=%d aliases=%d absolute=%d relative=%d templates=%d kpis=%d",
        store_id, profile_id, len(roster), len(aliases), len(absolute), len(relative), len(templates), len(kpis),
    )
    return ReconciliationContext(
        store_id=store_id,
        profile_id=profile_id,
        department_id=department_id,
        period=period,
        entry_type=entry_type,
        roster=tuple(roster),
        aliases=tuple(aliases),
        absolute_mappings=tuple(absolute),
        relative_mappings=tuple(relative),
        templates=tuple(templates),
        kpis=tuple(kpis),
        existing_values=MappingProxyType(dict(existing)),
    )
