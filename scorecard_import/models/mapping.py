from __future__ import annotations

from dataclasses import dataclass
from typing import Union

"""Column mapping records for an import profile.

Two addressing modes exist:

- AbsoluteMapping: column -> KPI name for the whole profile, independent of
  which entity owns the row.
- RelativeMapping: (owner, column) -> KPI id. No row index is stored, so the
  mapping survives advisors being added/removed between report periods.

ColumnTemplate is profile-level memory ("column 3 has held CP Hours") used to
seed relative mappings for newly linked owners.
"""

__all__ = [
    "AbsoluteMapping",
    "RelativeMapping",
    "ColumnTemplate",
    "ColumnMapping",
]


@dataclass(frozen=True)
class AbsoluteMapping:
    profile_id: str
    column_index: int
    kpi_name: str
    pay_type_filter: str | None = None  # None = total row / rows without a pay type
    is_per_user: bool = True

    def matches_pay_type(self, pay_type: str | None) -> bool:
        if self.pay_type_filter is None:
            return pay_type is None or pay_type == "total"
        return pay_type == self.pay_type_filter.strip().lower()


@dataclass(frozen=True)
class RelativeMapping:
    profile_id: str
    owner_user_id: str
    column_index: int
    kpi_id: str
    kpi_name: str

    @property
    def natural_key(self) -> tuple[str, str, int]:
        return (self.profile_id, self.owner_user_id, self.column_index)


@dataclass(frozen=True)
class ColumnTemplate:
    profile_id: str
    column_index: int
    kpi_name: str

    @property
    def natural_key(self) -> tuple[str, int, str]:
        return (self.profile_id, self.column_index, self.kpi_name.strip().lower())


ColumnMapping = Union[AbsoluteMapping, RelativeMapping]
