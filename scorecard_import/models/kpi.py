from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

"""KPI definition model and the enums shared by status/variance computation.

KPIDefinition mirrors a row of ``kpi_definitions``. ``assigned_to`` is the
owning user; ``None`` marks a department-level (unowned) KPI.
"""

__all__ = [
    "MetricType",
    "TargetDirection",
    "EntryStatus",
    "KPIDefinition",
]


class MetricType(Enum):
    DOLLAR = "dollar"
    PERCENTAGE = "percentage"
    UNIT = "unit"


class TargetDirection(Enum):
    """Which side of the target counts as good."""
    ABOVE = "above"
    BELOW = "below"


class EntryStatus(Enum):
    """Status tier of a scorecard entry against its KPI target.

    State values are what the scorecard grid colours the cell with.
    """
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


@dataclass(frozen=True)
class KPIDefinition:
    id: str
    name: str
    metric_type: MetricType = MetricType.UNIT
    target_direction: TargetDirection = TargetDirection.ABOVE
    assigned_to: str | None = None  # owner user id, None = department level
    target_value: float | None = None
    depends_on: tuple[str, ...] = ()  # KPI names this one is derived from

    @property
    def normalized_name(self) -> str:
        return " ".join(self.name.lower().split())

    def is_owned_by(self, owner_user_id: str | None) -> bool:
        return self.assigned_to == owner_user_id
