from __future__ import annotations

from ..models.kpi import EntryStatus, KPIDefinition, MetricType, TargetDirection

"""Variance and status tiering shared by manual entry and derived values.

variance = actual - target                      (percentage metrics)
variance = (actual - target) / target * 100     (everything else)

above: variance >= 0 green, >= -10 yellow, else red
below: variance <= 0 green, <= 10 yellow, else red

A KPI without a target, or a non-percentage KPI whose target is zero, has no
variance and no status.
"""

__all__ = [
    "YELLOW_BAND",
    "compute_variance",
    "compute_status",
    "evaluate",
]

YELLOW_BAND = 10.0


def compute_variance(actual: float, target: float | None, metric_type: MetricType) -> float | None:
    if target is None:
        return None
    if metric_type == MetricType.PERCENTAGE:
        return actual - target
    if target == 0:
        return None
    return (actual - target) / target * 100


def compute_status(variance: float | None, direction: TargetDirection) -> EntryStatus | None:
    if variance is None:
        return None
    if direction == TargetDirection.BELOW:
        variance = -variance
    if variance >= 0:
        return EntryStatus.GREEN
    if variance >= -YELLOW_BAND:
        return EntryStatus.YELLOW
    return EntryStatus.RED


def evaluate(actual: float, kpi: KPIDefinition) -> tuple[float | None, EntryStatus | None]:
    """Return (variance, status) for ``actual`` against ``kpi``'s target."""
    variance = compute_variance(actual, kpi.target_value, kpi.metric_type)
    return variance, compute_status(variance, kpi.target_direction)
