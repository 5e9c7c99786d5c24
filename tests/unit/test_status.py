from __future__ import annotations

import pytest

from scorecard_import.models import EntryStatus, KPIDefinition, MetricType, TargetDirection
from scorecard_import.services.status import compute_status, compute_variance, evaluate


def test_variance_percentage_is_point_difference():
    assert compute_variance(85.0, 90.0, MetricType.PERCENTAGE) == pytest.approx(-5.0)


def test_variance_relative_for_other_metrics():
    assert compute_variance(110.0, 100.0, MetricType.DOLLAR) == pytest.approx(10.0)
    assert compute_variance(45.0, 50.0, MetricType.UNIT) == pytest.approx(-10.0)


def test_missing_or_zero_target_has_no_variance():
    assert compute_variance(10.0, None, MetricType.UNIT) is None
    assert compute_variance(10.0, 0.0, MetricType.DOLLAR) is None
    assert compute_variance(10.0, 0.0, MetricType.PERCENTAGE) == 10.0


@pytest.mark.parametrize(
    "variance,direction,expected",
    [
        (0.0, TargetDirection.ABOVE, EntryStatus.GREEN),
        (-10.0, TargetDirection.ABOVE, EntryStatus.YELLOW),
        (-10.5, TargetDirection.ABOVE, EntryStatus.RED),
        (0.0, TargetDirection.BELOW, EntryStatus.GREEN),
        (10.0, TargetDirection.BELOW, EntryStatus.YELLOW),
        (12.0, TargetDirection.BELOW, EntryStatus.RED),
        (-3.0, TargetDirection.BELOW, EntryStatus.GREEN),
        (None, TargetDirection.ABOVE, None),
    ],
)
def test_status_bands(variance, direction, expected):
    assert compute_status(variance, direction) == expected


def test_evaluate_uses_kpi_definition():
    kpi = KPIDefinition("K1", "Comeback %", MetricType.PERCENTAGE, TargetDirection.BELOW, target_value=2.0)
    variance, status = evaluate(5.0, kpi)
    assert variance == pytest.approx(3.0)
    assert status == EntryStatus.YELLOW
    assert evaluate(5.0, KPIDefinition("K2", "No target")) == (None, None)
