"""Daily utilization series, weekly folding and status bands."""

from datetime import date

import pytest

from allocation_intel.errors import InvalidRangeError
from allocation_intel.models import CapacityEntry
from allocation_intel.utilization import (
    average_utilization,
    daily_utilization,
    utilization_status,
    weekly_breakdown,
)

from conftest import make_allocation, make_resource, make_snapshot


def test_overlapping_allocations_are_summed():
    snapshot = make_snapshot(
        [make_resource("r1")],
        allocations=[
            make_allocation("a1", "r1", "p1", date(2025, 3, 1), date(2025, 3, 10), 60.0),
            make_allocation("a2", "r1", "p2", date(2025, 3, 5), date(2025, 3, 20), 50.0),
        ],
    )
    windows = daily_utilization(snapshot, "r1", date(2025, 3, 1), date(2025, 3, 31))
    assert len(windows) == 31
    by_day = {window.day: window for window in windows}
    assert by_day[date(2025, 3, 1)].utilization_percentage == pytest.approx(60.0)
    assert by_day[date(2025, 3, 7)].utilization_percentage == pytest.approx(110.0)
    assert by_day[date(2025, 3, 7)].allocation_ids == ("a1", "a2")
    assert by_day[date(2025, 3, 25)].utilization_percentage == 0.0


def test_capacity_calendar_scales_utilization():
    snapshot = make_snapshot(
        [make_resource("r1")],
        allocations=[make_allocation("a1", "r1", "p1", date(2025, 4, 1), date(2025, 4, 30), 40.0)],
        capacity=[CapacityEntry("r1", 2025, 4, available_capacity=100.0, planned_time_off=20.0)],
    )
    windows = daily_utilization(snapshot, "r1", date(2025, 4, 1), date(2025, 4, 2))
    assert windows[0].capacity == pytest.approx(80.0)
    assert windows[0].utilization_percentage == pytest.approx(50.0)


def test_zero_capacity_reports_zero_percent():
    snapshot = make_snapshot(
        [make_resource("r1")],
        allocations=[make_allocation("a1", "r1", "p1", date(2025, 4, 1), date(2025, 4, 30), 40.0)],
        capacity=[CapacityEntry("r1", 2025, 4, available_capacity=0.0)],
    )
    windows = daily_utilization(snapshot, "r1", date(2025, 4, 1), date(2025, 4, 3))
    assert all(window.utilization_percentage == 0.0 for window in windows)


def test_inverted_allocation_raises_invalid_range():
    snapshot = make_snapshot(
        [make_resource("r1")],
        allocations=[make_allocation("bad", "r1", "p1", date(2025, 4, 10), date(2025, 4, 1), 40.0)],
    )
    with pytest.raises(InvalidRangeError):
        daily_utilization(snapshot, "r1", date(2025, 4, 1), date(2025, 4, 30))


def test_weekly_breakdown_averages_each_bucket():
    snapshot = make_snapshot(
        [make_resource("r1")],
        allocations=[make_allocation("a1", "r1", "p1", date(2025, 3, 3), date(2025, 3, 5), 70.0)],
    )
    start, end = date(2025, 3, 3), date(2025, 3, 12)
    weeks = weekly_breakdown(daily_utilization(snapshot, "r1", start, end), start, end)
    assert [(week.start_date, week.end_date) for week in weeks] == [
        (date(2025, 3, 3), date(2025, 3, 9)),
        (date(2025, 3, 10), date(2025, 3, 12)),
    ]
    assert weeks[0].utilization == pytest.approx(30.0)
    assert weeks[0].allocation_ids == ("a1",)
    assert weeks[1].utilization == 0.0
    assert weeks[1].status == "bench"


def test_average_of_empty_series_is_zero():
    assert average_utilization([]) == 0.0


@pytest.mark.parametrize(
    "percentage, status",
    [
        (120.0, "critical"),
        (110.0, "overallocated"),
        (100.0, "optimal"),
        (80.0, "optimal"),
        (79.9, "adequate"),
        (50.0, "adequate"),
        (10.0, "underallocated"),
        (0.0, "bench"),
    ],
)
def test_status_bands(percentage, status):
    assert utilization_status(percentage) == status
