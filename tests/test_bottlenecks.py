"""Weeks where several resources are over-allocated at the same time."""

from datetime import date

import pytest

from allocation_intel.bottlenecks import detect_bottlenecks, predict_bottlenecks
from allocation_intel.errors import InvalidRangeError
from allocation_intel.utilization import WeeklyUtilization

from conftest import make_allocation, make_resource, make_snapshot

MAR_3 = date(2025, 3, 3)
MAR_9 = date(2025, 3, 9)


def _week(resource_id, start, utilization):
    return WeeklyUtilization(resource_id, start, date.fromordinal(start.toordinal() + 6), utilization)


def test_two_overbooked_resources_in_one_week():
    snapshot = make_snapshot(
        [make_resource("r1", "Alice"), make_resource("r2", "Bob"), make_resource("r3", "Cara")],
        allocations=[
            make_allocation("a1", "r1", "p1", MAR_3, MAR_9, 120.0),
            make_allocation("a2", "r2", "p1", MAR_3, MAR_9, 110.0),
            make_allocation("a3", "r3", "p1", MAR_3, date(2025, 3, 23), 90.0),
        ],
    )
    report = predict_bottlenecks(snapshot, MAR_3, date(2025, 3, 23))
    assert len(report.bottlenecks) == 1
    assert report.failures == ()
    bottleneck = report.bottlenecks[0]
    assert (bottleneck.start_date, bottleneck.end_date) == (MAR_3, MAR_9)
    assert bottleneck.severity == 2
    assert bottleneck.average_overallocation == pytest.approx(15.0)
    payload = bottleneck.to_dict()
    assert [item["resource_name"] for item in payload["over_allocated_resources"]] == ["Alice", "Bob"]


def test_single_overbooked_resource_is_not_a_bottleneck():
    weekly = {"r1": [_week("r1", MAR_3, 150.0)], "r2": [_week("r2", MAR_3, 100.0)]}
    assert detect_bottlenecks(weekly) == []


def test_ordering_by_severity_then_overallocation():
    week1, week2, week3 = MAR_3, date(2025, 3, 10), date(2025, 3, 17)
    weekly = {
        "r1": [_week("r1", week1, 101.0), _week("r1", week2, 140.0), _week("r1", week3, 105.0)],
        "r2": [_week("r2", week1, 101.0), _week("r2", week2, 140.0), _week("r2", week3, 105.0)],
        "r3": [_week("r3", week1, 101.0), _week("r3", week2, 90.0), _week("r3", week3, 90.0)],
    }
    bottlenecks = detect_bottlenecks(weekly)
    assert [(item.start_date, item.severity) for item in bottlenecks] == [
        (week1, 3),
        (week2, 2),
        (week3, 2),
    ]


def test_without_snapshot_names_are_blank():
    weekly = {"r1": [_week("r1", MAR_3, 120.0)], "r2": [_week("r2", MAR_3, 120.0)]}
    resources = detect_bottlenecks(weekly)[0].resources
    assert [(res.resource_id, res.resource_name) for res in resources] == [("r1", ""), ("r2", "")]


def _snapshot_with_corrupt_resource():
    return make_snapshot(
        [make_resource("r1", "Alice"), make_resource("r2", "Bob"), make_resource("bad", "Broken")],
        allocations=[
            make_allocation("a1", "r1", "p1", MAR_3, MAR_9, 120.0),
            make_allocation("a2", "r2", "p1", MAR_3, MAR_9, 130.0),
            make_allocation("x", "bad", "p1", date(2025, 3, 31), date(2025, 3, 1), 50.0),
        ],
    )


def test_corrupt_resource_is_reported_not_fatal():
    report = predict_bottlenecks(_snapshot_with_corrupt_resource(), MAR_3, MAR_9)
    assert [res.resource_id for res in report.bottlenecks[0].resources] == ["r1", "r2"]
    assert [failure.resource_id for failure in report.failures] == ["bad"]
    payload = report.to_dict()
    assert "allocation x ends before it starts" in payload["failures"][0]["reason"]
    assert payload["period"] == {"start_date": "2025-03-03", "end_date": "2025-03-09"}


def test_strict_bottleneck_scan_raises():
    with pytest.raises(InvalidRangeError):
        predict_bottlenecks(_snapshot_with_corrupt_resource(), MAR_3, MAR_9, strict=True)
