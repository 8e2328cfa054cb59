"""Snapshot lookups and record helpers."""

from datetime import date

import pytest

from allocation_intel.errors import InvalidRangeError, NotFoundError
from allocation_intel.models import FALLBACK_NOTICE, CapacityEntry, YearMonth

from conftest import make_allocation, make_resource, make_snapshot


def test_lookups(agency_snapshot):
    assert agency_snapshot.resource("r1").name == "Alice"
    assert agency_snapshot.find_resource("nobody") is None
    assert [alloc.id for alloc in agency_snapshot.allocations_for_project("p3")] == ["a4", "a5"]
    with pytest.raises(NotFoundError) as excinfo:
        agency_snapshot.project("p9")
    assert (excinfo.value.entity, excinfo.value.entity_id) == ("project", "p9")
    assert str(excinfo.value) == "project p9 not found"


def test_capacity_defaults_when_calendar_is_silent():
    snapshot = make_snapshot(
        [make_resource("r1")], capacity=[CapacityEntry("r1", 2025, 5, available_capacity=50.0)]
    )
    assert snapshot.capacity_for("r1", YearMonth(2025, 5)).effective_capacity() == 50.0
    assert snapshot.capacity_for("r1", YearMonth(2025, 6)).effective_capacity() == 100.0


def test_fallback_fields():
    assert make_snapshot().fallback_fields() == {"is_fallback_data": False}
    assert make_snapshot(is_fallback_data=True).fallback_fields() == {
        "is_fallback_data": True,
        "notice": FALLBACK_NOTICE,
    }


def test_allocation_validation_and_overlap():
    alloc = make_allocation("a1", "r1", "p1", date(2025, 1, 10), date(2025, 1, 20), 50.0)
    alloc.validate()
    assert alloc.overlaps(date(2025, 1, 20), date(2025, 2, 1))
    assert not alloc.overlaps(date(2025, 1, 21), date(2025, 2, 1))
    assert alloc.contains(date(2025, 1, 10))
    with pytest.raises(InvalidRangeError):
        make_allocation("bad", "r1", "p1", date(2025, 1, 20), date(2025, 1, 10), 50.0).validate()


def test_resource_margin():
    assert make_resource("r1", billing_rate=150.0, cost_rate=90.0).hourly_margin() == 60.0
    assert make_resource("r2").hourly_margin() == 0.0
