"""Resource and organization utilization forecasts."""

from datetime import date

import pytest

from allocation_intel.errors import InvalidRangeError, NotFoundError
from allocation_intel.forecast import forecast_organization, forecast_resource, peak_periods
from allocation_intel.utilization import daily_utilization

from conftest import make_allocation, make_resource, make_snapshot

JAN_1 = date(2025, 1, 1)
APR_30 = date(2025, 4, 30)


class TestResourceForecast:
    def test_overlapping_allocations_form_one_peak(self, agency_snapshot):
        forecast = forecast_resource(agency_snapshot, "r1", JAN_1, APR_30)
        assert len(forecast.peak_periods) == 1
        peak = forecast.peak_periods[0]
        assert (peak.start_date, peak.end_date) == (date(2025, 2, 1), date(2025, 3, 31))
        assert peak.average_utilization == pytest.approx(120.0)
        assert peak.status in {"overallocated", "critical"}

    def test_average_and_status(self, agency_snapshot):
        forecast = forecast_resource(agency_snapshot, "r1", JAN_1, APR_30)
        assert forecast.average_utilization == pytest.approx((60 * 31 + 120 * 59 + 60 * 30) / 120)
        assert forecast.status == "optimal"
        assert [alloc.id for alloc in forecast.allocations] == ["a1", "a2"]

    def test_weekly_and_bench_sections(self, agency_snapshot):
        payload = forecast_resource(agency_snapshot, "r1", JAN_1, APR_30).to_dict()
        assert payload["weekly_breakdown"][0]["start_date"] == "2025-01-01"
        assert payload["bench_prediction"]["total_bench_days"] == 0

    def test_sections_can_be_skipped(self, agency_snapshot):
        payload = forecast_resource(
            agency_snapshot, "r1", JAN_1, APR_30, include_weekly=False, include_bench=False
        ).to_dict()
        assert "weekly_breakdown" not in payload
        assert "bench_prediction" not in payload

    def test_idle_resource_has_no_peaks(self, agency_snapshot):
        forecast = forecast_resource(agency_snapshot, "r3", JAN_1, APR_30)
        assert forecast.peak_periods == ()
        assert forecast.status == "bench"

    def test_unknown_resource(self, agency_snapshot):
        with pytest.raises(NotFoundError):
            forecast_resource(agency_snapshot, "nobody", JAN_1, APR_30)

    def test_inverted_range(self, agency_snapshot):
        with pytest.raises(InvalidRangeError):
            forecast_resource(agency_snapshot, "r1", APR_30, JAN_1)


def test_flat_series_is_one_peak():
    snapshot = make_snapshot(
        [make_resource("r1")],
        allocations=[make_allocation("a1", "r1", "p1", JAN_1, APR_30, 80.0)],
    )
    peaks = peak_periods(daily_utilization(snapshot, "r1", JAN_1, date(2025, 1, 31)))
    assert [(peak.start_date, peak.end_date, peak.days) for peak in peaks] == [
        (JAN_1, date(2025, 1, 31), 31)
    ]


class TestOrganizationForecast:
    def test_health_buckets(self, agency_snapshot):
        forecast = forecast_organization(agency_snapshot, JAN_1, APR_30)
        assert forecast.total_resources == 3
        assert forecast.over_allocated.count == 0
        assert forecast.under_allocated.count == 2
        assert forecast.optimally_allocated.count == 1
        assert forecast.under_allocated.percentage == pytest.approx(200 / 3)

    def test_bucket_split_differs_from_daily_status_bands(self):
        # 105% is "overallocated" per day but inside the organization's optimal band.
        snapshot = make_snapshot(
            [make_resource("r1")],
            allocations=[make_allocation("a1", "r1", "p1", JAN_1, APR_30, 105.0)],
        )
        forecast = forecast_organization(snapshot, JAN_1, date(2025, 1, 31))
        assert forecast.resources[0].status == "overallocated"
        assert forecast.optimally_allocated.count == 1
        assert forecast.over_allocated.count == 0

    def test_weekly_breakdown_groups_by_week(self, agency_snapshot):
        payload = forecast_organization(agency_snapshot, JAN_1, date(2025, 1, 14)).to_dict()
        weeks = payload["weekly_breakdown"]
        assert [(week["start_date"], week["end_date"]) for week in weeks] == [
            ("2025-01-01", "2025-01-07"),
            ("2025-01-08", "2025-01-14"),
        ]
        assert [item["resource_id"] for item in weeks[0]["resources"]] == ["r1", "r2", "r3"]

    def test_weekly_breakdown_can_be_omitted(self, agency_snapshot):
        payload = forecast_organization(agency_snapshot, JAN_1, APR_30, include_weekly=False).to_dict()
        assert "weekly_breakdown" not in payload
        assert "summary" in payload

    def test_bad_resource_data_is_reported_not_fatal(self, agency_snapshot):
        snapshot = make_snapshot(
            agency_snapshot.resources,
            agency_snapshot.projects,
            agency_snapshot.allocations
            + (make_allocation("broken", "r3", "p2", date(2025, 3, 1), date(2025, 2, 1), 50.0),),
        )
        forecast = forecast_organization(snapshot, JAN_1, APR_30)
        assert [failure.resource_id for failure in forecast.failures] == ["r3"]
        assert forecast.total_resources == 2

    def test_strict_mode_raises(self, agency_snapshot):
        snapshot = make_snapshot(
            agency_snapshot.resources,
            agency_snapshot.projects,
            (make_allocation("broken", "r3", "p2", date(2025, 3, 1), date(2025, 2, 1), 50.0),),
        )
        with pytest.raises(InvalidRangeError):
            forecast_organization(snapshot, JAN_1, APR_30, strict=True)
