"""Date-range helpers: validation, week buckets, named horizons and defaults."""

from datetime import date

import pytest

from allocation_intel.calendar_utils import (
    count_days,
    default_window,
    month_sequence,
    overlap_days,
    resolve_time_range,
    validate_range,
    week_buckets,
)
from allocation_intel.errors import InvalidRangeError
from allocation_intel.models import YearMonth


class TestValidateRange:
    def test_end_before_start_raises(self):
        with pytest.raises(InvalidRangeError) as excinfo:
            validate_range(date(2025, 3, 2), date(2025, 3, 1))
        assert excinfo.value.start == date(2025, 3, 2)
        assert excinfo.value.end == date(2025, 3, 1)

    def test_single_day_is_valid(self):
        validate_range(date(2025, 3, 1), date(2025, 3, 1))
        assert count_days(date(2025, 3, 1), date(2025, 3, 1)) == 1

    def test_missing_bound_raises(self):
        with pytest.raises(InvalidRangeError):
            validate_range(None, date(2025, 3, 1))


class TestWeekBuckets:
    def test_buckets_anchor_on_start_and_truncate(self):
        buckets = week_buckets(date(2025, 3, 3), date(2025, 3, 19))
        assert buckets == [
            (date(2025, 3, 3), date(2025, 3, 9)),
            (date(2025, 3, 10), date(2025, 3, 16)),
            (date(2025, 3, 17), date(2025, 3, 19)),
        ]

    def test_buckets_cover_every_day_once(self):
        start, end = date(2025, 1, 1), date(2025, 2, 28)
        buckets = week_buckets(start, end)
        assert sum((b_end - b_start).days + 1 for b_start, b_end in buckets) == count_days(start, end)


def test_month_sequence_spans_year_boundary():
    months = month_sequence(date(2024, 11, 20), date(2025, 2, 1))
    assert months == [YearMonth(2024, 11), YearMonth(2024, 12), YearMonth(2025, 1), YearMonth(2025, 2)]
    assert str(months[0]) == "2024-11"


def test_overlap_days_is_inclusive():
    assert overlap_days(date(2025, 1, 1), date(2025, 1, 10), date(2025, 1, 10), date(2025, 1, 20)) == 1
    assert overlap_days(date(2025, 1, 1), date(2025, 1, 10), date(2025, 1, 11), date(2025, 1, 20)) == 0


class TestResolveTimeRange:
    def test_three_months_from_first_of_month(self):
        assert resolve_time_range("3months", date(2025, 1, 15)) == (date(2025, 1, 1), date(2025, 3, 31))

    def test_one_year(self):
        assert resolve_time_range("1year", date(2024, 2, 29)) == (date(2024, 2, 1), date(2025, 1, 31))

    def test_unknown_name_uses_three_months(self):
        assert resolve_time_range("fortnight", date(2025, 1, 15)) == (date(2025, 1, 1), date(2025, 3, 31))


class TestDefaultWindow:
    def test_explicit_bounds_win(self):
        window = default_window(
            date(2025, 2, 1), date(2025, 2, 10), date(2025, 1, 1), date(2025, 1, 5), date(2025, 12, 31)
        )
        assert window == (date(2025, 2, 1), date(2025, 2, 10))

    def test_fallback_bounds_used_when_missing(self):
        window = default_window(None, None, date(2025, 1, 1), date(2025, 1, 5), date(2025, 3, 31))
        assert window == (date(2025, 1, 5), date(2025, 3, 31))

    def test_horizon_from_today(self):
        assert default_window(None, None, date(2025, 1, 1), horizon_days=90) == (
            date(2025, 1, 1),
            date(2025, 4, 1),
        )

    def test_non_positive_horizon_raises(self):
        with pytest.raises(InvalidRangeError):
            default_window(None, None, date(2025, 1, 1), horizon_days=0)

    def test_inverted_explicit_range_raises(self):
        with pytest.raises(InvalidRangeError):
            default_window(date(2025, 2, 1), date(2025, 1, 1), date(2025, 1, 1))
