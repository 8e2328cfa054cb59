from __future__ import annotations

from datetime import date, timedelta
from typing import Iterator, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .errors import InvalidRangeError
from .models import YearMonth

DAYS_PER_MONTH = 30.0
DEFAULT_TIME_RANGE = "3months"

TIME_RANGE_MONTHS = {
    "1month": 1,
    "3months": 3,
    "6months": 6,
    "1year": 12,
}

DateRange = Tuple[date, date]


def validate_range(start: date, end: date) -> None:
    if start is None or end is None:
        raise InvalidRangeError(start, end, "start and end dates are required")
    if end < start:
        raise InvalidRangeError(start, end)


def iter_days(start: date, end: date) -> Iterator[date]:
    validate_range(start, end)
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def count_days(start: date, end: date) -> int:
    validate_range(start, end)
    return (end - start).days + 1


def week_buckets(start: date, end: date) -> List[DateRange]:
    """Seven-day buckets anchored at ``start``; the last one stops at ``end``."""
    validate_range(start, end)
    buckets: List[DateRange] = []
    bucket_start = start
    while bucket_start <= end:
        bucket_end = min(bucket_start + timedelta(days=6), end)
        buckets.append((bucket_start, bucket_end))
        bucket_start = bucket_end + timedelta(days=1)
    return buckets


def _first_of_month(value: date) -> date:
    return value.replace(day=1)


def month_sequence(start: date, end: date) -> List[YearMonth]:
    validate_range(start, end)
    months: List[YearMonth] = []
    current = _first_of_month(start)
    while current <= end:
        months.append(YearMonth.of(current))
        current += relativedelta(months=1)
    return months


def overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    return a_start <= b_end and a_end >= b_start


def overlap_days(a_start: date, a_end: date, b_start: date, b_end: date) -> int:
    if not overlaps(a_start, a_end, b_start, b_end):
        return 0
    return (min(a_end, b_end) - max(a_start, b_start)).days + 1


def months_between(earlier: date, later: date) -> float:
    return (later - earlier).days / DAYS_PER_MONTH


def resolve_time_range(name: Optional[str], today: date) -> DateRange:
    """Translate a named horizon such as ``6months`` into calendar dates.

    The range starts on the first of the current month and ends on the last
    day of the final month covered. Unknown names fall back to three months.
    """
    months = TIME_RANGE_MONTHS.get(name or DEFAULT_TIME_RANGE)
    if months is None:
        months = TIME_RANGE_MONTHS[DEFAULT_TIME_RANGE]
    start = _first_of_month(today)
    end = start + relativedelta(months=months) - timedelta(days=1)
    return start, end


def default_window(
    start: Optional[date],
    end: Optional[date],
    today: date,
    fallback_start: Optional[date] = None,
    fallback_end: Optional[date] = None,
    horizon_days: int = 90,
) -> DateRange:
    """Resolve an analysis window from partial input.

    Each bound is the explicit value, else the fallback (typically the project
    dates). A missing start becomes ``today`` and a missing end lands
    ``horizon_days`` after the start.
    """
    if horizon_days <= 0:
        raise InvalidRangeError(start, end, "horizon must be positive")
    window_start = start or fallback_start or today
    window_end = end or fallback_end or window_start + timedelta(days=horizon_days)
    validate_range(window_start, window_end)
    return window_start, window_end
