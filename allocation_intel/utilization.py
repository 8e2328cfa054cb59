from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .calendar_utils import iter_days, validate_range, week_buckets
from .models import Allocation, Snapshot, YearMonth

# Per-day status bands, checked top-down.
STATUS_BANDS: Tuple[Tuple[str, float, bool], ...] = (
    ("critical", 110.0, False),
    ("overallocated", 100.0, False),
    ("optimal", 80.0, True),
    ("adequate", 50.0, True),
)


@dataclass(frozen=True)
class UtilizationWindow:
    """Load of one resource on one calendar day."""

    resource_id: str
    day: date
    capacity: float
    allocated_load: float
    utilization_percentage: float
    allocation_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "resource_id": self.resource_id,
            "date": self.day.isoformat(),
            "capacity": round(self.capacity, 2),
            "allocated_load": round(self.allocated_load, 2),
            "utilization_percentage": round(self.utilization_percentage, 2),
        }


def utilization_status(percentage: float) -> str:
    for status, threshold, inclusive in STATUS_BANDS:
        if percentage > threshold or (inclusive and percentage >= threshold):
            return status
    if percentage > 0:
        return "underallocated"
    return "bench"


def _window_for_day(
    snapshot: Snapshot,
    resource_id: str,
    day: date,
    allocations: Sequence[Allocation],
) -> UtilizationWindow:
    capacity = snapshot.capacity_for(resource_id, YearMonth.of(day)).effective_capacity()
    active = [alloc for alloc in allocations if alloc.contains(day)]
    load = sum(alloc.utilization for alloc in active)
    percentage = load / capacity * 100.0 if capacity > 0 else 0.0
    return UtilizationWindow(
        resource_id=resource_id,
        day=day,
        capacity=capacity,
        allocated_load=load,
        utilization_percentage=percentage,
        allocation_ids=tuple(alloc.id for alloc in active),
    )


def daily_utilization(
    snapshot: Snapshot,
    resource_id: str,
    start: date,
    end: date,
    allocations: Optional[Iterable[Allocation]] = None,
) -> List[UtilizationWindow]:
    """Day-by-day utilization of ``resource_id`` over ``[start, end]``.

    Capacity is the month's available capacity minus planned time off (100/0
    when the calendar has no entry). Overlapping allocations are summed.
    A day with no capacity reports 0% rather than dividing by zero.
    """
    validate_range(start, end)
    source = snapshot.allocations_for_resource(resource_id) if allocations is None else allocations
    relevant: List[Allocation] = []
    for alloc in source:
        alloc.validate()
        if alloc.overlaps(start, end):
            relevant.append(alloc)
    return [_window_for_day(snapshot, resource_id, day, relevant) for day in iter_days(start, end)]


def average_utilization(windows: Sequence[UtilizationWindow]) -> float:
    if not windows:
        return 0.0
    return sum(window.utilization_percentage for window in windows) / len(windows)


@dataclass(frozen=True)
class WeeklyUtilization:
    """Mean daily utilization of one resource over a seven-day bucket."""

    resource_id: str
    start_date: date
    end_date: date
    utilization: float
    allocation_ids: Tuple[str, ...] = ()

    @property
    def status(self) -> str:
        return utilization_status(self.utilization)

    def to_dict(self) -> Dict[str, object]:
        return {
            "resource_id": self.resource_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "utilization": round(self.utilization, 2),
            "status": self.status,
            "allocation_ids": list(self.allocation_ids),
        }


def weekly_breakdown(
    windows: Sequence[UtilizationWindow], start: date, end: date
) -> List[WeeklyUtilization]:
    """Fold a daily series produced for ``[start, end]`` into week buckets."""
    if not windows:
        return []
    resource_id = windows[0].resource_id
    weeks: List[WeeklyUtilization] = []
    for bucket_start, bucket_end in week_buckets(start, end):
        offset = (bucket_start - start).days
        bucket = windows[offset : offset + (bucket_end - bucket_start).days + 1]
        seen: Dict[str, None] = {}
        for window in bucket:
            for allocation_id in window.allocation_ids:
                seen.setdefault(allocation_id, None)
        weeks.append(
            WeeklyUtilization(
                resource_id=resource_id,
                start_date=bucket_start,
                end_date=bucket_end,
                utilization=average_utilization(bucket),
                allocation_ids=tuple(seen),
            )
        )
    return weeks
