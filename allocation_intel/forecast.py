"""
Utilization forecasting for single resources and the whole organization.

Builds on the daily utilization series: weekly breakdowns, status
classification, peak-period detection and organization health buckets.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from .bench import BenchPrediction, predict_bench_time
from .bottlenecks import Bottleneck, detect_bottlenecks
from .calendar_utils import validate_range
from .errors import EngineError
from .models import Allocation, EngineConfig, Resource, ResourceFailure, Snapshot
from .utilization import (
    UtilizationWindow,
    WeeklyUtilization,
    average_utilization,
    daily_utilization,
    utilization_status,
    weekly_breakdown,
)

logger = logging.getLogger(__name__)

PEAK_PERCENTILE_FRACTION = 0.1


@dataclass(frozen=True)
class PeakPeriod:
    start_date: date
    end_date: date
    average_utilization: float

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    @property
    def status(self) -> str:
        return utilization_status(self.average_utilization)

    def to_dict(self) -> Dict[str, object]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "days": self.days,
            "average_utilization": round(self.average_utilization, 2),
            "status": self.status,
        }


@dataclass(frozen=True)
class ResourceForecast:
    resource_id: str
    resource_name: str
    role: str
    start_date: date
    end_date: date
    average_utilization: float
    peak_periods: Tuple[PeakPeriod, ...]
    allocations: Tuple[Allocation, ...]
    daily: Tuple[UtilizationWindow, ...]
    weekly: Optional[Tuple[WeeklyUtilization, ...]] = None
    bench: Optional[BenchPrediction] = None
    is_fallback_data: bool = False
    notice: Optional[str] = None

    @property
    def status(self) -> str:
        return utilization_status(self.average_utilization)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "resource_role": self.role,
            "forecast_period": {
                "start_date": self.start_date.isoformat(),
                "end_date": self.end_date.isoformat(),
            },
            "average_utilization": round(self.average_utilization, 2),
            "utilization_status": self.status,
            "peak_periods": [peak.to_dict() for peak in self.peak_periods],
            "allocations": [
                {
                    "allocation_id": alloc.id,
                    "project_id": alloc.project_id,
                    "start_date": alloc.start_date.isoformat(),
                    "end_date": alloc.end_date.isoformat(),
                    "utilization": alloc.utilization,
                }
                for alloc in self.allocations
            ],
            "is_fallback_data": self.is_fallback_data,
        }
        if self.weekly is not None:
            payload["weekly_breakdown"] = [week.to_dict() for week in self.weekly]
        if self.bench is not None:
            payload["bench_prediction"] = self.bench.to_dict()
        if self.notice:
            payload["notice"] = self.notice
        return payload


@dataclass(frozen=True)
class HealthBucket:
    count: int
    percentage: float

    def to_dict(self) -> Dict[str, object]:
        return {"count": self.count, "percentage": round(self.percentage, 2)}


@dataclass(frozen=True)
class OrganizationForecast:
    start_date: date
    end_date: date
    resources: Tuple[ResourceForecast, ...]
    over_allocated: HealthBucket
    under_allocated: HealthBucket
    optimally_allocated: HealthBucket
    potential_bottlenecks: Tuple[Bottleneck, ...]
    failures: Tuple[ResourceFailure, ...] = ()
    include_weekly: bool = True
    is_fallback_data: bool = False
    notice: Optional[str] = None

    @property
    def total_resources(self) -> int:
        return len(self.resources)

    def weekly_breakdown(self) -> List[Dict[str, object]]:
        """Organization weeks, each listing every resource's weekly utilization."""
        weeks: Dict[Tuple[date, date], Dict[str, object]] = {}
        for forecast in self.resources:
            for week in forecast.weekly or ():
                entry = weeks.setdefault(
                    (week.start_date, week.end_date),
                    {
                        "start_date": week.start_date.isoformat(),
                        "end_date": week.end_date.isoformat(),
                        "resources": [],
                    },
                )
                entry["resources"].append(
                    {
                        "resource_id": forecast.resource_id,
                        "resource_name": forecast.resource_name,
                        "utilization": round(week.utilization, 2),
                        "status": week.status,
                    }
                )
        return [weeks[key] for key in sorted(weeks)]

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "forecast_period": {
                "start_date": self.start_date.isoformat(),
                "end_date": self.end_date.isoformat(),
            },
            "summary": {
                "total_resources": self.total_resources,
                "over_allocated": self.over_allocated.to_dict(),
                "under_allocated": self.under_allocated.to_dict(),
                "optimally_allocated": self.optimally_allocated.to_dict(),
            },
            "resource_utilization": {
                forecast.resource_id: {
                    "resource_name": forecast.resource_name,
                    "average_utilization": round(forecast.average_utilization, 2),
                    "utilization_status": forecast.status,
                    "peak_periods": [peak.to_dict() for peak in forecast.peak_periods],
                }
                for forecast in self.resources
            },
            "potential_bottlenecks": [item.to_dict() for item in self.potential_bottlenecks],
            "failures": [failure.to_dict() for failure in self.failures],
            "is_fallback_data": self.is_fallback_data,
        }
        if self.include_weekly:
            payload["weekly_breakdown"] = self.weekly_breakdown()
        if self.notice:
            payload["notice"] = self.notice
        return payload


def peak_threshold(windows: Sequence[UtilizationWindow]) -> float:
    values = sorted((window.utilization_percentage for window in windows), reverse=True)
    if not values:
        return 0.0
    return values[math.floor(len(values) * PEAK_PERCENTILE_FRACTION)]


def peak_periods(windows: Sequence[UtilizationWindow]) -> List[PeakPeriod]:
    """Merge consecutive days at or above the 90th percentile into peaks.

    An idle series (threshold of zero) has no peaks.
    """
    threshold = peak_threshold(windows)
    if threshold <= 0:
        return []
    peaks: List[PeakPeriod] = []
    current: Optional[PeakPeriod] = None
    for window in windows:
        if window.utilization_percentage < threshold:
            if current is not None:
                peaks.append(current)
                current = None
            continue
        if current is None:
            current = PeakPeriod(window.day, window.day, window.utilization_percentage)
            continue
        days = current.days + 1
        running = (current.average_utilization * (days - 1) + window.utilization_percentage) / days
        current = PeakPeriod(current.start_date, window.day, running)
    if current is not None:
        peaks.append(current)
    return peaks


def _forecast_for(
    snapshot: Snapshot,
    resource: Resource,
    start: date,
    end: date,
    config: EngineConfig,
    include_weekly: bool,
    include_bench: bool,
) -> ResourceForecast:
    allocations = snapshot.allocations_for_resource(resource.id)
    windows = daily_utilization(snapshot, resource.id, start, end, allocations)
    in_range = tuple(alloc for alloc in allocations if alloc.overlaps(start, end))
    weekly = tuple(weekly_breakdown(windows, start, end)) if include_weekly else None
    bench = (
        predict_bench_time(resource.id, in_range, start, end, config.bench_threshold_pct)
        if include_bench
        else None
    )
    return ResourceForecast(
        resource_id=resource.id,
        resource_name=resource.name,
        role=resource.role,
        start_date=start,
        end_date=end,
        average_utilization=average_utilization(windows),
        peak_periods=tuple(peak_periods(windows)),
        allocations=in_range,
        daily=tuple(windows),
        weekly=weekly,
        bench=bench,
        **snapshot.fallback_fields(),
    )


def forecast_resource(
    snapshot: Snapshot,
    resource_id: str,
    start: date,
    end: date,
    config: Optional[EngineConfig] = None,
    include_weekly: bool = True,
    include_bench: bool = True,
) -> ResourceForecast:
    validate_range(start, end)
    resource = snapshot.resource(resource_id)
    return _forecast_for(
        snapshot, resource, start, end, config or EngineConfig(), include_weekly, include_bench
    )


def _bucket(count: int, total: int) -> HealthBucket:
    return HealthBucket(count=count, percentage=count / total * 100.0 if total else 0.0)


def forecast_organization(
    snapshot: Snapshot,
    start: date,
    end: date,
    config: Optional[EngineConfig] = None,
    include_weekly: bool = True,
    strict: bool = False,
) -> OrganizationForecast:
    """Forecast every resource and summarize organization health.

    Health buckets use the coarse >110 / <70 split, which is deliberately
    separate from the per-day status bands. A resource whose data cannot be
    evaluated is listed under ``failures`` unless ``strict`` is set, in which
    case the error propagates.
    """
    cfg = config or EngineConfig()
    validate_range(start, end)
    forecasts: List[ResourceForecast] = []
    failures: List[ResourceFailure] = []
    for resource in snapshot.resources:
        try:
            forecasts.append(
                _forecast_for(
                    snapshot, resource, start, end, cfg, include_weekly=True, include_bench=False
                )
            )
        except EngineError as exc:
            if strict:
                raise
            logger.warning("Skipping forecast for resource %s: %s", resource.id, exc)
            failures.append(ResourceFailure(resource.id, str(exc)))

    total = len(forecasts)
    over = sum(1 for f in forecasts if f.average_utilization > cfg.org_overallocated_threshold)
    under = sum(1 for f in forecasts if f.average_utilization < cfg.org_underallocated_threshold)
    optimal = total - over - under
    bottlenecks = detect_bottlenecks(
        {forecast.resource_id: forecast.weekly or () for forecast in forecasts}, snapshot
    )
    logger.info(
        "Organization forecast: %d resources, %d over, %d under, %d bottleneck weeks",
        total,
        over,
        under,
        len(bottlenecks),
    )
    return OrganizationForecast(
        start_date=start,
        end_date=end,
        resources=tuple(forecasts),
        over_allocated=_bucket(over, total),
        under_allocated=_bucket(under, total),
        optimally_allocated=_bucket(optimal, total),
        potential_bottlenecks=tuple(bottlenecks),
        failures=tuple(failures),
        include_weekly=include_weekly,
        **snapshot.fallback_fields(),
    )
