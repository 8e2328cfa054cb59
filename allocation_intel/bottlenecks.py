from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .calendar_utils import validate_range
from .errors import EngineError
from .models import ResourceFailure, Snapshot
from .utilization import WeeklyUtilization, daily_utilization, weekly_breakdown

logger = logging.getLogger(__name__)

OVERALLOCATION_PCT = 100.0
MIN_BOTTLENECK_SIZE = 2


@dataclass(frozen=True)
class BottleneckResource:
    resource_id: str
    resource_name: str
    role: str
    utilization: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "role": self.role,
            "utilization": round(self.utilization, 2),
        }


@dataclass(frozen=True)
class Bottleneck:
    """A week in which several resources are over-allocated at once."""

    start_date: date
    end_date: date
    resources: Tuple[BottleneckResource, ...]

    @property
    def severity(self) -> int:
        return len(self.resources)

    @property
    def average_overallocation(self) -> float:
        if not self.resources:
            return 0.0
        return sum(res.utilization - OVERALLOCATION_PCT for res in self.resources) / len(self.resources)

    def to_dict(self) -> Dict[str, object]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "over_allocated_resources": [res.to_dict() for res in self.resources],
            "severity": self.severity,
            "average_overallocation": round(self.average_overallocation, 2),
        }


def detect_bottlenecks(
    weekly_by_resource: Mapping[str, Sequence[WeeklyUtilization]],
    snapshot: Optional[Snapshot] = None,
) -> List[Bottleneck]:
    """Weeks where at least two resources average above 100%.

    Ordered by severity, then by average overallocation, both descending.
    """
    weeks: Dict[Tuple[date, date], List[BottleneckResource]] = {}
    for resource_id, series in weekly_by_resource.items():
        resource = snapshot.find_resource(resource_id) if snapshot else None
        for week in series:
            if week.utilization <= OVERALLOCATION_PCT:
                continue
            weeks.setdefault((week.start_date, week.end_date), []).append(
                BottleneckResource(
                    resource_id=resource_id,
                    resource_name=resource.name if resource else "",
                    role=resource.role if resource else "",
                    utilization=week.utilization,
                )
            )
    bottlenecks = [
        Bottleneck(start_date=start, end_date=end, resources=tuple(members))
        for (start, end), members in sorted(weeks.items())
        if len(members) >= MIN_BOTTLENECK_SIZE
    ]
    bottlenecks.sort(key=lambda item: (item.severity, item.average_overallocation), reverse=True)
    return bottlenecks


@dataclass(frozen=True)
class BottleneckReport:
    start_date: date
    end_date: date
    bottlenecks: Tuple[Bottleneck, ...]
    failures: Tuple[ResourceFailure, ...] = ()
    is_fallback_data: bool = False
    notice: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "period": {"start_date": self.start_date.isoformat(), "end_date": self.end_date.isoformat()},
            "bottlenecks": [item.to_dict() for item in self.bottlenecks],
            "failures": [failure.to_dict() for failure in self.failures],
            "is_fallback_data": self.is_fallback_data,
        }
        if self.notice:
            payload["notice"] = self.notice
        return payload


def weekly_series(
    snapshot: Snapshot, start: date, end: date, strict: bool = False
) -> Tuple[Dict[str, List[WeeklyUtilization]], List[ResourceFailure]]:
    """Weekly utilization per resource; unusable resources are returned as failures."""
    series: Dict[str, List[WeeklyUtilization]] = {}
    failures: List[ResourceFailure] = []
    for resource in snapshot.resources:
        try:
            windows = daily_utilization(snapshot, resource.id, start, end)
        except EngineError as exc:
            if strict:
                raise
            logger.warning("Skipping resource %s in bottleneck scan: %s", resource.id, exc)
            failures.append(ResourceFailure(resource.id, str(exc)))
            continue
        series[resource.id] = weekly_breakdown(windows, start, end)
    return series, failures


def predict_bottlenecks(
    snapshot: Snapshot, start: date, end: date, strict: bool = False
) -> BottleneckReport:
    validate_range(start, end)
    series, failures = weekly_series(snapshot, start, end, strict)
    bottlenecks = detect_bottlenecks(series, snapshot)
    logger.info("Found %d bottleneck weeks between %s and %s", len(bottlenecks), start, end)
    return BottleneckReport(
        start_date=start,
        end_date=end,
        bottlenecks=tuple(bottlenecks),
        failures=tuple(failures),
        **snapshot.fallback_fields(),
    )
