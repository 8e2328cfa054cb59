from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .calendar_utils import count_days, iter_days, validate_range
from .errors import EngineError
from .models import Allocation, ResourceFailure, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_BENCH_THRESHOLD_PCT = 20.0


@dataclass(frozen=True)
class BenchPeriod:
    resource_id: str
    start_date: date
    end_date: date
    days: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "days": self.days,
        }


@dataclass(frozen=True)
class BenchPrediction:
    resource_id: str
    start_date: date
    end_date: date
    total_bench_days: int
    bench_percentage: float
    periods: Tuple[BenchPeriod, ...]
    resource_name: str = ""
    role: str = ""
    is_fallback_data: bool = False
    notice: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "role": self.role,
            "total_bench_days": self.total_bench_days,
            "bench_percentage": round(self.bench_percentage, 2),
            "bench_periods": [period.to_dict() for period in self.periods],
            "is_fallback_data": self.is_fallback_data,
        }
        if self.notice:
            payload["notice"] = self.notice
        return payload


def _bench_runs(
    resource_id: str,
    allocations: Sequence[Allocation],
    start: date,
    end: date,
    threshold: float,
) -> List[BenchPeriod]:
    periods: List[BenchPeriod] = []
    run_start: Optional[date] = None
    run_end: Optional[date] = None
    for day in iter_days(start, end):
        load = sum(alloc.utilization for alloc in allocations if alloc.contains(day))
        if load <= threshold:
            if run_start is None:
                run_start = day
            run_end = day
            continue
        if run_start is not None and run_end is not None:
            periods.append(BenchPeriod(resource_id, run_start, run_end, (run_end - run_start).days + 1))
        run_start = run_end = None
    if run_start is not None and run_end is not None:
        periods.append(BenchPeriod(resource_id, run_start, run_end, (run_end - run_start).days + 1))
    return periods


def predict_bench_time(
    resource_id: str,
    allocations: Iterable[Allocation],
    start: date,
    end: date,
    threshold: float = DEFAULT_BENCH_THRESHOLD_PCT,
) -> BenchPrediction:
    """Contiguous runs of days whose summed allocation stays at or below ``threshold``.

    A low nominal booking (for example a 10% advisory slot) still counts as
    bench time.
    """
    total_days = count_days(start, end)
    relevant: List[Allocation] = []
    for alloc in allocations:
        alloc.validate()
        if alloc.overlaps(start, end):
            relevant.append(alloc)
    periods = _bench_runs(resource_id, relevant, start, end, threshold)
    total = sum(period.days for period in periods)
    return BenchPrediction(
        resource_id=resource_id,
        start_date=start,
        end_date=end,
        total_bench_days=total,
        bench_percentage=total / total_days * 100.0,
        periods=tuple(periods),
    )


def predict_resource_bench(
    snapshot: Snapshot,
    resource_id: str,
    start: date,
    end: date,
    threshold: float = DEFAULT_BENCH_THRESHOLD_PCT,
) -> BenchPrediction:
    resource = snapshot.resource(resource_id)
    prediction = predict_bench_time(
        resource.id, snapshot.allocations_for_resource(resource.id), start, end, threshold
    )
    return BenchPrediction(
        resource_id=prediction.resource_id,
        start_date=prediction.start_date,
        end_date=prediction.end_date,
        total_bench_days=prediction.total_bench_days,
        bench_percentage=prediction.bench_percentage,
        periods=prediction.periods,
        resource_name=resource.name,
        role=resource.role,
        **snapshot.fallback_fields(),
    )


@dataclass(frozen=True)
class OrganizationBench:
    start_date: date
    end_date: date
    predictions: Tuple[BenchPrediction, ...]
    failures: Tuple[ResourceFailure, ...] = ()
    is_fallback_data: bool = False
    notice: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "period": {"start_date": self.start_date.isoformat(), "end_date": self.end_date.isoformat()},
            "resources": [item.to_dict() for item in self.predictions],
            "failures": [failure.to_dict() for failure in self.failures],
            "is_fallback_data": self.is_fallback_data,
        }
        if self.notice:
            payload["notice"] = self.notice
        return payload


def predict_organization_bench(
    snapshot: Snapshot,
    start: date,
    end: date,
    threshold: float = DEFAULT_BENCH_THRESHOLD_PCT,
    strict: bool = False,
) -> OrganizationBench:
    """Bench predictions for every resource, most bench days first.

    A resource with a corrupt allocation is reported under ``failures``
    unless ``strict`` is set.
    """
    validate_range(start, end)
    predictions: List[BenchPrediction] = []
    failures: List[ResourceFailure] = []
    for resource in snapshot.resources:
        try:
            predictions.append(predict_resource_bench(snapshot, resource.id, start, end, threshold))
        except EngineError as exc:
            if strict:
                raise
            logger.warning("Skipping bench prediction for resource %s: %s", resource.id, exc)
            failures.append(ResourceFailure(resource.id, str(exc)))
    predictions.sort(key=lambda item: item.total_bench_days, reverse=True)
    logger.info(
        "Bench prediction for %d resources between %s and %s", len(predictions), start, end
    )
    return OrganizationBench(
        start_date=start,
        end_date=end,
        predictions=tuple(predictions),
        failures=tuple(failures),
        **snapshot.fallback_fields(),
    )
