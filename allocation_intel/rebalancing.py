"""
Utilization-balance rebalancing.

Finds resources above 100% and below 70% average utilization for a period and
proposes, greedily and deterministically:
- transfers of whole allocations to under-allocated resources with room
- reductions of allocations when nobody has room

Suggestions are plain data and are never applied to the snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .calendar_utils import validate_range
from .errors import EngineError
from .models import Allocation, EngineConfig, Resource, ResourceFailure, Snapshot
from .utilization import average_utilization, daily_utilization

logger = logging.getLogger(__name__)

EPSILON = 1e-6
FULL_UTILIZATION = 100.0

TRANSFER = "transfer"
REDUCE = "reduce"


@dataclass(frozen=True)
class OverAllocatedResource:
    resource_id: str
    name: str
    role: str
    average_utilization: float
    allocations: Tuple[Allocation, ...]

    @property
    def overage(self) -> float:
        return self.average_utilization - FULL_UTILIZATION

    def to_dict(self) -> Dict[str, object]:
        return {
            "resource_id": self.resource_id,
            "name": self.name,
            "role": self.role,
            "overage_percentage": round(self.overage, 2),
            "allocation_ids": [alloc.id for alloc in self.allocations],
        }


@dataclass(frozen=True)
class UnderAllocatedResource:
    resource_id: str
    name: str
    role: str
    average_utilization: float

    @property
    def available_capacity(self) -> float:
        return FULL_UTILIZATION - self.average_utilization

    def to_dict(self) -> Dict[str, object]:
        return {
            "resource_id": self.resource_id,
            "name": self.name,
            "role": self.role,
            "available_capacity": round(self.available_capacity, 2),
        }


@dataclass(frozen=True)
class RebalancingSuggestion:
    """A proposed transfer or reduction of one allocation.

    For transfers ``amount`` is the whole allocation moved to
    ``to_resource_id``; for reductions it is the suggested cut.
    """

    kind: str
    allocation_id: str
    project_id: str
    project_name: str
    resource_id: str
    resource_name: str
    current_utilization: float
    allocation_utilization: float
    amount: float
    new_utilization: float
    to_resource_id: Optional[str] = None
    to_resource_name: Optional[str] = None
    to_current_utilization: Optional[float] = None
    to_new_utilization: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        source = {
            "resource_id": self.resource_id,
            "name": self.resource_name,
            "current_utilization": round(self.current_utilization, 2),
        }
        payload: Dict[str, object] = {
            "type": self.kind,
            "allocation_id": self.allocation_id,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "utilization_amount": round(self.allocation_utilization, 2),
        }
        if self.kind == TRANSFER:
            payload["from_resource"] = source
            payload["to_resource"] = {
                "resource_id": self.to_resource_id,
                "name": self.to_resource_name,
                "current_utilization": round(self.to_current_utilization or 0.0, 2),
            }
            payload["impact"] = {
                "from_resource_new_utilization": round(self.new_utilization, 2),
                "to_resource_new_utilization": round(self.to_new_utilization or 0.0, 2),
            }
        else:
            payload["resource"] = source
            payload["suggested_reduction"] = round(self.amount, 2)
            payload["impact"] = {"new_utilization": round(self.new_utilization, 2)}
        return payload


@dataclass(frozen=True)
class RebalancingResult:
    start_date: date
    end_date: date
    adjustments_needed: bool
    message: str
    over_allocated: Tuple[OverAllocatedResource, ...]
    under_allocated: Tuple[UnderAllocatedResource, ...]
    suggestions: Tuple[RebalancingSuggestion, ...]
    failures: Tuple[ResourceFailure, ...] = ()
    is_fallback_data: bool = False
    notice: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "period": {
                "start_date": self.start_date.isoformat(),
                "end_date": self.end_date.isoformat(),
            },
            "adjustments_needed": self.adjustments_needed,
            "message": self.message,
            "over_allocated": [item.to_dict() for item in self.over_allocated],
            "under_allocated": [item.to_dict() for item in self.under_allocated],
            "suggestions": [item.to_dict() for item in self.suggestions],
            "failures": [failure.to_dict() for failure in self.failures],
            "is_fallback_data": self.is_fallback_data,
        }
        if self.notice:
            payload["notice"] = self.notice
        return payload


class CapacityLedger:
    """Working copy of spare capacity threaded through one suggestion pass."""

    def __init__(self, resources: Iterable[UnderAllocatedResource]) -> None:
        self._resources: Dict[str, UnderAllocatedResource] = {}
        self._spare: Dict[str, float] = {}
        for resource in resources:
            self._resources[resource.resource_id] = resource
            self._spare[resource.resource_id] = resource.available_capacity

    def spare(self, resource_id: str) -> float:
        return self._spare[resource_id]

    def utilization(self, resource_id: str) -> float:
        return FULL_UTILIZATION - self._spare[resource_id]

    def name(self, resource_id: str) -> str:
        return self._resources[resource_id].name

    def candidates(self, amount: float) -> List[str]:
        """Resources that can absorb ``amount``, most spare capacity first."""
        eligible = [rid for rid, spare in self._spare.items() if spare + EPSILON >= amount]
        return sorted(eligible, key=lambda rid: self._spare[rid], reverse=True)

    def reserve(self, resource_id: str, amount: float) -> None:
        remaining = self._spare[resource_id] - amount
        if remaining < -EPSILON:
            raise ValueError(f"cannot reserve {amount} on {resource_id}: only {self._spare[resource_id]} spare")
        self._spare[resource_id] = max(0.0, remaining)


def _collect_for_redistribution(
    allocations: Sequence[Allocation], target: float
) -> List[Allocation]:
    collected: List[Allocation] = []
    accumulated = 0.0
    for alloc in sorted(allocations, key=lambda item: item.utilization, reverse=True):
        if accumulated >= target:
            break
        collected.append(alloc)
        accumulated += alloc.utilization
    return collected


class RebalancingOptimizer:
    """Greedy redistribution of over-allocation onto spare capacity."""

    def __init__(
        self,
        snapshot: Snapshot,
        start: date,
        end: date,
        config: Optional[EngineConfig] = None,
    ) -> None:
        validate_range(start, end)
        self.snapshot = snapshot
        self.start = start
        self.end = end
        self.config = config or EngineConfig()
        self.failures: List[ResourceFailure] = []

    def classify(self) -> Tuple[List[OverAllocatedResource], List[UnderAllocatedResource]]:
        over: List[OverAllocatedResource] = []
        under: List[UnderAllocatedResource] = []
        self.failures = []
        for resource in self.snapshot.resources:
            try:
                average = self._average_utilization(resource)
            except EngineError as exc:
                logger.warning("Excluding resource %s from rebalancing: %s", resource.id, exc)
                self.failures.append(ResourceFailure(resource.id, str(exc)))
                continue
            if average > self.config.rebalance_over_threshold:
                allocations = tuple(
                    alloc
                    for alloc in self.snapshot.allocations_for_resource(resource.id)
                    if alloc.overlaps(self.start, self.end)
                )
                over.append(
                    OverAllocatedResource(resource.id, resource.name, resource.role, average, allocations)
                )
            elif average < self.config.rebalance_under_threshold:
                under.append(UnderAllocatedResource(resource.id, resource.name, resource.role, average))
        over.sort(key=lambda item: item.overage, reverse=True)
        under.sort(key=lambda item: item.available_capacity, reverse=True)
        return over, under

    def analyze(self) -> RebalancingResult:
        over, under = self.classify()
        if not over:
            return self._result(False, "No over-allocated resources found for this period.", over, under, [])
        if not under:
            return self._result(
                False,
                "No under-allocated resources available to absorb excess work for this period.",
                over,
                under,
                [],
            )
        ledger = CapacityLedger(under)
        suggestions: List[RebalancingSuggestion] = []
        for resource in over:
            suggestions.extend(self._suggestions_for(resource, ledger))
        logger.info(
            "Rebalancing %s to %s: %d over, %d under, %d suggestions",
            self.start,
            self.end,
            len(over),
            len(under),
            len(suggestions),
        )
        message = f"{len(suggestions)} adjustments suggested for {len(over)} over-allocated resources."
        return self._result(True, message, over, under, suggestions)

    def _average_utilization(self, resource: Resource) -> float:
        windows = daily_utilization(self.snapshot, resource.id, self.start, self.end)
        return average_utilization(windows)

    def _project_name(self, project_id: str) -> str:
        project = self.snapshot.find_project(project_id)
        return project.name if project else ""

    def _suggestions_for(
        self, resource: OverAllocatedResource, ledger: CapacityLedger
    ) -> List[RebalancingSuggestion]:
        suggestions: List[RebalancingSuggestion] = []
        running = resource.average_utilization
        remaining = resource.overage
        for alloc in _collect_for_redistribution(resource.allocations, resource.overage):
            candidates = ledger.candidates(alloc.utilization)
            if candidates:
                target = candidates[0]
                target_before = ledger.utilization(target)
                ledger.reserve(target, alloc.utilization)
                suggestions.append(
                    RebalancingSuggestion(
                        kind=TRANSFER,
                        allocation_id=alloc.id,
                        project_id=alloc.project_id,
                        project_name=self._project_name(alloc.project_id),
                        resource_id=resource.resource_id,
                        resource_name=resource.name,
                        current_utilization=running,
                        allocation_utilization=alloc.utilization,
                        amount=alloc.utilization,
                        new_utilization=running - alloc.utilization,
                        to_resource_id=target,
                        to_resource_name=ledger.name(target),
                        to_current_utilization=target_before,
                        to_new_utilization=ledger.utilization(target),
                    )
                )
                running -= alloc.utilization
                remaining -= alloc.utilization
                continue
            reduction = min(alloc.utilization * self.config.reduction_fraction, max(remaining, 0.0))
            if reduction <= EPSILON:
                continue
            suggestions.append(
                RebalancingSuggestion(
                    kind=REDUCE,
                    allocation_id=alloc.id,
                    project_id=alloc.project_id,
                    project_name=self._project_name(alloc.project_id),
                    resource_id=resource.resource_id,
                    resource_name=resource.name,
                    current_utilization=running,
                    allocation_utilization=alloc.utilization,
                    amount=reduction,
                    new_utilization=running - reduction,
                )
            )
            running -= reduction
            remaining -= reduction
        return suggestions

    def _result(
        self,
        needed: bool,
        message: str,
        over: Sequence[OverAllocatedResource],
        under: Sequence[UnderAllocatedResource],
        suggestions: Sequence[RebalancingSuggestion],
    ) -> RebalancingResult:
        return RebalancingResult(
            start_date=self.start,
            end_date=self.end,
            adjustments_needed=needed,
            message=message,
            over_allocated=tuple(over),
            under_allocated=tuple(under),
            suggestions=tuple(suggestions),
            failures=tuple(self.failures),
            **self.snapshot.fallback_fields(),
        )
