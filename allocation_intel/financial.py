"""
Financially weighted allocation optimization.

Supported goals:
- profit: move spare high-margin capacity onto high-margin projects, then trim
  expensive allocations on thin-margin projects
- revenue: only the reallocation pass, ordered by billing rate
- cost: only the trimming pass, ordered by cost rate
- utilization: the utilization-balance rebalancer, applied to a working copy

Every pass works on an explicit working copy of the allocation set; the
snapshot itself is never touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from .calendar_utils import overlap_days, validate_range
from .errors import InvalidRangeError
from .models import Allocation, EngineConfig, Resource, ResourceFailure, Snapshot
from .rebalancing import REDUCE, TRANSFER, RebalancingOptimizer

logger = logging.getLogger(__name__)

PROFIT = "profit"
REVENUE = "revenue"
COST = "cost"
UTILIZATION = "utilization"
GOALS: Tuple[str, ...] = (PROFIT, REVENUE, COST, UTILIZATION)

NEW_ALLOCATION_PREFIX = "new-"
SIGNIFICANT_CHANGE_PCT = 20.0
HIGH_PRIORITY_PROFIT = 1000.0
UNDERUTILIZED_PCT = 50.0
REVIEW_MARGIN_PCT = 15.0
SCENARIO_RECOMMENDATIONS = 3

WorkingSet = Dict[str, "ProposedAllocation"]


def format_currency(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.0f}"


def _format_pct(value: float) -> str:
    return f"{value:g}"


@dataclass(frozen=True)
class ProjectFinancials:
    project_id: str
    name: str
    revenue: float
    cost: float

    @property
    def profit(self) -> float:
        return self.revenue - self.cost

    @property
    def margin(self) -> float:
        if self.revenue <= 0:
            return 0.0
        return self.profit / self.revenue * 100.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "project_id": self.project_id,
            "name": self.name,
            "total_revenue": round(self.revenue, 2),
            "total_cost": round(self.cost, 2),
            "profit_margin": round(self.margin, 2),
        }


@dataclass(frozen=True)
class ProposedAllocation:
    id: str
    resource_id: str
    project_id: str
    start_date: date
    end_date: date
    percentage: float
    notes: str = ""
    is_new: bool = False

    @classmethod
    def from_allocation(cls, allocation: Allocation) -> "ProposedAllocation":
        return cls(
            id=allocation.id,
            resource_id=allocation.resource_id,
            project_id=allocation.project_id,
            start_date=allocation.start_date,
            end_date=allocation.end_date,
            percentage=allocation.utilization,
            notes=allocation.notes,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "project_id": self.project_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "percentage": round(self.percentage, 2),
            "notes": self.notes,
        }


@dataclass(frozen=True)
class AllocationChange:
    allocation_id: str
    resource_id: str
    project_id: str
    change_type: str
    previous_percentage: float
    new_percentage: float
    previous_resource_id: Optional[str] = None

    @property
    def change(self) -> float:
        return self.new_percentage - self.previous_percentage

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "allocation_id": self.allocation_id,
            "resource_id": self.resource_id,
            "project_id": self.project_id,
            "change_type": self.change_type,
            "previous_percentage": round(self.previous_percentage, 2),
            "new_percentage": round(self.new_percentage, 2),
            "change": round(self.change, 2),
        }
        if self.previous_resource_id:
            payload["previous_resource_id"] = self.previous_resource_id
        return payload


@dataclass(frozen=True)
class FinancialTotals:
    revenue: float
    cost: float
    average_utilization: float

    @property
    def profit(self) -> float:
        return self.revenue - self.cost

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_revenue": round(self.revenue, 2),
            "total_cost": round(self.cost, 2),
            "total_profit": round(self.profit, 2),
            "average_utilization": round(self.average_utilization, 2),
        }


@dataclass(frozen=True)
class FinancialImpact:
    current: FinancialTotals
    optimized: FinancialTotals

    @property
    def revenue_change(self) -> float:
        return self.optimized.revenue - self.current.revenue

    @property
    def cost_change(self) -> float:
        return self.optimized.cost - self.current.cost

    @property
    def profit_change(self) -> float:
        return self.optimized.profit - self.current.profit

    @property
    def utilization_change(self) -> float:
        return self.optimized.average_utilization - self.current.average_utilization

    def to_dict(self) -> Dict[str, object]:
        return {
            "revenue_change": round(self.revenue_change, 2),
            "cost_change": round(self.cost_change, 2),
            "profit_change": round(self.profit_change, 2),
            "utilization_change": round(self.utilization_change, 2),
            "current": self.current.to_dict(),
            "optimized": self.optimized.to_dict(),
        }


@dataclass(frozen=True)
class FinancialRecommendation:
    type: str
    priority: str
    description: str
    details: str
    resource_ids: Tuple[str, ...] = ()
    project_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "type": self.type,
            "priority": self.priority,
            "description": self.description,
            "details": self.details,
        }
        if self.resource_ids:
            payload["resource_ids"] = list(self.resource_ids)
        if self.project_ids:
            payload["project_ids"] = list(self.project_ids)
        return payload


@dataclass(frozen=True)
class FinancialOptimizationResult:
    goal: str
    start_date: date
    end_date: date
    allocations: Tuple[ProposedAllocation, ...]
    changes: Tuple[AllocationChange, ...]
    impact: FinancialImpact
    recommendations: Tuple[FinancialRecommendation, ...]
    failures: Tuple[ResourceFailure, ...] = ()
    is_fallback_data: bool = False
    notice: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "optimization_goal": self.goal,
            "date_range": {
                "start_date": self.start_date.isoformat(),
                "end_date": self.end_date.isoformat(),
            },
            "optimized_allocations": [alloc.to_dict() for alloc in self.allocations],
            "changes": [change.to_dict() for change in self.changes],
            "financial_impact": self.impact.to_dict(),
            "recommendations": [rec.to_dict() for rec in self.recommendations],
            "failures": [failure.to_dict() for failure in self.failures],
            "is_fallback_data": self.is_fallback_data,
        }
        if self.notice:
            payload["notice"] = self.notice
        return payload


@dataclass(frozen=True)
class OptimizationScenario:
    goal: str
    impact: FinancialImpact
    recommendations: Tuple[FinancialRecommendation, ...]

    def to_dict(self) -> Dict[str, object]:
        return {
            "goal": self.goal,
            "financial_impact": self.impact.to_dict(),
            "recommendations": [rec.to_dict() for rec in self.recommendations],
        }


class FinancialOptimizer:
    """Greedy, goal-driven rework of the allocation set over one period."""

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
        current: List[ProposedAllocation] = []
        failures: List[ResourceFailure] = []
        for alloc in snapshot.allocations:
            try:
                alloc.validate()
            except InvalidRangeError as exc:
                logger.warning("Excluding allocation %s from financial optimization: %s", alloc.id, exc)
                failures.append(ResourceFailure(alloc.resource_id, str(exc)))
                continue
            if alloc.overlaps(start, end):
                current.append(ProposedAllocation.from_allocation(alloc))
        self.current: Tuple[ProposedAllocation, ...] = tuple(current)
        self.failures: Tuple[ResourceFailure, ...] = tuple(failures)
        self.project_financials: Dict[str, ProjectFinancials] = self._project_financials()
        self.resource_utilization: Dict[str, float] = _utilization_by_resource(self.current)

    def optimize(self, goal: str = PROFIT) -> FinancialOptimizationResult:
        if goal not in GOALS:
            raise ValueError(f"unsupported optimization goal '{goal}' (expected one of {', '.join(GOALS)})")
        resources, projects = self._sorted_for_goal(goal)
        working: WorkingSet = {alloc.id: alloc for alloc in self.current}
        failures = list(self.failures)
        if goal in (PROFIT, REVENUE):
            working = self._reallocate_spare_capacity(working, resources, projects)
        if goal in (PROFIT, COST):
            working = self._trim_low_margin_projects(working, projects)
        if goal == UTILIZATION:
            working, skipped = self._balance_utilization(working)
            failures.extend(failure for failure in skipped if failure not in failures)

        optimized = tuple(working.values())
        impact = FinancialImpact(current=self._totals(self.current), optimized=self._totals(optimized))
        changes = self._changes(optimized)
        recommendations = self._recommendations(goal, impact, changes)
        logger.info(
            "Financial optimization (%s): %d changes, profit change %.2f",
            goal,
            len(changes),
            impact.profit_change,
        )
        return FinancialOptimizationResult(
            goal=goal,
            start_date=self.start,
            end_date=self.end,
            allocations=optimized,
            changes=tuple(changes),
            impact=impact,
            recommendations=tuple(recommendations),
            failures=tuple(failures),
            **self.snapshot.fallback_fields(),
        )

    def scenarios(self) -> List[OptimizationScenario]:
        """Run every goal and keep the leading recommendations of each."""
        results = [self.optimize(goal) for goal in GOALS]
        return [
            OptimizationScenario(
                goal=result.goal,
                impact=result.impact,
                recommendations=result.recommendations[:SCENARIO_RECOMMENDATIONS],
            )
            for result in results
        ]

    def _project_financials(self) -> Dict[str, ProjectFinancials]:
        totals: Dict[str, List[float]] = {}
        for project in self.snapshot.projects:
            if project.start_date and project.start_date > self.end:
                continue
            if project.end_date and project.end_date < self.start:
                continue
            totals[project.id] = [0.0, 0.0]
        for alloc in self.current:
            if alloc.project_id not in totals:
                continue
            resource = self.snapshot.find_resource(alloc.resource_id)
            if resource is None:
                continue
            days = overlap_days(alloc.start_date, alloc.end_date, self.start, self.end)
            totals[alloc.project_id][0] += alloc.percentage * (resource.billing_rate or 0.0) * days / 100.0
            totals[alloc.project_id][1] += alloc.percentage * (resource.cost_rate or 0.0) * days / 100.0
        return {
            project_id: ProjectFinancials(
                project_id, self.snapshot.project(project_id).name, revenue, cost
            )
            for project_id, (revenue, cost) in totals.items()
        }

    def _sorted_for_goal(self, goal: str) -> Tuple[List[Resource], List[ProjectFinancials]]:
        resources = list(self.snapshot.resources)
        projects = list(self.project_financials.values())
        if goal == PROFIT:
            resources.sort(key=lambda res: res.hourly_margin(), reverse=True)
            projects.sort(key=lambda proj: proj.margin, reverse=True)
        elif goal == REVENUE:
            resources.sort(key=lambda res: res.billing_rate or 0.0, reverse=True)
            projects.sort(key=lambda proj: proj.revenue, reverse=True)
        elif goal == COST:
            resources.sort(key=lambda res: res.cost_rate or 0.0)
            projects.sort(key=lambda proj: proj.cost)
        return resources, projects

    def _reallocate_spare_capacity(
        self,
        working: WorkingSet,
        resources: Sequence[Resource],
        projects: Sequence[ProjectFinancials],
    ) -> WorkingSet:
        cfg = self.config
        updated = dict(working)
        targets = [proj for proj in projects if proj.margin > cfg.high_margin_project_pct]
        if not targets:
            return updated
        for resource in resources:
            utilization = self.resource_utilization.get(resource.id, 0.0)
            if resource.hourly_margin() <= 0 or utilization >= cfg.reallocation_utilization_ceiling:
                continue
            available = 100.0 - utilization
            if available < cfg.min_reallocation_capacity:
                continue
            project = targets[0]
            existing = next(
                (
                    alloc
                    for alloc in updated.values()
                    if alloc.resource_id == resource.id and alloc.project_id == project.project_id
                ),
                None,
            )
            if existing is not None:
                updated[existing.id] = replace(
                    existing, percentage=min(existing.percentage + available, 100.0)
                )
                continue
            new_id = self._free_allocation_id(updated)
            updated[new_id] = ProposedAllocation(
                id=new_id,
                resource_id=resource.id,
                project_id=project.project_id,
                start_date=self.start,
                end_date=self.end,
                percentage=min(available, cfg.max_new_allocation_pct),
                notes="Suggested by financial optimization",
                is_new=True,
            )
        return updated

    def _trim_low_margin_projects(
        self, working: WorkingSet, projects: Sequence[ProjectFinancials]
    ) -> WorkingSet:
        cfg = self.config
        updated = dict(working)
        low_margin = sorted(
            (proj for proj in projects if 0 <= proj.margin < cfg.low_margin_project_pct),
            key=lambda proj: proj.margin,
        )
        for project in low_margin:
            candidates = sorted(
                (alloc for alloc in updated.values() if alloc.project_id == project.project_id),
                key=lambda alloc: self._cost_rate(alloc.resource_id),
                reverse=True,
            )
            for alloc in candidates:
                if alloc.percentage <= cfg.cost_reduction_floor:
                    continue
                updated[alloc.id] = replace(
                    alloc,
                    percentage=max(cfg.cost_reduction_floor, alloc.percentage - cfg.cost_reduction_step),
                    notes=f"{alloc.notes} (Reduced by financial optimization)".strip(),
                )
                break
        return updated

    def _free_allocation_id(self, working: WorkingSet) -> str:
        """First ``new-N`` id, counting from the working set size, used by no allocation."""
        taken = set(working) | {alloc.id for alloc in self.snapshot.allocations}
        index = len(working) + 1
        while f"{NEW_ALLOCATION_PREFIX}{index}" in taken:
            index += 1
        return f"{NEW_ALLOCATION_PREFIX}{index}"

    def _balance_utilization(
        self, working: WorkingSet
    ) -> Tuple[WorkingSet, Tuple[ResourceFailure, ...]]:
        result = RebalancingOptimizer(self.snapshot, self.start, self.end, self.config).analyze()
        updated = dict(working)
        for suggestion in result.suggestions:
            alloc = updated.get(suggestion.allocation_id)
            if alloc is None:
                continue
            if suggestion.kind == TRANSFER and suggestion.to_resource_id:
                updated[alloc.id] = replace(
                    alloc,
                    resource_id=suggestion.to_resource_id,
                    notes=f"{alloc.notes} (Transferred for utilization balancing)".strip(),
                )
            elif suggestion.kind == REDUCE:
                updated[alloc.id] = replace(
                    alloc,
                    percentage=max(0.0, alloc.percentage - suggestion.amount),
                    notes=f"{alloc.notes} (Reduced for utilization balancing)".strip(),
                )
        return updated, result.failures

    def _cost_rate(self, resource_id: str) -> float:
        resource = self.snapshot.find_resource(resource_id)
        return (resource.cost_rate or 0.0) if resource else 0.0

    def _totals(self, allocations: Sequence[ProposedAllocation]) -> FinancialTotals:
        revenue = 0.0
        cost = 0.0
        for alloc in allocations:
            resource = self.snapshot.find_resource(alloc.resource_id)
            if resource is None:
                continue
            revenue += alloc.percentage * (resource.billing_rate or 0.0) / 100.0
            cost += alloc.percentage * (resource.cost_rate or 0.0) / 100.0
        utilization = _utilization_by_resource(allocations)
        average = sum(utilization.values()) / len(utilization) if utilization else 0.0
        return FinancialTotals(revenue=revenue, cost=cost, average_utilization=average)

    def _changes(self, optimized: Sequence[ProposedAllocation]) -> List[AllocationChange]:
        current = {alloc.id: alloc for alloc in self.current}
        changes: List[AllocationChange] = []
        for alloc in optimized:
            before = current.get(alloc.id)
            if before is None:
                changes.append(
                    AllocationChange(alloc.id, alloc.resource_id, alloc.project_id, "new", 0.0, alloc.percentage)
                )
                continue
            if before.resource_id != alloc.resource_id:
                changes.append(
                    AllocationChange(
                        alloc.id,
                        alloc.resource_id,
                        alloc.project_id,
                        "transferred",
                        before.percentage,
                        alloc.percentage,
                        previous_resource_id=before.resource_id,
                    )
                )
            elif before.percentage != alloc.percentage:
                kind = "increased" if alloc.percentage > before.percentage else "decreased"
                changes.append(
                    AllocationChange(
                        alloc.id, alloc.resource_id, alloc.project_id, kind, before.percentage, alloc.percentage
                    )
                )
        return changes

    def _recommendations(
        self,
        goal: str,
        impact: FinancialImpact,
        changes: Sequence[AllocationChange],
    ) -> List[FinancialRecommendation]:
        recommendations: List[FinancialRecommendation] = []
        if goal == PROFIT:
            recommendations.extend(self._profit_recommendations(impact, changes))
        elif goal == REVENUE and impact.revenue_change > 0:
            recommendations.append(
                FinancialRecommendation(
                    "revenue",
                    "high",
                    "Implement suggested allocation changes to increase revenue by "
                    f"{format_currency(impact.revenue_change)}.",
                    "The optimized allocations focus on maximizing billable hours for high-rate resources.",
                )
            )
        elif goal == COST and impact.cost_change < 0:
            recommendations.append(
                FinancialRecommendation(
                    "cost",
                    "high",
                    "Implement suggested allocation changes to reduce costs by "
                    f"{format_currency(abs(impact.cost_change))}.",
                    "The optimized allocations reduce usage of high-cost resources on low-margin projects.",
                )
            )
        elif goal == UTILIZATION and impact.utilization_change != 0:
            direction = "increase" if impact.utilization_change > 0 else "balance"
            recommendations.append(
                FinancialRecommendation(
                    "utilization",
                    "medium",
                    f"Implement suggested allocation changes to {direction} overall utilization by "
                    f"{abs(impact.utilization_change):.1f}%.",
                    "The optimized allocations better distribute work across the team, reducing "
                    "overallocation and increasing utilization of bench resources.",
                )
            )
        recommendations.extend(self._general_recommendations())
        return recommendations

    def _profit_recommendations(
        self, impact: FinancialImpact, changes: Sequence[AllocationChange]
    ) -> List[FinancialRecommendation]:
        recommendations: List[FinancialRecommendation] = []
        if impact.profit_change > 0:
            cost_direction = "decrease" if impact.cost_change < 0 else "increase"
            recommendations.append(
                FinancialRecommendation(
                    "profit",
                    "high",
                    "Implement suggested allocation changes to increase profit by "
                    f"{format_currency(impact.profit_change)}.",
                    "The optimized allocations would increase revenue by "
                    f"{format_currency(impact.revenue_change)} and {cost_direction} costs by "
                    f"{format_currency(abs(impact.cost_change))}.",
                )
            )
        for change in changes:
            resource = self.snapshot.find_resource(change.resource_id)
            project = self.snapshot.find_project(change.project_id)
            if resource is None or project is None:
                continue
            profit_impact = change.change / 100.0 * resource.hourly_margin()
            priority = "high" if profit_impact > HIGH_PRIORITY_PROFIT else "medium"
            if change.change_type == "new":
                recommendations.append(
                    FinancialRecommendation(
                        "new_allocation",
                        priority,
                        f"Allocate {resource.name} to {project.name} at {_format_pct(change.new_percentage)}%.",
                        "This new allocation is estimated to increase profit by "
                        f"{format_currency(profit_impact)}.",
                        resource_ids=(resource.id,),
                        project_ids=(project.id,),
                    )
                )
            elif abs(change.change) >= SIGNIFICANT_CHANGE_PCT:
                verb = "Increase" if change.change > 0 else "Decrease"
                effect = "increase" if profit_impact > 0 else "decrease"
                recommendations.append(
                    FinancialRecommendation(
                        "allocation",
                        priority,
                        f"{verb} {resource.name}'s allocation on {project.name} from "
                        f"{_format_pct(change.previous_percentage)}% to {_format_pct(change.new_percentage)}%.",
                        f"This change is estimated to {effect} profit by {format_currency(abs(profit_impact))}.",
                        resource_ids=(resource.id,),
                        project_ids=(project.id,),
                    )
                )
        return recommendations

    def _general_recommendations(self) -> List[FinancialRecommendation]:
        recommendations: List[FinancialRecommendation] = []
        idle = [
            res
            for res in self.snapshot.resources
            if self.resource_utilization.get(res.id, 0.0) < UNDERUTILIZED_PCT and (res.billing_rate or 0.0) > 0
        ]
        if idle:
            recommendations.append(
                FinancialRecommendation(
                    "utilization",
                    "medium",
                    f"Focus on finding billable work for {len(idle)} underutilized resources.",
                    f"{', '.join(res.name for res in idle)} currently have less than 50% utilization.",
                    resource_ids=tuple(res.id for res in idle),
                )
            )
        thin = [
            proj for proj in self.project_financials.values() if 0 <= proj.margin < REVIEW_MARGIN_PCT
        ]
        if thin:
            recommendations.append(
                FinancialRecommendation(
                    "margin",
                    "high",
                    f"Review staffing on {len(thin)} low-margin projects.",
                    f"{', '.join(proj.name for proj in thin)} currently have profit margins below 15%.",
                    project_ids=tuple(proj.project_id for proj in thin),
                )
            )
        return recommendations


def _utilization_by_resource(allocations: Sequence[ProposedAllocation]) -> Dict[str, float]:
    utilization: Dict[str, float] = {}
    for alloc in allocations:
        utilization[alloc.resource_id] = utilization.get(alloc.resource_id, 0.0) + alloc.percentage
    return utilization
