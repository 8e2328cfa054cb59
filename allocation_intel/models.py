from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, FrozenSet, Optional, Tuple

from .errors import InvalidRangeError, NotFoundError

MONTH_FMT = "%Y-%m"

DEFAULT_AVAILABLE_CAPACITY = 100.0
DEFAULT_TIME_OFF = 0.0

FALLBACK_NOTICE = "Using sample data for demonstration purposes."


@dataclass(frozen=True, order=True)
class YearMonth:
    """Month key used for capacity calendar lookups."""

    year: int
    month: int

    @classmethod
    def of(cls, day: date) -> "YearMonth":
        return cls(day.year, day.month)

    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def __str__(self) -> str:
        return self.first_day().strftime(MONTH_FMT)


CapacityKey = Tuple[str, YearMonth]


@dataclass(frozen=True)
class Skill:
    id: str
    name: str
    category: str = ""


@dataclass(frozen=True)
class Resource:
    """Person who can be allocated to projects."""

    id: str
    name: str
    role: str = ""
    billing_rate: Optional[float] = None
    cost_rate: Optional[float] = None
    skills: Tuple[Skill, ...] = ()

    def skill_ids(self) -> FrozenSet[str]:
        return frozenset(skill.id for skill in self.skills)

    def hourly_margin(self) -> float:
        return (self.billing_rate or 0.0) - (self.cost_rate or 0.0)


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    client: str = ""
    status: str = "Active"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    required_skills: Tuple[Skill, ...] = ()
    description: str = ""
    budget: Optional[float] = None
    actual_cost: Optional[float] = None

    def skill_ids(self) -> FrozenSet[str]:
        return frozenset(skill.id for skill in self.required_skills)

    def keyword_text(self) -> str:
        return f"{self.name} {self.description}".strip()


@dataclass(frozen=True)
class Allocation:
    """Committed assignment of a resource to a project.

    Several allocations of one resource may overlap; daily load is their sum.
    """

    id: str
    resource_id: str
    project_id: str
    start_date: date
    end_date: date
    utilization: float
    notes: str = ""

    def validate(self) -> None:
        if self.end_date < self.start_date:
            raise InvalidRangeError(
                self.start_date,
                self.end_date,
                f"allocation {self.id} ends before it starts",
            )

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def overlaps(self, start: date, end: date) -> bool:
        return self.start_date <= end and self.end_date >= start

    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days


@dataclass(frozen=True)
class CapacityEntry:
    resource_id: str
    year: int
    month: int
    available_capacity: float = DEFAULT_AVAILABLE_CAPACITY
    planned_time_off: float = DEFAULT_TIME_OFF

    @property
    def key(self) -> CapacityKey:
        return (self.resource_id, YearMonth(self.year, self.month))

    def effective_capacity(self) -> float:
        return self.available_capacity - self.planned_time_off


@dataclass(frozen=True)
class ResourceFailure:
    """A resource left out of a bulk result because its data is unusable."""

    resource_id: str
    reason: str

    def to_dict(self) -> Dict[str, object]:
        return {"resource_id": self.resource_id, "reason": self.reason}


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of everything the engine reads for one request.

    ``is_fallback_data`` marks a sample dataset substituted for real records;
    every result computed over such a snapshot carries the same marker.
    """

    resources: Tuple[Resource, ...] = ()
    projects: Tuple[Project, ...] = ()
    allocations: Tuple[Allocation, ...] = ()
    capacity: Tuple[CapacityEntry, ...] = ()
    is_fallback_data: bool = False
    notice: Optional[str] = None
    _resource_index: Dict[str, Resource] = field(init=False, repr=False, compare=False)
    _project_index: Dict[str, Project] = field(init=False, repr=False, compare=False)
    _capacity_index: Dict[CapacityKey, CapacityEntry] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_resource_index", {res.id: res for res in self.resources})
        object.__setattr__(self, "_project_index", {proj.id: proj for proj in self.projects})
        object.__setattr__(self, "_capacity_index", {entry.key: entry for entry in self.capacity})

    def resource(self, resource_id: str) -> Resource:
        try:
            return self._resource_index[resource_id]
        except KeyError:
            raise NotFoundError("resource", resource_id) from None

    def project(self, project_id: str) -> Project:
        try:
            return self._project_index[project_id]
        except KeyError:
            raise NotFoundError("project", project_id) from None

    def find_project(self, project_id: str) -> Optional[Project]:
        return self._project_index.get(project_id)

    def find_resource(self, resource_id: str) -> Optional[Resource]:
        return self._resource_index.get(resource_id)

    def allocations_for_resource(self, resource_id: str) -> Tuple[Allocation, ...]:
        return tuple(alloc for alloc in self.allocations if alloc.resource_id == resource_id)

    def allocations_for_project(self, project_id: str) -> Tuple[Allocation, ...]:
        return tuple(alloc for alloc in self.allocations if alloc.project_id == project_id)

    def capacity_for(self, resource_id: str, month: YearMonth) -> CapacityEntry:
        entry = self._capacity_index.get((resource_id, month))
        if entry is None:
            return CapacityEntry(resource_id, month.year, month.month)
        return entry

    def fallback_fields(self) -> Dict[str, object]:
        fields: Dict[str, object] = {"is_fallback_data": self.is_fallback_data}
        if self.is_fallback_data:
            fields["notice"] = self.notice or FALLBACK_NOTICE
        return fields


@dataclass(frozen=True)
class EngineConfig:
    """Tunable thresholds and weights for every analysis."""

    project_match_weights: Dict[str, float] = field(
        default_factory=lambda: {
            "skills": 0.4,
            "availability": 0.3,
            "experience": 0.2,
            "team_fit": 0.1,
        }
    )
    resource_match_weights: Dict[str, float] = field(
        default_factory=lambda: {"skills": 0.4, "availability": 0.3, "team_fit": 0.3}
    )
    matchable_project_statuses: Tuple[str, ...] = ("Active",)
    default_match_limit: int = 10
    default_horizon_days: int = 90
    experience_horizon_days: int = 90
    experience_normalizer: float = 3.0
    recency_decay: float = 0.1
    team_fit_with_history: float = 0.8
    team_fit_without_history: float = 0.5
    org_overallocated_threshold: float = 110.0
    org_underallocated_threshold: float = 70.0
    rebalance_over_threshold: float = 100.0
    rebalance_under_threshold: float = 70.0
    reduction_fraction: float = 0.25
    bench_threshold_pct: float = 20.0
    high_margin_project_pct: float = 20.0
    low_margin_project_pct: float = 10.0
    reallocation_utilization_ceiling: float = 100.0
    min_reallocation_capacity: float = 10.0
    max_new_allocation_pct: float = 50.0
    cost_reduction_step: float = 25.0
    cost_reduction_floor: float = 25.0
    logging_level: str = "INFO"

    def project_weight(self, component: str) -> float:
        return self.project_match_weights.get(component, 0.0)

    def resource_weight(self, component: str) -> float:
        return self.resource_match_weights.get(component, 0.0)
