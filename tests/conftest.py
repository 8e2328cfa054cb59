"""Shared fixtures: small in-memory snapshots built from plain records."""

from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

import pytest

from allocation_intel.models import Allocation, CapacityEntry, Project, Resource, Skill, Snapshot

PYTHON = Skill("python", "Python", "Engineering")
SQL = Skill("sql", "SQL", "Engineering")
FIGMA = Skill("figma", "Figma", "Design")

TODAY = date(2025, 1, 15)


def make_resource(resource_id: str, name: Optional[str] = None, role: str = "Developer", **kwargs) -> Resource:
    return Resource(id=resource_id, name=name or resource_id.upper(), role=role, **kwargs)


def make_allocation(
    allocation_id: str,
    resource_id: str,
    project_id: str,
    start: date,
    end: date,
    utilization: float,
) -> Allocation:
    return Allocation(
        id=allocation_id,
        resource_id=resource_id,
        project_id=project_id,
        start_date=start,
        end_date=end,
        utilization=utilization,
    )


def make_snapshot(
    resources: Iterable[Resource] = (),
    projects: Iterable[Project] = (),
    allocations: Iterable[Allocation] = (),
    capacity: Iterable[CapacityEntry] = (),
    **kwargs,
) -> Snapshot:
    return Snapshot(
        resources=tuple(resources),
        projects=tuple(projects),
        allocations=tuple(allocations),
        capacity=tuple(capacity),
        **kwargs,
    )


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def agency_snapshot() -> Snapshot:
    """Three people, two live projects and one finished payments project."""
    resources = [
        make_resource("r1", "Alice", billing_rate=150.0, cost_rate=80.0, skills=(PYTHON, SQL)),
        make_resource("r2", "Bob", billing_rate=120.0, cost_rate=90.0, skills=(PYTHON,)),
        make_resource("r3", "Cara", role="Designer", billing_rate=100.0, cost_rate=50.0, skills=(FIGMA,)),
    ]
    projects = [
        Project(
            id="p1",
            name="Payments Platform",
            client="Acme",
            start_date=date(2025, 1, 1),
            end_date=date(2025, 6, 30),
            required_skills=(PYTHON, SQL),
            description="Card payment processing platform",
        ),
        Project(
            id="p2",
            name="Mobile Banking App",
            client="Globex",
            start_date=date(2025, 2, 1),
            end_date=date(2025, 5, 31),
            required_skills=(FIGMA, PYTHON),
            description="Customer facing mobile banking",
        ),
        Project(
            id="p3",
            name="Legacy Payments Migration",
            client="Acme",
            status="Completed",
            start_date=date(2024, 6, 1),
            end_date=date(2024, 9, 30),
            description="Payment processing migration",
        ),
    ]
    allocations = [
        make_allocation("a1", "r1", "p1", date(2025, 1, 1), date(2025, 3, 31), 60.0),
        make_allocation("a2", "r1", "p2", date(2025, 2, 1), date(2025, 4, 30), 60.0),
        make_allocation("a3", "r2", "p1", date(2025, 1, 1), date(2025, 6, 30), 50.0),
        make_allocation("a4", "r1", "p3", date(2024, 6, 1), date(2024, 9, 30), 100.0),
        make_allocation("a5", "r2", "p3", date(2024, 6, 1), date(2024, 9, 30), 50.0),
    ]
    return make_snapshot(resources, projects, allocations)
