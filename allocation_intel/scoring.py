"""
Component scorers combined by the match ranking engine.

Each scorer returns a value in [0, 1]. Missing data (empty skill sets, no
history, no allocations) degrades to a low score instead of raising.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, FrozenSet, Iterable, List, Protocol, Sequence, Set

from .calendar_utils import months_between
from .models import Allocation, EngineConfig, Project, Snapshot
from .utilization import UtilizationWindow, average_utilization

logger = logging.getLogger(__name__)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
MIN_KEYWORD_LENGTH = 4
RELEVANT_HISTORY_SCORE = 0.3


def skill_match_score(candidate_skill_ids: Iterable[str], required_skill_ids: Iterable[str]) -> float:
    """Fraction of required skills the candidate holds. No partial credit."""
    candidate = set(candidate_skill_ids)
    required = set(required_skill_ids)
    if not candidate or not required:
        return 0.0
    matched = len(candidate & required)
    return matched / max(1, len(required))


def availability_score(windows: Sequence[UtilizationWindow]) -> float:
    if not windows:
        return 0.0
    score = (100.0 - average_utilization(windows)) / 100.0
    return min(1.0, max(0.0, score))


def extract_keywords(text: str) -> FrozenSet[str]:
    if not text:
        return frozenset()
    cleaned = _PUNCTUATION_RE.sub("", text.lower())
    return frozenset(word for word in cleaned.split() if len(word) >= MIN_KEYWORD_LENGTH)


def keyword_similarity(first: FrozenSet[str], second: FrozenSet[str]) -> float:
    if not first or not second:
        return 0.0
    return len(first & second) / len(first | second)


def recency_factor(completed_on: date, as_of: date, decay: float = 0.1) -> float:
    return math.exp(-decay * months_between(completed_on, as_of))


@dataclass(frozen=True)
class ExperienceEntry:
    """Contribution of one completed allocation to the experience score."""

    allocation_id: str
    project_id: str
    project_name: str
    relevance: float
    recency: float
    duration_factor: float

    @property
    def contribution(self) -> float:
        return self.relevance * self.recency * self.duration_factor

    def to_dict(self) -> Dict[str, object]:
        return {
            "project_id": self.project_id,
            "project_name": self.project_name,
            "relevance_score": round(self.relevance, 4),
        }


def completed_history(allocations: Iterable[Allocation], as_of: date) -> List[Allocation]:
    return [alloc for alloc in allocations if alloc.end_date < as_of]


def experience_entries(
    snapshot: Snapshot,
    resource_id: str,
    target: Project,
    as_of: date,
    config: EngineConfig,
) -> List[ExperienceEntry]:
    target_keywords = extract_keywords(target.keyword_text())
    entries: List[ExperienceEntry] = []
    for alloc in completed_history(snapshot.allocations_for_resource(resource_id), as_of):
        past_project = snapshot.find_project(alloc.project_id)
        if past_project is None:
            logger.debug(
                "Skipping history allocation %s: project %s not in snapshot",
                alloc.id,
                alloc.project_id,
            )
            continue
        entries.append(
            ExperienceEntry(
                allocation_id=alloc.id,
                project_id=past_project.id,
                project_name=past_project.name,
                relevance=keyword_similarity(
                    extract_keywords(past_project.keyword_text()), target_keywords
                ),
                recency=recency_factor(alloc.end_date, as_of, config.recency_decay),
                duration_factor=max(
                    0.0, min(1.0, alloc.duration_days() / config.experience_horizon_days)
                ),
            )
        )
    return entries


def experience_score(entries: Sequence[ExperienceEntry], normalizer: float = 3.0) -> float:
    if not entries:
        return 0.0
    total = sum(entry.contribution for entry in entries)
    return min(1.0, total / normalizer)


class TeamFitScorer(Protocol):
    """Scores how well a candidate would fit the current team of a project."""

    def score(self, snapshot: Snapshot, resource_id: str, project_id: str, as_of: date) -> float:
        ...

    def collaborators(
        self, snapshot: Snapshot, resource_id: str, project_id: str, as_of: date
    ) -> List[str]:
        ...


class CoAllocationTeamFit:
    """Rewards candidates who previously shared a project with the current team.

    A shared project means both people held overlapping allocations on it.
    There is no finer model of collaboration quality.
    """

    def __init__(self, with_history: float = 0.8, without_history: float = 0.5) -> None:
        self.with_history = with_history
        self.without_history = without_history

    @staticmethod
    def current_team(snapshot: Snapshot, project_id: str, as_of: date) -> Set[str]:
        return {
            alloc.resource_id
            for alloc in snapshot.allocations_for_project(project_id)
            if alloc.end_date >= as_of
        }

    def collaborators(
        self, snapshot: Snapshot, resource_id: str, project_id: str, as_of: date
    ) -> List[str]:
        team = self.current_team(snapshot, project_id, as_of) - {resource_id}
        if not team:
            return []
        found: Set[str] = set()
        for own in snapshot.allocations_for_resource(resource_id):
            if own.project_id == project_id:
                continue
            for other in snapshot.allocations_for_project(own.project_id):
                if other.resource_id in team and other.overlaps(own.start_date, own.end_date):
                    found.add(other.resource_id)
        return sorted(found)

    def score(self, snapshot: Snapshot, resource_id: str, project_id: str, as_of: date) -> float:
        if self.collaborators(snapshot, resource_id, project_id, as_of):
            return self.with_history
        return self.without_history


def team_fit_from_config(config: EngineConfig) -> CoAllocationTeamFit:
    return CoAllocationTeamFit(config.team_fit_with_history, config.team_fit_without_history)
