"""
Match ranking between resources and projects.

Three entry points share one weighted combination of component scores:
- project to resources (skills, availability, experience, team fit)
- resource to projects (skills, availability, team fit)
- a single resource/project pair with every component exposed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from .calendar_utils import default_window, validate_range
from .models import EngineConfig, Project, Resource, Snapshot
from .scoring import (
    RELEVANT_HISTORY_SCORE,
    TeamFitScorer,
    availability_score,
    experience_entries,
    experience_score,
    skill_match_score,
    team_fit_from_config,
)
from .utilization import daily_utilization

logger = logging.getLogger(__name__)

PROJECT_TO_RESOURCES = "project_to_resources"
RESOURCE_TO_PROJECTS = "resource_to_projects"


@dataclass(frozen=True)
class MatchScore:
    resource_id: str
    resource_name: str
    project_id: str
    project_name: str
    skills_score: float
    availability_score: float
    experience_score: Optional[float]
    team_fit_score: float
    overall_score: float
    details: Dict[str, object] = field(default_factory=dict)
    is_fallback_data: bool = False

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "skills_match_score": round(self.skills_score, 4),
            "availability_score": round(self.availability_score, 4),
            "team_compatibility_score": round(self.team_fit_score, 4),
            "score": round(self.overall_score, 4),
            "is_fallback_data": self.is_fallback_data,
        }
        if self.experience_score is not None:
            payload["experience_score"] = round(self.experience_score, 4)
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass(frozen=True)
class MatchResult:
    """Ranked list of matches for one resource or one project."""

    mode: str
    subject_id: str
    subject_name: str
    matches: Tuple[MatchScore, ...]
    is_fallback_data: bool = False
    notice: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "mode": self.mode,
            "subject_id": self.subject_id,
            "subject_name": self.subject_name,
            "matches": [match.to_dict() for match in self.matches],
            "is_fallback_data": self.is_fallback_data,
        }
        if self.notice:
            payload["notice"] = self.notice
        return payload


def weighted_score(components: Dict[str, float], weights: Dict[str, float]) -> float:
    return sum(components.get(name, 0.0) * weight for name, weight in weights.items())


def rank_matches(matches: Sequence[MatchScore], limit: Optional[int]) -> List[MatchScore]:
    """Sort by overall score, highest first, keeping input order among ties."""
    if limit is not None and limit < 0:
        raise ValueError("limit must not be negative")
    ranked = sorted(matches, key=lambda match: match.overall_score, reverse=True)
    return ranked if limit is None else ranked[:limit]


class MatchEngine:
    """Scores and ranks resource/project fits over an immutable snapshot."""

    def __init__(
        self,
        snapshot: Snapshot,
        config: Optional[EngineConfig] = None,
        team_fit: Optional[TeamFitScorer] = None,
        today: Optional[date] = None,
    ) -> None:
        self.snapshot = snapshot
        self.config = config or EngineConfig()
        self.team_fit = team_fit or team_fit_from_config(self.config)
        self.today = today or date.today()

    def _window(
        self, project: Project, start: Optional[date], end: Optional[date]
    ) -> Tuple[date, date]:
        """Explicit bounds first, then the project dates that agree with them."""
        fallback_start, fallback_end = project.start_date, project.end_date
        if start is not None and fallback_end is not None and fallback_end < start:
            fallback_end = None
        if end is not None and fallback_start is not None and fallback_start > end:
            fallback_start = None
        horizon = self.config.default_horizon_days
        if start is None and fallback_start is None:
            # A finished project without a start date looks back from its end.
            window_end = end or fallback_end
            if window_end is not None and window_end < self.today and horizon > 0:
                fallback_start = window_end - timedelta(days=horizon)
        return default_window(
            start,
            end,
            self.today,
            fallback_start=fallback_start,
            fallback_end=fallback_end,
            horizon_days=horizon,
        )

    def _outside_request(self, project: Project, start: Optional[date], end: Optional[date]) -> bool:
        """True when the project's own dates cannot overlap the requested window."""
        window_start = start or project.start_date or self.today
        window_end = end or project.end_date
        return window_end is not None and window_end < window_start

    def _availability(self, resource: Resource, start: date, end: date) -> float:
        windows = daily_utilization(self.snapshot, resource.id, start, end)
        return availability_score(windows)

    def _limit(self, limit: Optional[int]) -> int:
        return self.config.default_match_limit if limit is None else limit

    def find_resources_for_project(
        self,
        project_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> MatchResult:
        project = self.snapshot.project(project_id)
        window_start, window_end = self._window(project, start, end)
        weights = self.config.project_match_weights
        required = project.skill_ids()
        matches: List[MatchScore] = []
        for resource in self.snapshot.resources:
            entries = experience_entries(self.snapshot, resource.id, project, self.today, self.config)
            components = {
                "skills": skill_match_score(resource.skill_ids(), required),
                "availability": self._availability(resource, window_start, window_end),
                "experience": experience_score(entries, self.config.experience_normalizer),
                "team_fit": self.team_fit.score(self.snapshot, resource.id, project.id, self.today),
            }
            matches.append(self._build(resource, project, components, weights))
        ranked = rank_matches(matches, self._limit(limit))
        logger.debug("Ranked %d resources for project %s", len(matches), project.id)
        return MatchResult(
            mode=PROJECT_TO_RESOURCES,
            subject_id=project.id,
            subject_name=project.name,
            matches=tuple(ranked),
            **self.snapshot.fallback_fields(),
        )

    def find_projects_for_resource(
        self,
        resource_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> MatchResult:
        resource = self.snapshot.resource(resource_id)
        if start is not None and end is not None:
            validate_range(start, end)
        weights = self.config.resource_match_weights
        statuses = set(self.config.matchable_project_statuses)
        matches: List[MatchScore] = []
        for project in self.snapshot.projects:
            if project.status not in statuses:
                continue
            if self._outside_request(project, start, end):
                logger.debug("Project %s lies outside the requested window", project.id)
                continue
            window_start, window_end = self._window(project, start, end)
            availability = self._availability(resource, window_start, window_end)
            if availability <= 0:
                continue
            components = {
                "skills": skill_match_score(resource.skill_ids(), project.skill_ids()),
                "availability": availability,
                "team_fit": self.team_fit.score(self.snapshot, resource.id, project.id, self.today),
            }
            matches.append(self._build(resource, project, components, weights, with_experience=False))
        ranked = rank_matches(matches, self._limit(limit))
        logger.debug("Ranked %d projects for resource %s", len(matches), resource.id)
        return MatchResult(
            mode=RESOURCE_TO_PROJECTS,
            subject_id=resource.id,
            subject_name=resource.name,
            matches=tuple(ranked),
            **self.snapshot.fallback_fields(),
        )

    def score_pair(
        self,
        resource_id: str,
        project_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> MatchScore:
        resource = self.snapshot.resource(resource_id)
        project = self.snapshot.project(project_id)
        window_start, window_end = self._window(project, start, end)
        entries = experience_entries(self.snapshot, resource.id, project, self.today, self.config)
        collaborators = self.team_fit.collaborators(self.snapshot, resource.id, project.id, self.today)
        components = {
            "skills": skill_match_score(resource.skill_ids(), project.skill_ids()),
            "availability": self._availability(resource, window_start, window_end),
            "experience": experience_score(entries, self.config.experience_normalizer),
            "team_fit": self.team_fit.score(self.snapshot, resource.id, project.id, self.today),
        }
        details = {
            "skills": {
                "matched": sorted(resource.skill_ids() & project.skill_ids()),
                "missing": sorted(project.skill_ids() - resource.skill_ids()),
                "match_percentage": round(components["skills"] * 100, 2),
            },
            "availability": {
                "start_date": window_start.isoformat(),
                "end_date": window_end.isoformat(),
                "availability_percentage": round(components["availability"] * 100, 2),
            },
            "experience": {
                "relevant_projects": [
                    entry.to_dict() for entry in entries if entry.relevance > RELEVANT_HISTORY_SCORE
                ],
            },
            "team_compatibility": {
                "score": round(components["team_fit"] * 100, 2),
                "previous_collaborators": collaborators,
            },
        }
        return self._build(
            resource, project, components, self.config.project_match_weights, details=details
        )

    def find_best_matches(
        self,
        project_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> object:
        if project_id and resource_id:
            return self.score_pair(resource_id, project_id, start, end)
        if project_id:
            return self.find_resources_for_project(project_id, start, end, limit)
        if resource_id:
            return self.find_projects_for_resource(resource_id, start, end, limit)
        raise ValueError("either project_id or resource_id must be provided")

    def _build(
        self,
        resource: Resource,
        project: Project,
        components: Dict[str, float],
        weights: Dict[str, float],
        with_experience: bool = True,
        details: Optional[Dict[str, object]] = None,
    ) -> MatchScore:
        return MatchScore(
            resource_id=resource.id,
            resource_name=resource.name,
            project_id=project.id,
            project_name=project.name,
            skills_score=components["skills"],
            availability_score=components["availability"],
            experience_score=components.get("experience") if with_experience else None,
            team_fit_score=components["team_fit"],
            overall_score=weighted_score(components, weights),
            details=details or {},
            is_fallback_data=self.snapshot.is_fallback_data,
        )
