"""
Single entry point over one immutable snapshot.

Every method returns a JSON-ready dict. When an insight generator is wired in,
its output is attached under ``ai_insights``; a failing generator never hides
the numeric result. Sample (fallback) data never gets insights.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Callable, Dict, Optional, Protocol, Tuple

from .bench import predict_organization_bench, predict_resource_bench
from .bottlenecks import predict_bottlenecks
from .calendar_utils import resolve_time_range, validate_range
from .errors import UpstreamUnavailableError
from .financial import FinancialOptimizer
from .forecast import forecast_organization, forecast_resource
from .matching import MatchEngine
from .models import FALLBACK_NOTICE, EngineConfig, Snapshot
from .rebalancing import RebalancingOptimizer
from .scoring import TeamFitScorer

logger = logging.getLogger(__name__)

INSIGHT_FAILURE = "Failed to generate AI insights"

SnapshotLoader = Callable[[], Snapshot]


class InsightGenerator(Protocol):
    """Produces narrative commentary for a computed result."""

    def generate(self, kind: str, payload: Dict[str, object]) -> Dict[str, object]:
        ...


def load_snapshot_with_fallback(
    primary: SnapshotLoader, fallback: Optional[SnapshotLoader] = None
) -> Snapshot:
    """Load from ``primary``; on failure use ``fallback`` flagged as sample data.

    Without a fallback the failure propagates as ``UpstreamUnavailableError``.
    """
    try:
        return primary()
    except UpstreamUnavailableError as exc:
        if fallback is None:
            raise
        logger.warning("Primary data unavailable (%s); using fallback data", exc)
    except (OSError, ValueError) as exc:
        if fallback is None:
            raise UpstreamUnavailableError("primary loader", str(exc)) from exc
        logger.warning("Primary data unavailable (%s); using fallback data", exc)
    snapshot = fallback()
    return replace(snapshot, is_fallback_data=True, notice=snapshot.notice or FALLBACK_NOTICE)


class AllocationIntelligence:
    def __init__(
        self,
        snapshot: Snapshot,
        config: Optional[EngineConfig] = None,
        insight_generator: Optional[InsightGenerator] = None,
        today: Optional[date] = None,
        team_fit: Optional[TeamFitScorer] = None,
    ) -> None:
        self.snapshot = snapshot
        self.config = config or EngineConfig()
        self.insight_generator = insight_generator
        self.today = today or date.today()
        self.matcher = MatchEngine(snapshot, self.config, team_fit=team_fit, today=self.today)

    def _range(
        self, start: Optional[date], end: Optional[date], time_range: Optional[str]
    ) -> Tuple[date, date]:
        """Explicit bounds win; missing ones come from the named horizon."""
        default_start, default_end = resolve_time_range(time_range, self.today)
        window_start = start or default_start
        window_end = end or default_end
        validate_range(window_start, window_end)
        return window_start, window_end

    def _with_insights(self, kind: str, payload: Dict[str, object]) -> Dict[str, object]:
        if self.insight_generator is None or self.snapshot.is_fallback_data:
            return payload
        try:
            payload["ai_insights"] = self.insight_generator.generate(kind, payload)
        except Exception as exc:
            logger.exception("Insight generation failed for %s", kind)
            payload["ai_insights"] = {"error": INSIGHT_FAILURE, "message": str(exc)}
        return payload

    def find_best_matches(
        self,
        project_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, object]:
        result = self.matcher.find_best_matches(project_id, resource_id, start, end, limit)
        payload = result.to_dict()
        if project_id and resource_id:
            payload.update(self.snapshot.fallback_fields())
            return self._with_insights("match_pair", payload)
        return self._with_insights("matches", payload)

    def forecast_resource(
        self,
        resource_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        time_range: Optional[str] = None,
        include_weekly: bool = True,
    ) -> Dict[str, object]:
        window_start, window_end = self._range(start, end, time_range)
        forecast = forecast_resource(
            self.snapshot, resource_id, window_start, window_end, self.config, include_weekly
        )
        return self._with_insights("resource_forecast", forecast.to_dict())

    def forecast_organization(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        time_range: Optional[str] = None,
        include_weekly: bool = True,
        strict: bool = False,
    ) -> Dict[str, object]:
        window_start, window_end = self._range(start, end, time_range)
        forecast = forecast_organization(
            self.snapshot, window_start, window_end, self.config, include_weekly, strict
        )
        return self._with_insights("organization_forecast", forecast.to_dict())

    def predict_bottlenecks(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        time_range: Optional[str] = None,
        strict: bool = False,
    ) -> Dict[str, object]:
        window_start, window_end = self._range(start, end, time_range)
        return predict_bottlenecks(self.snapshot, window_start, window_end, strict).to_dict()

    def predict_bench_time(
        self,
        resource_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        time_range: Optional[str] = None,
        strict: bool = False,
    ) -> Dict[str, object]:
        window_start, window_end = self._range(start, end, time_range)
        threshold = self.config.bench_threshold_pct
        if resource_id:
            return predict_resource_bench(
                self.snapshot, resource_id, window_start, window_end, threshold
            ).to_dict()
        return predict_organization_bench(
            self.snapshot, window_start, window_end, threshold, strict
        ).to_dict()

    def suggest_rebalancing(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        time_range: Optional[str] = None,
    ) -> Dict[str, object]:
        window_start, window_end = self._range(start, end, time_range)
        result = RebalancingOptimizer(self.snapshot, window_start, window_end, self.config).analyze()
        payload = result.to_dict()
        if not result.suggestions:
            return payload
        return self._with_insights("rebalancing", payload)

    def optimize_financials(
        self,
        goal: str = "profit",
        start: Optional[date] = None,
        end: Optional[date] = None,
        time_range: Optional[str] = None,
    ) -> Dict[str, object]:
        window_start, window_end = self._range(start, end, time_range)
        result = FinancialOptimizer(self.snapshot, window_start, window_end, self.config).optimize(goal)
        return self._with_insights("financial_optimization", result.to_dict())

    def optimization_scenarios(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        time_range: Optional[str] = None,
    ) -> Dict[str, object]:
        window_start, window_end = self._range(start, end, time_range)
        scenarios = FinancialOptimizer(self.snapshot, window_start, window_end, self.config).scenarios()
        payload: Dict[str, object] = {
            "date_range": {"start_date": window_start.isoformat(), "end_date": window_end.isoformat()},
            "scenarios": [scenario.to_dict() for scenario in scenarios],
        }
        payload.update(self.snapshot.fallback_fields())
        return payload
