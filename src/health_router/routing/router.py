"""Health-aware router.

Ranks candidate models for a task by combining capability fit with the
profiler's health score, plus an optional routing strategy term (cost,
speed, quality or balanced), then picks a primary and an ordered fallback
list.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from ..config import RouterConfig
from ..errors import NoCandidatesError
from ..events import EventLog, RoutingEventType
from ..performance.profiler import ModelProfiler
from .capabilities import (
    CapabilityMatcher,
    ModelTier,
    RoutingRequirements,
    RoutingStrategy,
    TaskType,
    normalize_task_type,
)
from .types import CandidateScore, RoutingDecision

logger = logging.getLogger(__name__)


class HealthAwareRouter:
    """Select the best candidate model for a task from health data.

    Example:
        router = HealthAwareRouter(profiler)
        decision = router.route_task("code_generation", ["gpt-4o", "claude-3-5-sonnet"])
        decision.primary, decision.fallbacks
    """

    def __init__(
        self,
        profiler: ModelProfiler,
        matcher: Optional[CapabilityMatcher] = None,
        capability_weight: float = 50.0,
        neutral_health_score: float = 50.0,
        min_primary_health: float = 10.0,
        max_fallbacks: Optional[int] = None,
        strategy: Optional[RoutingStrategy] = None,
        event_log: Optional[EventLog] = None,
    ):
        """Initialize the router.

        Args:
            profiler: Source of per-model health.
            matcher: Capability matcher. Defaults to the built-in profiles.
            capability_weight: Multiplier applied to the 0-1 capability match.
            neutral_health_score: Health assumed for models with no data.
            min_primary_health: Candidates with known health below this are
                               only chosen as primary when nothing else is.
            max_fallbacks: Optional cap on the fallback list length.
            strategy: Default routing strategy (cost, speed, quality or
                     balanced). None ranks on capability and health only.
            event_log: Optional sink for routing events.
        """
        self.profiler = profiler
        self.matcher = matcher or CapabilityMatcher()
        self.capability_weight = capability_weight
        self.neutral_health_score = neutral_health_score
        self.min_primary_health = min_primary_health
        self.max_fallbacks = max_fallbacks
        self.strategy = RoutingStrategy(strategy) if strategy is not None else None
        self.event_log = event_log

        self._decisions = 0
        self._last_resort_decisions = 0
        self._relaxed_decisions = 0

    @classmethod
    def from_config(
        cls,
        config: RouterConfig,
        profiler: ModelProfiler,
        matcher: Optional[CapabilityMatcher] = None,
        event_log: Optional[EventLog] = None,
    ) -> "HealthAwareRouter":
        return cls(
            profiler=profiler,
            matcher=matcher,
            capability_weight=config.capability_weight,
            neutral_health_score=config.neutral_health_score,
            min_primary_health=config.min_primary_health,
            max_fallbacks=config.max_fallbacks,
            strategy=config.strategy,
            event_log=event_log,
        )

    def _score_candidate(
        self,
        task_type: str,
        model_id: str,
        strategy: Optional[RoutingStrategy] = None,
        preferred_tier: Optional[ModelTier] = None,
    ) -> CandidateScore:
        match = self.matcher.capability_match(task_type, model_id)
        health = self.profiler.get_model_health(model_id)

        health_score = health.health_score if health is not None else None
        health_component = health_score if health_score is not None else self.neutral_health_score
        capability_component = match * self.capability_weight

        avg_latency: Optional[float] = None
        if health is not None and health.success_rate > 0:
            avg_latency = health.avg_latency_ms
        else:
            profile = self.matcher.get_profile(model_id)
            if profile is not None:
                avg_latency = profile.avg_latency_ms

        strategy_component = self.matcher.strategy_score(
            model_id, strategy, avg_latency_ms=avg_latency, preferred_tier=preferred_tier
        )

        return CandidateScore(
            model_id=model_id,
            capability_match=match,
            capability_component=capability_component,
            health_score=health_score,
            health_component=health_component,
            total_score=capability_component + strategy_component + health_component,
            avg_latency_ms=avg_latency,
            below_health_floor=(
                health_score is not None and health_score < self.min_primary_health
            ),
            strategy_component=strategy_component,
        )

    @staticmethod
    def _rank_key(candidate: CandidateScore):
        # Score, then health, then lower latency (unknown last), then id
        latency = candidate.avg_latency_ms if candidate.avg_latency_ms is not None else math.inf
        return (
            -candidate.total_score,
            -candidate.health_component,
            latency,
            candidate.model_id,
        )

    def route_task(
        self,
        task_type: TaskType,
        candidates: Sequence[str],
        requirements: Optional[RoutingRequirements] = None,
        strategy: Optional[RoutingStrategy] = None,
    ) -> RoutingDecision:
        """Rank candidates for a task and choose primary and fallbacks.

        Args:
            task_type: Task type (any string, or a TaskCategory)
            candidates: Candidate model ids; duplicates are ignored
            requirements: Optional static constraints on candidates
            strategy: Strategy for this decision, overriding the router default

        Returns:
            RoutingDecision with the full ranked score breakdown

        Raises:
            NoCandidatesError: If candidates is empty
        """
        task = normalize_task_type(task_type)
        unique = list(dict.fromkeys(candidates))
        if not unique:
            raise NoCandidatesError(f"No candidate models supplied for task '{task}'")

        eligible = [m for m in unique if self.matcher.meets_requirements(m, requirements)]
        excluded = [m for m in unique if m not in eligible]
        requirements_relaxed = False
        if not eligible:
            logger.warning(
                f"No candidate meets the requirements for '{task}', ranking all {len(unique)} candidates"
            )
            eligible = unique
            excluded = []
            requirements_relaxed = True

        if strategy is None:
            strategy = self.strategy
        else:
            strategy = RoutingStrategy(strategy)
        preferred_tier = requirements.preferred_tier if requirements is not None else None

        scored = sorted(
            (self._score_candidate(task, m, strategy, preferred_tier) for m in eligible),
            key=self._rank_key,
        )

        above_floor = [c for c in scored if not c.below_health_floor]
        last_resort = not above_floor
        primary = scored[0] if last_resort else above_floor[0]

        ranked: List[CandidateScore] = [primary] + [c for c in scored if c is not primary]
        for rank, candidate in enumerate(ranked, 1):
            candidate.rank = rank

        fallbacks = [c.model_id for c in ranked[1:]]
        if self.max_fallbacks is not None:
            fallbacks = fallbacks[: self.max_fallbacks]

        profile = self.matcher.get_profile(primary.model_id)
        decision = RoutingDecision(
            task_type=task,
            primary=primary.model_id,
            fallbacks=fallbacks,
            candidates=ranked,
            last_resort=last_resort,
            requirements_relaxed=requirements_relaxed,
            excluded=excluded,
            strategy=strategy.value if strategy is not None else None,
            estimated_cost_per_token=profile.cost_per_token if profile is not None else None,
            estimated_latency_ms=primary.avg_latency_ms,
        )

        self._decisions += 1
        if requirements_relaxed:
            self._relaxed_decisions += 1
        if last_resort:
            self._last_resort_decisions += 1
            logger.warning(
                f"Routing '{task}' to {primary.model_id} as last resort "
                f"(health {primary.health_score:.1f} below floor {self.min_primary_health:g})"
            )

        logger.info(
            f"Routed '{task}' to {decision.primary} "
            f"(score {primary.total_score:.2f}), fallbacks={decision.fallbacks}"
        )
        self._emit(decision)
        return decision

    def _emit(self, decision: RoutingDecision) -> None:
        if self.event_log is None:
            return

        self.event_log.emit(
            RoutingEventType.ROUTE_DECIDED,
            {
                "task_type": decision.task_type,
                "fallbacks": list(decision.fallbacks),
                "last_resort": decision.last_resort,
                "requirements_relaxed": decision.requirements_relaxed,
                "strategy": decision.strategy,
                "estimated_cost_per_token": decision.estimated_cost_per_token,
                "estimated_latency_ms": decision.estimated_latency_ms,
                "candidates": [
                    {
                        "model_id": c.model_id,
                        "rank": c.rank,
                        "capability_match": c.capability_match,
                        "strategy_component": c.strategy_component,
                        "health_score": c.health_score,
                        "total_score": c.total_score,
                    }
                    for c in decision.candidates
                ],
            },
            model_id=decision.primary,
        )
        if decision.last_resort:
            self.event_log.emit(
                RoutingEventType.ROUTE_LAST_RESORT,
                {"task_type": decision.task_type, "min_primary_health": self.min_primary_health},
                model_id=decision.primary,
            )

    def get_stats(self) -> Dict[str, Any]:
        """Get routing statistics."""
        return {
            "decisions": self._decisions,
            "last_resort_decisions": self._last_resort_decisions,
            "requirements_relaxed_decisions": self._relaxed_decisions,
            "capability_weight": self.capability_weight,
            "strategy": self.strategy.value if self.strategy is not None else None,
            "min_primary_health": self.min_primary_health,
        }
