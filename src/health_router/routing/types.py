"""Routing decision types."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class CandidateScore:
    """Score breakdown for one candidate in a routing decision.

    total_score = capability_component + strategy_component + health_component,
    where capability_component = capability_match * capability_weight,
    strategy_component is the routing strategy term (0 without a strategy or
    tier preference) and health_component is the health score (or the neutral
    default when the model has no health data).
    """

    model_id: str
    capability_match: float
    capability_component: float
    health_score: Optional[float]
    health_component: float
    total_score: float
    avg_latency_ms: Optional[float]
    below_health_floor: bool
    strategy_component: float = 0.0
    rank: int = 0


@dataclass
class RoutingDecision:
    """Result of routing a task across a candidate set.

    Attributes:
        task_type: Normalized task type
        primary: Model to try first
        fallbacks: Models to try next, in order
        candidates: Full ranked score breakdown, primary first
        last_resort: True when the primary is below the health floor because
            no healthier candidate was available
        requirements_relaxed: True when no candidate met the requirements and
            the unfiltered set was ranked instead
        excluded: Candidates dropped for failing the requirements
        strategy: Routing strategy applied, if any
        estimated_cost_per_token: Primary's profile cost per token, if known
        estimated_latency_ms: Primary's expected latency (measured when
            available, otherwise its profile figure)
        decided_at: When the decision was made
    """

    task_type: str
    primary: str
    fallbacks: List[str]
    candidates: List[CandidateScore]
    last_resort: bool = False
    requirements_relaxed: bool = False
    excluded: List[str] = field(default_factory=list)
    strategy: Optional[str] = None
    estimated_cost_per_token: Optional[float] = None
    estimated_latency_ms: Optional[float] = None
    decided_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ordered_models(self) -> List[str]:
        """Primary followed by fallbacks."""
        return [self.primary, *self.fallbacks]

    def score_for(self, model_id: str) -> Optional[CandidateScore]:
        for candidate in self.candidates:
            if candidate.model_id == model_id:
                return candidate
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["decided_at"] = self.decided_at.isoformat()
        return data
