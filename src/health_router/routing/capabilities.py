"""Task-to-model capability matching.

Each known model has a capability profile listing the task types it supports
plus its strengths and weaknesses. capability_match() turns a profile into a
0-1 fit score for a task type; the router weights that score against health.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from ..config import HealthRouterConfig, ModelCapabilityConfig

logger = logging.getLogger(__name__)

SUPPORTED_TASK_MATCH = 0.7
STRENGTH_MATCH = 0.3
WEAKNESS_PENALTY = 0.3


class TaskCategory(str, Enum):
    """Well-known task types. Any string is accepted as a task type."""

    CODE_GENERATION = "code_generation"
    CODE_ANALYSIS = "code_analysis"
    DEBUGGING = "debugging"
    DOCUMENTATION = "documentation"
    CHAT = "chat"
    SUMMARIZATION = "summarization"
    REFACTORING = "refactoring"
    TESTING = "testing"
    CREATIVE = "creative"
    REASONING = "reasoning"


class ModelTier(str, Enum):
    """Coarse model class used by the quality and balanced strategies."""

    FAST = "fast"
    BALANCED = "balanced"
    SMART = "smart"
    CREATIVE = "creative"


class RoutingStrategy(str, Enum):
    """Optional static preference added on top of capability and health."""

    COST = "cost"
    SPEED = "speed"
    QUALITY = "quality"
    BALANCED = "balanced"


TaskType = Union[str, TaskCategory]

# Normalisation ceilings for the strategy term
COST_CEILING_PER_TOKEN = 0.0001
LATENCY_CEILING_MS = 5000.0
PREFERRED_TIER_BONUS = 10.0

# Points per tier: (quality strategy, balanced strategy)
_TIER_POINTS = {
    ModelTier.SMART: (30.0, 15.0),
    ModelTier.BALANCED: (20.0, 10.0),
    ModelTier.FAST: (10.0, 5.0),
    ModelTier.CREATIVE: (10.0, 5.0),
}


def normalize_task_type(task_type: TaskType) -> str:
    if isinstance(task_type, TaskCategory):
        return task_type.value
    return str(task_type).strip().lower()


@dataclass
class ModelCapabilities:
    """Capability profile for a model."""

    model_id: str
    provider: str = "unknown"
    supported_tasks: List[str] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    cost_per_token: Optional[float] = None
    avg_latency_ms: Optional[float] = None
    context_window: Optional[int] = None
    tier: Optional[ModelTier] = None

    @classmethod
    def from_config(cls, model_id: str, config: ModelCapabilityConfig) -> "ModelCapabilities":
        return cls(
            model_id=model_id,
            provider=config.provider,
            tier=ModelTier(config.tier) if config.tier else None,
            supported_tasks=[normalize_task_type(t) for t in config.supported_tasks],
            strengths=[normalize_task_type(t) for t in config.strengths],
            weaknesses=[normalize_task_type(t) for t in config.weaknesses],
            cost_per_token=config.cost_per_token,
            avg_latency_ms=config.avg_latency_ms,
            context_window=config.context_window,
        )


@dataclass
class RoutingRequirements:
    """Constraints on a candidate's static profile.

    max_latency_ms, max_cost_per_token and min_context_window are hard
    filters; models without a profile (or without the relevant figure)
    always pass. preferred_tier is soft: matching models get a bonus.
    """

    max_latency_ms: Optional[float] = None
    max_cost_per_token: Optional[float] = None
    min_context_window: Optional[int] = None
    preferred_tier: Optional[ModelTier] = None


DEFAULT_CAPABILITIES: Dict[str, ModelCapabilities] = {
    profile.model_id: profile
    for profile in [
        ModelCapabilities(
            model_id="gpt-4o",
            provider="openai",
            tier=ModelTier.SMART,
            supported_tasks=["code_generation", "code_analysis", "reasoning", "creative", "chat"],
            strengths=["reasoning", "code_generation"],
            weaknesses=[],
            cost_per_token=0.000015,
            avg_latency_ms=1500,
            context_window=128000,
        ),
        ModelCapabilities(
            model_id="gpt-4o-mini",
            provider="openai",
            tier=ModelTier.FAST,
            supported_tasks=["chat", "summarization", "documentation"],
            strengths=["chat"],
            weaknesses=["reasoning", "refactoring"],
            cost_per_token=0.0000015,
            avg_latency_ms=800,
            context_window=128000,
        ),
        ModelCapabilities(
            model_id="gpt-4-turbo",
            provider="openai",
            tier=ModelTier.SMART,
            supported_tasks=["code_generation", "reasoning", "debugging", "refactoring"],
            strengths=["reasoning"],
            cost_per_token=0.00003,
            avg_latency_ms=3000,
            context_window=128000,
        ),
        ModelCapabilities(
            model_id="gpt-3.5-turbo",
            provider="openai",
            tier=ModelTier.FAST,
            supported_tasks=["chat", "summarization", "documentation"],
            weaknesses=["reasoning"],
            cost_per_token=0.000002,
            avg_latency_ms=800,
            context_window=16385,
        ),
        ModelCapabilities(
            model_id="claude-3-opus",
            provider="anthropic",
            tier=ModelTier.SMART,
            supported_tasks=["code_analysis", "reasoning", "documentation", "refactoring"],
            strengths=["reasoning", "code_analysis"],
            cost_per_token=0.00006,
            avg_latency_ms=4000,
            context_window=200000,
        ),
        ModelCapabilities(
            model_id="claude-3-5-sonnet",
            provider="anthropic",
            tier=ModelTier.SMART,
            supported_tasks=["code_generation", "code_analysis", "documentation", "reasoning"],
            strengths=["code_analysis", "code_generation"],
            cost_per_token=0.00003,
            avg_latency_ms=2500,
            context_window=200000,
        ),
        ModelCapabilities(
            model_id="claude-3-sonnet",
            provider="anthropic",
            tier=ModelTier.BALANCED,
            supported_tasks=["code_generation", "chat", "documentation"],
            cost_per_token=0.00001,
            avg_latency_ms=1500,
            context_window=200000,
        ),
        ModelCapabilities(
            model_id="claude-3-haiku",
            provider="anthropic",
            tier=ModelTier.FAST,
            supported_tasks=["chat", "summarization"],
            strengths=["summarization"],
            weaknesses=["reasoning"],
            cost_per_token=0.0000025,
            avg_latency_ms=500,
            context_window=200000,
        ),
        ModelCapabilities(
            model_id="gemini-2.0-flash",
            provider="google",
            tier=ModelTier.FAST,
            supported_tasks=["code_generation", "code_analysis", "reasoning", "summarization"],
            strengths=["summarization"],
            cost_per_token=0.00001,
            avg_latency_ms=1000,
            context_window=1000000,
        ),
        ModelCapabilities(
            model_id="gemini-pro",
            provider="google",
            tier=ModelTier.BALANCED,
            supported_tasks=["code_generation", "reasoning", "chat"],
            cost_per_token=0.000005,
            avg_latency_ms=1200,
            context_window=32000,
        ),
        ModelCapabilities(
            model_id="mistral-large",
            provider="mistral",
            tier=ModelTier.BALANCED,
            supported_tasks=["code_generation", "chat"],
            strengths=["code_generation"],
            weaknesses=["reasoning"],
            cost_per_token=0.00002,
            avg_latency_ms=2000,
            context_window=128000,
        ),
        ModelCapabilities(
            model_id="deepseek-coder",
            provider="deepseek",
            tier=ModelTier.FAST,
            supported_tasks=["code_generation", "debugging", "testing"],
            strengths=["code_generation", "testing"],
            cost_per_token=0.000001,
            avg_latency_ms=600,
            context_window=16000,
        ),
    ]
}


class CapabilityMatcher:
    """Score how well a model fits a task type.

    Example:
        matcher = CapabilityMatcher()
        matcher.capability_match("debugging", "deepseek-coder")  # 0.7
    """

    def __init__(
        self,
        profiles: Optional[Dict[str, ModelCapabilities]] = None,
        unknown_match: float = 0.5,
        include_defaults: bool = True,
    ):
        """Initialize the matcher.

        Args:
            profiles: Extra or overriding capability profiles by model id.
            unknown_match: Match score for models with no profile.
            include_defaults: Start from the built-in profile table.
        """
        self.unknown_match = unknown_match
        self._profiles: Dict[str, ModelCapabilities] = (
            dict(DEFAULT_CAPABILITIES) if include_defaults else {}
        )
        if profiles:
            self._profiles.update(profiles)

    @classmethod
    def from_config(cls, config: HealthRouterConfig) -> "CapabilityMatcher":
        profiles = {
            model_id: ModelCapabilities.from_config(model_id, cap)
            for model_id, cap in config.capabilities.items()
        }
        return cls(profiles=profiles, unknown_match=config.router.unknown_capability_match)

    def add_profile(self, profile: ModelCapabilities) -> None:
        self._profiles[profile.model_id] = profile

    def get_profile(self, model_id: str) -> Optional[ModelCapabilities]:
        return self._profiles.get(model_id)

    def get_profiles(self) -> List[ModelCapabilities]:
        return list(self._profiles.values())

    def capability_match(self, task_type: TaskType, model_id: str) -> float:
        """Fit of a model for a task type, between 0 and 1."""
        profile = self._profiles.get(model_id)
        if profile is None:
            return self.unknown_match

        task = normalize_task_type(task_type)
        score = 0.0
        if task in profile.supported_tasks:
            score += SUPPORTED_TASK_MATCH
        if task in profile.strengths:
            score += STRENGTH_MATCH
        if task in profile.weaknesses:
            score -= WEAKNESS_PENALTY

        return max(0.0, min(1.0, score))

    def meets_requirements(
        self, model_id: str, requirements: Optional[RoutingRequirements]
    ) -> bool:
        """Check a model's static profile against routing requirements."""
        if requirements is None:
            return True

        profile = self._profiles.get(model_id)
        if profile is None:
            return True

        if (
            requirements.max_latency_ms is not None
            and profile.avg_latency_ms is not None
            and profile.avg_latency_ms > requirements.max_latency_ms
        ):
            return False
        if (
            requirements.max_cost_per_token is not None
            and profile.cost_per_token is not None
            and profile.cost_per_token > requirements.max_cost_per_token
        ):
            return False
        if (
            requirements.min_context_window is not None
            and profile.context_window is not None
            and profile.context_window < requirements.min_context_window
        ):
            return False
        return True

    def strategy_score(
        self,
        model_id: str,
        strategy: Optional[RoutingStrategy],
        avg_latency_ms: Optional[float] = None,
        preferred_tier: Optional[ModelTier] = None,
    ) -> float:
        """Static preference points for a model under a routing strategy.

        cost:     up to 20 points, cheaper per token is better
        speed:    up to 20 points, lower latency is better
        quality:  30 / 20 / 10 points for smart / balanced / other tiers
        balanced: 10 cost + 10 speed + 15 / 10 / 5 tier points

        Unknown cost or latency scores half marks; an unknown tier scores as
        balanced. A model in the preferred tier gets PREFERRED_TIER_BONUS on
        top, whatever the strategy.

        Args:
            model_id: Model identifier
            strategy: Strategy, or None for no strategy term
            avg_latency_ms: Latency to score, defaults to the profile figure
            preferred_tier: Optional tier preference from the requirements
        """
        profile = self._profiles.get(model_id)
        tier = profile.tier if profile is not None else None

        score = 0.0
        if preferred_tier is not None and tier == ModelTier(preferred_tier):
            score += PREFERRED_TIER_BONUS
        if strategy is None:
            return score

        strategy = RoutingStrategy(strategy)
        cost = profile.cost_per_token if profile is not None else None
        if avg_latency_ms is None and profile is not None:
            avg_latency_ms = profile.avg_latency_ms

        cost_factor = _inverse_factor(cost, COST_CEILING_PER_TOKEN)
        speed_factor = _inverse_factor(avg_latency_ms, LATENCY_CEILING_MS)
        quality_points, balanced_points = _TIER_POINTS[tier or ModelTier.BALANCED]

        if strategy == RoutingStrategy.COST:
            score += 20.0 * cost_factor
        elif strategy == RoutingStrategy.SPEED:
            score += 20.0 * speed_factor
        elif strategy == RoutingStrategy.QUALITY:
            score += quality_points
        else:
            score += 10.0 * cost_factor + 10.0 * speed_factor + balanced_points
        return score


def _inverse_factor(value: Optional[float], ceiling: float) -> float:
    # 1 at zero, 0 at or beyond the ceiling, 0.5 when unknown
    if value is None:
        return 0.5
    return max(0.0, min(1.0, 1.0 - value / ceiling))
