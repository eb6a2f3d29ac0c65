"""Health-aware routing and fallback chains.

Example usage:
    from health_router.routing import HealthAwareRouter, FallbackChainFactory

    router = HealthAwareRouter(profiler)
    decision = router.route_task("code_generation", ["gpt-4o", "claude-3-5-sonnet"])

    chain = FallbackChainFactory(profiler=profiler).create(decision)
    result = await chain.run(invoke)
"""

from .capabilities import (
    CapabilityMatcher,
    ModelCapabilities,
    ModelTier,
    RoutingRequirements,
    RoutingStrategy,
    TaskCategory,
)
from .ensemble import EnsembleResponse, EnsembleResult, run_ensemble
from .fallback import (
    ChainAttempt,
    ChainResult,
    ChainStatus,
    Exhausted,
    ExhaustionReason,
    FallbackChain,
    FallbackChainFactory,
    InvocationResult,
)
from .router import HealthAwareRouter
from .types import CandidateScore, RoutingDecision

__all__ = [
    # Capabilities
    "CapabilityMatcher",
    "ModelCapabilities",
    "ModelTier",
    "RoutingRequirements",
    "RoutingStrategy",
    "TaskCategory",
    # Types
    "CandidateScore",
    "RoutingDecision",
    # Router
    "HealthAwareRouter",
    # Fallback chain
    "ChainAttempt",
    "ChainResult",
    "ChainStatus",
    "Exhausted",
    "ExhaustionReason",
    "FallbackChain",
    "FallbackChainFactory",
    "InvocationResult",
    # Ensemble
    "EnsembleResponse",
    "EnsembleResult",
    "run_ensemble",
]
