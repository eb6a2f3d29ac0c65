"""Health-aware model routing.

Tracks per-model call outcomes, ranks candidate models for a task from that
health data, and retries alternate candidates when the primary fails.
"""

from .config import HealthRouterConfig, get_effective_config, load_config
from .errors import (
    AttemptFailure,
    AttemptTimeoutError,
    ChainExhaustedError,
    ChainStateError,
    HealthRouterError,
    NoCandidatesError,
)
from .events import EventLog, RoutingEvent, RoutingEventType
from .performance import HealthStore, ModelHealth, ModelMetric, ModelProfiler
from .routing import (
    ChainAttempt,
    ChainResult,
    ChainStatus,
    EnsembleResult,
    Exhausted,
    ExhaustionReason,
    FallbackChain,
    FallbackChainFactory,
    HealthAwareRouter,
    InvocationResult,
    ModelTier,
    RoutingDecision,
    RoutingStrategy,
    run_ensemble,
)
from .service import RoutingService

__version__ = "0.1.0"

__all__ = [
    # Config
    "HealthRouterConfig",
    "get_effective_config",
    "load_config",
    # Errors
    "AttemptFailure",
    "AttemptTimeoutError",
    "ChainExhaustedError",
    "ChainStateError",
    "HealthRouterError",
    "NoCandidatesError",
    # Events
    "EventLog",
    "RoutingEvent",
    "RoutingEventType",
    # Performance
    "HealthStore",
    "ModelHealth",
    "ModelMetric",
    "ModelProfiler",
    # Routing
    "ChainAttempt",
    "ChainResult",
    "ChainStatus",
    "EnsembleResult",
    "Exhausted",
    "ExhaustionReason",
    "FallbackChain",
    "FallbackChainFactory",
    "HealthAwareRouter",
    "InvocationResult",
    "ModelTier",
    "RoutingDecision",
    "RoutingStrategy",
    "run_ensemble",
    # Service
    "RoutingService",
]
