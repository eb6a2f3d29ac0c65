"""Composition root for the routing subsystem.

RoutingService builds one store, profiler, router and chain factory from a
HealthRouterConfig and hands them to callers explicitly. Create one per
process (or per test); nothing here is a module-level singleton.

Example:
    config = get_effective_config()
    async with RoutingService.from_config(config) as service:
        result = await service.execute("code_generation", ["gpt-4o", "claude-3-5-sonnet"], invoke)
        service.profiler.record_feedback(result.model_id, 5)
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence

from .config import EnsembleConfig, HealthRouterConfig
from .events import EventLog, EventObserver
from .performance.profiler import ModelProfiler
from .performance.store import HealthStore
from .routing.capabilities import CapabilityMatcher, RoutingRequirements, RoutingStrategy, TaskType
from .routing.ensemble import EnsembleResult, run_ensemble
from .routing.fallback import ChainResult, FallbackChain, FallbackChainFactory, Invoker
from .routing.router import HealthAwareRouter
from .routing.types import RoutingDecision

logger = logging.getLogger(__name__)


class RoutingService:
    """Wires the health store, profiler, router and fallback chains together."""

    def __init__(
        self,
        store: HealthStore,
        profiler: ModelProfiler,
        router: HealthAwareRouter,
        chain_factory: FallbackChainFactory,
        event_log: Optional[EventLog] = None,
        ensemble: Optional[EnsembleConfig] = None,
    ):
        self.store = store
        self.profiler = profiler
        self.router = router
        self.chain_factory = chain_factory
        self.event_log = event_log
        self.ensemble = ensemble or EnsembleConfig()
        self._started = False

    @classmethod
    def from_config(
        cls,
        config: Optional[HealthRouterConfig] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ) -> "RoutingService":
        """Build a service from configuration.

        Args:
            config: Configuration; defaults to HealthRouterConfig()
            now_fn: Optional clock for the profiler (tests)
        """
        config = config or HealthRouterConfig()
        event_log = EventLog()

        store = HealthStore(
            snapshot_path=config.persistence.snapshot_path,
            max_metrics_per_model=config.profiler.max_metrics_per_model,
            flush_delay_seconds=config.persistence.flush_delay_seconds,
            persist=config.persistence.enabled,
        )
        profiler = ModelProfiler.from_config(config.profiler, store, now_fn=now_fn)
        router = HealthAwareRouter.from_config(
            config.router,
            profiler,
            matcher=CapabilityMatcher.from_config(config),
            event_log=event_log,
        )
        chain_factory = FallbackChainFactory.from_config(
            config.fallback, profiler=profiler, event_log=event_log
        )
        return cls(
            store,
            profiler,
            router,
            chain_factory,
            event_log=event_log,
            ensemble=config.ensemble,
        )

    async def start(self) -> None:
        """Load the snapshot and start background persistence.

        Must complete before the first routing decision is served.
        """
        await self.store.start()
        self._started = True

    async def close(self) -> None:
        """Flush dirty state and stop background persistence."""
        await self.store.close()
        self._started = False

    async def __aenter__(self) -> "RoutingService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_loaded(self) -> None:
        if not self.store.loaded:
            logger.warning("Routing before start(); loading health snapshot synchronously")
            self.store.load()

    def route_task(
        self,
        task_type: TaskType,
        candidates: Sequence[str],
        requirements: Optional[RoutingRequirements] = None,
        strategy: Optional[RoutingStrategy] = None,
    ) -> RoutingDecision:
        self._ensure_loaded()
        return self.router.route_task(task_type, candidates, requirements, strategy=strategy)

    def create_chain(
        self,
        decision: RoutingDecision,
        observers: Optional[Sequence[EventObserver]] = None,
    ) -> FallbackChain:
        return self.chain_factory.create(decision, observers=observers)

    async def execute(
        self,
        task_type: TaskType,
        candidates: Sequence[str],
        invoke: Invoker,
        requirements: Optional[RoutingRequirements] = None,
        observers: Optional[Sequence[EventObserver]] = None,
    ) -> ChainResult:
        """Route a task and run its fallback chain.

        Raises:
            NoCandidatesError: If candidates is empty
            ChainExhaustedError: If every permitted attempt failed
        """
        decision = self.route_task(task_type, candidates, requirements)
        chain = self.create_chain(decision, observers=observers)
        return await chain.run(invoke)

    async def execute_ensemble(
        self,
        task_type: TaskType,
        candidates: Sequence[str],
        invoke: Invoker,
        requirements: Optional[RoutingRequirements] = None,
        size: Optional[int] = None,
    ) -> EnsembleResult:
        """Route a task and ask its top candidates in parallel.

        Args:
            size: Number of members; defaults to the configured ensemble size

        Raises:
            NoCandidatesError: If candidates is empty
            ChainExhaustedError: If no member succeeded
        """
        decision = self.route_task(task_type, candidates, requirements)
        return await run_ensemble(
            decision,
            invoke,
            size=size if size is not None else self.ensemble.size,
            timeout_seconds=self.ensemble.timeout_seconds,
            profiler=self.profiler,
            event_log=self.event_log,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "started": self._started,
            "profiler": self.profiler.get_stats(),
            "router": self.router.get_stats(),
        }
