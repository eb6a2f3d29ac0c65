"""Parallel ensemble execution over a routing decision.

Where a fallback chain tries candidates one after another, an ensemble asks
the top N candidates at once and picks the answer the responders agree on
most. Agreement is word-set (Jaccard) overlap between response texts.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..errors import AttemptFailure, AttemptTimeoutError, ChainExhaustedError
from ..events import EventLog, RoutingEventType
from ..performance.profiler import ModelProfiler
from ..performance.types import ModelMetric
from .fallback import InvocationResult, Invoker
from .types import RoutingDecision

logger = logging.getLogger(__name__)

# Consensus confidence bounds
SINGLE_RESPONSE_CONFIDENCE = 0.7
MIN_CONSENSUS_CONFIDENCE = 0.5
MAX_CONSENSUS_CONFIDENCE = 0.95

ENSEMBLE_FAILED = "ensemble_failed"


@dataclass
class EnsembleResponse:
    """One successful ensemble member."""

    model_id: str
    result: InvocationResult
    latency_ms: float
    agreement: float = 0.0


@dataclass
class EnsembleResult:
    """Outcome of an ensemble run.

    Attributes:
        task_type: Normalized task type
        responses: Successful members, in routing order
        failures: Members that failed or timed out
        selected: Response with the highest agreement with the others
        consensus_confidence: 0.7 for a single responder, otherwise
            0.5 + mean pairwise agreement / 2, capped at 0.95
    """

    task_type: str
    responses: List[EnsembleResponse]
    failures: List[AttemptFailure] = field(default_factory=list)
    selected: Optional[EnsembleResponse] = None
    consensus_confidence: float = 0.0

    @property
    def models(self) -> List[str]:
        return [r.model_id for r in self.responses]


def _words(result: InvocationResult) -> frozenset:
    return frozenset(str(result.content or "").lower().split())


def _jaccard(a: frozenset, b: frozenset) -> float:
    union = a | b
    if not union:
        return 1.0
    return len(a & b) / len(union)


def score_agreement(responses: List[EnsembleResponse]) -> float:
    """Set each response's agreement and return the consensus confidence."""
    if not responses:
        return 0.0
    if len(responses) == 1:
        responses[0].agreement = 1.0
        return SINGLE_RESPONSE_CONFIDENCE

    words = [_words(r.result) for r in responses]
    totals = [0.0] * len(responses)
    pair_sum = 0.0
    for i in range(len(responses)):
        for j in range(i + 1, len(responses)):
            similarity = _jaccard(words[i], words[j])
            totals[i] += similarity
            totals[j] += similarity
            pair_sum += similarity

    for response, total in zip(responses, totals):
        response.agreement = total / (len(responses) - 1)

    pairs = len(responses) * (len(responses) - 1) / 2
    return min(
        MAX_CONSENSUS_CONFIDENCE,
        MIN_CONSENSUS_CONFIDENCE + (pair_sum / pairs) * 0.5,
    )


async def run_ensemble(
    decision: RoutingDecision,
    invoke: Invoker,
    size: int = 3,
    timeout_seconds: float = 30.0,
    profiler: Optional[ModelProfiler] = None,
    event_log: Optional[EventLog] = None,
    clock: Callable[[], float] = time.monotonic,
) -> EnsembleResult:
    """Invoke the top `size` candidates of a decision in parallel.

    Every member that completes is recorded on the profiler; members still
    running at the deadline are cancelled and recorded as timeouts.
    Cancelling the calling task cancels every member and records nothing.

    Args:
        decision: Routing decision; members are its first `size` models
        invoke: Async callable taking a model id
        size: Number of members
        timeout_seconds: Deadline shared by all members
        profiler: Optional profiler to record member outcomes on
        event_log: Optional event sink
        clock: Monotonic clock in seconds

    Returns:
        EnsembleResult with at least one response

    Raises:
        ChainExhaustedError: If no member succeeded
    """
    if size < 1:
        raise ValueError("ensemble size must be at least 1")

    models = decision.ordered_models[:size]
    started = clock()
    tasks: Dict[str, asyncio.Future] = {
        model_id: asyncio.ensure_future(invoke(model_id)) for model_id in models
    }

    try:
        await asyncio.wait(tasks.values(), timeout=timeout_seconds)
    except asyncio.CancelledError:
        for task in tasks.values():
            task.cancel()
        raise

    responses: List[EnsembleResponse] = []
    failures: List[AttemptFailure] = []
    elapsed_ms = (clock() - started) * 1000.0

    for attempt, model_id in enumerate(models, 1):
        task = tasks[model_id]
        error: Optional[BaseException] = None
        if not task.done():
            task.cancel()
            error = AttemptTimeoutError(model_id, timeout_seconds)
        elif task.cancelled():
            error = asyncio.CancelledError(f"ensemble member {model_id} was cancelled")
        else:
            error = task.exception()

        if error is not None:
            failures.append(
                AttemptFailure(
                    model_id=model_id,
                    attempt=attempt,
                    error=str(error) or type(error).__name__,
                    error_type=type(error).__name__,
                    latency_ms=elapsed_ms,
                )
            )
            _record(profiler, model_id, elapsed_ms, success=False)
            logger.warning(f"Ensemble member {model_id} failed: {type(error).__name__}: {error}")
            continue

        raw = task.result()
        result = raw if isinstance(raw, InvocationResult) else InvocationResult(content=raw)
        latency_ms = result.latency_ms if result.latency_ms is not None else elapsed_ms
        _record(profiler, model_id, latency_ms, True, result.token_count, result.cost)
        responses.append(EnsembleResponse(model_id=model_id, result=result, latency_ms=latency_ms))

    if not responses:
        error = ChainExhaustedError(decision.task_type, ENSEMBLE_FAILED, failures)
        logger.warning(str(error))
        raise error

    confidence = score_agreement(responses)
    # max() keeps the first of equal agreements, i.e. routing order
    selected = max(responses, key=lambda r: r.agreement)

    ensemble = EnsembleResult(
        task_type=decision.task_type,
        responses=responses,
        failures=failures,
        selected=selected,
        consensus_confidence=confidence,
    )

    logger.info(
        f"Ensemble for '{decision.task_type}' selected {selected.model_id} "
        f"from {ensemble.models} (confidence {confidence:.2f})"
    )
    if event_log is not None:
        event_log.emit(
            RoutingEventType.ENSEMBLE_COMPLETED,
            {
                "task_type": decision.task_type,
                "responders": ensemble.models,
                "failed": [f.model_id for f in failures],
                "consensus_confidence": confidence,
            },
            model_id=selected.model_id,
        )
    return ensemble


def _record(
    profiler: Optional[ModelProfiler],
    model_id: str,
    latency_ms: float,
    success: bool,
    token_count: int = 0,
    cost: float = 0.0,
) -> None:
    if profiler is None:
        return
    profiler.record_metric(
        model_id,
        ModelMetric(latency_ms=latency_ms, success=success, token_count=token_count, cost=cost),
    )
