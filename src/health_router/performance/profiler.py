"""Model health profiler.

Records the outcome of every model invocation and derives a ModelHealth view
on demand from the metrics inside the retention window.
"""

import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

from ..config import HealthScoreWeights, ProfilerConfig
from .store import HealthStore
from .types import ModelHealth, ModelMetric

logger = logging.getLogger(__name__)

MIN_FEEDBACK_SCORE = 1.0
MAX_FEEDBACK_SCORE = 5.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _calculate_percentile(sorted_values: Sequence[float], percentile: float) -> float:
    """Nearest-rank percentile of an already sorted sequence.

    index = ceil(p/100 * n) - 1, clamped to [0, n-1].

    Args:
        sorted_values: Values in ascending order
        percentile: Percentile to calculate (0-100)

    Returns:
        Value at the given percentile, 0.0 for an empty sequence
    """
    n = len(sorted_values)
    if n == 0:
        return 0.0

    index = math.ceil(percentile / 100.0 * n) - 1
    index = max(0, min(n - 1, index))
    return float(sorted_values[index])


def _determine_confidence_level(sample_size: int) -> str:
    """Determine statistical confidence level based on sample size.

    Returns:
        Confidence level string: INSUFFICIENT, PRELIMINARY, MODERATE, or HIGH
    """
    if sample_size < 10:
        return "INSUFFICIENT"
    elif sample_size < 30:
        return "PRELIMINARY"
    elif sample_size < 100:
        return "MODERATE"
    else:
        return "HIGH"


def calculate_health_score(
    success_rate: float,
    avg_latency_ms: Optional[float],
    avg_feedback: Optional[float],
    hallucination_rate: float,
    weights: Optional[HealthScoreWeights] = None,
) -> float:
    """Composite 0-100 health score.

    With the default weights:

        40*success_rate + 20*latency_factor + 25*feedback_factor
            + 15*(1 - hallucination_rate)

    where latency_factor = max(0, 1 - avg_latency/ceiling) and
    feedback_factor = (avg_feedback - 1) / 4. The weighted sum is divided by
    the total weight in use, so the result stays in [0, 100] for any
    configured weights.

    Args:
        success_rate: Proportion of successful calls (0-1)
        avg_latency_ms: Mean latency of successful calls, None if there were none
        avg_feedback: Mean feedback (1-5), None if no call was rated
        hallucination_rate: Proportion of hallucinated calls (0-1)
        weights: Score weights, defaults to HealthScoreWeights()

    Returns:
        Health score between 0 and 100
    """
    weights = weights or HealthScoreWeights()

    if avg_latency_ms is None:
        latency_factor = 0.0
    else:
        latency_factor = max(0.0, 1.0 - avg_latency_ms / weights.latency_ceiling_ms)

    components = [
        (weights.success_rate, success_rate),
        (weights.latency, latency_factor),
        (weights.hallucination, 1.0 - hallucination_rate),
    ]

    base_weight = sum(w for w, _ in components)
    if avg_feedback is not None:
        components.append((weights.feedback, (avg_feedback - 1.0) / 4.0))
    elif weights.missing_feedback == "neutral" or base_weight <= 0:
        components.append((weights.feedback, (weights.neutral_feedback - 1.0) / 4.0))

    total_weight = sum(w for w, _ in components)
    if total_weight <= 0:
        return 0.0

    score = 100.0 * sum(w * factor for w, factor in components) / total_weight
    return max(0.0, min(100.0, score))


class ModelProfiler:
    """Track per-model call outcomes and compute health on demand.

    Health is a pure function of the stored metrics and "now"; it is never
    cached or persisted.

    Attributes:
        store: HealthStore holding the raw metrics
        retention_days: Only metrics newer than this count toward health
        weights: Health score weights
        healthy_threshold: Default minimum score for is_model_healthy()
    """

    def __init__(
        self,
        store: HealthStore,
        retention_days: float = 30.0,
        weights: Optional[HealthScoreWeights] = None,
        healthy_threshold: float = 50.0,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the profiler.

        Args:
            store: Backing HealthStore
            retention_days: Retention window for aggregation. Older metrics
                           remain stored but are ignored.
            weights: Health score weights. Defaults to 40/20/25/15.
            healthy_threshold: Default min_score for is_model_healthy().
            now_fn: Clock returning an aware UTC datetime. Injected in tests.
        """
        self.store = store
        self.retention_days = retention_days
        self.weights = weights or HealthScoreWeights()
        self.healthy_threshold = healthy_threshold
        self._now = now_fn or _utcnow

    @classmethod
    def from_config(
        cls,
        config: ProfilerConfig,
        store: HealthStore,
        now_fn: Optional[Callable[[], datetime]] = None,
    ) -> "ModelProfiler":
        return cls(
            store=store,
            retention_days=config.retention_days,
            weights=config.weights,
            healthy_threshold=config.healthy_threshold,
            now_fn=now_fn,
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_metric(self, model_id: str, metric: ModelMetric) -> ModelMetric:
        """Record the outcome of one completed invocation.

        The timestamp is always assigned here. Failed invocations are
        recorded like any other metric; this never raises because a model
        call failed.

        Args:
            model_id: Model identifier
            metric: Call outcome

        Returns:
            The stored (timestamped) metric
        """
        stamped = replace(metric, timestamp=self._now())
        self.store.append(model_id, stamped)

        if not stamped.success:
            logger.debug(f"Recorded failed call for {model_id} ({stamped.latency_ms:.0f}ms)")
        return stamped

    def record_feedback(
        self,
        model_id: str,
        score: float,
        hallucination: Optional[bool] = None,
    ) -> Optional[ModelMetric]:
        """Attach feedback to the most recent metric of a model.

        Only the latest metric is touched; a second call overwrites the
        first. No-op when the model has no metrics yet.

        Args:
            model_id: Model identifier
            score: Feedback score between 1 and 5
            hallucination: Optional hallucination flag; None leaves it unchanged

        Returns:
            The updated metric, or None if the model has no metrics

        Raises:
            ValueError: If score is outside 1-5
        """
        if not (MIN_FEEDBACK_SCORE <= score <= MAX_FEEDBACK_SCORE):
            raise ValueError(
                f"feedback score must be between {MIN_FEEDBACK_SCORE:g} and "
                f"{MAX_FEEDBACK_SCORE:g}, got {score}"
            )

        def _apply(metric: ModelMetric) -> ModelMetric:
            if hallucination is None:
                return replace(metric, feedback_score=float(score))
            return replace(metric, feedback_score=float(score), hallucination=hallucination)

        updated = self.store.replace_latest(model_id, _apply)
        if updated is None:
            logger.debug(f"Ignoring feedback for {model_id}: no recorded metrics")
        return updated

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def _window(self, metrics: List[ModelMetric], now: datetime) -> List[ModelMetric]:
        cutoff = now - timedelta(days=self.retention_days)
        return [m for m in metrics if m.timestamp is None or m.timestamp >= cutoff]

    def _aggregate(
        self, model_id: str, metrics: List[ModelMetric]
    ) -> ModelHealth:
        total = len(metrics)
        successes = [m for m in metrics if m.success]
        rated = [m.feedback_score for m in metrics if m.feedback_score is not None]
        hallucinated = sum(1 for m in metrics if m.hallucination)

        success_rate = len(successes) / total
        hallucination_rate = hallucinated / total

        latencies = sorted(m.latency_ms for m in successes)
        avg_latency = sum(latencies) / len(latencies) if latencies else None
        avg_feedback = sum(rated) / len(rated) if rated else None

        score = calculate_health_score(
            success_rate=success_rate,
            avg_latency_ms=avg_latency,
            avg_feedback=avg_feedback,
            hallucination_rate=hallucination_rate,
            weights=self.weights,
        )

        timestamps = [m.timestamp for m in metrics if m.timestamp is not None]

        return ModelHealth(
            model_id=model_id,
            total_calls=total,
            success_rate=success_rate,
            avg_latency_ms=avg_latency if avg_latency is not None else 0.0,
            p50_latency_ms=_calculate_percentile(latencies, 50),
            p95_latency_ms=_calculate_percentile(latencies, 95),
            p99_latency_ms=_calculate_percentile(latencies, 99),
            total_cost=sum(m.cost for m in metrics),
            total_tokens=sum(m.token_count for m in metrics),
            avg_feedback=avg_feedback if avg_feedback is not None else self.weights.neutral_feedback,
            feedback_count=len(rated),
            hallucination_rate=hallucination_rate,
            health_score=score,
            last_used=max(timestamps) if timestamps else None,
            confidence_level=_determine_confidence_level(total),
        )

    def get_model_health(
        self, model_id: str, now: Optional[datetime] = None
    ) -> Optional[ModelHealth]:
        """Get aggregated health for a model.

        Args:
            model_id: Model identifier
            now: Reference time for the retention window (defaults to the clock)

        Returns:
            ModelHealth, or None when the model has no in-window metrics
        """
        now = now or self._now()
        metrics = self._window(self.store.metrics(model_id), now)
        if not metrics:
            return None
        return self._aggregate(model_id, metrics)

    def get_all_model_health(self, now: Optional[datetime] = None) -> List[ModelHealth]:
        """Health for every tracked model with in-window data, best first."""
        now = now or self._now()
        results: List[ModelHealth] = []
        for model_id, metrics in self.store.snapshot().items():
            in_window = self._window(metrics, now)
            if in_window:
                results.append(self._aggregate(model_id, in_window))

        results.sort(key=lambda h: (-h.health_score, h.model_id))
        return results

    def is_model_healthy(self, model_id: str, min_score: Optional[float] = None) -> bool:
        """Check whether a model meets a minimum health score.

        Models without in-window data are optimistically considered healthy.
        """
        threshold = self.healthy_threshold if min_score is None else min_score
        health = self.get_model_health(model_id)
        if health is None:
            return True
        return health.health_score >= threshold

    def get_stats(self) -> Dict[str, object]:
        """Get profiler and store statistics."""
        return {
            "tracked_models": len(self.store.model_ids()),
            "total_metrics": self.store.metric_count(),
            "retention_days": self.retention_days,
            "dirty": self.store.is_dirty,
            "snapshot_path": str(self.store.snapshot_path),
        }
