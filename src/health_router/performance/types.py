"""Per-call metric and derived health types.

ModelMetric is the only thing that is stored or persisted; ModelHealth is
always recomputed from the metrics inside the retention window.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ModelMetric:
    """Outcome of a single completed model invocation.

    Attributes:
        latency_ms: Response latency in milliseconds
        success: Whether the invocation succeeded
        token_count: Tokens consumed by the call
        cost: Cost of the call in the caller's currency unit
        timestamp: UTC time the metric was recorded (assigned by the profiler)
        feedback_score: Optional user rating, 1 (bad) to 5 (good)
        hallucination: Optional flag set when the output was judged fabricated
    """

    latency_ms: float
    success: bool
    token_count: int = 0
    cost: float = 0.0
    timestamp: Optional[datetime] = None
    feedback_score: Optional[float] = None
    hallucination: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelMetric":
        """Build a metric from its snapshot form.

        Raises:
            KeyError, TypeError, ValueError: If the record is malformed
        """
        timestamp = data.get("timestamp")
        parsed: Optional[datetime] = None
        if timestamp:
            parsed = datetime.fromisoformat(str(timestamp).replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)

        feedback = data.get("feedback_score")
        hallucination = data.get("hallucination")
        return cls(
            latency_ms=float(data["latency_ms"]),
            success=bool(data["success"]),
            token_count=int(data.get("token_count", 0)),
            cost=float(data.get("cost", 0.0)),
            timestamp=parsed,
            feedback_score=float(feedback) if feedback is not None else None,
            hallucination=bool(hallucination) if hallucination is not None else None,
        )


@dataclass(frozen=True)
class ModelHealth:
    """Aggregated health of a model over the retention window.

    Attributes:
        model_id: Model identifier
        total_calls: Number of in-window calls
        success_rate: Proportion of successful calls (0-1)
        avg_latency_ms: Mean latency of successful calls
        p50_latency_ms: Median latency of successful calls (nearest rank)
        p95_latency_ms: 95th percentile latency of successful calls
        p99_latency_ms: 99th percentile latency of successful calls
        total_cost: Sum of call costs
        total_tokens: Sum of call token counts
        avg_feedback: Mean feedback score, neutral when nothing was rated
        feedback_count: Number of rated calls
        hallucination_rate: Proportion of calls flagged as hallucinated (0-1)
        health_score: Composite score (0-100)
        last_used: Timestamp of the most recent in-window call
        confidence_level: Sample size tier
            - INSUFFICIENT: <10 samples
            - PRELIMINARY: 10-30 samples
            - MODERATE: 30-100 samples
            - HIGH: 100+ samples
    """

    model_id: str
    total_calls: int
    success_rate: float
    avg_latency_ms: float
    p50_latency_ms: float
    p95_latency_ms: float
    p99_latency_ms: float
    total_cost: float
    total_tokens: int
    avg_feedback: float
    feedback_count: int
    hallucination_rate: float
    health_score: float
    last_used: Optional[datetime]
    confidence_level: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_used"] = self.last_used.isoformat() if self.last_used else None
        return data
