"""Exception types for health-aware model routing."""

from dataclasses import dataclass
from typing import List, Optional


class HealthRouterError(Exception):
    """Base class for all health_router errors."""

    pass


class NoCandidatesError(HealthRouterError):
    """Raised when a routing request has no candidate models."""

    pass


class ChainStateError(HealthRouterError):
    """Raised when a fallback chain operation is invalid for its state."""

    pass


class AttemptTimeoutError(HealthRouterError):
    """Raised when a single model attempt exceeds its timeout."""

    def __init__(self, model_id: str, timeout_seconds: float):
        super().__init__(
            f"Attempt on {model_id} timed out after {timeout_seconds:.2f}s"
        )
        self.model_id = model_id
        self.timeout_seconds = timeout_seconds


@dataclass
class AttemptFailure:
    """One failed attempt inside a fallback chain.

    Attributes:
        model_id: Model that was attempted
        attempt: 1-based attempt number within the chain
        error: Human readable error message
        error_type: Exception class name (or "cancelled")
        latency_ms: Time spent on the attempt, if measured
    """

    model_id: str
    attempt: int
    error: str
    error_type: str
    latency_ms: Optional[float] = None


class ChainExhaustedError(HealthRouterError):
    """Raised when a fallback chain ends without a successful attempt.

    Carries every attempted model and its specific error so that failures
    are attributable to individual models.
    """

    def __init__(
        self,
        task_type: str,
        reason: str,
        failures: List[AttemptFailure],
    ):
        self.task_type = task_type
        self.reason = reason
        self.failures = list(failures)
        super().__init__(self._format_message())

    @property
    def attempted_models(self) -> List[str]:
        return [f.model_id for f in self.failures]

    def _format_message(self) -> str:
        if not self.failures:
            return f"Fallback chain for '{self.task_type}' ended ({self.reason}) with no attempts"
        details = "; ".join(
            f"#{f.attempt} {f.model_id}: {f.error_type}: {f.error}" for f in self.failures
        )
        return (
            f"Fallback chain for '{self.task_type}' exhausted ({self.reason}) "
            f"after {len(self.failures)} attempt(s): {details}"
        )
