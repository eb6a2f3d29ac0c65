"""Fallback chain over a routing decision.

A FallbackChain walks the ranked candidates of one RoutingDecision, one
attempt at a time, until an attempt succeeds or a bound is hit.

State Machine:
    PENDING -> (next) -> ATTEMPTING(model_1)
    ATTEMPTING(model_i) -> (success) -> SUCCESS
    ATTEMPTING(model_i) -> (failure, more allowed) -> (next) -> ATTEMPTING(model_i+1)
    ATTEMPTING(model_i) -> (failure, nothing left) -> EXHAUSTED
    any non-terminal state -> (cancel) -> EXHAUSTED (cancelled)

Bounds: max attempts, per-attempt timeout, and a cumulative time budget for
the whole chain. Whichever triggers first ends the chain.

Chains can be driven manually by a dispatcher (next / record_success /
record_failure) or end to end with run(invoke).
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from ..config import FallbackConfig
from ..errors import AttemptFailure, AttemptTimeoutError, ChainExhaustedError, ChainStateError
from ..events import EventLog, EventObserver, RoutingEvent, RoutingEventType
from ..performance.profiler import ModelProfiler
from ..performance.types import ModelMetric
from .types import RoutingDecision

logger = logging.getLogger(__name__)


class ChainStatus(Enum):
    """Fallback chain states."""

    PENDING = "pending"  # No attempt made yet
    ATTEMPTING = "attempting"  # An attempt is in flight or the next one is due
    SUCCESS = "success"  # Terminal: an attempt succeeded
    EXHAUSTED = "exhausted"  # Terminal: no attempt may be made


class ExhaustionReason(Enum):
    """Why a chain ended without success."""

    CANDIDATES_EXHAUSTED = "candidates_exhausted"
    MAX_ATTEMPTS = "max_attempts"
    TIME_BUDGET = "time_budget"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ChainAttempt:
    """The next model to try.

    Attributes:
        model_id: Model to invoke
        attempt: 1-based attempt number
        timeout_seconds: Time allowed for this attempt, already capped by
            the remaining chain budget
    """

    model_id: str
    attempt: int
    timeout_seconds: float


@dataclass
class Exhausted:
    """Terminal signal returned by next() once no attempt may be made."""

    task_type: str
    reason: ExhaustionReason
    failures: List[AttemptFailure] = field(default_factory=list)

    @property
    def attempted_models(self) -> List[str]:
        return [f.model_id for f in self.failures]

    @property
    def error(self) -> ChainExhaustedError:
        return ChainExhaustedError(self.task_type, self.reason.value, self.failures)


@dataclass
class InvocationResult:
    """What an external model-invocation client reports for a call."""

    content: Any = None
    latency_ms: Optional[float] = None
    token_count: int = 0
    cost: float = 0.0


@dataclass
class ChainResult:
    """Successful outcome of FallbackChain.run()."""

    model_id: str
    result: InvocationResult
    attempts: int
    failures: List[AttemptFailure]
    elapsed_seconds: float

    @property
    def attempted_models(self) -> List[str]:
        return [f.model_id for f in self.failures] + [self.model_id]

    @property
    def used_fallback(self) -> bool:
        return bool(self.failures)


Invoker = Callable[[str], Awaitable[Any]]


class FallbackChain:
    """Per-request iterator over the ranked candidates of a RoutingDecision.

    Example:
        chain = FallbackChain(decision, max_attempts=3)
        step = chain.next()
        while isinstance(step, ChainAttempt):
            try:
                result = await client.complete(step.model_id, timeout=step.timeout_seconds)
            except Exception as e:
                chain.record_failure(e)
                step = chain.next()
            else:
                chain.record_success()
                break
    """

    def __init__(
        self,
        decision: RoutingDecision,
        max_attempts: int = 3,
        attempt_timeout_seconds: float = 30.0,
        time_budget_seconds: float = 90.0,
        profiler: Optional[ModelProfiler] = None,
        event_log: Optional[EventLog] = None,
        observers: Optional[Sequence[EventObserver]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the chain.

        Args:
            decision: Routing decision whose primary and fallbacks are tried in order.
            max_attempts: Cap on attempts regardless of candidate count.
            attempt_timeout_seconds: Timeout for a single attempt.
            time_budget_seconds: Cumulative time allowed for the whole chain,
                                measured from the first next().
            profiler: When set, run() records a metric for every completed attempt.
            event_log: Optional shared event sink.
            observers: Callables notified of every chain event.
            clock: Monotonic clock in seconds. Injected in tests.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.decision = decision
        self.max_attempts = max_attempts
        self.attempt_timeout_seconds = attempt_timeout_seconds
        self.time_budget_seconds = time_budget_seconds
        self.profiler = profiler
        self.event_log = event_log
        self.events: List[RoutingEvent] = []

        self._observers = list(observers or [])
        self._clock = clock
        self._candidates = decision.ordered_models
        self._index = 0
        self._status = ChainStatus.PENDING
        self._current: Optional[ChainAttempt] = None
        self._current_started: Optional[float] = None
        self._attempted: List[str] = []
        self._failures: List[AttemptFailure] = []
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None
        self._succeeded_model: Optional[str] = None
        self._exhausted: Optional[Exhausted] = None
        self._cancel_requested = False
        self._inflight: Optional[asyncio.Future] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> ChainStatus:
        return self._status

    @property
    def current(self) -> Optional[ChainAttempt]:
        """The attempt awaiting an outcome, if any."""
        return self._current

    @property
    def attempts(self) -> int:
        return len(self._attempted)

    @property
    def attempted_models(self) -> List[str]:
        return list(self._attempted)

    @property
    def failures(self) -> List[AttemptFailure]:
        return list(self._failures)

    @property
    def succeeded_model(self) -> Optional[str]:
        return self._succeeded_model

    @property
    def exhausted(self) -> Optional[Exhausted]:
        return self._exhausted

    @property
    def is_terminal(self) -> bool:
        return self._status in (ChainStatus.SUCCESS, ChainStatus.EXHAUSTED)

    @property
    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._finished_at if self._finished_at is not None else self._clock()
        return end - self._started_at

    @property
    def remaining_budget_seconds(self) -> float:
        return self.time_budget_seconds - self.elapsed_seconds

    def add_observer(self, observer: EventObserver) -> None:
        self._observers.append(observer)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def next(self) -> Union[ChainAttempt, Exhausted]:
        """Advance to the next untried candidate.

        Returns:
            ChainAttempt for the next model, or Exhausted once the chain has
            ended without success (repeated calls return the same Exhausted)

        Raises:
            ChainStateError: If the chain already succeeded, or the current
                attempt has no recorded outcome
        """
        if self._status == ChainStatus.EXHAUSTED:
            assert self._exhausted is not None
            return self._exhausted
        if self._status == ChainStatus.SUCCESS:
            raise ChainStateError("Fallback chain already succeeded")
        if self._current is not None:
            raise ChainStateError(
                f"Attempt {self._current.attempt} on {self._current.model_id} has no recorded outcome"
            )

        if self._started_at is None:
            self._started_at = self._clock()

        reason = self._stop_reason()
        if reason is not None:
            return self._exhaust(reason)

        model_id = self._candidates[self._index]
        self._index += 1
        self._attempted.append(model_id)

        attempt = ChainAttempt(
            model_id=model_id,
            attempt=len(self._attempted),
            timeout_seconds=min(self.attempt_timeout_seconds, self.remaining_budget_seconds),
        )
        self._current = attempt
        self._current_started = self._clock()
        self._status = ChainStatus.ATTEMPTING

        self._emit(
            RoutingEventType.ATTEMPT_STARTED,
            {"task_type": self.decision.task_type, "timeout_seconds": attempt.timeout_seconds},
            model_id=model_id,
            attempt=attempt.attempt,
        )
        return attempt

    def record_success(self) -> None:
        """Mark the current attempt as successful. Terminal."""
        attempt = self._require_current()
        latency_ms = self._current_latency_ms()
        self._current = None
        self._succeeded_model = attempt.model_id
        self._status = ChainStatus.SUCCESS
        self._finished_at = self._clock()

        self._emit(
            RoutingEventType.ATTEMPT_SUCCEEDED,
            {"latency_ms": latency_ms},
            model_id=attempt.model_id,
            attempt=attempt.attempt,
        )
        self._emit(
            RoutingEventType.CHAIN_SUCCEEDED,
            {
                "task_type": self.decision.task_type,
                "attempted_models": self.attempted_models,
                "elapsed_seconds": self.elapsed_seconds,
            },
            model_id=attempt.model_id,
            attempt=attempt.attempt,
        )
        if self._failures:
            logger.info(
                f"Fallback chain for '{self.decision.task_type}' succeeded on "
                f"{attempt.model_id} after {len(self._failures)} failed attempt(s)"
            )

    def record_failure(
        self,
        error: Union[BaseException, str],
        latency_ms: Optional[float] = None,
    ) -> Optional[Exhausted]:
        """Mark the current attempt as failed.

        Args:
            error: The exception raised by the attempt, or a message
            latency_ms: Time spent; measured from next() when omitted

        Returns:
            Exhausted if nothing else may be attempted, otherwise None
        """
        attempt = self._require_current()
        if latency_ms is None:
            latency_ms = self._current_latency_ms()

        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            error_type = type(error).__name__
        else:
            message = str(error)
            error_type = "error"

        failure = AttemptFailure(
            model_id=attempt.model_id,
            attempt=attempt.attempt,
            error=message,
            error_type=error_type,
            latency_ms=latency_ms,
        )
        self._failures.append(failure)
        self._current = None

        logger.warning(
            f"Model {attempt.model_id} failed attempt {attempt.attempt} "
            f"for '{self.decision.task_type}': {error_type}: {message}"
        )
        self._emit(
            RoutingEventType.ATTEMPT_FAILED,
            {"error": message, "error_type": error_type, "latency_ms": latency_ms},
            model_id=attempt.model_id,
            attempt=attempt.attempt,
        )

        reason = self._stop_reason()
        if reason is not None:
            return self._exhaust(reason)
        return None

    def cancel(self) -> bool:
        """Cooperatively cancel the chain.

        An attempt in flight under run() receives asyncio cancellation; the
        chain ends EXHAUSTED with reason CANCELLED and nothing further is
        attempted.

        Returns:
            True if the chain was still running
        """
        if self.is_terminal:
            return False

        self._cancel_requested = True
        if self._inflight is not None:
            # run() owns the attempt and finishes the transition when it resumes
            self._inflight.cancel()
            return True

        self._cancel_current()
        return True

    def _require_current(self) -> ChainAttempt:
        if self._current is None:
            raise ChainStateError("No attempt in flight")
        return self._current

    def _current_latency_ms(self) -> Optional[float]:
        if self._current_started is None:
            return None
        return (self._clock() - self._current_started) * 1000.0

    def _stop_reason(self) -> Optional[ExhaustionReason]:
        if self._cancel_requested:
            return ExhaustionReason.CANCELLED
        if self._index >= len(self._candidates):
            return ExhaustionReason.CANDIDATES_EXHAUSTED
        if len(self._attempted) >= self.max_attempts:
            return ExhaustionReason.MAX_ATTEMPTS
        if self.remaining_budget_seconds <= 0:
            return ExhaustionReason.TIME_BUDGET
        return None

    def _cancel_current(self) -> Exhausted:
        attempt = self._current
        if attempt is not None:
            latency_ms = self._current_latency_ms()
            self._failures.append(
                AttemptFailure(
                    model_id=attempt.model_id,
                    attempt=attempt.attempt,
                    error="cancelled",
                    error_type="cancelled",
                    latency_ms=latency_ms,
                )
            )
            self._current = None
            self._emit(
                RoutingEventType.ATTEMPT_FAILED,
                {"error": "cancelled", "error_type": "cancelled", "latency_ms": latency_ms},
                model_id=attempt.model_id,
                attempt=attempt.attempt,
            )
        self._cancel_requested = True
        return self._exhaust(ExhaustionReason.CANCELLED)

    def _exhaust(self, reason: ExhaustionReason) -> Exhausted:
        self._status = ChainStatus.EXHAUSTED
        self._current = None
        self._finished_at = self._clock()
        self._exhausted = Exhausted(
            task_type=self.decision.task_type,
            reason=reason,
            failures=list(self._failures),
        )

        logger.warning(
            f"Fallback chain for '{self.decision.task_type}' exhausted ({reason.value}) "
            f"after attempting {self.attempted_models}"
        )
        self._emit(
            RoutingEventType.CHAIN_EXHAUSTED,
            {
                "task_type": self.decision.task_type,
                "reason": reason.value,
                "elapsed_seconds": self.elapsed_seconds,
                "failures": [
                    {"model_id": f.model_id, "attempt": f.attempt, "error": f.error, "error_type": f.error_type}
                    for f in self._failures
                ],
            },
        )
        return self._exhausted

    def _emit(
        self,
        event_type: RoutingEventType,
        data: dict,
        model_id: Optional[str] = None,
        attempt: Optional[int] = None,
    ) -> None:
        event = RoutingEvent(event_type=event_type, data=data, model_id=model_id, attempt=attempt)
        self.events.append(event)
        if self.event_log is not None:
            self.event_log.record(event)
        for observer in self._observers:
            try:
                observer(event)
            except Exception:
                logger.exception(f"Fallback chain observer failed on {event_type.value}")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _record_metric(
        self,
        model_id: str,
        latency_ms: float,
        success: bool,
        token_count: int = 0,
        cost: float = 0.0,
    ) -> None:
        if self.profiler is None:
            return
        self.profiler.record_metric(
            model_id,
            ModelMetric(
                latency_ms=latency_ms,
                success=success,
                token_count=token_count,
                cost=cost,
            ),
        )

    async def run(self, invoke: Invoker) -> ChainResult:
        """Drive the chain to completion with an external invocation client.

        Attempts run strictly sequentially, each bounded by the attempt's
        timeout. Every completed attempt is recorded on the profiler, if one
        was given. Cancelled attempts are not recorded, including an attempt
        that finished after cancel() was called but before run() resumed.

        Only the chain's own deadline is reported as AttemptTimeoutError; a
        TimeoutError raised by the invoker is recorded as-is.

        Args:
            invoke: Async callable taking a model id. It may return an
                    InvocationResult or any value (treated as the content).

        Returns:
            ChainResult for the successful attempt

        Raises:
            ChainExhaustedError: If the chain ends without success (including
                                cancel())
            asyncio.CancelledError: If the task running the chain is cancelled;
                                   the chain is left EXHAUSTED (cancelled)
            ChainStateError: If the chain was already started
        """
        if self._status != ChainStatus.PENDING:
            raise ChainStateError("run() requires a chain that has not been started")

        while True:
            step = self.next()
            if isinstance(step, Exhausted):
                raise step.error

            started = self._clock()
            inflight = asyncio.ensure_future(invoke(step.model_id))
            self._inflight = inflight
            try:
                done, _ = await asyncio.wait({inflight}, timeout=step.timeout_seconds)
            except asyncio.CancelledError:
                # The task running the chain was cancelled
                inflight.cancel()
                self._cancel_current()
                raise
            finally:
                self._inflight = None

            if self._cancel_requested:
                inflight.cancel()
                raise self._cancel_current().error

            latency_ms = (self._clock() - started) * 1000.0
            if not done:
                inflight.cancel()
                self._record_metric(step.model_id, latency_ms, success=False)
                self.record_failure(
                    AttemptTimeoutError(step.model_id, step.timeout_seconds),
                    latency_ms=latency_ms,
                )
                continue

            if inflight.cancelled():
                error: Optional[BaseException] = asyncio.CancelledError(
                    f"attempt on {step.model_id} was cancelled outside the chain"
                )
            else:
                error = inflight.exception()
            if error is not None:
                self._record_metric(step.model_id, latency_ms, success=False)
                self.record_failure(error, latency_ms=latency_ms)
                continue

            raw = inflight.result()
            result = raw if isinstance(raw, InvocationResult) else InvocationResult(content=raw)
            if result.latency_ms is not None:
                latency_ms = result.latency_ms
            self._record_metric(
                step.model_id,
                latency_ms,
                success=True,
                token_count=result.token_count,
                cost=result.cost,
            )
            self.record_success()
            return ChainResult(
                model_id=step.model_id,
                result=result,
                attempts=self.attempts,
                failures=self.failures,
                elapsed_seconds=self.elapsed_seconds,
            )


class FallbackChainFactory:
    """Create one FallbackChain per request with shared bounds and sinks."""

    def __init__(
        self,
        max_attempts: int = 3,
        attempt_timeout_seconds: float = 30.0,
        time_budget_seconds: float = 90.0,
        profiler: Optional[ModelProfiler] = None,
        event_log: Optional[EventLog] = None,
        observers: Optional[Sequence[EventObserver]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_attempts = max_attempts
        self.attempt_timeout_seconds = attempt_timeout_seconds
        self.time_budget_seconds = time_budget_seconds
        self.profiler = profiler
        self.event_log = event_log
        self.observers = list(observers or [])
        self.clock = clock

    @classmethod
    def from_config(
        cls,
        config: FallbackConfig,
        profiler: Optional[ModelProfiler] = None,
        event_log: Optional[EventLog] = None,
    ) -> "FallbackChainFactory":
        return cls(
            max_attempts=config.max_attempts,
            attempt_timeout_seconds=config.attempt_timeout_seconds,
            time_budget_seconds=config.time_budget_seconds,
            profiler=profiler,
            event_log=event_log,
        )

    def create(
        self,
        decision: RoutingDecision,
        observers: Optional[Sequence[EventObserver]] = None,
    ) -> FallbackChain:
        """Create a fresh chain for a routing decision."""
        return FallbackChain(
            decision,
            max_attempts=self.max_attempts,
            attempt_timeout_seconds=self.attempt_timeout_seconds,
            time_budget_seconds=self.time_budget_seconds,
            profiler=self.profiler,
            event_log=self.event_log,
            observers=[*self.observers, *(observers or [])],
            clock=self.clock,
        )
