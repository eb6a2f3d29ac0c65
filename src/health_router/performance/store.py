"""In-memory health store backed by a debounced JSON snapshot.

Each model owns a bounded ring of metrics (oldest evicted first). Mutations
bump a version counter and wake a background task, which waits for a quiet
period with no further mutations before writing the whole snapshot once.
Callers never wait on disk I/O; `flush()` and `close()` are the explicit
durability points for shutdown.
"""

import asyncio
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional

from ..config import DEFAULT_SNAPSHOT_PATH
from .snapshot import read_snapshot, write_snapshot
from .types import ModelMetric

logger = logging.getLogger(__name__)


class HealthStore:
    """Bounded per-model metric rings with durable snapshot persistence.

    Attributes:
        snapshot_path: Path to the JSON snapshot
        max_metrics_per_model: Ring size per model
        flush_delay_seconds: Quiet period before a debounced write
        persist: When False, nothing is read from or written to disk
    """

    def __init__(
        self,
        snapshot_path: Optional[Path] = None,
        max_metrics_per_model: int = 1000,
        flush_delay_seconds: float = 5.0,
        persist: bool = True,
    ):
        if max_metrics_per_model < 1:
            raise ValueError("max_metrics_per_model must be at least 1")

        self.snapshot_path = snapshot_path or DEFAULT_SNAPSHOT_PATH
        self.max_metrics_per_model = max_metrics_per_model
        self.flush_delay_seconds = flush_delay_seconds
        self.persist = persist

        self._metrics: Dict[str, Deque[ModelMetric]] = {}
        self._lock = threading.Lock()
        self._version = 0
        self._flushed_version = 0
        self._loaded = False

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._flush_lock: Optional[asyncio.Lock] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def is_dirty(self) -> bool:
        """True when in-memory state has changes not yet written to disk."""
        with self._lock:
            return self._version != self._flushed_version

    def load(self) -> int:
        """Load the snapshot from disk, replacing in-memory state.

        Synchronous by design: it runs once at startup, before any routing
        decision is served. Missing or corrupt snapshots yield empty state.

        Returns:
            Number of metrics loaded
        """
        loaded = read_snapshot(self.snapshot_path) if self.persist else {}

        with self._lock:
            self._metrics = {
                model_id: deque(metrics, maxlen=self.max_metrics_per_model)
                for model_id, metrics in loaded.items()
            }
            self._version = 0
            self._flushed_version = 0
            self._loaded = True
            count = sum(len(ring) for ring in self._metrics.values())

        logger.info(
            f"Loaded {count} metrics for {len(loaded)} models from {self.snapshot_path}"
        )
        return count

    async def start(self) -> None:
        """Load the snapshot if needed and start the background flusher."""
        if not self._loaded:
            self.load()

        if not self.persist or self._flush_task is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        if self.is_dirty:
            self._wakeup.set()
        self._flush_task = asyncio.create_task(
            self._flush_loop(), name="health-store-flush"
        )

    async def close(self) -> None:
        """Stop the background flusher and write any remaining dirty state."""
        task, self._flush_task = self._flush_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self.flush()
        self._wakeup = None
        self._loop = None

    async def flush(self) -> bool:
        """Write the snapshot now if there are unwritten changes.

        The file write runs in a worker thread. Write failures are logged and
        swallowed; state stays dirty so a later flush retries.

        Returns:
            True if a snapshot was written
        """
        if not self.persist:
            return False

        if self._flush_lock is None:
            self._flush_lock = asyncio.Lock()

        async with self._flush_lock:
            with self._lock:
                if self._version == self._flushed_version:
                    return False
                version = self._version
                data = {
                    model_id: list(ring)
                    for model_id, ring in self._metrics.items()
                    if ring
                }

            try:
                await asyncio.to_thread(write_snapshot, data, self.snapshot_path)
            except Exception as e:
                logger.error(
                    f"Failed to write health snapshot to {self.snapshot_path}: {e}"
                )
                return False

            with self._lock:
                self._flushed_version = max(self._flushed_version, version)
            return True

    async def _flush_loop(self) -> None:
        assert self._wakeup is not None
        while True:
            await self._wakeup.wait()

            # Quiet period: restart the wait on every new mutation
            while True:
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(
                        self._wakeup.wait(), timeout=self.flush_delay_seconds
                    )
                except asyncio.TimeoutError:
                    break

            written = await asyncio.shield(self.flush())
            if not written and self.is_dirty:
                # Failed write: retry after another quiet period
                self._wakeup.set()

    def _notify(self) -> None:
        """Wake the background flusher, from any thread."""
        loop, wakeup = self._loop, self._wakeup
        if loop is None or wakeup is None:
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            wakeup.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(wakeup.set)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append(self, model_id: str, metric: ModelMetric) -> None:
        """Append a metric to a model's ring, evicting the oldest if full."""
        with self._lock:
            ring = self._metrics.get(model_id)
            if ring is None:
                ring = deque(maxlen=self.max_metrics_per_model)
                self._metrics[model_id] = ring
            ring.append(metric)
            self._version += 1
        self._notify()

    def replace_latest(
        self,
        model_id: str,
        update: Callable[[ModelMetric], ModelMetric],
    ) -> Optional[ModelMetric]:
        """Replace the most recent metric of a model with update(metric).

        Returns:
            The replacement metric, or None if the model has no metrics
        """
        with self._lock:
            ring = self._metrics.get(model_id)
            if not ring:
                return None
            replacement = update(ring[-1])
            ring[-1] = replacement
            self._version += 1
        self._notify()
        return replacement

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def metrics(self, model_id: str) -> List[ModelMetric]:
        """Copy of a model's metrics, oldest first."""
        with self._lock:
            ring = self._metrics.get(model_id)
            return list(ring) if ring else []

    def latest(self, model_id: str) -> Optional[ModelMetric]:
        with self._lock:
            ring = self._metrics.get(model_id)
            return ring[-1] if ring else None

    def model_ids(self) -> List[str]:
        with self._lock:
            return sorted(model_id for model_id, ring in self._metrics.items() if ring)

    def snapshot(self) -> Dict[str, List[ModelMetric]]:
        """Consistent copy of all metrics."""
        with self._lock:
            return {model_id: list(ring) for model_id, ring in self._metrics.items() if ring}

    def metric_count(self, model_id: Optional[str] = None) -> int:
        with self._lock:
            if model_id is not None:
                ring = self._metrics.get(model_id)
                return len(ring) if ring else 0
            return sum(len(ring) for ring in self._metrics.values())
