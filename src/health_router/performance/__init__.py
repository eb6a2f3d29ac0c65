"""Per-model performance tracking and health aggregation.

Usage:
    from health_router.performance import HealthStore, ModelMetric, ModelProfiler

    store = HealthStore(snapshot_path=Path("model_health.json"))
    await store.start()

    profiler = ModelProfiler(store)
    profiler.record_metric("openai/gpt-4o", ModelMetric(latency_ms=850, success=True))
    health = profiler.get_model_health("openai/gpt-4o")

    await store.close()
"""

from .profiler import ModelProfiler, calculate_health_score
from .snapshot import read_snapshot, write_snapshot
from .store import HealthStore
from .types import ModelHealth, ModelMetric

__all__ = [
    # Types (types.py)
    "ModelMetric",
    "ModelHealth",
    # Snapshot I/O (snapshot.py)
    "read_snapshot",
    "write_snapshot",
    # Store (store.py)
    "HealthStore",
    # Profiler (profiler.py)
    "ModelProfiler",
    "calculate_health_score",
]
