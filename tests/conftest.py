"""Shared test configuration and fixtures."""
from datetime import datetime, timedelta, timezone

import pytest

# =============================================================================
# Environment Reset
# =============================================================================


@pytest.fixture(autouse=True)
def reset_env(monkeypatch):
    """Clear environment variables before each test."""
    for name in [
        "HEALTH_ROUTER_CONFIG",
        "HEALTH_ROUTER_SNAPSHOT_PATH",
        "HEALTH_ROUTER_FLUSH_DELAY",
        "HEALTH_ROUTER_MAX_METRICS",
        "HEALTH_ROUTER_RETENTION_DAYS",
        "HEALTH_ROUTER_MAX_ATTEMPTS",
        "HEALTH_ROUTER_ATTEMPT_TIMEOUT",
        "HEALTH_ROUTER_TIME_BUDGET",
        "HEALTH_ROUTER_MIN_PRIMARY_HEALTH",
        "HEALTH_ROUTER_PERSISTENCE_ENABLED",
        "HEALTH_ROUTER_STRATEGY",
        "HEALTH_ROUTER_ENSEMBLE_SIZE",
    ]:
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# Clocks
# =============================================================================


class FakeClock:
    """Settable UTC clock for the profiler."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    """Settable monotonic clock (seconds) for fallback chains."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 12, 24, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def memory_store():
    """HealthStore that never touches disk."""
    from health_router.performance.store import HealthStore

    return HealthStore(persist=False, max_metrics_per_model=1000)


@pytest.fixture
def profiler(memory_store, clock):
    from health_router.performance.profiler import ModelProfiler

    return ModelProfiler(memory_store, now_fn=clock)


# =============================================================================
# Custom Pytest Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
