"""Tests for HealthStore ring buffers and debounced persistence."""

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest


def _metric(latency=100.0, success=True):
    from health_router.performance.types import ModelMetric

    return ModelMetric(latency_ms=latency, success=success)


class TestRingBuffer:
    """Test bounded per-model metric rings."""

    def test_append_and_read(self):
        """Appended metrics should be readable in insertion order."""
        from health_router.performance.store import HealthStore

        store = HealthStore(persist=False)
        store.append("m", _metric(1))
        store.append("m", _metric(2))

        assert [m.latency_ms for m in store.metrics("m")] == [1, 2]
        assert store.latest("m").latency_ms == 2
        assert store.metric_count() == 2

    def test_oldest_evicted_first(self):
        """Beyond the cap, the oldest metrics should be evicted (FIFO)."""
        from health_router.performance.store import HealthStore

        store = HealthStore(persist=False, max_metrics_per_model=3)
        for latency in [1, 2, 3, 4, 5]:
            store.append("m", _metric(latency))

        assert [m.latency_ms for m in store.metrics("m")] == [3, 4, 5]

    def test_cap_is_per_model(self):
        """Each model should have its own ring."""
        from health_router.performance.store import HealthStore

        store = HealthStore(persist=False, max_metrics_per_model=2)
        for i in range(4):
            store.append("a", _metric(i))
        store.append("b", _metric(9))

        assert store.metric_count("a") == 2
        assert store.metric_count("b") == 1
        assert store.model_ids() == ["a", "b"]

    def test_invalid_cap_rejected(self):
        """A cap below one is a configuration error."""
        from health_router.performance.store import HealthStore

        with pytest.raises(ValueError):
            HealthStore(persist=False, max_metrics_per_model=0)

    def test_replace_latest(self):
        """replace_latest should only touch the newest metric."""
        from dataclasses import replace

        from health_router.performance.store import HealthStore

        store = HealthStore(persist=False)
        store.append("m", _metric(1))
        store.append("m", _metric(2))

        updated = store.replace_latest("m", lambda m: replace(m, feedback_score=5.0))

        assert updated.feedback_score == 5.0
        metrics = store.metrics("m")
        assert metrics[0].feedback_score is None
        assert metrics[1].feedback_score == 5.0

    def test_replace_latest_unknown_model(self):
        """replace_latest on an unknown model is a no-op."""
        from health_router.performance.store import HealthStore

        store = HealthStore(persist=False)
        assert store.replace_latest("ghost", lambda m: m) is None
        assert store.is_dirty is False

    def test_reads_are_copies(self):
        """Mutating a returned list must not affect the store."""
        from health_router.performance.store import HealthStore

        store = HealthStore(persist=False)
        store.append("m", _metric())
        store.metrics("m").clear()
        store.snapshot()["m"].clear()

        assert store.metric_count("m") == 1


class TestLoad:
    """Test synchronous snapshot loading."""

    def test_load_missing_snapshot(self):
        """A missing snapshot should load as empty state."""
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            store = HealthStore(snapshot_path=Path(tmpdir) / "health.json")
            assert store.load() == 0
            assert store.loaded is True
            assert store.model_ids() == []

    def test_load_corrupt_snapshot(self):
        """A corrupt snapshot should load as empty state, not raise."""
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "health.json"
            path.write_text("\x00garbage")
            store = HealthStore(snapshot_path=path)

            assert store.load() == 0
            assert store.is_dirty is False

    def test_load_applies_cap(self):
        """Loading more metrics than the cap keeps only the newest."""
        from health_router.performance.snapshot import write_snapshot
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "health.json"
            write_snapshot({"m": [_metric(i) for i in range(5)]}, path)

            store = HealthStore(snapshot_path=path, max_metrics_per_model=2)
            store.load()

            assert [m.latency_ms for m in store.metrics("m")] == [3, 4]


class TestFlush:
    """Test explicit and debounced flushing."""

    @pytest.mark.asyncio
    async def test_flush_writes_dirty_state(self):
        """flush() should write the snapshot and clear the dirty flag."""
        from health_router.performance.snapshot import read_snapshot
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "health.json"
            store = HealthStore(snapshot_path=path)
            store.load()
            store.append("m", _metric(42))

            assert store.is_dirty is True
            assert await store.flush() is True
            assert store.is_dirty is False
            assert read_snapshot(path)["m"][0].latency_ms == 42

    @pytest.mark.asyncio
    async def test_flush_when_clean_is_noop(self):
        """flush() without changes should not write."""
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            store = HealthStore(snapshot_path=Path(tmpdir) / "health.json")
            store.load()

            with patch("health_router.performance.store.write_snapshot") as mock_write:
                assert await store.flush() is False
                mock_write.assert_not_called()

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self, caplog):
        """Write errors are logged; state stays dirty for a retry."""
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            store = HealthStore(snapshot_path=Path(tmpdir) / "health.json")
            store.load()
            store.append("m", _metric())

            with patch(
                "health_router.performance.store.write_snapshot",
                side_effect=OSError("disk full"),
            ):
                with caplog.at_level("ERROR"):
                    assert await store.flush() is False

            assert "disk full" in caplog.text
            assert store.is_dirty is True
            assert await store.flush() is True

    @pytest.mark.asyncio
    async def test_burst_is_debounced_into_one_write(self):
        """A burst of mutations should produce a single write after the quiet period."""
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            store = HealthStore(
                snapshot_path=Path(tmpdir) / "health.json",
                flush_delay_seconds=0.1,
            )

            with patch("health_router.performance.store.write_snapshot") as mock_write:
                await store.start()
                for i in range(20):
                    store.append("m", _metric(i))
                    await asyncio.sleep(0.005)

                await asyncio.sleep(0.4)
                assert mock_write.call_count == 1
                written = mock_write.call_args[0][0]
                assert len(written["m"]) == 20

                await store.close()
                assert mock_write.call_count == 1

    @pytest.mark.asyncio
    async def test_no_write_before_quiet_period(self):
        """Nothing is written while mutations keep arriving within the delay."""
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            store = HealthStore(
                snapshot_path=Path(tmpdir) / "health.json",
                flush_delay_seconds=5.0,
            )

            with patch("health_router.performance.store.write_snapshot") as mock_write:
                await store.start()
                store.append("m", _metric())
                await asyncio.sleep(0.05)
                mock_write.assert_not_called()

                await store.close()
                mock_write.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_persists_last_dirty_state(self):
        """close() must flush pending changes before returning."""
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "health.json"
            store = HealthStore(snapshot_path=path, flush_delay_seconds=60)
            await store.start()
            store.append("m", _metric(7))
            await store.close()

            reloaded = HealthStore(snapshot_path=path)
            reloaded.load()
            assert reloaded.metrics("m")[0].latency_ms == 7

    @pytest.mark.asyncio
    async def test_memory_only_store_never_writes(self):
        """persist=False should skip all disk I/O."""
        from health_router.performance.store import HealthStore

        store = HealthStore(persist=False)
        with patch("health_router.performance.store.write_snapshot") as mock_write:
            await store.start()
            store.append("m", _metric())
            assert await store.flush() is False
            await store.close()
            mock_write.assert_not_called()

    @pytest.mark.asyncio
    async def test_background_flush_retries_after_failed_write(self, caplog):
        """A failed debounced write is retried after another quiet period."""
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            store = HealthStore(
                snapshot_path=Path(tmpdir) / "health.json",
                flush_delay_seconds=0.05,
            )

            with patch(
                "health_router.performance.store.write_snapshot",
                side_effect=[OSError("disk full"), None],
            ) as mock_write:
                with caplog.at_level("ERROR"):
                    await store.start()
                    store.append("m", _metric())
                    await asyncio.sleep(0.4)

                assert mock_write.call_count == 2
                assert "disk full" in caplog.text
                assert store.is_dirty is False

                await store.close()
                assert mock_write.call_count == 2


class TestConcurrency:
    """Test appends from many threads."""

    def _hammer(self, store, threads, per_thread):
        import threading

        from health_router.performance.profiler import ModelProfiler
        from health_router.performance.types import ModelMetric

        profiler = ModelProfiler(store)
        barrier = threading.Barrier(threads)

        def worker(index):
            barrier.wait()
            for i in range(per_thread):
                profiler.record_metric(
                    "shared",
                    ModelMetric(latency_ms=float(index * per_thread + i), success=True),
                )

        workers = [threading.Thread(target=worker, args=(n,)) for n in range(threads)]
        for t in workers:
            t.start()
        for t in workers:
            t.join()
        return profiler

    def test_no_metric_lost_under_cap(self):
        """With room for every metric, all N x M appends are kept."""
        from health_router.performance.store import HealthStore

        store = HealthStore(persist=False, max_metrics_per_model=10000)
        self._hammer(store, threads=8, per_thread=250)

        assert store.metric_count("shared") == 2000
        latencies = {m.latency_ms for m in store.metrics("shared")}
        assert latencies == {float(i) for i in range(2000)}
        assert store.is_dirty is True

    def test_small_cap_holds_exactly_cap(self):
        """Concurrent appends past the cap leave exactly cap metrics."""
        from health_router.performance.store import HealthStore

        store = HealthStore(persist=False, max_metrics_per_model=10)
        profiler = self._hammer(store, threads=8, per_thread=250)

        assert store.metric_count("shared") == 10
        assert store.is_dirty is True
        assert profiler.get_model_health("shared").total_calls == 10

    @pytest.mark.asyncio
    async def test_thread_appends_are_persisted(self):
        """Appends from worker threads reach the snapshot on close."""
        from health_router.performance.store import HealthStore

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "health.json"
            store = HealthStore(snapshot_path=path, flush_delay_seconds=60)
            await store.start()

            await asyncio.gather(
                *(asyncio.to_thread(self._hammer, store, 4, 50) for _ in range(2))
            )
            await store.close()

            reloaded = HealthStore(snapshot_path=path)
            assert reloaded.load() == 400
