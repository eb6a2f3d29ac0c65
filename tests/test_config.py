"""Tests for YAML configuration loading and environment overrides."""

import tempfile
from pathlib import Path

import pytest


def _write_yaml(tmpdir, text):
    path = Path(tmpdir) / "health_router.yaml"
    path.write_text(text)
    return path


class TestDefaults:
    """Test default configuration values."""

    def test_defaults(self):
        from health_router.config import DEFAULT_SNAPSHOT_PATH, HealthRouterConfig

        config = HealthRouterConfig()

        assert config.profiler.max_metrics_per_model == 1000
        assert config.profiler.retention_days == 30
        assert config.profiler.weights.success_rate == 40
        assert config.profiler.weights.latency == 20
        assert config.profiler.weights.feedback == 25
        assert config.profiler.weights.hallucination == 15
        assert config.persistence.snapshot_path == DEFAULT_SNAPSHOT_PATH
        assert config.persistence.flush_delay_seconds == 5
        assert config.router.min_primary_health == 10
        assert config.fallback.max_attempts == 3
        assert config.fallback.attempt_timeout_seconds == 30
        assert config.fallback.time_budget_seconds == 90
        assert config.router.strategy is None
        assert config.ensemble.size == 3
        assert config.ensemble.timeout_seconds == 30

    def test_missing_file_gives_defaults(self):
        from health_router.config import HealthRouterConfig, load_config

        assert load_config(Path("/nonexistent/health_router.yaml")) == HealthRouterConfig()
        assert load_config(None) == HealthRouterConfig()

    def test_to_dict_is_json_friendly(self):
        from health_router.config import HealthRouterConfig

        data = HealthRouterConfig().to_dict()
        assert isinstance(data["persistence"]["snapshot_path"], str)


class TestLoadConfig:
    """Test YAML loading."""

    def test_load_yaml(self):
        from health_router.config import load_config

        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_yaml(
                tmpdir,
                """
health_router:
  profiler:
    max_metrics_per_model: 50
    weights:
      feedback: 0
  persistence:
    snapshot_path: ~/health/snap.json
  fallback:
    max_attempts: 5
  capabilities:
    local-llama:
      provider: ollama
      supported_tasks: [chat]
""",
            )
            config = load_config(path)

        assert config.profiler.max_metrics_per_model == 50
        assert config.profiler.weights.feedback == 0
        assert config.profiler.weights.success_rate == 40
        assert config.persistence.snapshot_path == Path.home() / "health" / "snap.json"
        assert config.fallback.max_attempts == 5
        assert config.capabilities["local-llama"].provider == "ollama"

    def test_env_var_substitution(self, monkeypatch):
        from health_router.config import load_config

        monkeypatch.setenv("HEALTH_TEST_DIR", "/var/lib/router")
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_yaml(
                tmpdir,
                """
health_router:
  persistence:
    snapshot_path: ${HEALTH_TEST_DIR}/health.json
""",
            )
            config = load_config(path)

        assert config.persistence.snapshot_path == Path("/var/lib/router/health.json")

    def test_invalid_values_fall_back_to_defaults(self):
        from health_router.config import HealthRouterConfig, load_config

        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_yaml(tmpdir, "health_router:\n  fallback:\n    max_attempts: 0\n")
            assert load_config(path) == HealthRouterConfig()

    def test_strategy_tier_and_ensemble(self):
        from health_router.config import load_config

        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_yaml(
                tmpdir,
                """
health_router:
  router:
    strategy: quality
  ensemble:
    size: 2
    timeout_seconds: 10
  capabilities:
    local-llama:
      tier: creative
      supported_tasks: [creative]
""",
            )
            config = load_config(path)

            assert config.router.strategy == "quality"
            assert config.ensemble.size == 2
            assert config.ensemble.timeout_seconds == 10
            assert config.capabilities["local-llama"].tier == "creative"

    def test_unknown_strategy_rejected_in_strict_mode(self):
        from health_router.config import load_config

        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_yaml(tmpdir, "health_router:\n  router:\n    strategy: cheapest\n")
            assert load_config(path).router.strategy is None
            with pytest.raises(ValueError):
                load_config(path, strict=True)

    def test_strict_mode_raises(self):
        from health_router.config import load_config

        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_yaml(tmpdir, "health_router:\n  fallback:\n    max_attempts: 0\n")
            with pytest.raises(ValueError):
                load_config(path, strict=True)

    def test_invalid_yaml(self):
        from health_router.config import HealthRouterConfig, load_config

        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_yaml(tmpdir, "health_router: [unclosed\n")
            assert load_config(path) == HealthRouterConfig()
            with pytest.raises(ValueError, match="Invalid YAML"):
                load_config(path, strict=True)

    def test_empty_file(self):
        from health_router.config import HealthRouterConfig, load_config

        with tempfile.TemporaryDirectory() as tmpdir:
            assert load_config(_write_yaml(tmpdir, "")) == HealthRouterConfig()


class TestEffectiveConfig:
    """Test environment overrides and file discovery."""

    def test_env_overrides_yaml(self, monkeypatch):
        from health_router.config import get_effective_config

        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_yaml(tmpdir, "health_router:\n  fallback:\n    max_attempts: 5\n")
            monkeypatch.setenv("HEALTH_ROUTER_MAX_ATTEMPTS", "7")
            monkeypatch.setenv("HEALTH_ROUTER_TIME_BUDGET", "12.5")
            monkeypatch.setenv("HEALTH_ROUTER_SNAPSHOT_PATH", f"{tmpdir}/snap.json")
            monkeypatch.setenv("HEALTH_ROUTER_PERSISTENCE_ENABLED", "false")

            config = get_effective_config(path)

            assert config.fallback.max_attempts == 7
            assert config.fallback.time_budget_seconds == 12.5
            assert config.persistence.snapshot_path == Path(tmpdir) / "snap.json"
            assert config.persistence.enabled is False

    def test_invalid_env_value_is_ignored(self, monkeypatch):
        from health_router.config import get_effective_config

        monkeypatch.setenv("HEALTH_ROUTER_MAX_METRICS", "lots")
        config = get_effective_config(Path("/nonexistent.yaml"))

        assert config.profiler.max_metrics_per_model == 1000

    def test_strategy_and_ensemble_from_env(self, monkeypatch):
        from health_router.config import get_effective_config

        monkeypatch.setenv("HEALTH_ROUTER_STRATEGY", "SPEED")
        monkeypatch.setenv("HEALTH_ROUTER_ENSEMBLE_SIZE", "5")
        config = get_effective_config(Path("/nonexistent.yaml"))

        assert config.router.strategy == "speed"
        assert config.ensemble.size == 5

    def test_out_of_range_env_value_keeps_config(self, monkeypatch):
        """A value that parses but fails validation leaves the config untouched."""
        from health_router.config import get_effective_config

        monkeypatch.setenv("HEALTH_ROUTER_STRATEGY", "cheapest")
        monkeypatch.setenv("HEALTH_ROUTER_MAX_ATTEMPTS", "4")
        config = get_effective_config(Path("/nonexistent.yaml"))

        assert config.router.strategy is None
        assert config.fallback.max_attempts == 3

    def test_config_path_from_env(self, monkeypatch):
        from health_router.config import get_effective_config

        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_yaml(tmpdir, "health_router:\n  router:\n    min_primary_health: 25\n")
            monkeypatch.setenv("HEALTH_ROUTER_CONFIG", str(path))

            assert get_effective_config().router.min_primary_health == 25

    def test_config_in_current_directory(self, monkeypatch):
        from health_router.config import _find_config_file

        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_yaml(tmpdir, "health_router: {}\n")
            monkeypatch.chdir(tmpdir)

            assert _find_config_file().resolve() == path.resolve()
